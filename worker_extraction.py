import asyncio
import json
import logging
import signal
import uuid
from typing import Any

import httpx
from aio_pika.abc import AbstractIncomingMessage

from app.core.exceptions import ExtractionError
from app.database import AsyncSessionLocal
from app.logging_config import setup_logging
from app.models.extraction import DatasetType
from app.schemas.extraction import DependentExtractionRequest, ExtractionRequest
from app.services.dependent_service import DependentExtractionService
from app.services.extraction_service import ExtractionService
from app.services.operational_log import OperationalLogWriter
from app.services.queue_client import QUEUE_EXTRACTIONS, QueueClient
from app.services.shopify_client import ShopifyGraphQLClient

logger = logging.getLogger("worker_extraction")


class ExtractionWorker:
    """Consumes queued full extractions and runs them to a terminal status."""

    def __init__(
        self,
        client: ShopifyGraphQLClient,
        operational_log: OperationalLogWriter,
        session_factory=AsyncSessionLocal,
    ):
        self.client = client
        self.operational_log = operational_log
        self.session_factory = session_factory

    @staticmethod
    def parse_message(data: dict[str, Any]) -> ExtractionRequest | DependentExtractionRequest:
        """Builds the service request for a queue message. Raises ValueError/KeyError if malformed."""
        extraction_id = uuid.UUID(data["extraction_id"])
        source_id = uuid.UUID(data["source_id"])
        dataset_type = DatasetType(data.get("dataset_type") or DatasetType.PREDEFINED.value)
        if dataset_type == DatasetType.DEPENDENT:
            if not data.get("template_name"):
                raise ValueError("Dependent extraction message has no template_name")
            return DependentExtractionRequest(
                source_id=source_id,
                template_name=data["template_name"],
                limit=data.get("limit"),
                extraction_id=extraction_id,
            )
        return ExtractionRequest(
            source_id=source_id,
            custom_query=data.get("custom_query"),
            template_key=data.get("template_key"),
            limit=data.get("limit"),
            extraction_id=extraction_id,
        )

    async def handle_message(self, message: AbstractIncomingMessage) -> bool:
        """Returns True to ack, False to dead-letter.

        A logical extraction failure is still an ack: the extraction row holds
        the failed status and message.
        """
        log_props = {"message_id": str(message.message_id), "worker": "Extraction"}
        try:
            data = json.loads(message.body.decode())
            request = self.parse_message(data)
        except (json.JSONDecodeError, UnicodeDecodeError, KeyError, ValueError, TypeError):
            logger.error("Invalid extraction message", exc_info=True, extra={"props": log_props})
            return False

        log_props["extraction_id"] = str(request.extraction_id)
        logger.info("Processing extraction", extra={"props": log_props})

        async with self.session_factory() as db:
            if isinstance(request, DependentExtractionRequest):
                service = DependentExtractionService(db, self.client, self.operational_log)
            else:
                service = ExtractionService(db, self.client, self.operational_log)
            try:
                response = await service.run(request)
            except ExtractionError as e:
                logger.warning(
                    f"Extraction finished with failure: {e.message}",
                    extra={"props": {**log_props, "code": e.code.value}},
                )
                return True

        logger.info(
            "Extraction finished",
            extra={"props": {**log_props, "record_count": response.count}},
        )
        return True


# --- Worker Lifecycle ---
stop_event = asyncio.Event()


def handle_signal(sig, frame):
    logger.warning(
        f"Extraction Worker: Received signal {sig}, shutting down...",
        extra={"props": {"signal": sig}},
    )
    stop_event.set()


async def main():
    setup_logging()
    logger.info("Starting Extraction Worker Service...")

    loop = asyncio.get_running_loop()
    for sig in (signal.SIGINT, signal.SIGTERM):
        loop.add_signal_handler(sig, handle_signal, sig, None)

    http_client = httpx.AsyncClient()
    operational_log = OperationalLogWriter()
    worker = ExtractionWorker(ShopifyGraphQLClient(http_client=http_client), operational_log)
    queue_client = QueueClient()

    try:
        await queue_client.connect()
        await queue_client.consume_messages(QUEUE_EXTRACTIONS, worker.handle_message)
        logger.info(f"Extraction Worker: Consuming messages from queue: {QUEUE_EXTRACTIONS}")
        await stop_event.wait()
    except asyncio.CancelledError:
        logger.info("Extraction Worker: Main task cancelled.")
    except Exception as e:
        logger.critical(f"Extraction Worker: Critical error: {e}", exc_info=True)
    finally:
        logger.info("Extraction Worker: Shutting down...")
        await queue_client.close()
        await operational_log.drain()
        await http_client.aclose()
        logger.info("Extraction Worker: Shutdown complete.")


if __name__ == "__main__":
    asyncio.run(main())
