import asyncio
import json
import logging
import uuid
from collections.abc import Awaitable, Callable
from typing import Any

import aio_pika
from aio_pika.abc import (
    AbstractIncomingMessage,
    AbstractRobustChannel,
    AbstractRobustConnection,
)

from app.core.config import settings

logger = logging.getLogger(__name__)

DLX_NAME = "dlx.default"  # Dead Letter Exchange shared by all queues
DLQ_SUFFIX = ".dlq"

# Full (non-preview) extractions handed to worker_extraction.py
QUEUE_EXTRACTIONS = "q.extractions"

MessageCallback = Callable[[AbstractIncomingMessage], Awaitable[bool]]


class QueueClient:
    """RabbitMQ connection used to hand extractions to background workers."""

    def __init__(self, rabbitmq_url: str | None = None, prefetch_count: int = 10):
        self.rabbitmq_url = rabbitmq_url or settings.RABBITMQ_URL
        self.prefetch_count = prefetch_count
        self._connection: AbstractRobustConnection | None = None
        self._channel: AbstractRobustChannel | None = None
        self._consumers: dict[str, asyncio.Task] = {}

    @property
    def is_connected(self) -> bool:
        return bool(
            self._connection
            and not self._connection.is_closed
            and self._channel
            and not self._channel.is_closed
        )

    async def connect(self):
        """Opens the connection and declares the DLX and the extraction queue.

        Connection failures are logged and leave the client disconnected; the
        next publish or consume attempts to reconnect.
        """
        if self.is_connected:
            return
        try:
            logger.info("Connecting to RabbitMQ...")
            self._connection = await aio_pika.connect_robust(self.rabbitmq_url)
            self._channel = await self._connection.channel()
            await self._channel.set_qos(prefetch_count=self.prefetch_count)
            await self._channel.declare_exchange(DLX_NAME, type="direct", durable=True)
            await self.declare_queue(QUEUE_EXTRACTIONS, use_dlq=True)
            logger.info("Successfully connected to RabbitMQ.")
        except Exception as e:
            logger.error(f"Failed to connect to RabbitMQ: {e}", exc_info=True)
            self._connection = None
            self._channel = None

    async def close(self):
        for queue_name, task in list(self._consumers.items()):
            if not task.done():
                task.cancel()
                try:
                    await task
                except asyncio.CancelledError:
                    logger.info(f"Consumer task for queue '{queue_name}' cancelled.")
        self._consumers.clear()

        if self._channel and not self._channel.is_closed:
            await self._channel.close()
        if self._connection and not self._connection.is_closed:
            await self._connection.close()
        self._channel = None
        self._connection = None
        logger.info("RabbitMQ connection closed.")

    async def _ensure_connected(self):
        if not self.is_connected:
            logger.warning("RabbitMQ connection not established. Attempting to reconnect...")
            await self.connect()
            if not self.is_connected:
                raise ConnectionError("Failed to establish RabbitMQ connection/channel.")

    async def declare_queue(
        self, queue_name: str, durable: bool = True, use_dlq: bool = False
    ) -> aio_pika.abc.AbstractQueue:
        """Declares a queue idempotently; with `use_dlq` rejected messages route to `<name>.dlq`."""
        if not self._channel:
            raise ConnectionError("Cannot declare queue, channel is not available.")

        arguments: dict[str, Any] = {}
        if use_dlq:
            dlq = await self._channel.declare_queue(queue_name + DLQ_SUFFIX, durable=True)
            await dlq.bind(exchange=DLX_NAME, routing_key=queue_name)
            arguments["x-dead-letter-exchange"] = DLX_NAME
            arguments["x-dead-letter-routing-key"] = queue_name

        return await self._channel.declare_queue(
            queue_name, durable=durable, arguments=arguments
        )

    async def publish_message(self, queue_name: str, message_body: dict[str, Any]):
        """Publishes a persistent JSON message to `queue_name`."""
        await self._ensure_connected()
        message = aio_pika.Message(
            body=json.dumps(message_body, default=str).encode(),
            delivery_mode=aio_pika.DeliveryMode.PERSISTENT,
            content_type="application/json",
            message_id=str(uuid.uuid4()),
        )
        try:
            await self._channel.default_exchange.publish(message, routing_key=queue_name)
        except Exception as e:
            logger.error(
                f"Failed to publish message to queue '{queue_name}': {e}", exc_info=True
            )
            raise
        logger.debug(
            "Published message",
            extra={"props": {"queue": queue_name, "message_id": message.message_id}},
        )

    async def _consume(self, queue: aio_pika.abc.AbstractQueue, callback: MessageCallback):
        queue_name = queue.name
        try:
            async with queue.iterator() as queue_iter:
                async for message in queue_iter:
                    # requeue=False: rejected and failed messages go to the DLQ
                    async with message.process(requeue=False, ignore_processed=True):
                        try:
                            success = await callback(message)
                        except Exception as e:
                            logger.error(
                                f"Error processing message {message.message_id} from '{queue_name}': {e}",
                                exc_info=True,
                            )
                            success = False
                        if not success:
                            await message.reject(requeue=False)
                            logger.warning(
                                f"Message {message.message_id} rejected to the dead letter queue."
                            )
        except asyncio.CancelledError:
            logger.info(f"Consumer task for queue '{queue_name}' cancelled.")
            raise
        except aio_pika.exceptions.ChannelClosed:
            logger.warning(f"Channel closed while consuming from '{queue_name}'.")
        finally:
            self._consumers.pop(queue_name, None)

    async def consume_messages(self, queue_name: str, callback: MessageCallback):
        """Starts a background consumer; `callback` returns True to ack, False to dead-letter."""
        await self._ensure_connected()
        if queue_name in self._consumers:
            logger.warning(f"Already consuming from queue '{queue_name}'.")
            return
        queue = await self.declare_queue(queue_name, use_dlq=True)
        logger.info(f"Starting consumer for queue: {queue_name}")
        self._consumers[queue_name] = asyncio.create_task(self._consume(queue, callback))
