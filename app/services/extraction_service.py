import logging
import time
import uuid
from typing import Any

from sqlalchemy.ext.asyncio import AsyncSession

from app import crud
from app.core.config import settings
from app.core.exceptions import ErrorCode, ExtractionError
from app.models.extraction import DatasetType, Extraction, ExtractionStatus
from app.models.source import Source
from app.schemas.credentials import CredentialBundle
from app.schemas.extraction import ExtractionRequest, ExtractionResponse
from app.services.credentials import resolve_credentials
from app.services.operational_log import OperationalLogWriter
from app.services.query_preparer import prepare_query
from app.services.result_normalizer import build_sample, extract_results
from app.services.shopify_client import ShopifyGraphQLClient

logger = logging.getLogger(__name__)

STATUS_MESSAGE_STARTING = "Starting extraction..."
STATUS_MESSAGE_COMPLETED = "Extraction completed successfully"

FAILURE_PREFIXES: dict[ErrorCode, str] = {
    ErrorCode.SHOPIFY_API_ERROR: "Shopify API error",
    ErrorCode.EMPTY_RESPONSE: "Shopify API error",
    ErrorCode.TIMEOUT: "Shopify API timeout",
    ErrorCode.NETWORK_ERROR: "Network error",
    ErrorCode.SIZE_LIMIT_EXCEEDED: "Response too large",
    ErrorCode.INVALID_SOURCE_TYPE: "Source error",
    ErrorCode.SOURCE_NOT_FOUND: "Source error",
    ErrorCode.INVALID_CREDENTIALS: "Credential error",
    ErrorCode.INCOMPLETE_CREDENTIALS: "Credential error",
    ErrorCode.CREDENTIALS_NOT_FOUND: "Credential error",
    ErrorCode.CREDENTIALS_FETCH_ERROR: "Credential error",
    ErrorCode.MISSING_QUERY: "Query error",
    ErrorCode.QUERY_RESOLUTION_FAILED: "Query error",
    ErrorCode.TEMPLATE_NOT_FOUND: "Template error",
    ErrorCode.TEMPLATE_LOAD_ERROR: "Template error",
}


def describe_failure(error: ExtractionError) -> str:
    """Human-readable status message for a failed extraction."""
    prefix = FAILURE_PREFIXES.get(error.code, "Extraction failed")
    return f"{prefix}: {error.message}"


def as_extraction_error(exc: Exception) -> ExtractionError:
    if isinstance(exc, ExtractionError):
        return exc
    return ExtractionError(
        f"Unexpected error during extraction: {exc}",
        code=ErrorCode.UNEXPECTED_ERROR,
    )


class ExtractionService:
    """Runs one preview or full extraction against a Shopify source.

    Full runs own an `Extraction` row and move it through
    pending -> running -> completed/failed. Preview runs persist nothing
    besides the operational log entry.
    """

    operation = "extract"

    def __init__(
        self,
        db: AsyncSession,
        client: ShopifyGraphQLClient,
        operational_log: OperationalLogWriter,
    ):
        self.db = db
        self.client = client
        self.operational_log = operational_log

    async def _load_source(self, source_id: uuid.UUID) -> Source:
        source = await crud.aget_source(self.db, source_id)
        if source is None:
            raise ExtractionError(
                "Source not found",
                code=ErrorCode.SOURCE_NOT_FOUND,
                details={"source_id": str(source_id)},
            )
        return source

    async def _load_extraction(
        self,
        extraction_id: uuid.UUID | None,
        *,
        source_id: uuid.UUID,
        dataset_type: DatasetType,
        template_name: str | None = None,
        custom_query: str | None = None,
        record_limit: int | None = None,
        user_id: uuid.UUID | None = None,
    ) -> Extraction:
        if extraction_id is not None:
            extraction = await crud.extraction.aget(self.db, extraction_id)
            if extraction is None:
                raise ExtractionError(
                    "Extraction not found",
                    code=ErrorCode.EXTRACTION_NOT_FOUND,
                    details={"extraction_id": str(extraction_id)},
                )
            return extraction
        return await crud.extraction.acreate_pending(
            self.db,
            source_id=source_id,
            dataset_type=dataset_type,
            template_name=template_name,
            custom_query=custom_query,
            record_limit=record_limit,
            user_id=user_id,
        )

    async def _mark_running(self, extraction: Extraction) -> None:
        await crud.extraction.atransition(
            self.db,
            db_obj=extraction,
            status=ExtractionStatus.RUNNING,
            progress=0,
            status_message=STATUS_MESSAGE_STARTING,
        )

    async def _mark_completed(
        self, extraction: Extraction, results: list[Any], status_message: str = STATUS_MESSAGE_COMPLETED
    ) -> None:
        await crud.extraction.atransition(
            self.db,
            db_obj=extraction,
            status=ExtractionStatus.COMPLETED,
            progress=100,
            status_message=status_message,
            result_data=results,
            record_count=len(results),
        )

    async def _mark_failed(self, extraction: Extraction, error: ExtractionError) -> None:
        """Writes FAILED unless the stored row is already terminal.

        The session is rolled back and the row reloaded first, so the
        terminal check reads the stored status.
        """
        extraction_id = str(extraction.id)
        try:
            await self.db.rollback()
            await self.db.refresh(extraction)
            if extraction.status.is_terminal:
                return
            await crud.extraction.atransition(
                self.db,
                db_obj=extraction,
                status=ExtractionStatus.FAILED,
                status_message=describe_failure(error),
                error_code=error.code.value,
            )
        except Exception:
            # Caller still gets the pipeline error.
            logger.exception(
                "Failed to record extraction failure",
                extra={"props": {"extraction_id": extraction_id}},
            )

    def _log_operation(
        self,
        *,
        source: Source | None,
        credentials: CredentialBundle | None,
        started: float,
        record_count: int | None = None,
        error: ExtractionError | None = None,
    ) -> None:
        store_name = credentials.store_name if credentials else (source.url if source else None)
        self.operational_log.record(
            operation=self.operation,
            store_name=store_name,
            user_id=source.user_id if source else None,
            api_key=credentials.client_id if credentials else None,
            record_count=record_count,
            time_taken_ms=int((time.monotonic() - started) * 1000),
            error_message=error.message if error else None,
            error_code=error.code.value if error else None,
            http_status=error.status_code if error else 200,
        )

    async def run(self, request: ExtractionRequest) -> ExtractionResponse:
        """Executes the request and returns its normalized results.

        Raises:
            ExtractionError: the failing step's typed error. For full runs the
                extraction row has already been marked failed.
        """
        started = time.monotonic()
        preview = request.preview_only
        log_props = {
            "source_id": str(request.source_id),
            "preview": preview,
            "template_key": request.template_key,
        }
        logger.info("Starting extraction", extra={"props": log_props})

        extraction: Extraction | None = None
        source: Source | None = None
        credentials: CredentialBundle | None = None
        try:
            if not preview:
                # A new row needs an existing source to reference.
                if request.extraction_id is None:
                    source = await self._load_source(request.source_id)
                extraction = await self._load_extraction(
                    request.extraction_id,
                    source_id=request.source_id,
                    dataset_type=DatasetType.CUSTOM if request.custom_query else DatasetType.PREDEFINED,
                    template_name=request.template_key,
                    custom_query=request.custom_query,
                    record_limit=request.limit,
                    user_id=source.user_id if source is not None else None,
                )
                log_props["extraction_id"] = str(extraction.id)

            if source is None:
                source = await self._load_source(request.source_id)
            credentials = await resolve_credentials(self.db, source)
            prepared = await prepare_query(
                custom_query=request.custom_query,
                template_key=request.template_key,
                limit=request.limit,
                cap=settings.PREVIEW_RECORD_LIMIT if preview else settings.EXTRACTION_RECORD_LIMIT,
                db=self.db,
            )

            if extraction is not None:
                await self._mark_running(extraction)

            data = await self.client.execute_query(
                credentials.store_name,
                credentials.api_token,
                prepared.query,
                prepared.variables,
                timeout_ms=settings.PREVIEW_TIMEOUT_MS if preview else settings.EXTRACTION_TIMEOUT_MS,
                max_response_bytes=settings.PREVIEW_MAX_RESPONSE_BYTES if preview else None,
            )
            results = extract_results(data)
            sample = build_sample(results)

            if extraction is not None:
                await self._mark_completed(extraction, results)
        except Exception as exc:
            error = as_extraction_error(exc)
            logger.error(
                f"Extraction failed: {error.message}",
                exc_info=not isinstance(exc, ExtractionError),
                extra={"props": {**log_props, "code": error.code.value}},
            )
            self._log_operation(
                source=source, credentials=credentials, started=started, error=error
            )
            if extraction is not None:
                await self._mark_failed(extraction, error)
            if error is exc:
                raise
            raise error from exc

        self._log_operation(
            source=source,
            credentials=credentials,
            started=started,
            record_count=len(results),
        )
        logger.info(
            "Extraction completed",
            extra={"props": {**log_props, "record_count": len(results)}},
        )
        return ExtractionResponse(
            results=results,
            count=len(results),
            preview=preview,
            sample=sample,
            extraction_id=extraction.id if extraction is not None else None,
        )
