import asyncio
import logging
import time
from typing import Any

from app import crud
from app.core.config import settings
from app.core.exceptions import ErrorCode, ExtractionError
from app.models.extraction import DatasetType, Extraction, ExtractionStatus
from app.models.source import Source
from app.schemas.credentials import CredentialBundle
from app.schemas.extraction import DependentExtractionRequest, DependentExtractionResponse
from app.services.credentials import resolve_credentials
from app.services.dependent_templates import DependentQueryTemplate, get_dependent_template
from app.services.extraction_service import ExtractionService, as_extraction_error
from app.services.query_preparer import cap_page_size
from app.services.result_normalizer import build_sample, extract_page_info, extract_results

logger = logging.getLogger(__name__)

PREVIEW_NOTE = "This is a preview. The full extraction will include dependent data."
DEPENDENT_ERROR_FIELD = "_dependent_error"
PRIMARY_PAGE_SIZE = 250


class DependentExtractionService(ExtractionService):
    """Two-phase extraction: primary rows, then one secondary query per row id.

    Phase 2 runs at most `concurrency` secondary queries at a time. A failed
    secondary lookup does not fail the run: the row keeps an empty join field
    plus a `_dependent_error` marker and its id is reported in `failed_ids`.
    If every lookup fails the run fails.
    """

    operation = "extract_dependent"

    def __init__(self, *args, concurrency: int | None = None, **kwargs):
        super().__init__(*args, **kwargs)
        self.concurrency = concurrency or settings.DEPENDENT_CONCURRENCY

    async def _fetch_primary_rows(
        self, template: DependentQueryTemplate, credentials: CredentialBundle, limit: int
    ) -> list[dict[str, Any]]:
        rows: list[dict[str, Any]] = []
        after: str | None = None
        while len(rows) < limit:
            variables = {"first": min(PRIMARY_PAGE_SIZE, limit - len(rows)), "after": after}
            data = await self.client.execute_query(
                credentials.store_name,
                credentials.api_token,
                template.primary_query,
                variables,
                timeout_ms=settings.EXTRACTION_TIMEOUT_MS,
            )
            page = extract_results(data)
            rows.extend(row for row in page if isinstance(row, dict))
            page_info = extract_page_info(data)
            after = page_info.get("endCursor")
            if not page or not page_info.get("hasNextPage") or not after:
                break
        return rows[:limit]

    async def _fetch_secondary(
        self,
        template: DependentQueryTemplate,
        credentials: CredentialBundle,
        entity_ids: list[str],
    ) -> tuple[dict[str, Any], dict[str, ExtractionError]]:
        semaphore = asyncio.Semaphore(self.concurrency)

        async def fetch_one(entity_id: str) -> Any:
            prepared = template.build_secondary_query(entity_id)
            async with semaphore:
                return await self.client.execute_query(
                    credentials.store_name,
                    credentials.api_token,
                    prepared.query,
                    prepared.variables,
                    timeout_ms=settings.EXTRACTION_TIMEOUT_MS,
                )

        outcomes = await asyncio.gather(
            *(fetch_one(entity_id) for entity_id in entity_ids), return_exceptions=True
        )
        successes: dict[str, Any] = {}
        failures: dict[str, ExtractionError] = {}
        for entity_id, outcome in zip(entity_ids, outcomes):
            if not isinstance(outcome, BaseException):
                successes[entity_id] = outcome
                continue
            if not isinstance(outcome, Exception):
                raise outcome
            error = as_extraction_error(outcome)
            logger.warning(
                f"Dependent lookup failed: {error.message}",
                exc_info=None if isinstance(outcome, ExtractionError) else outcome,
                extra={"props": {"entity_id": entity_id, "code": error.code.value}},
            )
            failures[entity_id] = error
        return successes, failures

    async def _update_progress(self, extraction: Extraction, progress: int, message: str) -> None:
        await crud.extraction.atransition(
            self.db,
            db_obj=extraction,
            status=ExtractionStatus.RUNNING,
            progress=progress,
            status_message=message,
        )

    async def run(self, request: DependentExtractionRequest) -> DependentExtractionResponse:
        started = time.monotonic()
        preview = request.preview_only
        log_props = {
            "source_id": str(request.source_id),
            "template_name": request.template_name,
            "preview": preview,
        }
        logger.info("Starting dependent extraction", extra={"props": log_props})

        extraction: Extraction | None = None
        source: Source | None = None
        credentials: CredentialBundle | None = None
        failed_ids: list[str] = []
        try:
            if not preview:
                if request.extraction_id is None:
                    source = await self._load_source(request.source_id)
                extraction = await self._load_extraction(
                    request.extraction_id,
                    source_id=request.source_id,
                    dataset_type=DatasetType.DEPENDENT,
                    template_name=request.template_name,
                    record_limit=request.limit,
                    user_id=source.user_id if source is not None else None,
                )
                log_props["extraction_id"] = str(extraction.id)

            template = get_dependent_template(request.template_name)
            if template is None:
                raise ExtractionError(
                    f"Dependent template not found: {request.template_name}",
                    code=ErrorCode.TEMPLATE_NOT_FOUND,
                    details={"template_name": request.template_name},
                )

            if source is None:
                source = await self._load_source(request.source_id)
            credentials = await resolve_credentials(self.db, source)

            if preview:
                data = await self.client.execute_query(
                    credentials.store_name,
                    credentials.api_token,
                    template.primary_query,
                    {"first": cap_page_size(request.limit, settings.DEPENDENT_PREVIEW_LIMIT)},
                    timeout_ms=settings.PREVIEW_TIMEOUT_MS,
                    max_response_bytes=settings.PREVIEW_MAX_RESPONSE_BYTES,
                )
                results = extract_results(data)
            else:
                await self._mark_running(extraction)
                limit = cap_page_size(request.limit, settings.DEPENDENT_MAX_RECORDS)
                rows = await self._fetch_primary_rows(template, credentials, limit)
                entity_ids = template.id_extractor(rows)
                await self._update_progress(
                    extraction,
                    50,
                    f"Fetched {len(rows)} records, loading {template.join_field}...",
                )

                successes, failures = await self._fetch_secondary(template, credentials, entity_ids)
                if entity_ids and not successes:
                    first_failure = failures[entity_ids[0]]
                    raise ExtractionError(
                        f"All {len(entity_ids)} dependent lookups failed: {first_failure.message}",
                        code=first_failure.code,
                        status_code=first_failure.status_code,
                        details={"failed_ids": list(failures)},
                    )

                results = template.result_merger(rows, successes)
                for row in results:
                    error = failures.get(row.get("id"))
                    if error is not None:
                        row[DEPENDENT_ERROR_FIELD] = {
                            "code": error.code.value,
                            "message": error.message,
                        }
                failed_ids = [entity_id for entity_id in entity_ids if entity_id in failures]

                if failed_ids:
                    await self._mark_completed(
                        extraction,
                        results,
                        f"Extraction completed with {len(failed_ids)} of {len(entity_ids)} dependent lookups failed",
                    )
                else:
                    await self._mark_completed(extraction, results)
        except Exception as exc:
            error = as_extraction_error(exc)
            logger.error(
                f"Dependent extraction failed: {error.message}",
                exc_info=not isinstance(exc, ExtractionError),
                extra={"props": {**log_props, "code": error.code.value}},
            )
            self._log_operation(source=source, credentials=credentials, started=started, error=error)
            if extraction is not None:
                await self._mark_failed(extraction, error)
            if error is exc:
                raise
            raise error from exc

        self._log_operation(
            source=source, credentials=credentials, started=started, record_count=len(results)
        )
        return DependentExtractionResponse(
            results=results,
            count=len(results),
            preview=preview,
            sample=build_sample(results),
            extraction_id=extraction.id if extraction is not None else None,
            note=PREVIEW_NOTE if preview else None,
            partial=bool(failed_ids),
            failed_ids=failed_ids,
        )
