import logging
import uuid

from fastapi import APIRouter, Depends, status
from fastapi.responses import JSONResponse
from sqlalchemy.ext.asyncio import AsyncSession

from app import crud, schemas
from app.core.exceptions import ErrorCode, ExtractionError
from app.database import get_async_db
from app.extraction.dependencies import (
    get_operational_log,
    get_queue_client,
    get_shopify_client,
)
from app.models.extraction import DatasetType, ExtractionStatus
from app.services.connection_test import check_source_connection
from app.services.dependent_service import DependentExtractionService
from app.services.extraction_service import ExtractionService
from app.services.operational_log import OperationalLogWriter
from app.services.preview_coordinator import DatasetPreviewCoordinator, ServicePreviewBackend
from app.services.queue_client import QUEUE_EXTRACTIONS, QueueClient
from app.services.shopify_client import ShopifyGraphQLClient

logger = logging.getLogger(__name__)
router = APIRouter(tags=["Extraction"])

ERROR_RESPONSES = {
    400: {"model": schemas.ErrorResponse},
    404: {"model": schemas.ErrorResponse},
    408: {"model": schemas.ErrorResponse},
    413: {"model": schemas.ErrorResponse},
    500: {"model": schemas.ErrorResponse},
    503: {"model": schemas.ErrorResponse},
}


def error_response(error: ExtractionError) -> JSONResponse:
    return JSONResponse(status_code=error.status_code, content=error.to_dict())


async def _enqueue_extraction(
    db: AsyncSession,
    queue_client: QueueClient,
    *,
    source_id: uuid.UUID,
    dataset_type: DatasetType,
    template_name: str | None = None,
    custom_query: str | None = None,
    limit: int | None = None,
) -> schemas.ExtractionQueuedResponse:
    source = await crud.aget_source(db, source_id)
    if source is None:
        raise ExtractionError("Source not found", code=ErrorCode.SOURCE_NOT_FOUND)
    extraction = await crud.extraction.acreate_pending(
        db,
        source_id=source_id,
        dataset_type=dataset_type,
        template_name=template_name,
        custom_query=custom_query,
        record_limit=limit,
        user_id=source.user_id,
    )
    try:
        await queue_client.publish_message(
            QUEUE_EXTRACTIONS,
            {
                "extraction_id": str(extraction.id),
                "source_id": str(source_id),
                "dataset_type": dataset_type.value,
                "template_key": template_name if dataset_type != DatasetType.DEPENDENT else None,
                "template_name": template_name if dataset_type == DatasetType.DEPENDENT else None,
                "custom_query": custom_query,
                "limit": limit,
            },
        )
    except Exception as e:
        error = ExtractionError(
            "Failed to queue extraction",
            code=ErrorCode.UNEXPECTED_ERROR,
            status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
        )
        await crud.extraction.atransition(
            db,
            db_obj=extraction,
            status=ExtractionStatus.FAILED,
            status_message=f"Extraction failed: {error.message}",
            error_code=error.code.value,
        )
        raise error from e
    logger.info(
        "Queued background extraction",
        extra={"props": {"extraction_id": str(extraction.id), "source_id": str(source_id)}},
    )
    return schemas.ExtractionQueuedResponse(extraction_id=extraction.id)


@router.post(
    "/extract",
    response_model=schemas.ExtractionResponse,
    responses={**ERROR_RESPONSES, 202: {"model": schemas.ExtractionQueuedResponse}},
)
async def run_extraction(
    request: schemas.ExtractionRequest,
    db: AsyncSession = Depends(get_async_db),
    client: ShopifyGraphQLClient = Depends(get_shopify_client),
    operational_log: OperationalLogWriter = Depends(get_operational_log),
    queue_client: QueueClient = Depends(get_queue_client),
):
    """Preview (at most 5 records, nothing persisted) or full extraction of a source."""
    try:
        if request.run_in_background and not request.preview_only:
            queued = await _enqueue_extraction(
                db,
                queue_client,
                source_id=request.source_id,
                dataset_type=DatasetType.CUSTOM if request.custom_query else DatasetType.PREDEFINED,
                template_name=request.template_key,
                custom_query=request.custom_query,
                limit=request.limit,
            )
            return JSONResponse(
                status_code=status.HTTP_202_ACCEPTED, content=queued.model_dump(mode="json")
            )
        service = ExtractionService(db, client, operational_log)
        return await service.run(request)
    except ExtractionError as e:
        return error_response(e)


@router.post(
    "/extract/dependent",
    response_model=schemas.DependentExtractionResponse,
    responses={**ERROR_RESPONSES, 202: {"model": schemas.ExtractionQueuedResponse}},
)
async def run_dependent_extraction(
    request: schemas.DependentExtractionRequest,
    db: AsyncSession = Depends(get_async_db),
    client: ShopifyGraphQLClient = Depends(get_shopify_client),
    operational_log: OperationalLogWriter = Depends(get_operational_log),
    queue_client: QueueClient = Depends(get_queue_client),
):
    try:
        if request.run_in_background and not request.preview_only:
            queued = await _enqueue_extraction(
                db,
                queue_client,
                source_id=request.source_id,
                dataset_type=DatasetType.DEPENDENT,
                template_name=request.template_name,
                limit=request.limit,
            )
            return JSONResponse(
                status_code=status.HTTP_202_ACCEPTED, content=queued.model_dump(mode="json")
            )
        service = DependentExtractionService(db, client, operational_log)
        return await service.run(request)
    except ExtractionError as e:
        return error_response(e)


@router.post("/datasets/preview", response_model=schemas.PreviewStateResponse)
async def generate_dataset_preview(
    request: schemas.PreviewRequest,
    db: AsyncSession = Depends(get_async_db),
    client: ShopifyGraphQLClient = Depends(get_shopify_client),
    operational_log: OperationalLogWriter = Depends(get_operational_log),
):
    """Connection test, then a preview of the selected dataset.

    Errors come back in `error` as user-facing text. The caller echoes
    `retry_count` on the next call; `manual_retry` starts it over.
    """
    coordinator = DatasetPreviewCoordinator(
        ServicePreviewBackend(db, client, operational_log),
        retry_count=request.retry_count,
    )
    options = schemas.PreviewOptions(**request.model_dump(exclude={"retry_count", "manual_retry"}))
    if request.manual_retry:
        state = await coordinator.retry_preview_generation(options)
    else:
        state = await coordinator.generate_preview(options)
    return state.to_response()


@router.post("/sources/{source_id}/test-connection", response_model=schemas.ConnectionTestResult)
async def source_connection_test(
    source_id: uuid.UUID,
    db: AsyncSession = Depends(get_async_db),
    client: ShopifyGraphQLClient = Depends(get_shopify_client),
):
    return await check_source_connection(db, client, source_id)


@router.get(
    "/extractions/{extraction_id}",
    response_model=schemas.ExtractionRead,
    responses={404: {"model": schemas.ErrorResponse}},
)
async def get_extraction(extraction_id: uuid.UUID, db: AsyncSession = Depends(get_async_db)):
    extraction = await crud.extraction.aget(db, extraction_id)
    if extraction is None:
        return error_response(
            ExtractionError("Extraction not found", code=ErrorCode.EXTRACTION_NOT_FOUND)
        )
    return extraction
