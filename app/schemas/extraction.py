import uuid
from datetime import datetime
from typing import Any

from pydantic import BaseModel, ConfigDict, Field

from app.models.extraction import DatasetType, ExtractionStatus


class ExtractionRequest(BaseModel):
    """Body of a preview or full extraction request."""

    source_id: uuid.UUID
    custom_query: str | None = None
    template_key: str | None = None
    preview_only: bool = False
    limit: int | None = None
    extraction_id: uuid.UUID | None = None  # Resume a pending extraction row
    run_in_background: bool = False


class DependentExtractionRequest(BaseModel):
    source_id: uuid.UUID
    template_name: str
    preview_only: bool = False
    limit: int | None = None
    extraction_id: uuid.UUID | None = None
    run_in_background: bool = False


class ExtractionResponse(BaseModel):
    results: list[Any] = Field(default_factory=list)
    count: int = 0
    preview: bool
    sample: str | None = None
    extraction_id: uuid.UUID | None = None


class DependentExtractionResponse(ExtractionResponse):
    note: str | None = None
    partial: bool = False
    failed_ids: list[str] = Field(default_factory=list)


class ExtractionQueuedResponse(BaseModel):
    extraction_id: uuid.UUID
    status: ExtractionStatus = ExtractionStatus.PENDING


class ErrorResponse(BaseModel):
    error: str
    code: str
    details: Any | None = None


class ExtractionRead(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: uuid.UUID
    source_id: uuid.UUID
    dataset_type: DatasetType
    template_name: str | None = None
    status: ExtractionStatus
    progress: int
    status_message: str | None = None
    error_code: str | None = None
    record_count: int | None = None
    result_data: Any | None = None
    started_at: datetime | None = None
    completed_at: datetime | None = None
    created_at: datetime | None = None
