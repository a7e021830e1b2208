import uuid
from typing import Any

from pydantic import BaseModel, Field

from app.core.exceptions import ErrorCode
from app.models.extraction import DatasetType


class ConnectionTestResult(BaseModel):
    success: bool
    message: str
    code: ErrorCode | None = None


class PreviewResult(BaseModel):
    """Outcome of one preview action. `data=[]` with `error=None` is an empty but successful run."""

    data: list[Any] = Field(default_factory=list)
    sample: str | None = None
    error: str | None = None
    note: str | None = None


class PreviewOptions(BaseModel):
    dataset_type: DatasetType
    source_id: uuid.UUID | None = None
    selected_template: str | None = None  # pre_datasettemplate id
    selected_dependent_template: str | None = None
    custom_query: str | None = None


class PreviewRequest(PreviewOptions):
    retry_count: int = 0
    manual_retry: bool = False


class PreviewStateResponse(BaseModel):
    is_loading: bool = False
    data: list[Any] = Field(default_factory=list)
    sample: str | None = None
    error: str | None = None
    note: str | None = None
    connection_test_result: ConnectionTestResult | None = None
    retry_count: int = 0
