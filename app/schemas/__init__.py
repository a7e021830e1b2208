"""Export Pydantic schemas for data validation and serialization."""

from app.schemas.credentials import CredentialBundle
from app.schemas.extraction import (
    DependentExtractionRequest,
    DependentExtractionResponse,
    ErrorResponse,
    ExtractionQueuedResponse,
    ExtractionRead,
    ExtractionRequest,
    ExtractionResponse,
)
from app.schemas.preview import (
    ConnectionTestResult,
    PreviewOptions,
    PreviewRequest,
    PreviewResult,
    PreviewStateResponse,
)

__all__ = [
    "CredentialBundle",
    "ExtractionRequest",
    "ExtractionResponse",
    "ExtractionQueuedResponse",
    "ExtractionRead",
    "DependentExtractionRequest",
    "DependentExtractionResponse",
    "ErrorResponse",
    "ConnectionTestResult",
    "PreviewOptions",
    "PreviewRequest",
    "PreviewResult",
    "PreviewStateResponse",
]
