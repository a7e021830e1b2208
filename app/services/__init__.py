"""Export service components for use throughout the application."""

from app.services.shopify_client import ShopifyGraphQLClient, build_api_url
from app.services.credentials import resolve_credentials
from app.services.query_preparer import PreparedQuery, prepare_query
from app.services.result_normalizer import (
    build_sample,
    extract_results,
    normalize_payload,
)
from app.services.operational_log import OperationalLogWriter
from app.services.extraction_service import ExtractionService
from app.services.dependent_service import DependentExtractionService
from app.services.retry import retry_with_backoff
from app.services.connection_test import check_source_connection
from app.services.preview_coordinator import (
    DatasetPreviewCoordinator,
    ServicePreviewBackend,
    UnknownDatasetTypeError,
    format_preview_error,
)
from app.services.queue_client import QUEUE_EXTRACTIONS, QueueClient

__all__ = [
    "ShopifyGraphQLClient",
    "build_api_url",
    "resolve_credentials",
    "PreparedQuery",
    "prepare_query",
    "build_sample",
    "extract_results",
    "normalize_payload",
    "OperationalLogWriter",
    "ExtractionService",
    "DependentExtractionService",
    "retry_with_backoff",
    "check_source_connection",
    "DatasetPreviewCoordinator",
    "ServicePreviewBackend",
    "UnknownDatasetTypeError",
    "format_preview_error",
    "QueueClient",
    "QUEUE_EXTRACTIONS",
]
