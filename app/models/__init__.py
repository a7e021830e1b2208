"""Import all models to ensure they are registered with SQLAlchemy."""

from app.models.source import Source
from app.models.shopify_credential import ShopifyCredential
from app.models.extraction import (
    ALLOWED_STATUS_TRANSITIONS,
    DatasetType,
    Extraction,
    ExtractionStatus,
)
from app.models.dataset_template import DatasetTemplate
from app.models.shopify_log import ShopifyLog

__all__ = [
    "Source",
    "ShopifyCredential",
    "Extraction",
    "ExtractionStatus",
    "ALLOWED_STATUS_TRANSITIONS",
    "DatasetType",
    "DatasetTemplate",
    "ShopifyLog",
]
