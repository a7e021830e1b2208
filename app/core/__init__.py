"""
Core application components: configuration and the typed error taxonomy.
"""

from .config import settings
from .exceptions import (
    APIException,
    ErrorCode,
    ExtractionError,
    InvalidStatusTransitionError,
    ShopifyAdminAPIClientError,
)

__all__ = [
    # config
    "settings",
    # exceptions
    "APIException",
    "ErrorCode",
    "ExtractionError",
    "InvalidStatusTransitionError",
    "ShopifyAdminAPIClientError",
]
