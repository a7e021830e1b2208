"""
Preview coordination: connection pre-flight, dispatch by dataset type, and a
user-facing error/retry policy on top of the extraction services.
"""

import enum
import logging
import uuid
from dataclasses import dataclass, field
from typing import Any, Protocol

from sqlalchemy.ext.asyncio import AsyncSession

from app import crud
from app.core.config import settings
from app.core.exceptions import ErrorCode, ExtractionError
from app.models.extraction import DatasetType
from app.schemas.extraction import DependentExtractionRequest, ExtractionRequest
from app.schemas.preview import (
    ConnectionTestResult,
    PreviewOptions,
    PreviewResult,
    PreviewStateResponse,
)
from app.services.connection_test import check_source_connection
from app.services.dependent_service import DependentExtractionService
from app.services.extraction_service import ExtractionService
from app.services.operational_log import OperationalLogWriter
from app.services.query_templates import get_predefined_template
from app.services.result_normalizer import normalize_payload
from app.services.retry import retry_with_backoff
from app.services.shopify_client import ShopifyGraphQLClient

logger = logging.getLogger(__name__)

CUSTOM_QUERY_RETRIES = 2


class UnknownDatasetTypeError(ValueError):
    """Raised for a dataset type with no registered preview action."""


class ErrorCategory(str, enum.Enum):
    CONNECTIVITY = "connectivity"
    SYNTAX = "syntax"
    AUTH = "auth"
    GENERIC = "generic"


CODE_CATEGORIES: dict[ErrorCode, ErrorCategory] = {
    ErrorCode.TIMEOUT: ErrorCategory.CONNECTIVITY,
    ErrorCode.NETWORK_ERROR: ErrorCategory.CONNECTIVITY,
    ErrorCode.CONNECTION_FAILED: ErrorCategory.CONNECTIVITY,
    ErrorCode.INVALID_CREDENTIALS: ErrorCategory.AUTH,
    ErrorCode.INCOMPLETE_CREDENTIALS: ErrorCategory.AUTH,
    ErrorCode.CREDENTIALS_NOT_FOUND: ErrorCategory.AUTH,
}

# Fallbacks for untyped errors, checked in this order against the lowercased message.
MESSAGE_MARKERS: tuple[tuple[ErrorCategory, tuple[str, ...]], ...] = (
    (
        ErrorCategory.CONNECTIVITY,
        ("failed to fetch", "network", "timeout", "timed out", "edge function", "econnrefused"),
    ),
    (ErrorCategory.SYNTAX, ("graphql", "syntax")),
    (ErrorCategory.AUTH, ("auth", "credential", "access")),
)


def classify_error(error: BaseException) -> ErrorCategory:
    if isinstance(error, ExtractionError):
        category = CODE_CATEGORIES.get(error.code)
        if category is not None:
            return category
        if error.code == ErrorCode.SHOPIFY_API_ERROR:
            if error.status_code in (401, 403):
                return ErrorCategory.AUTH
            if isinstance(error.details, list):  # GraphQL `errors` array
                return ErrorCategory.SYNTAX

    message = str(error).lower()
    for category, markers in MESSAGE_MARKERS:
        if any(marker in message for marker in markers):
            return category
    return ErrorCategory.GENERIC


@dataclass(frozen=True)
class FormattedError:
    message: str
    category: ErrorCategory

    @property
    def increments_retry(self) -> bool:
        return self.category == ErrorCategory.CONNECTIVITY


def format_preview_error(
    error: BaseException, retry_count: int, escalation_threshold: int | None = None
) -> FormattedError:
    """Translates a pipeline error into one of four user-facing explanations."""
    threshold = escalation_threshold or settings.CONNECTIVITY_RETRY_ESCALATION
    original = error.message if isinstance(error, ExtractionError) else str(error)
    category = classify_error(error)

    if category == ErrorCategory.CONNECTIVITY:
        message = (
            "Failed to connect to the data source. This could be due to network "
            "connectivity issues or the service being temporarily unavailable."
        )
        if retry_count < threshold:
            message += " You can try refreshing the preview."
        else:
            message += (
                " The service might be experiencing issues. Please try again later "
                "or contact support if the problem persists."
            )
    elif category == ErrorCategory.SYNTAX:
        message = (
            f"There is a problem with the GraphQL query: {original}. "
            "Please check the query syntax and try again."
        )
    elif category == ErrorCategory.AUTH:
        message = (
            f"Authentication with the data source failed: {original}. "
            "Please check the source credentials and try again."
        )
    else:
        message = original
    return FormattedError(message=message, category=category)


class PreviewBackend(Protocol):
    async def test_connection(self, source_id: uuid.UUID | None) -> ConnectionTestResult: ...

    async def resolve_template_key(self, template_id: str) -> str: ...

    async def run_template(self, source_id: uuid.UUID, template_key: str) -> PreviewResult: ...

    async def run_dependent(self, source_id: uuid.UUID, template_name: str) -> PreviewResult: ...

    async def run_custom(self, source_id: uuid.UUID, custom_query: str) -> PreviewResult: ...


class ServicePreviewBackend:
    """Runs preview actions in-process against the extraction services."""

    def __init__(
        self,
        db: AsyncSession,
        client: ShopifyGraphQLClient,
        operational_log: OperationalLogWriter,
    ):
        self.db = db
        self.client = client
        self.operational_log = operational_log

    async def test_connection(self, source_id: uuid.UUID | None) -> ConnectionTestResult:
        return await check_source_connection(self.db, self.client, source_id)

    async def resolve_template_key(self, template_id: str) -> str:
        template = await crud.aget_dataset_template(self.db, template_id)
        if template is None:
            # Callers may pass a registered key directly.
            if get_predefined_template(template_id) is not None:
                return template_id
            raise ExtractionError(
                "Failed to fetch template details",
                code=ErrorCode.TEMPLATE_NOT_FOUND,
                details={"template_id": template_id},
            )
        if not template.template_key:
            raise ExtractionError(
                "Template key not found in template details",
                code=ErrorCode.TEMPLATE_NOT_FOUND,
                details={"template_id": template_id},
            )
        return template.template_key

    def _extraction_service(self) -> ExtractionService:
        return ExtractionService(self.db, self.client, self.operational_log)

    async def run_template(self, source_id: uuid.UUID, template_key: str) -> PreviewResult:
        response = await self._extraction_service().run(
            ExtractionRequest(source_id=source_id, template_key=template_key, preview_only=True)
        )
        return PreviewResult(data=response.results, sample=response.sample)

    async def run_dependent(self, source_id: uuid.UUID, template_name: str) -> PreviewResult:
        service = DependentExtractionService(self.db, self.client, self.operational_log)
        response = await service.run(
            DependentExtractionRequest(
                source_id=source_id, template_name=template_name, preview_only=True
            )
        )
        return PreviewResult(data=response.results, sample=response.sample, note=response.note)

    async def run_custom(self, source_id: uuid.UUID, custom_query: str) -> PreviewResult:
        service = self._extraction_service()
        response = await retry_with_backoff(
            lambda: service.run(
                ExtractionRequest(source_id=source_id, custom_query=custom_query, preview_only=True)
            ),
            max_retries=CUSTOM_QUERY_RETRIES,
        )
        return PreviewResult(data=response.results, sample=response.sample)


@dataclass
class PreviewState:
    is_loading: bool = False
    data: list[Any] = field(default_factory=list)
    sample: str | None = None
    error: str | None = None
    note: str | None = None
    connection_test_result: ConnectionTestResult | None = None
    retry_count: int = 0

    def to_response(self) -> PreviewStateResponse:
        return PreviewStateResponse(
            is_loading=self.is_loading,
            data=self.data,
            sample=self.sample,
            error=self.error,
            note=self.note,
            connection_test_result=self.connection_test_result,
            retry_count=self.retry_count,
        )


class DatasetPreviewCoordinator:
    """Holds preview state for one dataset and applies the retry policy.

    `retry_count` grows with each connectivity failure and is reset only by
    `retry_preview_generation`.
    """

    def __init__(
        self,
        backend: PreviewBackend,
        retry_count: int = 0,
        escalation_threshold: int | None = None,
    ):
        self.backend = backend
        self.escalation_threshold = escalation_threshold or settings.CONNECTIVITY_RETRY_ESCALATION
        self.state = PreviewState(retry_count=retry_count)
        self._actions = {
            DatasetType.PREDEFINED: self._run_predefined,
            DatasetType.DEPENDENT: self._run_dependent,
            DatasetType.CUSTOM: self._run_custom,
        }

    async def _run_predefined(self, options: PreviewOptions) -> PreviewResult:
        if not options.selected_template:
            return PreviewResult(error="Please select a template")
        template_key = await self.backend.resolve_template_key(options.selected_template)
        return await self.backend.run_template(options.source_id, template_key)

    async def _run_dependent(self, options: PreviewOptions) -> PreviewResult:
        if not options.selected_dependent_template:
            return PreviewResult(error="Please select a dependent template")
        return await self.backend.run_dependent(
            options.source_id, options.selected_dependent_template
        )

    async def _run_custom(self, options: PreviewOptions) -> PreviewResult:
        if not options.custom_query or not options.custom_query.strip():
            return PreviewResult(error="Custom query is required")
        return await self.backend.run_custom(options.source_id, options.custom_query)

    async def generate_preview(self, options: PreviewOptions) -> PreviewState:
        action = self._actions.get(options.dataset_type)
        if action is None:
            raise UnknownDatasetTypeError(f"Unknown dataset type: {options.dataset_type}")

        state = self.state
        state.is_loading = True
        state.data, state.sample, state.error, state.note = [], None, None, None
        state.connection_test_result = None
        log_props = {
            "source_id": str(options.source_id),
            "dataset_type": str(options.dataset_type),
        }

        try:
            connection = await self.backend.test_connection(options.source_id)
            state.connection_test_result = connection
            if not connection.success:
                raise ExtractionError(
                    f"Connection to the data source failed: {connection.message}",
                    code=connection.code or ErrorCode.CONNECTION_FAILED,
                )

            result = await action(options)
            if result.error:
                state.error = result.error
            else:
                state.data = normalize_payload(result.data)
                state.sample = result.sample
                state.note = result.note
        except Exception as exc:
            formatted = format_preview_error(exc, state.retry_count, self.escalation_threshold)
            logger.warning(
                f"Preview generation failed: {exc}",
                exc_info=not isinstance(exc, ExtractionError),
                extra={"props": {**log_props, "category": formatted.category.value}},
            )
            state.error = formatted.message
            if formatted.increments_retry:
                state.retry_count += 1
        finally:
            state.is_loading = False
        return state

    async def retry_preview_generation(self, options: PreviewOptions) -> PreviewState:
        """User-initiated retry: starts the retry count over."""
        self.state.retry_count = 0
        return await self.generate_preview(options)
