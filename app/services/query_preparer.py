import logging
from dataclasses import dataclass, field
from typing import Any

from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession

from app import crud
from app.core.config import settings
from app.core.exceptions import ErrorCode, ExtractionError
from app.services.query_templates import get_predefined_template

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class PreparedQuery:
    query: str
    variables: dict[str, Any] = field(default_factory=dict)


def cap_page_size(limit: int | None, cap: int) -> int:
    """Effective `first` value: the requested limit, never above `cap`, never below 1."""
    return max(1, min(limit or cap, cap))


async def _load_template_query(db: AsyncSession | None, template_key: str) -> str:
    template = get_predefined_template(template_key)
    if template is not None:
        return template.query

    if db is None:
        raise ExtractionError(
            f"Template not found: {template_key}",
            code=ErrorCode.TEMPLATE_NOT_FOUND,
            details={"template_key": template_key},
        )

    try:
        record = await crud.aget_dataset_template_by_key(db, template_key)
    except SQLAlchemyError as e:
        logger.error(
            "Failed to load dataset template",
            exc_info=True,
            extra={"props": {"template_key": template_key}},
        )
        raise ExtractionError(
            "Error loading query template",
            code=ErrorCode.TEMPLATE_LOAD_ERROR,
            details=str(e),
        ) from e

    if record is None:
        raise ExtractionError(
            f"Template not found: {template_key}",
            code=ErrorCode.TEMPLATE_NOT_FOUND,
            details={"template_key": template_key},
        )

    structure = record.query_structure
    if structure is not None and not isinstance(structure, dict):
        raise ExtractionError(
            "Template query structure is malformed",
            code=ErrorCode.TEMPLATE_LOAD_ERROR,
            details={"template_key": template_key},
        )
    return (structure or {}).get("query") or ""


async def prepare_query(
    *,
    custom_query: str | None = None,
    template_key: str | None = None,
    limit: int | None = None,
    cap: int | None = None,
    db: AsyncSession | None = None,
) -> PreparedQuery:
    """Resolves the GraphQL document and variables for one request.

    A custom query takes precedence over a template key. Templates are looked
    up in the in-code registry first, then in `pre_datasettemplate` when a
    session is given. `variables.first` never exceeds `cap` (the preview cap
    by default).
    """
    cap = cap or settings.PREVIEW_RECORD_LIMIT
    custom_query = custom_query.strip() if custom_query else None

    if not custom_query and not template_key:
        raise ExtractionError(
            "Either a custom query or a template key is required",
            code=ErrorCode.MISSING_QUERY,
        )

    if custom_query:
        query = custom_query
    else:
        query = await _load_template_query(db, template_key)

    if not query or not query.strip():
        raise ExtractionError(
            "Failed to resolve a query to execute",
            code=ErrorCode.QUERY_RESOLUTION_FAILED,
            details={"template_key": template_key},
        )

    return PreparedQuery(query=query, variables={"first": cap_page_size(limit, cap)})
