import uuid
from typing import Any

from sqlalchemy.ext.asyncio import AsyncSession

from app.models.shopify_log import ShopifyLog


async def acreate_shopify_log(
    db: AsyncSession,
    *,
    user_id: uuid.UUID | None = None,
    store_name: str | None = None,
    api_key: str | None = None,
    error_message: str | None = None,
    error_details: dict[str, Any] | None = None,
    http_status: int | None = None,
) -> ShopifyLog:
    """Inserts an operational log row. Commit is left to the caller."""
    db_obj = ShopifyLog(
        user_id=user_id,
        store_name=store_name,
        api_key=api_key,
        error_message=error_message,
        error_details=error_details,
        http_status=http_status,
    )
    db.add(db_obj)
    await db.flush()
    return db_obj
