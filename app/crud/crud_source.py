import uuid
from datetime import UTC, datetime
from typing import Any

from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy.future import select

from app.crud.base import coerce_uuid
from app.models.shopify_credential import ShopifyCredential
from app.models.source import Source


async def aget_source(
    db: AsyncSession, source_id: uuid.UUID | str, include_deleted: bool = False
) -> Source | None:
    """Gets a source by id. Soft-deleted sources are hidden unless `include_deleted`."""
    key = coerce_uuid(source_id)
    if key is None:
        return None
    stmt = select(Source).filter(Source.id == key)
    if not include_deleted:
        stmt = stmt.filter(Source.is_deleted.is_(False))
    result = await db.execute(stmt)
    return result.scalars().first()


async def aget_shopify_credential(
    db: AsyncSession, credential_id: Any
) -> ShopifyCredential | None:
    """Gets a shared credential record. Storage errors propagate to the caller."""
    key = coerce_uuid(credential_id)
    if key is None:
        return None
    stmt = select(ShopifyCredential).filter(ShopifyCredential.id == key)
    result = await db.execute(stmt)
    return result.scalars().first()


async def astamp_shopify_connection(
    db: AsyncSession, credential_id: Any, succeeded: bool
) -> ShopifyCredential | None:
    """Records a connection test result on the shared credential record, if there is one."""
    record = await aget_shopify_credential(db, credential_id)
    if record is None:
        return None
    record.last_connection_status = succeeded
    record.last_connection_time = datetime.now(UTC)
    db.add(record)
    await db.commit()
    return record
