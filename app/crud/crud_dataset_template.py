from typing import Any

from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy.future import select

from app.crud.base import coerce_uuid
from app.models.dataset_template import DatasetTemplate


async def aget_dataset_template(db: AsyncSession, template_id: Any) -> DatasetTemplate | None:
    key = coerce_uuid(template_id)
    if key is None:
        return None
    result = await db.execute(select(DatasetTemplate).filter(DatasetTemplate.id == key))
    return result.scalars().first()


async def aget_dataset_template_by_key(
    db: AsyncSession, template_key: str
) -> DatasetTemplate | None:
    result = await db.execute(
        select(DatasetTemplate).filter(DatasetTemplate.template_key == template_key)
    )
    return result.scalars().first()
