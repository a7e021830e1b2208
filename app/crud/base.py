import uuid
from typing import Any, Generic, TypeVar

from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy.future import select

ModelType = TypeVar("ModelType")


def coerce_uuid(value: Any) -> uuid.UUID | None:
    """Returns `value` as a UUID, or None if it cannot be one (treated as not found)."""
    if isinstance(value, uuid.UUID):
        return value
    if value is None:
        return None
    try:
        return uuid.UUID(str(value))
    except ValueError:
        return None


class CRUDBase(Generic[ModelType]):
    def __init__(self, model: type[ModelType]):
        """
        CRUD object with default async read methods.

        **Parameters**

        * `model`: A SQLAlchemy model class
        """
        self.model = model

    async def aget(self, db: AsyncSession, id: Any) -> ModelType | None:
        key = coerce_uuid(id)
        if key is None:
            return None
        result = await db.execute(select(self.model).filter(self.model.id == key))
        return result.scalars().first()
