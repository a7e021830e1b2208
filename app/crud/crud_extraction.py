import logging
import uuid
from datetime import UTC, datetime
from typing import Any

from sqlalchemy.ext.asyncio import AsyncSession

from app.core.exceptions import InvalidStatusTransitionError
from app.crud.base import CRUDBase
from app.models.extraction import DatasetType, Extraction, ExtractionStatus

logger = logging.getLogger(__name__)


class CRUDExtraction(CRUDBase[Extraction]):
    async def acreate_pending(
        self,
        db: AsyncSession,
        *,
        source_id: uuid.UUID,
        dataset_type: DatasetType,
        template_name: str | None = None,
        custom_query: str | None = None,
        record_limit: int | None = None,
        user_id: uuid.UUID | None = None,
    ) -> Extraction:
        db_obj = Extraction(
            source_id=source_id,
            user_id=user_id,
            dataset_type=dataset_type.value,
            template_name=template_name,
            custom_query=custom_query,
            record_limit=record_limit,
            status=ExtractionStatus.PENDING,
            progress=0,
        )
        db.add(db_obj)
        await db.commit()
        await db.refresh(db_obj)
        return db_obj

    async def atransition(
        self,
        db: AsyncSession,
        *,
        db_obj: Extraction,
        status: ExtractionStatus,
        **fields: Any,
    ) -> Extraction:
        """Moves an extraction forward and commits, rejecting out-of-order transitions.

        `started_at` is stamped on the first move to RUNNING and `completed_at`
        on reaching a terminal state. Extra keyword arguments are written as
        column values (progress, status_message, result_data, ...). A failed commit
        is rolled back and leaves `db_obj` as it was.
        """
        current = db_obj.status
        if not current.can_transition_to(status):
            logger.warning(
                "Rejected extraction status transition",
                extra={
                    "props": {
                        "extraction_id": str(db_obj.id),
                        "current": current.value,
                        "requested": status.value,
                    }
                },
            )
            raise InvalidStatusTransitionError(current.value, status.value)

        previous = {
            name: getattr(db_obj, name)
            for name in ("status", "started_at", "completed_at", *fields)
        }
        db_obj.status = status
        for field, value in fields.items():
            setattr(db_obj, field, value)

        now = datetime.now(UTC)
        if status == ExtractionStatus.RUNNING and db_obj.started_at is None:
            db_obj.started_at = now
        elif status.is_terminal and db_obj.completed_at is None:
            db_obj.completed_at = now

        db.add(db_obj)
        try:
            await db.commit()
        except Exception:
            await db.rollback()
            for name, value in previous.items():
                setattr(db_obj, name, value)
            raise
        await db.refresh(db_obj)
        return db_obj


extraction = CRUDExtraction(Extraction)
