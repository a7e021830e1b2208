import asyncio
import logging
import uuid
from collections import deque
from collections.abc import Callable
from typing import Any

from sqlalchemy.ext.asyncio import AsyncSession

from app import crud
from app.database import AsyncSessionLocal

logger = logging.getLogger(__name__)

DEAD_LETTER_CAPACITY = 100


class OperationalLogWriter:
    """Writes `shopify_logs` rows as tracked background tasks.

    Each write uses its own session so a failed log insert can never roll back
    or fail the extraction that produced it. Failed entries are logged and kept
    in `dead_letters` for inspection.
    """

    def __init__(
        self,
        session_factory: Callable[[], AsyncSession] = AsyncSessionLocal,
        dead_letter_capacity: int = DEAD_LETTER_CAPACITY,
    ):
        self._session_factory = session_factory
        self._tasks: set[asyncio.Task] = set()
        self.dead_letters: deque[dict[str, Any]] = deque(maxlen=dead_letter_capacity)

    def record(
        self,
        *,
        operation: str,
        store_name: str | None,
        user_id: uuid.UUID | None = None,
        api_key: str | None = None,
        record_count: int | None = None,
        time_taken_ms: int | None = None,
        error_message: str | None = None,
        error_code: str | None = None,
        http_status: int | None = None,
    ) -> asyncio.Task:
        """Schedules one log row without waiting for it."""
        entry = {
            "user_id": user_id,
            "store_name": store_name,
            "api_key": api_key,
            "error_message": error_message,
            "error_details": {
                "operation": operation,
                "record_count": record_count,
                "time_taken_ms": time_taken_ms,
                "code": error_code,
            },
            "http_status": http_status,
        }
        task = asyncio.create_task(self._write(entry))
        self._tasks.add(task)
        task.add_done_callback(self._tasks.discard)
        return task

    async def _write(self, entry: dict[str, Any]) -> None:
        try:
            async with self._session_factory() as session:
                await crud.acreate_shopify_log(session, **entry)
                await session.commit()
        except Exception:
            logger.exception(
                "Failed to write operational log entry",
                extra={
                    "props": {
                        "store_name": entry.get("store_name"),
                        "operation": entry["error_details"]["operation"],
                    }
                },
            )
            self.dead_letters.append(entry)

    @property
    def pending(self) -> int:
        return len(self._tasks)

    async def drain(self) -> None:
        """Waits for every scheduled write (used on shutdown and in tests)."""
        if self._tasks:
            await asyncio.gather(*list(self._tasks), return_exceptions=True)
