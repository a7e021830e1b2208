import json
import uuid
from unittest.mock import AsyncMock, MagicMock

import pytest

from app.core.exceptions import ErrorCode, ExtractionError
from app.schemas.extraction import (
    DependentExtractionRequest,
    ExtractionRequest,
    ExtractionResponse,
)
from worker_extraction import ExtractionWorker

EXTRACTION_ID = str(uuid.uuid4())
SOURCE_ID = str(uuid.uuid4())


def make_message(body) -> MagicMock:
    message = MagicMock(name="AbstractIncomingMessage")
    message.message_id = "msg-1"
    message.body = body if isinstance(body, bytes) else json.dumps(body).encode()
    return message


@pytest.fixture
def worker():
    session = MagicMock(name="AsyncSession")
    context = MagicMock()
    context.__aenter__ = AsyncMock(return_value=session)
    context.__aexit__ = AsyncMock(return_value=False)
    return ExtractionWorker(MagicMock(), MagicMock(), session_factory=MagicMock(return_value=context))


def test_parse_predefined_message():
    request = ExtractionWorker.parse_message(
        {
            "extraction_id": EXTRACTION_ID,
            "source_id": SOURCE_ID,
            "dataset_type": "predefined",
            "template_key": "products_basic",
            "limit": 50,
        }
    )

    assert isinstance(request, ExtractionRequest)
    assert str(request.extraction_id) == EXTRACTION_ID
    assert request.template_key == "products_basic"
    assert request.preview_only is False


def test_parse_dependent_message():
    request = ExtractionWorker.parse_message(
        {
            "extraction_id": EXTRACTION_ID,
            "source_id": SOURCE_ID,
            "dataset_type": "dependent",
            "template_name": "customer_with_orders",
        }
    )

    assert isinstance(request, DependentExtractionRequest)
    assert request.template_name == "customer_with_orders"


@pytest.mark.parametrize(
    "data",
    [
        {"source_id": SOURCE_ID},
        {"extraction_id": "not-a-uuid", "source_id": SOURCE_ID},
        {"extraction_id": EXTRACTION_ID, "source_id": SOURCE_ID, "dataset_type": "dependent"},
        {"extraction_id": EXTRACTION_ID, "source_id": SOURCE_ID, "dataset_type": "bogus"},
    ],
)
def test_parse_rejects_malformed_message(data):
    with pytest.raises((KeyError, ValueError)):
        ExtractionWorker.parse_message(data)


@pytest.mark.asyncio
@pytest.mark.parametrize("body", [b"not json", {"source_id": SOURCE_ID}])
async def test_malformed_message_is_dead_lettered(worker, body, mocker):
    run = mocker.patch("worker_extraction.ExtractionService.run", new_callable=AsyncMock)

    assert await worker.handle_message(make_message(body)) is False
    run.assert_not_awaited()


@pytest.mark.asyncio
async def test_successful_extraction_is_acked(worker, mocker):
    run = mocker.patch(
        "worker_extraction.ExtractionService.run",
        new_callable=AsyncMock,
        return_value=ExtractionResponse(results=[{"id": 1}], count=1, preview=False),
    )

    acked = await worker.handle_message(
        make_message(
            {"extraction_id": EXTRACTION_ID, "source_id": SOURCE_ID, "template_key": "orders_basic"}
        )
    )

    assert acked is True
    run.assert_awaited_once()


@pytest.mark.asyncio
async def test_failed_extraction_is_still_acked(worker, mocker):
    mocker.patch(
        "worker_extraction.DependentExtractionService.run",
        new_callable=AsyncMock,
        side_effect=ExtractionError("All dependent lookups failed", code=ErrorCode.TIMEOUT),
    )

    acked = await worker.handle_message(
        make_message(
            {
                "extraction_id": EXTRACTION_ID,
                "source_id": SOURCE_ID,
                "dataset_type": "dependent",
                "template_name": "customer_with_orders",
            }
        )
    )

    assert acked is True
