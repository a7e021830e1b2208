import asyncio
from unittest.mock import AsyncMock

import pytest

from app import crud
from app.core.config import settings
from app.core.exceptions import ErrorCode, ExtractionError, ShopifyAdminAPIClientError
from app.models.extraction import ExtractionStatus
from app.schemas.extraction import DependentExtractionRequest
from app.services.dependent_service import (
    DEPENDENT_ERROR_FIELD,
    PREVIEW_NOTE,
    DependentExtractionService,
)
from app.services.dependent_templates import (
    CUSTOMER_ORDERS_QUERY,
    CUSTOMERS_PRIMARY_QUERY,
    make_connection_merger,
)

CUSTOMER_IDS = [f"gid://shopify/Customer/{i}" for i in range(1, 5)]


def customers_page(ids, has_next=False, end_cursor=None):
    return {
        "customers": {
            "edges": [{"node": {"id": customer_id, "email": f"{i}@example.com"}} for i, customer_id in enumerate(ids)],
            "pageInfo": {"hasNextPage": has_next, "endCursor": end_cursor},
        }
    }


def customer_orders(customer_id):
    return {
        "customer": {
            "id": customer_id,
            "orders": {"edges": [{"node": {"id": f"{customer_id}/order"}}]},
        }
    }


class FakeShopify:
    """Answers primary queries from `pages` and secondary queries per customer id."""

    def __init__(self, pages, failing_ids=(), broken_ids=(), delay=0.0):
        self.pages = list(pages)
        self.failing_ids = set(failing_ids)
        self.broken_ids = set(broken_ids)
        self.delay = delay
        self.calls = []
        self.in_flight = 0
        self.max_in_flight = 0

    async def execute_query(self, shop_name, api_token, query, variables=None, **kwargs):
        self.calls.append((query, variables, kwargs))
        if query == CUSTOMERS_PRIMARY_QUERY:
            return self.pages.pop(0)

        assert query == CUSTOMER_ORDERS_QUERY
        customer_id = variables["customerId"]
        self.in_flight += 1
        self.max_in_flight = max(self.max_in_flight, self.in_flight)
        try:
            await asyncio.sleep(self.delay)
            if customer_id in self.failing_ids:
                raise ShopifyAdminAPIClientError(
                    "Request timed out after 30000ms", code=ErrorCode.TIMEOUT
                )
            if customer_id in self.broken_ids:
                raise KeyError("customer")
            return customer_orders(customer_id)
        finally:
            self.in_flight -= 1

    def secondary_calls(self):
        return [call for call in self.calls if call[0] == CUSTOMER_ORDERS_QUERY]


def make_service(mock_db, fake, mock_operational_log, **kwargs):
    return DependentExtractionService(mock_db, fake, mock_operational_log, **kwargs)


# --- Test Cases ---


@pytest.mark.asyncio
async def test_preview_runs_only_primary_query(
    mock_db, mock_operational_log, source_lookup, pending_extraction, shopify_source
):
    fake = FakeShopify([customers_page(CUSTOMER_IDS[:3])])
    service = make_service(mock_db, fake, mock_operational_log)

    response = await service.run(
        DependentExtractionRequest(
            source_id=shopify_source.id,
            template_name="customer_with_orders",
            limit=50,
            preview_only=True,
        )
    )

    assert len(fake.calls) == 1
    query, variables, kwargs = fake.calls[0]
    assert query == CUSTOMERS_PRIMARY_QUERY
    assert variables == {"first": settings.DEPENDENT_PREVIEW_LIMIT}
    assert kwargs["max_response_bytes"] == settings.PREVIEW_MAX_RESPONSE_BYTES
    assert response.note == PREVIEW_NOTE
    assert response.preview is True
    assert response.partial is False
    assert [row["id"] for row in response.results] == CUSTOMER_IDS[:3]
    assert pending_extraction.status == ExtractionStatus.PENDING


@pytest.mark.asyncio
async def test_full_run_merges_dependent_rows(
    mock_db, mock_operational_log, source_lookup, pending_extraction, shopify_source
):
    fake = FakeShopify(
        [
            customers_page(CUSTOMER_IDS[:2], has_next=True, end_cursor="cursor-1"),
            customers_page(CUSTOMER_IDS[2:]),
        ]
    )
    service = make_service(mock_db, fake, mock_operational_log)

    response = await service.run(
        DependentExtractionRequest(source_id=shopify_source.id, template_name="customer_with_orders")
    )

    primary_calls = [call for call in fake.calls if call[0] == CUSTOMERS_PRIMARY_QUERY]
    assert primary_calls[0][1] == {"first": 250, "after": None}
    assert primary_calls[1][1]["after"] == "cursor-1"
    assert len(fake.secondary_calls()) == 4

    assert response.count == 4
    assert response.partial is False
    assert response.failed_ids == []
    assert response.note is None
    for row in response.results:
        assert row["orders"] == [{"id": f"{row['id']}/order"}]
        assert DEPENDENT_ERROR_FIELD not in row

    assert pending_extraction.status == ExtractionStatus.COMPLETED
    assert pending_extraction.record_count == 4
    assert pending_extraction.progress == 100


@pytest.mark.asyncio
async def test_partial_failure_keeps_successful_rows(
    mock_db, mock_operational_log, source_lookup, pending_extraction, shopify_source
):
    failing = CUSTOMER_IDS[1]
    fake = FakeShopify([customers_page(CUSTOMER_IDS)], failing_ids={failing})
    service = make_service(mock_db, fake, mock_operational_log)

    response = await service.run(
        DependentExtractionRequest(source_id=shopify_source.id, template_name="customer_with_orders")
    )

    assert response.partial is True
    assert response.failed_ids == [failing]
    failed_row = next(row for row in response.results if row["id"] == failing)
    assert failed_row["orders"] == []
    assert failed_row[DEPENDENT_ERROR_FIELD]["code"] == ErrorCode.TIMEOUT.value
    assert sum(1 for row in response.results if row["orders"]) == 3

    assert pending_extraction.status == ExtractionStatus.COMPLETED
    assert "1 of 4 dependent lookups failed" in pending_extraction.status_message


@pytest.mark.asyncio
async def test_all_dependent_lookups_failing_fails_run(
    mock_db, mock_operational_log, source_lookup, pending_extraction, shopify_source
):
    fake = FakeShopify([customers_page(CUSTOMER_IDS[:2])], failing_ids=set(CUSTOMER_IDS))
    service = make_service(mock_db, fake, mock_operational_log)

    with pytest.raises(ExtractionError) as exc_info:
        await service.run(
            DependentExtractionRequest(
                source_id=shopify_source.id, template_name="customer_with_orders"
            )
        )

    assert exc_info.value.code == ErrorCode.TIMEOUT
    assert exc_info.value.details == {"failed_ids": CUSTOMER_IDS[:2]}
    assert pending_extraction.status == ExtractionStatus.FAILED
    assert pending_extraction.error_code == ErrorCode.TIMEOUT.value
    assert mock_operational_log.record.call_args.kwargs["operation"] == "extract_dependent"


@pytest.mark.asyncio
async def test_no_primary_rows_completes_empty(
    mock_db, mock_operational_log, source_lookup, pending_extraction, shopify_source
):
    fake = FakeShopify([customers_page([])])
    service = make_service(mock_db, fake, mock_operational_log)

    response = await service.run(
        DependentExtractionRequest(source_id=shopify_source.id, template_name="customer_with_orders")
    )

    assert response.results == []
    assert fake.secondary_calls() == []
    assert pending_extraction.status == ExtractionStatus.COMPLETED


@pytest.mark.asyncio
async def test_secondary_queries_respect_concurrency(
    mock_db, mock_operational_log, source_lookup, pending_extraction, shopify_source
):
    ids = [f"gid://shopify/Customer/{i}" for i in range(12)]
    fake = FakeShopify([customers_page(ids)], delay=0.01)
    service = make_service(mock_db, fake, mock_operational_log, concurrency=3)

    await service.run(
        DependentExtractionRequest(source_id=shopify_source.id, template_name="customer_with_orders")
    )

    assert len(fake.secondary_calls()) == 12
    assert 1 < fake.max_in_flight <= 3


@pytest.mark.asyncio
async def test_unknown_template(
    mock_db, mock_operational_log, source_lookup, pending_extraction, shopify_source
):
    fake = FakeShopify([])
    service = make_service(mock_db, fake, mock_operational_log)

    with pytest.raises(ExtractionError) as exc_info:
        await service.run(
            DependentExtractionRequest(source_id=shopify_source.id, template_name="nope")
        )

    assert exc_info.value.code == ErrorCode.TEMPLATE_NOT_FOUND
    assert fake.calls == []
    assert pending_extraction.status == ExtractionStatus.FAILED


@pytest.mark.asyncio
async def test_null_primary_nodes_are_skipped(
    mock_db, mock_operational_log, source_lookup, pending_extraction, shopify_source
):
    page = customers_page(CUSTOMER_IDS[:1])
    page["customers"]["edges"].append({"node": None})
    fake = FakeShopify([page])
    service = make_service(mock_db, fake, mock_operational_log)

    response = await service.run(
        DependentExtractionRequest(source_id=shopify_source.id, template_name="customer_with_orders")
    )

    assert response.count == 1
    assert response.results[0]["orders"] == [{"id": f"{CUSTOMER_IDS[0]}/order"}]
    assert len(fake.secondary_calls()) == 1
    assert pending_extraction.status == ExtractionStatus.COMPLETED


@pytest.mark.asyncio
async def test_untyped_secondary_error_counts_as_row_failure(
    mock_db, mock_operational_log, source_lookup, pending_extraction, shopify_source
):
    broken = CUSTOMER_IDS[2]
    fake = FakeShopify([customers_page(CUSTOMER_IDS)], broken_ids={broken})
    service = make_service(mock_db, fake, mock_operational_log, concurrency=2)

    response = await service.run(
        DependentExtractionRequest(source_id=shopify_source.id, template_name="customer_with_orders")
    )

    assert len(fake.secondary_calls()) == 4
    assert response.partial is True
    assert response.failed_ids == [broken]
    broken_row = next(row for row in response.results if row["id"] == broken)
    assert broken_row["orders"] == []
    assert broken_row[DEPENDENT_ERROR_FIELD]["code"] == ErrorCode.UNEXPECTED_ERROR.value
    assert pending_extraction.status == ExtractionStatus.COMPLETED


@pytest.mark.asyncio
async def test_missing_source_creates_no_dependent_extraction(
    mock_db, mock_operational_log, mocker, pending_extraction, shopify_source
):
    mocker.patch("app.crud.aget_source", new_callable=AsyncMock, return_value=None)
    fake = FakeShopify([])
    service = make_service(mock_db, fake, mock_operational_log)

    with pytest.raises(ExtractionError) as exc_info:
        await service.run(
            DependentExtractionRequest(source_id=shopify_source.id, template_name="customer_with_orders")
        )

    assert exc_info.value.code == ErrorCode.SOURCE_NOT_FOUND
    crud.extraction.acreate_pending.assert_not_awaited()
    assert fake.calls == []


def test_merger_passes_non_mapping_rows_through():
    merge = make_connection_merger("customer", "orders")

    merged = merge([{"id": "c1"}, None], {"c1": customer_orders("c1")})

    assert merged == [{"id": "c1", "orders": [{"id": "c1/order"}]}, None]
