import uuid
from unittest.mock import AsyncMock

import pytest
from sqlalchemy.exc import OperationalError

from app import crud
from app.core.exceptions import ErrorCode, ShopifyAdminAPIClientError
from app.crud.crud_source import astamp_shopify_connection
from app.models.shopify_credential import ShopifyCredential
from app.services.connection_test import CONNECTION_TEST_QUERY, check_source_connection


@pytest.mark.asyncio
async def test_no_source_selected(mock_db, mock_client):
    result = await check_source_connection(mock_db, mock_client, None)

    assert result.success is False
    assert result.message == "No source selected"
    mock_client.execute_query.assert_not_awaited()


@pytest.mark.asyncio
async def test_successful_connection(mock_db, mock_client, source_lookup, shopify_source):
    mock_client.execute_query.return_value = {"shop": {"name": "Acme Goods"}}

    result = await check_source_connection(mock_db, mock_client, shopify_source.id)

    assert result.success is True
    assert result.message == "Successfully connected to Shopify store: Acme Goods"
    assert result.code is None
    args, _ = mock_client.execute_query.await_args
    assert args[2] == CONNECTION_TEST_QUERY


@pytest.mark.asyncio
async def test_transient_failure_is_retried(mock_db, mock_client, source_lookup, shopify_source):
    mock_client.execute_query.side_effect = [
        ShopifyAdminAPIClientError("Request timed out after 5000ms", code=ErrorCode.TIMEOUT),
        {"shop": {"name": "Acme Goods"}},
    ]

    result = await check_source_connection(
        mock_db, mock_client, shopify_source.id, max_retries=2, initial_delay=0
    )

    assert result.success is True
    assert mock_client.execute_query.await_count == 2


@pytest.mark.asyncio
async def test_auth_failure_reported_not_raised(mock_db, mock_client, source_lookup, shopify_source):
    mock_client.execute_query.side_effect = ShopifyAdminAPIClientError(
        "Shopify API error: Unauthorized", status_code=401
    )

    result = await check_source_connection(
        mock_db, mock_client, shopify_source.id, initial_delay=0
    )

    assert result.success is False
    assert result.code == ErrorCode.SHOPIFY_API_ERROR
    assert mock_client.execute_query.await_count == 1


@pytest.mark.asyncio
async def test_unknown_source(mock_db, mock_client, mocker):
    mocker.patch("app.crud.aget_source", new_callable=AsyncMock, return_value=None)

    result = await check_source_connection(mock_db, mock_client, uuid.uuid4())

    assert result.success is False
    assert result.code == ErrorCode.SOURCE_NOT_FOUND


@pytest.mark.asyncio
async def test_result_is_stamped_on_shared_record(mock_db, mock_client, source_lookup, shopify_source):
    mock_client.execute_query.return_value = {"shop": {"name": "Acme Goods"}}

    await check_source_connection(mock_db, mock_client, shopify_source.id)

    crud.astamp_shopify_connection.assert_awaited_once_with(mock_db, shopify_source.id, True)


@pytest.mark.asyncio
async def test_failed_test_is_stamped(mock_db, mock_client, source_lookup, shopify_source):
    mock_client.execute_query.side_effect = ShopifyAdminAPIClientError(
        "Shopify API error: Unauthorized", status_code=401
    )

    await check_source_connection(mock_db, mock_client, shopify_source.id, initial_delay=0)

    crud.astamp_shopify_connection.assert_awaited_once_with(mock_db, shopify_source.id, False)


@pytest.mark.asyncio
async def test_stamp_failure_does_not_change_result(
    mock_db, mock_client, source_lookup, shopify_source, mocker
):
    mock_client.execute_query.return_value = {"shop": {"name": "Acme Goods"}}
    mocker.patch(
        "app.crud.astamp_shopify_connection",
        new_callable=AsyncMock,
        side_effect=OperationalError("UPDATE", {}, Exception("connection reset")),
    )

    result = await check_source_connection(mock_db, mock_client, shopify_source.id)

    assert result.success is True
    mock_db.rollback.assert_awaited_once()


@pytest.mark.asyncio
async def test_stamp_writes_status_and_time(mock_db, mocker):
    record = ShopifyCredential(id=uuid.uuid4(), store_name="acme")
    mocker.patch(
        "app.crud.crud_source.aget_shopify_credential", new_callable=AsyncMock, return_value=record
    )

    stamped = await astamp_shopify_connection(mock_db, record.id, True)

    assert stamped is record
    assert record.last_connection_status is True
    assert record.last_connection_time is not None
    mock_db.commit.assert_awaited_once()


@pytest.mark.asyncio
async def test_stamp_without_shared_record_is_noop(mock_db, mocker):
    mocker.patch(
        "app.crud.crud_source.aget_shopify_credential", new_callable=AsyncMock, return_value=None
    )

    assert await astamp_shopify_connection(mock_db, uuid.uuid4(), False) is None
    mock_db.commit.assert_not_awaited()
