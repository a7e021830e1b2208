import uuid
from unittest.mock import AsyncMock, MagicMock

import pytest

from app import crud
from app.models.extraction import Extraction, ExtractionStatus
from app.models.source import Source


@pytest.fixture
def mock_db():
    """AsyncSession stand-in; only the awaited methods are async."""
    db = MagicMock(name="AsyncSession")
    db.commit = AsyncMock()
    db.refresh = AsyncMock()
    db.rollback = AsyncMock()
    db.flush = AsyncMock()
    return db


@pytest.fixture
def shopify_source() -> Source:
    return Source(
        id=uuid.uuid4(),
        user_id=uuid.uuid4(),
        name="Acme store",
        source_type="shopify",
        url="acme.myshopify.com",
        credentials={"access_token": "shpat_test", "client_id": "cid"},
        is_deleted=False,
    )


@pytest.fixture
def mock_client():
    client = MagicMock(name="ShopifyGraphQLClient")
    client.execute_query = AsyncMock()
    return client


@pytest.fixture
def mock_operational_log():
    return MagicMock(name="OperationalLogWriter")


@pytest.fixture
def source_lookup(mocker, shopify_source):
    """Makes `shopify_source` the only stored source, with no shared credential rows."""
    mocker.patch(
        "app.crud.aget_shopify_credential", new_callable=AsyncMock, return_value=None
    )
    mocker.patch(
        "app.crud.astamp_shopify_connection", new_callable=AsyncMock, return_value=None
    )
    return mocker.patch(
        "app.crud.aget_source", new_callable=AsyncMock, return_value=shopify_source
    )


@pytest.fixture
def pending_extraction(mocker, shopify_source) -> Extraction:
    extraction = Extraction(
        id=uuid.uuid4(),
        source_id=shopify_source.id,
        status=ExtractionStatus.PENDING,
        progress=0,
    )
    mocker.patch.object(
        crud.extraction, "acreate_pending", new_callable=AsyncMock, return_value=extraction
    )
    mocker.patch.object(
        crud.extraction, "aget", new_callable=AsyncMock, return_value=extraction
    )
    return extraction
