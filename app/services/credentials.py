import logging
from typing import Any

from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession

from app import crud
from app.core.exceptions import ErrorCode, ExtractionError
from app.models.source import Source
from app.schemas.credentials import CredentialBundle

logger = logging.getLogger(__name__)

SUPPORTED_SOURCE_TYPE = "shopify"


def shared_credential_key(source: Source) -> Any:
    """Id of the shared credential record for a source: `credential_id`, else the source id."""
    creds = source.credentials if isinstance(source.credentials, dict) else {}
    return creds.get("credential_id") or source.id


def _first(*values: Any) -> Any:
    for value in values:
        if value:
            return value
    return None


async def resolve_credentials(db: AsyncSession, source: Source) -> CredentialBundle:
    """Resolves a Source into one normalized Shopify credential bundle.

    Lookup order is the shared `shopify_credentials` record (keyed by
    `credentials.credential_id`, else the source's own id), then the fields
    embedded in `source.credentials`. Several historical field names coexist
    in stored data and are read interchangeably:
    `api_token`/`access_token`, `api_key`/`client_id`, `api_secret`/`client_secret`.

    Raises:
        ExtractionError: with one of `invalid_source_type`,
            `invalid_credentials`, `credentials_fetch_error`,
            `credentials_not_found` or `incomplete_credentials`.
    """
    log_props = {"source_id": str(source.id)}

    source_type = (source.source_type or "").lower()
    if source_type != SUPPORTED_SOURCE_TYPE:
        raise ExtractionError(
            f"Unsupported source type: {source.source_type}",
            code=ErrorCode.INVALID_SOURCE_TYPE,
            details={"provided_type": source.source_type},
        )

    # An empty dict is a present-but-insufficient blob, not a missing one.
    creds = source.credentials
    if creds is None or not isinstance(creds, dict):
        raise ExtractionError(
            "Source has no credentials configured",
            code=ErrorCode.INVALID_CREDENTIALS,
        )

    explicit_credential_id = creds.get("credential_id")
    credential_id = shared_credential_key(source)
    try:
        record = await crud.aget_shopify_credential(db, credential_id)
    except SQLAlchemyError as e:
        logger.error(
            "Failed to fetch shared Shopify credentials",
            exc_info=True,
            extra={"props": {**log_props, "credential_id": str(credential_id)}},
        )
        raise ExtractionError(
            "Failed to fetch store credentials",
            code=ErrorCode.CREDENTIALS_FETCH_ERROR,
            details=str(e),
        ) from e

    if record is not None:
        logger.debug("Using shared Shopify credential record", extra={"props": log_props})
        store_name = record.store_name
        api_token = _first(record.api_token, creds.get("access_token"), creds.get("api_token"))
        client_id = _first(record.api_key, creds.get("client_id"), creds.get("api_key"))
        client_secret = _first(
            record.api_secret, creds.get("client_secret"), creds.get("api_secret")
        )
    else:
        store_name = _first(source.url, creds.get("store_name"))
        api_token = _first(creds.get("api_token"), creds.get("access_token"))
        client_id = _first(creds.get("api_key"), creds.get("client_id"))
        client_secret = _first(creds.get("api_secret"), creds.get("client_secret"))

        if explicit_credential_id and not api_token:
            raise ExtractionError(
                "Referenced credential record does not exist",
                code=ErrorCode.CREDENTIALS_NOT_FOUND,
                details={"credential_id": str(explicit_credential_id)},
            )

    if not store_name or not api_token:
        raise ExtractionError(
            "Incomplete Shopify credentials: a store name and an access token are required",
            code=ErrorCode.INCOMPLETE_CREDENTIALS,
            details={
                "has_store_name": bool(store_name),
                "has_api_token": bool(api_token),
            },
        )

    return CredentialBundle(
        store_name=store_name,
        api_token=api_token,
        client_id=client_id,
        client_secret=client_secret,
    )
