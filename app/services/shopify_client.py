import asyncio
import logging
from typing import Any

import httpx

from app.core.config import settings
from app.core.exceptions import ErrorCode, ShopifyAdminAPIClientError

logger = logging.getLogger(__name__)

SHOPIFY_DOMAIN_SUFFIX = ".myshopify.com"


def normalize_shop_domain(shop_name: str) -> str:
    """Turns `acme`, `acme.myshopify.com` or `https://acme.myshopify.com/` into `acme.myshopify.com`."""
    domain = shop_name.strip()
    for prefix in ("https://", "http://"):
        if domain.lower().startswith(prefix):
            domain = domain[len(prefix):]
    domain = domain.split("/", 1)[0]
    if not domain.lower().endswith(SHOPIFY_DOMAIN_SUFFIX):
        domain = f"{domain}{SHOPIFY_DOMAIN_SUFFIX}"
    return domain


def build_api_url(shop_name: str, api_version: str) -> str:
    return f"https://{normalize_shop_domain(shop_name)}/admin/api/{api_version}/graphql.json"


class ShopifyGraphQLClient:
    """Client for single GraphQL requests against the Shopify Admin API (Async).

    The client is stateless with respect to credentials: every call carries the
    shop and token it should use. Pass an `httpx.AsyncClient` to share a
    connection pool (or a mock transport in tests).
    """

    def __init__(
        self,
        http_client: httpx.AsyncClient | None = None,
        api_version: str | None = None,
    ):
        self._client = http_client or httpx.AsyncClient()
        self._owns_client = http_client is None
        self.api_version = api_version or settings.SHOPIFY_API_VERSION

    async def execute_query(
        self,
        shop_name: str,
        api_token: str,
        query: str,
        variables: dict[str, Any] | None = None,
        *,
        api_version: str | None = None,
        timeout_ms: int | None = None,
        max_response_bytes: int | None = None,
    ) -> dict[str, Any]:
        """Executes one GraphQL request and returns its `data` field.

        The request is raced against `timeout_ms`; when the timer wins the
        in-flight request is cancelled and a `timeout` error is raised.

        Raises:
            ShopifyAdminAPIClientError: for missing inputs, timeouts, transport
                failures, non-2xx responses, GraphQL `errors` and empty payloads.
        """
        if not shop_name or not api_token:
            raise ShopifyAdminAPIClientError(
                "Missing shop name or access token",
                code=ErrorCode.INCOMPLETE_CREDENTIALS,
            )
        if not query:
            raise ShopifyAdminAPIClientError(
                "Missing GraphQL query", code=ErrorCode.MISSING_QUERY
            )

        timeout_ms = timeout_ms or settings.PREVIEW_TIMEOUT_MS
        timeout_s = timeout_ms / 1000
        api_url = build_api_url(shop_name, api_version or self.api_version)
        headers = {
            "Content-Type": "application/json",
            "X-Shopify-Access-Token": api_token,
        }
        payload: dict[str, Any] = {"query": query}
        if variables:
            payload["variables"] = variables

        log_props = {"api_url": api_url, "timeout_ms": timeout_ms}
        logger.debug("Making async Shopify GraphQL request", extra={"props": log_props})

        try:
            response = await asyncio.wait_for(
                self._client.post(api_url, headers=headers, json=payload, timeout=timeout_s),
                timeout=timeout_s,
            )
        except (asyncio.TimeoutError, httpx.TimeoutException) as e:
            logger.warning("Shopify request timed out", extra={"props": log_props})
            raise ShopifyAdminAPIClientError(
                f"Request timed out after {timeout_ms}ms",
                code=ErrorCode.TIMEOUT,
            ) from e
        except httpx.RequestError as e:
            logger.error(
                f"Network error during Shopify request: {e!r}", extra={"props": log_props}
            )
            raise ShopifyAdminAPIClientError(
                f"Network error while contacting Shopify: {e}",
                code=ErrorCode.NETWORK_ERROR,
            ) from e

        if response.is_error:
            logger.error(
                f"Shopify API request failed: {response.status_code} {response.reason_phrase}",
                extra={"props": log_props},
            )
            raise ShopifyAdminAPIClientError(
                f"Shopify API request failed: {response.status_code} {response.reason_phrase}",
                status_code=response.status_code,
                shopify_errors={
                    "errorText": response.text,
                    "headers": dict(response.headers),
                },
            )

        if max_response_bytes is not None and len(response.content) > max_response_bytes:
            raise ShopifyAdminAPIClientError(
                "Response too large for a preview; reduce the query scope",
                code=ErrorCode.SIZE_LIMIT_EXCEEDED,
                shopify_errors={
                    "size_bytes": len(response.content),
                    "limit_bytes": max_response_bytes,
                },
            )

        try:
            response_data = response.json()
        except ValueError as e:
            raise ShopifyAdminAPIClientError(
                "Shopify API returned a non-JSON response",
                code=ErrorCode.EMPTY_RESPONSE,
            ) from e

        if not isinstance(response_data, dict):
            raise ShopifyAdminAPIClientError(
                "Invalid response from Shopify API", code=ErrorCode.EMPTY_RESPONSE
            )

        if response_data.get("errors"):
            logger.error(
                "Shopify GraphQL API returned errors",
                extra={"props": {**log_props, "errors": response_data["errors"]}},
            )
            raise ShopifyAdminAPIClientError(
                "GraphQL errors from Shopify API",
                status_code=400,
                shopify_errors=response_data["errors"],
            )

        data = response_data.get("data")
        if data is None:
            logger.error("Shopify API response missing 'data' field", extra={"props": log_props})
            raise ShopifyAdminAPIClientError(
                "No data returned from Shopify API", code=ErrorCode.EMPTY_RESPONSE
            )

        logger.debug("Async Shopify GraphQL request successful.", extra={"props": log_props})
        return data

    async def aclose(self):
        if self._owns_client:
            await self._client.aclose()
