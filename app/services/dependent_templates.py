"""
Closed registry of two-phase ("dependent") query templates.

A template runs a paginated primary query for anchor entities, then one
secondary query per anchor id, and merges the secondary connection back onto
each anchor row under `join_field`.
"""

from collections.abc import Callable, Mapping
from dataclasses import dataclass
from typing import Any

from app.services.query_preparer import PreparedQuery
from app.services.result_normalizer import extract_results


@dataclass(frozen=True)
class DependentQueryTemplate:
    name: str
    primary_query: str
    join_field: str
    id_extractor: Callable[[list[dict[str, Any]]], list[str]]
    build_secondary_query: Callable[[str], PreparedQuery]
    # (primary_rows, {anchor_id: secondary_data}) -> merged rows
    result_merger: Callable[[list[dict[str, Any]], Mapping[str, Any]], list[dict[str, Any]]]


def extract_ids(rows: list[dict[str, Any]]) -> list[str]:
    """Anchor ids in row order, skipping rows without one and duplicates."""
    seen: set[str] = set()
    ids = []
    for row in rows:
        entity_id = row.get("id") if isinstance(row, dict) else None
        if entity_id and entity_id not in seen:
            seen.add(entity_id)
            ids.append(entity_id)
    return ids


def make_connection_merger(root_field: str, join_field: str):
    """Builds a merger reading `data[root_field][join_field]` connections.

    Secondary results are keyed by the id that was requested, so the merge
    does not depend on the upstream echoing the entity id back.
    """

    def merge(
        rows: list[dict[str, Any]], secondary: Mapping[str, Any]
    ) -> list[dict[str, Any]]:
        joined: dict[str, list[Any]] = {}
        for entity_id, data in secondary.items():
            entity = data.get(root_field) if isinstance(data, dict) else None
            joined[entity_id] = extract_results(entity) if entity else []
        return [
            {**row, join_field: joined.get(row.get("id"), [])} if isinstance(row, dict) else row
            for row in rows
        ]

    return merge


CUSTOMERS_PRIMARY_QUERY = """
query GetCustomers($first: Int!, $after: String) {
  customers(first: $first, after: $after) {
    edges {
      node {
        id
        firstName
        lastName
        email
        phone
        createdAt
        tags
        ordersCount
      }
    }
    pageInfo { hasNextPage endCursor }
  }
}
"""

CUSTOMER_ORDERS_QUERY = """
query GetCustomerOrders($customerId: ID!, $first: Int!) {
  customer(id: $customerId) {
    id
    orders(first: $first) {
      edges {
        node {
          id
          name
          createdAt
          totalPriceSet {
            shopMoney { amount currencyCode }
          }
          displayFinancialStatus
          displayFulfillmentStatus
        }
      }
    }
  }
}
"""

PRODUCTS_PRIMARY_QUERY = """
query GetProducts($first: Int!, $after: String) {
  products(first: $first, after: $after) {
    edges {
      node {
        id
        title
        handle
        description
        productType
        vendor
        priceRangeV2 {
          minVariantPrice { amount currencyCode }
        }
      }
    }
    pageInfo { hasNextPage endCursor }
  }
}
"""

PRODUCT_METAFIELDS_QUERY = """
query GetProductMetafields($productId: ID!, $first: Int!) {
  product(id: $productId) {
    id
    metafields(first: $first) {
      edges {
        node {
          id
          namespace
          key
          value
          type
        }
      }
    }
  }
}
"""

CUSTOMER_ORDERS_PAGE_SIZE = 10
PRODUCT_METAFIELDS_PAGE_SIZE = 20


def build_customer_orders_query(customer_id: str) -> PreparedQuery:
    return PreparedQuery(
        query=CUSTOMER_ORDERS_QUERY,
        variables={"customerId": customer_id, "first": CUSTOMER_ORDERS_PAGE_SIZE},
    )


def build_product_metafields_query(product_id: str) -> PreparedQuery:
    return PreparedQuery(
        query=PRODUCT_METAFIELDS_QUERY,
        variables={"productId": product_id, "first": PRODUCT_METAFIELDS_PAGE_SIZE},
    )


DEPENDENT_TEMPLATES: dict[str, DependentQueryTemplate] = {
    template.name: template
    for template in (
        DependentQueryTemplate(
            name="customer_with_orders",
            primary_query=CUSTOMERS_PRIMARY_QUERY,
            join_field="orders",
            id_extractor=extract_ids,
            build_secondary_query=build_customer_orders_query,
            result_merger=make_connection_merger("customer", "orders"),
        ),
        DependentQueryTemplate(
            name="products_with_metafields",
            primary_query=PRODUCTS_PRIMARY_QUERY,
            join_field="metafields",
            id_extractor=extract_ids,
            build_secondary_query=build_product_metafields_query,
            result_merger=make_connection_merger("product", "metafields"),
        ),
    )
}


def get_dependent_template(name: str) -> DependentQueryTemplate | None:
    return DEPENDENT_TEMPLATES.get(name)
