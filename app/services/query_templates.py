"""Predefined Shopify GraphQL templates, keyed by `template_key`.

Every template takes a `$first: Int!` variable so the query preparer can cap
the page size.
"""

from dataclasses import dataclass


@dataclass(frozen=True)
class QueryTemplate:
    key: str
    name: str
    query: str
    description: str = ""


PRODUCTS_BASIC_QUERY = """
query GetProducts($first: Int!) {
  products(first: $first) {
    edges {
      node {
        id
        title
        handle
        description
        createdAt
        updatedAt
        productType
        vendor
        publishedAt
        tags
        priceRangeV2 {
          minVariantPrice { amount currencyCode }
          maxVariantPrice { amount currencyCode }
        }
      }
    }
  }
}
"""

ORDERS_BASIC_QUERY = """
query GetOrders($first: Int!) {
  orders(first: $first) {
    edges {
      node {
        id
        name
        createdAt
        displayFinancialStatus
        displayFulfillmentStatus
        email
        phone
        totalPriceSet {
          shopMoney { amount currencyCode }
        }
        customer { id email firstName lastName }
      }
    }
  }
}
"""

CUSTOMERS_BASIC_QUERY = """
query GetCustomers($first: Int!) {
  customers(first: $first) {
    edges {
      node {
        id
        firstName
        lastName
        email
        phone
        createdAt
        updatedAt
        tags
        ordersCount
        totalSpent { amount currencyCode }
      }
    }
  }
}
"""

RECENT_ORDERS_QUERY = """
query GetRecentOrders($first: Int!) {
  orders(first: $first, sortKey: CREATED_AT, reverse: true) {
    edges {
      node {
        id
        name
        createdAt
        displayFinancialStatus
        displayFulfillmentStatus
        totalPriceSet {
          shopMoney { amount currencyCode }
        }
      }
    }
  }
}
"""

PREDEFINED_TEMPLATES: dict[str, QueryTemplate] = {
    template.key: template
    for template in (
        QueryTemplate(
            key="products_basic",
            name="Products",
            description="Basic product catalogue with price ranges",
            query=PRODUCTS_BASIC_QUERY,
        ),
        QueryTemplate(
            key="orders_basic",
            name="Orders",
            description="Orders with totals, statuses and customer",
            query=ORDERS_BASIC_QUERY,
        ),
        QueryTemplate(
            key="customers_basic",
            name="Customers",
            description="Customer contact details and lifetime spend",
            query=CUSTOMERS_BASIC_QUERY,
        ),
        QueryTemplate(
            key="recent_orders",
            name="Recent orders",
            description="Most recently created orders first",
            query=RECENT_ORDERS_QUERY,
        ),
    )
}


def get_predefined_template(template_key: str) -> QueryTemplate | None:
    return PREDEFINED_TEMPLATES.get(template_key)
