from fastapi import Request

from app.services.operational_log import OperationalLogWriter
from app.services.queue_client import QueueClient
from app.services.shopify_client import ShopifyGraphQLClient


def get_shopify_client(request: Request) -> ShopifyGraphQLClient:
    return request.app.state.shopify_client


def get_operational_log(request: Request) -> OperationalLogWriter:
    return request.app.state.operational_log


def get_queue_client(request: Request) -> QueueClient:
    return request.app.state.queue_client
