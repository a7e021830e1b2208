import json
import logging

import pytest

from app.logging_config import MASK_STRING, JsonFormatter, PIIMaskingFilter, setup_logging


def make_record(message, props=None, args=()):
    record = logging.LogRecord(
        name="app.services.extraction_service",
        level=logging.WARNING,
        pathname=__file__,
        lineno=10,
        msg=message,
        args=args,
        exc_info=None,
    )
    if props is not None:
        record.props = props
    return record


def render(record):
    PIIMaskingFilter().filter(record)
    return json.loads(JsonFormatter().format(record))


def test_message_emails_and_tokens_are_masked():
    token = "shpat_" + "a1" * 16
    entry = render(make_record("Token %s rejected for owner@acme.com", args=(token,)))

    assert "owner@acme.com" not in entry["message"]
    assert token not in entry["message"]
    assert f"shpat_{MASK_STRING}" in entry["message"]


def test_nested_credential_fields_are_masked():
    entry = render(
        make_record(
            "Shopify API error",
            props={
                "store_name": "acme.myshopify.com",
                "details": {
                    "headers": {"X-Shopify-Access-Token": "secret-token", "x-request-id": "r1"},
                    "credentials": {"api_token": "t"},
                },
                "client_id": None,
            },
        )
    )

    assert entry["store_name"] == "acme.myshopify.com"
    assert entry["details"]["headers"]["X-Shopify-Access-Token"] == MASK_STRING
    assert entry["details"]["headers"]["x-request-id"] == "r1"
    assert entry["details"]["credentials"] == MASK_STRING
    assert entry["client_id"] is None


def test_props_do_not_override_envelope():
    entry = render(make_record("hello", props={"level": "DEBUG", "extraction_id": "e1"}))

    assert entry["level"] == "WARNING"
    assert entry["extraction_id"] == "e1"


def test_setup_logging_rejects_unknown_level():
    with pytest.raises(ValueError):
        setup_logging("LOUD")
