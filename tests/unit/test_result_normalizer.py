import json

import pytest

from app.services.result_normalizer import (
    build_sample,
    extract_page_info,
    extract_results,
    normalize_payload,
)


def test_extract_results_unwraps_edges():
    data = {"products": {"edges": [{"node": {"id": "a"}}, {"node": {"id": "b"}}]}}

    assert extract_results(data) == [{"id": "a"}, {"id": "b"}]


def test_extract_results_first_collection_wins():
    data = {
        "orders": {"edges": [{"node": {"id": "o1"}}]},
        "customers": {"edges": [{"node": {"id": "c1"}}]},
    }

    assert extract_results(data) == [{"id": "o1"}]


def test_extract_results_skips_non_connection_fields():
    data = {"shop": {"name": "Acme"}, "products": {"edges": [{"node": {"id": "p"}}]}}

    assert extract_results(data) == [{"id": "p"}]


def test_extract_results_nodes_shorthand():
    assert extract_results({"products": {"nodes": [{"id": "x"}]}}) == [{"id": "x"}]


@pytest.mark.parametrize(
    "data",
    [None, {}, {"shop": {"name": "Acme"}}, {"count": 3}, [], "text"],
)
def test_extract_results_unrecognized_shapes(data):
    assert extract_results(data) == []


def test_extract_page_info():
    data = {
        "customers": {
            "edges": [],
            "pageInfo": {"hasNextPage": True, "endCursor": "abc"},
        }
    }

    assert extract_page_info(data) == {"hasNextPage": True, "endCursor": "abc"}
    assert extract_page_info({"customers": {"edges": []}}) == {}


@pytest.mark.parametrize(
    "payload, expected",
    [
        ([1, 2], [1, 2]),
        ({"orders": [{"id": 1}], "data": [{"id": 2}]}, [{"id": 1}]),
        ({"orders": {"id": 1}}, [{"id": 1}]),
        ({"orders": [], "results": [{"id": 3}]}, [{"id": 3}]),
        ({"data": [{"id": 4}], "items": [{"id": 5}]}, [{"id": 4}]),
        ({"records": [{"id": 6}]}, [{"id": 6}]),
        ({"id": 7}, [{"id": 7}]),
        (None, []),
        (42, []),
    ],
)
def test_normalize_payload(payload, expected):
    assert normalize_payload(payload) == expected


def test_build_sample_uses_first_records():
    records = [{"id": i} for i in range(10)]

    sample = build_sample(records, size=3)

    assert json.loads(sample) == [{"id": 0}, {"id": 1}, {"id": 2}]
    assert "\n  " in sample


def test_build_sample_empty():
    assert build_sample([]) is None
