import json

import pytest

from opensearch_sa.core.errors import DecodeError, ErrorKind, NotFoundError, TransportError, is_not_found
from opensearch_sa.core.search import DETECTORS_SEARCH, RULES_SEARCH, ids_query, search_by_id

SA = "/_plugins/_security_analytics"


def test_ids_query_shape():
    assert ids_query("xyz") == {"size": 1, "query": {"ids": {"values": ["xyz"]}}}


def test_zero_hits_is_not_found(sa_server, client):
    handler, _ = sa_server
    handler.inject[("POST", f"{SA}/detectors/_search")] = (200, {"hits": {"total": {"value": 0}, "hits": []}})

    with pytest.raises(NotFoundError) as ei:
        search_by_id(client, DETECTORS_SEARCH, "xyz", unwrap="detector")

    assert ei.value.kind is ErrorKind.NOT_FOUND
    assert is_not_found(ei.value)
    method, path, body = handler.calls[-1]
    assert (method, path) == ("POST", DETECTORS_SEARCH)
    assert json.loads(body) == {"size": 1, "query": {"ids": {"values": ["xyz"]}}}


def test_detector_hit_is_unwrapped_one_level(sa_server, client):
    handler, _ = sa_server
    handler.detectors["d1"] = {"version": 3, "doc": {"name": "t1", "detector": "nested-field-kept"}}

    hit = search_by_id(client, DETECTORS_SEARCH, "d1", unwrap="detector")

    assert hit.id == "d1"
    assert hit.version == 3
    # only the outer {"detector": ...} wrapper is removed
    assert hit.source == {"name": "t1", "detector": "nested-field-kept"}


def test_detector_hit_without_wrapper_uses_source(sa_server, client):
    handler, _ = sa_server
    handler.wrap_detector_source = False
    handler.detectors["d1"] = {"version": 1, "doc": {"name": "t1"}}

    hit = search_by_id(client, DETECTORS_SEARCH, "d1", unwrap="detector")
    assert hit.source == {"name": "t1"}


def test_rule_search_uses_custom_rules_only(sa_server, client):
    handler, _ = sa_server
    handler.rules["r1"] = {"version": 2, "doc": {"category": "cloudtrail", "rule": "title: x"}}

    hit = search_by_id(client, RULES_SEARCH, "r1")

    assert handler.calls[-1][1] == f"{SA}/rules/_search?pre_packaged=false"
    assert hit.source["rule"] == "title: x"
    assert hit.version == 2


def test_malformed_search_response_is_decode_error(sa_server, client):
    handler, _ = sa_server
    handler.inject[("POST", f"{SA}/detectors/_search")] = (200, b"not json")

    with pytest.raises(DecodeError) as ei:
        search_by_id(client, DETECTORS_SEARCH, "d1")
    assert not is_not_found(ei.value)
    assert "not json" in str(ei.value)


def test_transport_error_is_not_not_found(sa_server, client):
    handler, _ = sa_server
    handler.inject[("POST", f"{SA}/rules/_search")] = (500, {"error": "boom"})

    with pytest.raises(TransportError) as ei:
        search_by_id(client, RULES_SEARCH, "r1")
    assert not is_not_found(ei.value)
