import logging

import pytest

from opensearch_sa.core.detector_rule import SaDetectorRuleResource, SaDetectorRuleResponse
from opensearch_sa.core.errors import TransportError, UrlBuildError
from opensearch_sa.core.resource import ResourceData, ValidationError

SA = "/_plugins/_security_analytics"

RULE = """title: Suspicious console login
id: 1c2f3e4d
logsource:
  product: cloudtrail
detection:
  selection:
    eventName: ConsoleLogin
  condition: selection
level: high
"""


def _create(res, category="cloudtrail", body=RULE):
    d = res.data_from_config({"category": category, "body": body})
    res.create(d)
    return d


def test_create_sends_category_verbatim(sa_server, client):
    handler, _ = sa_server
    res = SaDetectorRuleResource(client)
    d = _create(res)

    method, path, body = handler.calls[0]
    assert method == "POST"
    assert path == "/_plugins/_security_analytics/rules?category=cloudtrail"
    assert body == RULE
    assert d.id == "rule1"


def test_read_exposes_rule_text_as_body(sa_server, client):
    handler, _ = sa_server
    res = SaDetectorRuleResource(client)
    d = _create(res)

    assert d.get("body") == RULE
    assert d.get("category") == "cloudtrail"
    assert handler.calls[-1][1] == f"{SA}/rules/_search?pre_packaged=false"


def test_update_is_forced_and_bumps_version(sa_server, client):
    handler, _ = sa_server
    res = SaDetectorRuleResource(client)
    d = _create(res)
    before = res.get(d.id)

    d.set("body", RULE.replace("level: high", "level: critical"))
    res.update(d)
    after = res.get(d.id)

    put = [c for c in handler.calls if c[0] == "PUT"]
    assert put and put[0][1] == f"{SA}/rules/{d.id}?category=cloudtrail&forced=true"
    assert after.id == before.id
    assert after.version == before.version + 1
    assert "level: critical" in d.get("body")


def test_delete_is_forced(sa_server, client):
    handler, _ = sa_server
    res = SaDetectorRuleResource(client)
    d = _create(res)
    rule_id = d.id

    res.delete(d)
    assert handler.calls[-1][:2] == ("DELETE", f"{SA}/rules/{rule_id}?forced=true")
    assert rule_id not in handler.rules

    res.read(d)
    assert d.id == ""


def test_delete_already_gone_is_success(sa_server, client, caplog):
    res = SaDetectorRuleResource(client)
    with caplog.at_level(logging.WARNING, logger="ossa"):
        res.delete(ResourceData(id="gone"))
    assert "already deleted" in caplog.text


def test_delete_other_errors_propagate(sa_server, client):
    handler, _ = sa_server
    handler.inject[("DELETE", f"{SA}/rules/r1")] = (500, {"error": "boom"})
    res = SaDetectorRuleResource(client)
    with pytest.raises(TransportError) as ei:
        res.delete(ResourceData(id="r1"))
    assert ei.value.status == 500


def test_category_is_escaped(sa_server, client):
    handler, _ = sa_server
    res = SaDetectorRuleResource(client)
    _create(res, category="windows&forced=false")
    assert handler.calls[0][1] == f"{SA}/rules?category=windows%26forced%3Dfalse"


def test_empty_id_cannot_build_a_path(client):
    res = SaDetectorRuleResource(client)
    with pytest.raises(UrlBuildError):
        res.put("", "cloudtrail", RULE)


def test_category_is_required():
    res = SaDetectorRuleResource(None)
    with pytest.raises(ValidationError) as ei:
        res.data_from_config({"body": RULE})
    assert "'category' is required" in str(ei.value)


@pytest.mark.parametrize(
    "config, fragment",
    [
        ({"category": "dns", "body": {"title": "x"}}, "'body' must be a string, got dict"),
        ({"category": "dns", "body": 42}, "'body' must be a string, got int"),
        ({"category": 7, "body": RULE}, "'category' must be a string, got int"),
    ],
)
def test_non_string_values_are_rejected_before_any_call(sa_server, client, config, fragment):
    handler, _ = sa_server
    res = SaDetectorRuleResource(client)
    with pytest.raises(ValidationError) as ei:
        res.data_from_config(config)
    assert fragment in str(ei.value)
    assert handler.calls == []


def test_import_fills_body_and_category(sa_server, client):
    handler, _ = sa_server
    handler.rules["r42"] = {"version": 3, "doc": {"category": "dns", "rule": RULE, "title": "x"}}

    res = SaDetectorRuleResource(client)
    d = res.import_state("r42")
    res.read(d)

    assert d.id == "r42"
    assert d.get("category") == "dns"
    assert d.get("body") == RULE


def test_response_parsing():
    res = SaDetectorRuleResponse.from_json(b'{"_id":"r","_version":2,"rule":{"category":"dns"}}')
    assert (res.id, res.version, res.rule) == ("r", 2, {"category": "dns"})
