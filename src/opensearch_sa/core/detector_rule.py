"""
opensearch_sa_custom_rule: security analytics detector rule controller.

Create  POST   /rules?category={category}
Read    POST   /rules/_search?pre_packaged=false   (search-by-id)
Update  PUT    /rules/{id}?category={category}&forced=true
Delete  DELETE /rules/{id}?forced=true

`forced=true` makes the plugin skip its "rule is used by a detector" checks:
the local configuration always wins. `body` is the Sigma rule text.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any, Dict, Optional

from .errors import DecodeError, NotFoundError, SaError, TransportError
from .os_client import SA_BASE, decode_json, expand_path
from .resource import Attribute, Resource, ResourceData
from .search import RULES_SEARCH, search_by_id

RULE_CREATE_PATH = f"{SA_BASE}/rules?category={{category}}"
RULE_UPDATE_PATH = f"{SA_BASE}/rules/{{id}}?category={{category}}&forced=true"
RULE_DELETE_PATH = f"{SA_BASE}/rules/{{id}}?forced=true"


@dataclass
class SaDetectorRuleResponse:
    id: str = ""
    version: int = 0
    rule: Dict[str, Any] = field(default_factory=dict)

    @classmethod
    def from_json(cls, raw: bytes) -> "SaDetectorRuleResponse":
        data = decode_json(raw, "detector rule body")
        if not isinstance(data, dict):
            raise DecodeError(what="detector rule body", body=raw.decode("utf-8", errors="replace"), message="not an object")
        rule = data.get("rule")
        return cls(
            id=str(data.get("_id", "")),
            version=int(data.get("_version") or 0),
            rule=rule if isinstance(rule, dict) else {},
        )


def _validate_string(value: Any) -> Optional[str]:
    if not isinstance(value, str):
        return f"must be a string, got {type(value).__name__}"
    return None


SA_DETECTOR_RULE_SCHEMA = {
    "body": Attribute(
        name="body",
        description="The security analytics detector rule document containing a Sigma rule",
        required=True,
        validate=_validate_string,
    ),
    "category": Attribute(
        name="category",
        description="A category of the detector rule",
        required=True,
        validate=_validate_string,
    ),
}


class SaDetectorRuleResource(Resource):
    """Provides an OpenSearch security analytics detector rule."""

    type_name = "opensearch_sa_custom_rule"
    schema = SA_DETECTOR_RULE_SCHEMA

    def create(self, d: ResourceData) -> None:
        try:
            res = self.post(d.get("category"), d.get("body"))
        except SaError as e:
            self.log.info("Failed to put security analytics detector rule: %s", e)
            raise
        d.set_id(res.id)
        self.log.info("Object ID: %s", d.id)
        self.read(d)

    def read(self, d: ResourceData) -> None:
        try:
            res = self.get(d.id)
        except NotFoundError:
            self.log.warning("Security Analytics Detector Rule (%s) not found, removing from state", d.id)
            d.set_id("")
            return
        d.set_id(res.id)
        d.set("body", res.rule.get("rule"))
        category = res.rule.get("category")
        if isinstance(category, str) and category:
            d.set("category", category)

    def update(self, d: ResourceData) -> None:
        self.put(d.id, d.get("category"), d.get("body"))
        self.read(d)

    def delete(self, d: ResourceData) -> None:
        path = expand_path(RULE_DELETE_PATH, id=d.id)
        try:
            self.client.perform_request("DELETE", path)
        except TransportError as e:
            if e.status != 404:
                raise
            self.log.warning("Security Analytics Detector Rule (%s) already deleted", d.id)

    # ---- API calls ----

    def post(self, category: str, body: str) -> SaDetectorRuleResponse:
        path = expand_path(RULE_CREATE_PATH, category=category)
        raw = self.client.perform_request("POST", path, body=body)
        return SaDetectorRuleResponse.from_json(raw)

    def put(self, rule_id: str, category: str, body: str) -> SaDetectorRuleResponse:
        path = expand_path(RULE_UPDATE_PATH, id=rule_id, category=category)
        raw = self.client.perform_request("PUT", path, body=body)
        return SaDetectorRuleResponse.from_json(raw)

    def get(self, rule_id: str) -> SaDetectorRuleResponse:
        hit = search_by_id(self.client, RULES_SEARCH, rule_id, logger=self.log)
        res = SaDetectorRuleResponse(id=hit.id, version=hit.version, rule=hit.source)
        self.log.debug("The version %s", res.version)
        return res
