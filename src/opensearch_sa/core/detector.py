"""
opensearch_sa_detector: security analytics detector controller.

Create  POST   /detectors              (raw configured body)
Read    POST   /detectors/_search      (search-by-id, see search.py)
Update  PUT    /detectors/{id}
Delete  DELETE /detectors/{id}

`body` is kept in state as canonical JSON of the normalized detector, so
server-added fields and formatting never show up as a change.
"""

from __future__ import annotations

import json
from dataclasses import dataclass, field
from typing import Any, Dict, Optional

from .errors import DecodeError, NotFoundError, SaError
from .normalize import (
    canonical_json,
    detector_bodies_equivalent,
    is_json,
    normalize_detector,
    normalize_detector_string,
)
from .os_client import SA_BASE, decode_json, expand_path
from .resource import Attribute, Resource, ResourceData
from .search import DETECTORS_SEARCH, search_by_id

DETECTORS_PATH = f"{SA_BASE}/detectors"
DETECTOR_PATH = f"{SA_BASE}/detectors/{{id}}"


@dataclass
class SaDetectorResponse:
    id: str = ""
    version: int = 0
    detector: Dict[str, Any] = field(default_factory=dict)

    @classmethod
    def from_json(cls, raw: bytes) -> "SaDetectorResponse":
        data = decode_json(raw, "detector body")
        if not isinstance(data, dict):
            raise DecodeError(what="detector body", body=raw.decode("utf-8", errors="replace"), message="not an object")
        detector = data.get("detector")
        return cls(
            id=str(data.get("_id", "")),
            version=int(data.get("_version") or 0),
            detector=detector if isinstance(detector, dict) else {},
        )


def _validate_json(value: Any) -> Optional[str]:
    if not is_json(value):
        return "must be a valid JSON document"
    return None


def _state_body(value: Any) -> Any:
    if isinstance(value, str) and is_json(value):
        return normalize_detector_string(value)
    return value


SA_DETECTOR_SCHEMA = {
    "body": Attribute(
        name="body",
        description="The security analytics detector document",
        required=True,
        validate=_validate_json,
        state_func=_state_body,
        diff_suppress=detector_bodies_equivalent,
    ),
}


class SaDetectorResource(Resource):
    """Provides an OpenSearch security analytics detector."""

    type_name = "opensearch_sa_detector"
    schema = SA_DETECTOR_SCHEMA

    # ---- lifecycle ----

    def create(self, d: ResourceData) -> None:
        try:
            res = self.post(d.get("body"))
        except SaError as e:
            self.log.info("Failed to put security analytics detector: %s", e)
            raise
        d.set_id(res.id)
        self.log.info("Object ID: %s", d.id)
        self.read(d)

    def read(self, d: ResourceData) -> None:
        try:
            res = self.search(d.id)
        except NotFoundError:
            self.log.warning("Security Analytics Detector (%s) not found, removing from state", d.id)
            d.set_id("")
            return
        d.set_id(res.id)
        d.set("body", canonical_json(res.detector))

    def update(self, d: ResourceData) -> None:
        self.put(d.id, d.get("body"))
        self.read(d)

    def delete(self, d: ResourceData) -> None:
        path = expand_path(DETECTOR_PATH, id=d.id)
        self.client.perform_request("DELETE", path)

    # ---- API calls ----

    def post(self, body: str) -> SaDetectorResponse:
        raw = self.client.perform_request("POST", DETECTORS_PATH, body=body)
        res = SaDetectorResponse.from_json(raw)
        res.detector = normalize_detector(res.detector)
        return res

    def put(self, detector_id: str, body: str) -> SaDetectorResponse:
        path = expand_path(DETECTOR_PATH, id=detector_id)
        raw = self.client.perform_request("PUT", path, body=body)
        return SaDetectorResponse.from_json(raw)

    def search(self, detector_id: str) -> SaDetectorResponse:
        hit = search_by_id(self.client, DETECTORS_SEARCH, detector_id, unwrap="detector", logger=self.log)
        res = SaDetectorResponse(id=hit.id, version=hit.version, detector=normalize_detector(hit.source))
        self.log.info("Response: %s", json.dumps(res.detector)[:600])
        self.log.debug("The version %s", res.version)
        return res

    def get(self, detector_id: str) -> SaDetectorResponse:
        """Direct GET /detectors/{id}; reads use search() instead."""
        path = expand_path(DETECTOR_PATH, id=detector_id)
        raw = self.client.perform_request("GET", path)
        res = SaDetectorResponse.from_json(raw)
        res.detector = normalize_detector(res.detector)
        self.log.debug("The version %s", res.version)
        return res
