"""
JSON normalization helpers.

Two documents that only differ in whitespace, key order or number spelling
(1 vs 1.0) normalize to the same text. Detector documents additionally lose
the fields the server adds on its own, so that a read-back can be compared
with what the user configured.
"""

from __future__ import annotations

import copy
import json
from typing import Any, Dict

# Fields the plugin fills in on create/update; never part of user input.
SERVER_DETECTOR_FIELDS = (
    "id",
    "detector_id",
    "last_update_time",
    "enabled_time",
    "monitor_id",
    "bucket_monitor_id_rule_id",
    "rule_topic_index",
    "alert_index",
    "alert_history_index",
    "alert_history_index_pattern",
    "findings_index",
    "findings_index_pattern",
)


def _canonical(value: Any) -> Any:
    if isinstance(value, dict):
        return {str(k): _canonical(v) for k, v in value.items()}
    if isinstance(value, list):
        return [_canonical(v) for v in value]
    # bool is an int subclass; leave it alone
    if isinstance(value, float) and not isinstance(value, bool) and value.is_integer():
        return int(value)
    return value


def canonical_json(value: Any) -> str:
    """Serialize with sorted keys, compact separators and integral floats as ints."""
    return json.dumps(_canonical(value), sort_keys=True, separators=(",", ":"), ensure_ascii=False)


def normalize_json_string(text: str) -> str:
    """Re-serialize a JSON string canonically. Raises ValueError on invalid JSON."""
    return canonical_json(json.loads(text))


def is_json(text: Any) -> bool:
    if not isinstance(text, str):
        return False
    try:
        json.loads(text)
    except ValueError:
        return False
    return True


def normalize_detector(detector: Dict[str, Any]) -> Dict[str, Any]:
    """
    Return a copy of `detector` without server-managed fields.

    Unknown fields are kept as-is. Trigger ids are server-assigned too and
    are dropped from every trigger.
    """
    out = copy.deepcopy(detector)
    for key in SERVER_DETECTOR_FIELDS:
        out.pop(key, None)
    triggers = out.get("triggers")
    if isinstance(triggers, list):
        for trig in triggers:
            if isinstance(trig, dict):
                trig.pop("id", None)
    return out


def normalize_detector_string(text: str) -> str:
    obj = json.loads(text)
    if isinstance(obj, dict):
        obj = normalize_detector(obj)
    return canonical_json(obj)


def detector_bodies_equivalent(old: str, new: str) -> bool:
    """
    True when two detector bodies only differ in formatting or in
    server-managed fields. Invalid JSON on either side compares unequal.
    """
    try:
        return normalize_detector_string(old) == normalize_detector_string(new)
    except ValueError:
        return False
