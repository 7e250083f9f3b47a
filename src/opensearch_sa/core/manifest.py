"""
Manifest loader: the declarative list of resources to reconcile.

    resources:
      - type: opensearch_sa_custom_rule
        name: iam_access_denied
        category: cloudtrail
        body: |
          title: Test AWS CloudTrail IAM Access Denied Events
          ...
      - type: opensearch_sa_detector
        name: cloudtrail
        body: {"type": "cloudtrail", "name": "t1", ...}   # mapping or JSON text

YAML and JSON files are both accepted (JSON is valid YAML).
"""

from __future__ import annotations

import json
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Dict, Iterable, List, Optional

import yaml


class ManifestError(ValueError):
    """Raised when a manifest is structurally invalid."""


@dataclass(frozen=True)
class ResourceSpec:
    type: str
    name: str
    config: Dict[str, Any] = field(default_factory=dict)

    @property
    def address(self) -> str:
        return f"{self.type}.{self.name}"


def split_address(address: str) -> tuple[str, str]:
    rtype, sep, name = address.partition(".")
    if not sep or not rtype or not name:
        raise ManifestError(f"Invalid resource address '{address}' (expected <type>.<name>)")
    return rtype, name


# Resource types whose body is a JSON document and may be written inline as a
# YAML mapping. Other bodies (Sigma rule text) are passed through untouched.
JSON_BODY_TYPES = ("opensearch_sa_detector",)


def _config_from_item(rtype: str, item: Dict[str, Any]) -> Dict[str, Any]:
    cfg = {k: v for k, v in item.items() if k not in ("type", "name")}
    body = cfg.get("body")
    if rtype in JSON_BODY_TYPES and isinstance(body, (dict, list)):
        cfg["body"] = json.dumps(body)
    return cfg


def parse_manifest(data: Any, *, known_types: Optional[Iterable[str]] = None) -> List[ResourceSpec]:
    if not isinstance(data, dict) or not isinstance(data.get("resources"), list):
        raise ManifestError("Manifest must be a mapping with a 'resources' list")

    allowed = set(known_types) if known_types is not None else None
    specs: List[ResourceSpec] = []
    seen: Dict[str, int] = {}
    for idx, item in enumerate(data["resources"]):
        if not isinstance(item, dict):
            raise ManifestError(f"resources[{idx}] must be a mapping")
        rtype, name = item.get("type"), item.get("name")
        if not isinstance(rtype, str) or not rtype:
            raise ManifestError(f"resources[{idx}] is missing 'type'")
        if not isinstance(name, str) or not name or "." in name:
            raise ManifestError(f"resources[{idx}] needs a 'name' without dots")
        if allowed is not None and rtype not in allowed:
            raise ManifestError(f"resources[{idx}] has unknown type '{rtype}'")
        spec = ResourceSpec(type=rtype, name=name, config=_config_from_item(rtype, item))
        if spec.address in seen:
            raise ManifestError(f"Duplicate resource '{spec.address}' (resources[{seen[spec.address]}] and [{idx}])")
        seen[spec.address] = idx
        specs.append(spec)
    return specs


def load_manifest(path: str, *, known_types: Optional[Iterable[str]] = None) -> List[ResourceSpec]:
    p = Path(path)
    if not p.exists():
        raise FileNotFoundError(f"Manifest not found: {path}")
    with p.open("r", encoding="utf-8") as f:
        try:
            data = yaml.safe_load(f) or {}
        except yaml.YAMLError as e:
            raise ManifestError(f"Cannot parse manifest {path}: {e}") from e
    return parse_manifest(data, known_types=known_types)
