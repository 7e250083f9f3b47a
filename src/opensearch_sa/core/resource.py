"""
Resource model shared by the detector and detector rule controllers.

- Attribute: one configurable field (required, validate, state func, diff suppress).
- ResourceData: the id plus attribute values of one resource instance.
- Resource: base class; subclasses implement create/read/update/delete.

An empty id means "absent": Read clears it when the remote object is gone,
and the host drops the instance from its state.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from typing import Any, Callable, Dict, List, Mapping, Optional

from .os_client import OpenSearchClient

StateFunc = Callable[[Any], Any]
ValidateFunc = Callable[[Any], Optional[str]]
DiffSuppressFunc = Callable[[Any, Any], bool]


class ValidationError(ValueError):
    """Raised when a configuration does not satisfy the resource schema."""


@dataclass(frozen=True)
class Attribute:
    name: str
    description: str = ""
    required: bool = False
    validate: Optional[ValidateFunc] = None
    state_func: Optional[StateFunc] = None
    diff_suppress: Optional[DiffSuppressFunc] = None


@dataclass
class ResourceData:
    """Id + attributes of one resource instance (mutable during one operation)."""
    id: str = ""
    attributes: Dict[str, Any] = field(default_factory=dict)

    def get(self, name: str, default: Any = None) -> Any:
        return self.attributes.get(name, default)

    def set(self, name: str, value: Any) -> None:
        self.attributes[name] = value

    def set_id(self, value: str) -> None:
        self.id = value or ""

    @property
    def exists(self) -> bool:
        return bool(self.id)


class Resource:
    """Base class for resource controllers."""

    type_name: str = "resource"
    schema: Dict[str, Attribute] = {}

    def __init__(self, client: Optional[OpenSearchClient], *, logger: Optional[logging.LoggerAdapter] = None) -> None:
        self.client = client
        self.log = logger or logging.getLogger(f"ossa.{self.type_name}")

    # ---- schema helpers ----

    def validate(self, config: Mapping[str, Any]) -> List[str]:
        """Return a list of problems (empty when the config is valid)."""
        problems: List[str] = []
        for name, attr in self.schema.items():
            val = config.get(name)
            if val is None or val == "":
                if attr.required:
                    problems.append(f"{self.type_name}: '{name}' is required")
                continue
            if attr.validate:
                msg = attr.validate(val)
                if msg:
                    problems.append(f"{self.type_name}: '{name}' {msg}")
        unknown = sorted(set(config) - set(self.schema))
        for name in unknown:
            problems.append(f"{self.type_name}: unsupported attribute '{name}'")
        return problems

    def data_from_config(self, config: Mapping[str, Any], resource_id: str = "") -> ResourceData:
        """Build a ResourceData from configuration, applying state funcs."""
        problems = self.validate(config)
        if problems:
            raise ValidationError("; ".join(problems))
        attrs: Dict[str, Any] = {}
        for name, attr in self.schema.items():
            if name not in config:
                continue
            val = config[name]
            attrs[name] = attr.state_func(val) if attr.state_func else val
        return ResourceData(id=resource_id, attributes=attrs)

    def diff(self, current: Mapping[str, Any], desired: Mapping[str, Any]) -> List[str]:
        """Names of attributes whose desired value differs from the current one."""
        changed: List[str] = []
        for name, attr in self.schema.items():
            old, new = current.get(name), desired.get(name)
            if old == new:
                continue
            if attr.diff_suppress and old is not None and new is not None and attr.diff_suppress(old, new):
                continue
            changed.append(name)
        return changed

    def import_state(self, resource_id: str) -> ResourceData:
        """Import passthrough: the remote id is the only input."""
        if not resource_id:
            raise ValidationError(f"{self.type_name}: import requires an id")
        return ResourceData(id=resource_id)

    # ---- lifecycle ----

    def create(self, d: ResourceData) -> None:
        raise NotImplementedError

    def read(self, d: ResourceData) -> None:
        raise NotImplementedError

    def update(self, d: ResourceData) -> None:
        raise NotImplementedError

    def delete(self, d: ResourceData) -> None:
        raise NotImplementedError
