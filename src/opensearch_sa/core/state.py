"""
Local state file: the last known id and attributes of every managed resource.

    {"version": 1,
     "resources": {"opensearch_sa_detector.cloudtrail": {"type": ..., "name": ...,
                                                         "id": ..., "attributes": {...}}}}

Written atomically (temp file + rename) after every successful operation.
"""

from __future__ import annotations

import json
import os
import tempfile
from dataclasses import asdict, dataclass, field
from pathlib import Path
from typing import Any, Dict, Iterator, Optional

STATE_VERSION = 1


class StateError(ValueError):
    """Raised when the state file cannot be read."""


@dataclass
class StateEntry:
    type: str
    name: str
    id: str
    attributes: Dict[str, Any] = field(default_factory=dict)

    @property
    def address(self) -> str:
        return f"{self.type}.{self.name}"


class StateStore:
    def __init__(self, path: str) -> None:
        self.path = Path(path)
        self._entries: Dict[str, StateEntry] = {}
        self.load()

    def load(self) -> None:
        if not self.path.exists():
            self._entries = {}
            return
        try:
            data = json.loads(self.path.read_text(encoding="utf-8") or "{}")
        except json.JSONDecodeError as e:
            raise StateError(f"Corrupt state file {self.path}: {e}") from e
        version = data.get("version", STATE_VERSION)
        if version != STATE_VERSION:
            raise StateError(f"Unsupported state version {version} in {self.path}")
        entries: Dict[str, StateEntry] = {}
        for address, raw in (data.get("resources") or {}).items():
            try:
                entries[address] = StateEntry(**raw)
            except TypeError as e:
                raise StateError(f"Invalid state entry '{address}' in {self.path}: {e}") from e
        self._entries = entries

    def save(self) -> None:
        payload = {
            "version": STATE_VERSION,
            "resources": {addr: asdict(e) for addr, e in sorted(self._entries.items())},
        }
        directory = self.path.parent if str(self.path.parent) else Path(".")
        directory.mkdir(parents=True, exist_ok=True)
        fd, tmp = tempfile.mkstemp(prefix=".ossa-state-", dir=str(directory))
        try:
            with os.fdopen(fd, "w", encoding="utf-8") as f:
                json.dump(payload, f, indent=2, sort_keys=True)
                f.write("\n")
            os.replace(tmp, self.path)
        except BaseException:
            if os.path.exists(tmp):
                os.unlink(tmp)
            raise

    def get(self, address: str) -> Optional[StateEntry]:
        return self._entries.get(address)

    def put(self, entry: StateEntry) -> None:
        self._entries[entry.address] = entry
        self.save()

    def remove(self, address: str) -> None:
        if self._entries.pop(address, None) is not None:
            self.save()

    def __iter__(self) -> Iterator[StateEntry]:
        return iter(list(self._entries.values()))

    def __len__(self) -> int:
        return len(self._entries)
