from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Dict, Iterable, List, Optional, Tuple, Type

from .detector import SaDetectorResource
from .detector_rule import SaDetectorRuleResource
from .errors import NotFoundError, SaError
from .manifest import ResourceSpec, split_address
from .os_client import OpenSearchClient
from .resource import Resource, ResourceData, ValidationError
from .state import StateEntry, StateStore

# Rules before detectors on create, detectors before rules on delete:
# a detector may reference custom rules.
RESOURCE_TYPES: Dict[str, Type[Resource]] = {
    SaDetectorRuleResource.type_name: SaDetectorRuleResource,
    SaDetectorResource.type_name: SaDetectorResource,
}
_ORDER = {name: i for i, name in enumerate(RESOURCE_TYPES)}


@dataclass(frozen=True)
class ApplyResult:
    address: str
    status: str
    id: str = ""
    changed: Tuple[str, ...] = ()
    error: str = ""


class CrudApplier:
    """
    Reconcile declared resources with the cluster and the local state.

    Per resource: refresh (read) -> create | update | unchanged. Resources
    that left the manifest are deleted. One failure never aborts the run;
    it is reported as an ERROR result and the state keeps its previous value.
    """

    def __init__(
        self,
        client: Optional[OpenSearchClient],
        state: StateStore,
        *,
        dry_run: bool = False,
        logger: Optional[logging.LoggerAdapter] = None,
    ) -> None:
        self.client = client
        self.state = state
        self.dry_run = dry_run
        self.log = logger or logging.getLogger("ossa.applier")
        self._controllers: Dict[str, Resource] = {}

    def controller(self, rtype: str) -> Resource:
        if rtype not in RESOURCE_TYPES:
            raise ValidationError(f"Unknown resource type '{rtype}'")
        if rtype not in self._controllers:
            self._controllers[rtype] = RESOURCE_TYPES[rtype](self.client, logger=self.log)
        return self._controllers[rtype]

    # ---- commands ----

    def apply(self, specs: Iterable[ResourceSpec]) -> Tuple[List[ApplyResult], Dict[str, int]]:
        results: List[ApplyResult] = []
        counts: Dict[str, int] = {}
        declared = sorted(specs, key=lambda s: _ORDER.get(s.type, len(_ORDER)))

        for spec in declared:
            self._append(results, counts, self._apply_one(spec))

        wanted = {s.address for s in declared}
        orphans = [e for e in self.state if e.address not in wanted]
        for entry in self._delete_order(orphans):
            self._append(results, counts, self._delete_one(entry))
        return results, counts

    def destroy(self, addresses: Optional[Iterable[str]] = None) -> Tuple[List[ApplyResult], Dict[str, int]]:
        results: List[ApplyResult] = []
        counts: Dict[str, int] = {}
        only = set(addresses) if addresses is not None else None
        entries = [e for e in self.state if only is None or e.address in only]
        for entry in self._delete_order(entries):
            self._append(results, counts, self._delete_one(entry))
        return results, counts

    def import_resource(self, address: str, resource_id: str) -> ApplyResult:
        """Adopt an existing remote object: the id is the only input."""
        rtype, name = split_address(address)
        ctrl = self.controller(rtype)
        d = ctrl.import_state(resource_id)
        ctrl.read(d)
        if not d.exists:
            raise NotFoundError(resource_id)
        self.state.put(StateEntry(type=rtype, name=name, id=d.id, attributes=dict(d.attributes)))
        self.log.info("Imported %s (id=%s)", address, d.id)
        return ApplyResult(address, "IMPORTED", id=d.id)

    def show(self, rtype: str, resource_id: str) -> ResourceData:
        ctrl = self.controller(rtype)
        d = ctrl.import_state(resource_id)
        ctrl.read(d)
        if not d.exists:
            raise NotFoundError(resource_id)
        return d

    # ---- per resource ----

    def _apply_one(self, spec: ResourceSpec) -> ApplyResult:
        address = spec.address
        try:
            ctrl = self.controller(spec.type)
            desired = ctrl.data_from_config(spec.config)
            entry = self.state.get(address)

            if self.dry_run:
                return self._plan_one(ctrl, address, entry, desired)

            current: Optional[ResourceData] = None
            if entry is not None:
                current = ResourceData(id=entry.id, attributes=dict(entry.attributes))
                ctrl.read(current)
                if not current.exists:
                    self.log.warning("%s (id=%s) disappeared remotely, recreating", address, entry.id)
                    self.state.remove(address)
                    current = None

            if current is None:
                ctrl.create(desired)
                if not desired.exists:
                    return ApplyResult(address, "ERROR", error="created but not found on read-back")
                self._commit(spec, desired)
                self.log.info("CREATED %s id=%s", address, desired.id)
                return ApplyResult(address, "CREATED", id=desired.id)

            changed = ctrl.diff(current.attributes, desired.attributes)
            if not changed:
                self._commit(spec, current)
                return ApplyResult(address, "UNCHANGED", id=current.id)

            desired.set_id(current.id)
            ctrl.update(desired)
            if not desired.exists:
                # previous entry is kept; the next run refreshes and recreates
                self.log.error("%s (id=%s) updated but not found on read-back", address, current.id)
                return ApplyResult(address, "ERROR", id=current.id, error="updated but not found on read-back")
            self._commit(spec, desired)
            self.log.info("UPDATED %s id=%s changed=%s", address, desired.id, ",".join(changed))
            return ApplyResult(address, "UPDATED", id=desired.id, changed=tuple(changed))

        except (SaError, ValidationError) as e:
            self.log.error("%s failed: %s", address, e)
            return ApplyResult(address, "ERROR", error=str(e))

    def _plan_one(
        self,
        ctrl: Resource,
        address: str,
        entry: Optional[StateEntry],
        desired: ResourceData,
    ) -> ApplyResult:
        if entry is None:
            return ApplyResult(address, "PLANNED_CREATE")
        changed = ctrl.diff(entry.attributes, desired.attributes)
        if changed:
            return ApplyResult(address, "PLANNED_UPDATE", id=entry.id, changed=tuple(changed))
        return ApplyResult(address, "UNCHANGED", id=entry.id)

    def _delete_one(self, entry: StateEntry) -> ApplyResult:
        address = entry.address
        if self.dry_run:
            return ApplyResult(address, "PLANNED_DELETE", id=entry.id)
        try:
            ctrl = self.controller(entry.type)
            ctrl.delete(ResourceData(id=entry.id, attributes=dict(entry.attributes)))
        except (SaError, ValidationError) as e:
            self.log.error("%s delete failed: %s", address, e)
            return ApplyResult(address, "ERROR", id=entry.id, error=str(e))
        self.state.remove(address)
        self.log.info("DELETED %s id=%s", address, entry.id)
        return ApplyResult(address, "DELETED", id=entry.id)

    def _commit(self, spec: ResourceSpec, d: ResourceData) -> None:
        self.state.put(StateEntry(type=spec.type, name=spec.name, id=d.id, attributes=dict(d.attributes)))

    @staticmethod
    def _delete_order(entries: List[StateEntry]) -> List[StateEntry]:
        return sorted(entries, key=lambda e: _ORDER.get(e.type, -1), reverse=True)

    @staticmethod
    def _append(results: List[ApplyResult], counts: Dict[str, int], res: ApplyResult) -> None:
        results.append(res)
        counts[res.status] = counts.get(res.status, 0) + 1
