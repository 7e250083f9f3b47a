"""
Command-line interface for the security analytics sync tool.

Usage (examples):
  - Plan only (no HTTP):
      ossa apply --manifest ./resources.yml --dry-run

  - Reconcile the cluster with the manifest:
      ossa apply --manifest ./resources.yml --url https://localhost:9200 --username admin

  - Adopt an existing detector into the state file:
      ossa import opensearch_sa_detector.cloudtrail <detector-id>
"""

from __future__ import annotations

import argparse
import json
import sys
from typing import Any, Dict, Iterable, List

from .core.applier import RESOURCE_TYPES, ApplyResult, CrudApplier
from .core.config import ConfigError, build_client, load_config
from .core.errors import SaError
from .core.logging_setup import build_logger
from .core.manifest import ManifestError, load_manifest
from .core.resource import ValidationError
from .core.state import StateError, StateStore

_SUMMARY_KEYS = [
    "CREATED", "UPDATED", "UNCHANGED", "DELETED", "IMPORTED",
    "PLANNED_CREATE", "PLANNED_UPDATE", "PLANNED_DELETE", "ERROR",
]


def _summarize_counts(counts: Dict[str, int]) -> str:
    return " | ".join(f"{k}={counts.get(k, 0)}" for k in _SUMMARY_KEYS)


def _exit_code_from_counts(counts: Dict[str, int]) -> int:
    return 2 if counts.get("ERROR", 0) else 0


def _print_results(results: List[ApplyResult]) -> None:
    for r in results:
        line = f"{r.status:<15} {r.address}"
        if r.id:
            line += f" id={r.id}"
        if r.changed:
            line += f" changed={','.join(r.changed)}"
        if r.error:
            line += f" error={r.error}"
        print(line)


def _add_common(p: argparse.ArgumentParser) -> None:
    p.add_argument("--config", action="append", default=None, help="Config YAML file (first existing wins)")
    p.add_argument("--state", default=None, help="State file path")

    # OpenSearch / HTTP
    p.add_argument("--url", default=None, help="OpenSearch base URL")
    p.add_argument("--username", default=None, help="Basic auth user")
    p.add_argument("--password", default=None, help="Basic auth password")
    p.add_argument("--insecure", action="store_true", help="Do not verify TLS certificates")
    p.add_argument("--timeout-sec", type=int, default=None, help="HTTP timeout seconds")

    # Logging
    p.add_argument("--logs-dir", default=None, help="Logs base directory")
    p.add_argument("--console-level", default=None, help="Console log level (INFO..CRITICAL)")
    p.add_argument("--file-level", default=None, help="File log level (DEBUG..CRITICAL)")


def _build_arg_parser() -> argparse.ArgumentParser:
    p = argparse.ArgumentParser(prog="ossa", description="OpenSearch security analytics detectors and rules as code")
    sub = p.add_subparsers(dest="cmd", required=True)

    a = sub.add_parser("apply", help="Reconcile the cluster with a manifest")
    a.add_argument("--manifest", default=None, help="Manifest file (.yml/.yaml/.json)")
    a.add_argument("--dry-run", action="store_true", help="Plan only, no network calls")
    _add_common(a)

    d = sub.add_parser("destroy", help="Delete every resource tracked in the state file")
    d.add_argument("--target", action="append", default=None, help="Only this <type>.<name> (repeatable)")
    _add_common(d)

    i = sub.add_parser("import", help="Adopt an existing remote object by id")
    i.add_argument("address", help="<type>.<name>, e.g. opensearch_sa_detector.cloudtrail")
    i.add_argument("id", help="Remote id")
    _add_common(i)

    s = sub.add_parser("show", help="Print the normalized remote object")
    s.add_argument("type", choices=sorted(RESOURCE_TYPES), help="Resource type")
    s.add_argument("id", help="Remote id")
    _add_common(s)

    return p


def _overrides(args: argparse.Namespace) -> Dict[str, Any]:
    def pick(**kv: Any) -> Dict[str, Any]:
        return {k: v for k, v in kv.items() if v is not None}

    out: Dict[str, Any] = {
        "app": pick(dry_run=True if getattr(args, "dry_run", False) else None),
        "opensearch": pick(
            url=args.url,
            username=args.username,
            password=args.password,
            verify_tls=False if args.insecure else None,
            timeout_sec=args.timeout_sec,
        ),
        "logging": pick(
            base_dir=args.logs_dir,
            console_level=args.console_level,
            file_level=args.file_level,
        ),
        "paths": pick(
            manifest=getattr(args, "manifest", None),
            state_file=args.state,
        ),
    }
    return {k: v for k, v in out.items() if v}


def _run(args: argparse.Namespace) -> int:
    load_kwargs: Dict[str, Any] = {}
    if args.config:
        load_kwargs["files"] = tuple(args.config)
    cfg = load_config(_overrides(args), **load_kwargs)

    logger = build_logger(
        run_id=cfg.run_id,
        action=args.cmd,
        base_dir=cfg.logging.base_dir,
        console_level=cfg.logging.console_level,
        file_level=cfg.logging.file_level,
        extra={"cluster": cfg.opensearch.url or "-"},
    )
    logger.info("Starting ossa %s (dry_run=%s)", args.cmd, cfg.app.dry_run)

    state = StateStore(cfg.paths.state_file)

    if args.cmd == "apply" and cfg.app.dry_run:
        specs = load_manifest(cfg.paths.manifest, known_types=RESOURCE_TYPES)
        applier = CrudApplier(None, state, dry_run=True, logger=logger)
        results, counts = applier.apply(specs)
        _print_results(results)
        logger.info("Dry-run summary: %s", _summarize_counts(counts))
        print(_summarize_counts(counts))
        return _exit_code_from_counts(counts)

    client = build_client(cfg, logger=logger)
    try:
        applier = CrudApplier(client, state, logger=logger)

        if args.cmd == "apply":
            specs = load_manifest(cfg.paths.manifest, known_types=RESOURCE_TYPES)
            logger.info("Loaded %s resources from %s", len(specs), cfg.paths.manifest)
            results, counts = applier.apply(specs)
        elif args.cmd == "destroy":
            results, counts = applier.destroy(args.target)
        elif args.cmd == "import":
            res = applier.import_resource(args.address, args.id)
            results, counts = [res], {res.status: 1}
        else:
            d = applier.show(args.type, args.id)
            print(json.dumps({"id": d.id, **d.attributes}, indent=2, sort_keys=True))
            return 0
    finally:
        client.close()

    _print_results(results)
    logger.info("%s summary: %s", args.cmd.capitalize(), _summarize_counts(counts))
    print(_summarize_counts(counts))
    return _exit_code_from_counts(counts)


def main(argv: Iterable[str] | None = None) -> int:
    parser = _build_arg_parser()
    args = parser.parse_args(list(argv) if argv is not None else None)
    try:
        return _run(args)
    except (ConfigError, ManifestError, StateError, ValidationError, FileNotFoundError) as e:
        print(f"error: {e}", file=sys.stderr)
        return 1
    except SaError as e:
        print(f"error [{e.kind.value}]: {e}", file=sys.stderr)
        return 2


if __name__ == "__main__":  # pragma: no cover
    sys.exit(main())
