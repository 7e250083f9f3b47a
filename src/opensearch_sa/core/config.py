from __future__ import annotations

import os
import uuid
from dataclasses import dataclass
from typing import Any, Dict, Optional, Tuple

import yaml
from dotenv import find_dotenv, load_dotenv

from .os_client import OpenSearchClient


class ConfigError(ValueError):
    """Raised when runtime configuration cannot be resolved."""


# ---------- Typed sections ----------

@dataclass
class AppSection:
    run_id: Optional[str] = None
    dry_run: bool = False


@dataclass
class OpenSearchSection:
    url: str = ""
    username: str = ""
    password: str = ""       # secret – never log in clear text
    verify_tls: bool = True
    ca_certs: str = ""       # optional CA bundle path, wins over verify_tls
    timeout_sec: int = 0     # 0 = no explicit deadline


@dataclass
class LoggingSection:
    base_dir: str = "logs"
    console_level: str = "INFO"   # INFO..CRITICAL
    file_level: str = "DEBUG"     # DEBUG..CRITICAL


@dataclass
class PathsSection:
    manifest: str = "./resources.yml"
    state_file: str = "./ossa.state.json"


@dataclass
class AppConfig:
    """Typed configuration object built by `load_config`."""
    app: AppSection
    opensearch: OpenSearchSection
    logging: LoggingSection
    paths: PathsSection

    @property
    def run_id(self) -> str:
        """
        Return a stable run identifier for this process.
        Generated lazily when first accessed if not provided.
        """
        if not self.app.run_id:
            self.app.run_id = uuid.uuid4().hex[:12]
        return self.app.run_id


# ---------- Defaults ----------

_DEFAULT_FILES: Tuple[str, ...] = (
    "./ossa.yml",
    os.path.expanduser("~/.config/ossa/config.yml"),
    "/etc/ossa/config.yml",
)

_DEFAULTS: Dict[str, Any] = {
    "app": {"run_id": None, "dry_run": False},
    "opensearch": {
        "url": "",
        "username": "",
        "password": "",
        "verify_tls": True,
        "ca_certs": "",
        "timeout_sec": 0,
    },
    "logging": {"base_dir": "logs", "console_level": "INFO", "file_level": "DEBUG"},
    "paths": {"manifest": "./resources.yml", "state_file": "./ossa.state.json"},
}


# ---------- Utilities ----------

def _deep_merge(base: Dict[str, Any], ext: Optional[Dict[str, Any]]) -> Dict[str, Any]:
    """
    Deep-merge for dicts: maps merge recursively, lists/scalars override.
    `ext` wins over `base`. Returns a new dict.
    """
    if not ext:
        return dict(base)
    out: Dict[str, Any] = dict(base)
    for k, v in ext.items():
        if isinstance(v, dict) and isinstance(out.get(k), dict):
            out[k] = _deep_merge(out[k], v)
        else:
            out[k] = v
    return out


def _read_yaml_file(path: str) -> Dict[str, Any]:
    with open(path, "r", encoding="utf-8") as f:
        data = yaml.safe_load(f) or {}
    if not isinstance(data, dict):
        raise ConfigError(f"Top-level YAML must be a mapping: {path}")
    return data


def _load_first_existing(files: Tuple[str, ...]) -> Dict[str, Any]:
    for p in files:
        if os.path.exists(p):
            return _read_yaml_file(p)
    return {}


def _env_to_dict(prefix: str = "OSSA_") -> Dict[str, Any]:
    """
    Convert OSSA_FOO__BAR=val to {"foo": {"bar": "val"}} (lowercased keys).
    """
    out: Dict[str, Any] = {}
    plen = len(prefix)
    for key, val in os.environ.items():
        if not key.startswith(prefix):
            continue
        path = key[plen:].lower().split("__")
        cursor = out
        for part in path[:-1]:
            cursor = cursor.setdefault(part, {})
        cursor[path[-1]] = val
    return out


def _interpolate_env(cfg: Dict[str, Any]) -> Dict[str, Any]:
    """
    Replace values like "${VAR}" with os.environ["VAR"] when present.
    """
    def repl(v: Any) -> Any:
        if isinstance(v, str) and v.startswith("${") and v.endswith("}"):
            return os.environ.get(v[2:-1], "")
        return v

    def walk(obj: Any) -> Any:
        if isinstance(obj, dict):
            return {k: walk(repl(v)) for k, v in obj.items()}
        if isinstance(obj, list):
            return [walk(x) for x in obj]
        return repl(obj)

    return walk(cfg)


def _coerce_types(cfg: Dict[str, Any]) -> Dict[str, Any]:
    """
    Minimal type coercion for booleans and integers in known keys.
    """
    def to_bool(x: Any) -> bool:
        return str(x).strip().lower() in {"1", "true", "yes", "y", "on"}

    def walk(obj: Any, key_path: Tuple[str, ...] = ()) -> Any:
        if isinstance(obj, dict):
            return {k: walk(v, key_path + (k,)) for k, v in obj.items()}
        if isinstance(obj, list):
            return [walk(v, key_path) for v in obj]
        if key_path[-1:] in [("verify_tls",), ("dry_run",)]:
            return to_bool(obj)
        if key_path[-1:] == ("timeout_sec",):
            try:
                return int(obj)
            except (TypeError, ValueError) as exc:
                raise ConfigError(f"{'.'.join(key_path)} must be an integer: {obj!r}") from exc
        return obj

    return walk(cfg)


def _validate(cfg: Dict[str, Any]) -> None:
    """
    Validate required fields when not in dry_run.
    """
    if bool(cfg.get("app", {}).get("dry_run", False)):
        return
    missing = []
    if not cfg.get("opensearch", {}).get("url"):
        missing.append("opensearch.url")
    if missing:
        raise ConfigError(
            "Missing required configuration for non-dry run: " + ", ".join(missing)
        )


def _known_keys(section: str, values: Dict[str, Any]) -> Dict[str, Any]:
    allowed = _DEFAULTS[section].keys()
    unknown = sorted(set(values) - set(allowed))
    if unknown:
        raise ConfigError(f"Unknown key(s) in '{section}': {', '.join(unknown)}")
    return values


# ---------- Public API ----------

def load_config(
    cli_overrides: Optional[Dict[str, Any]] = None,
    files: Tuple[str, ...] = _DEFAULT_FILES,
    env_prefix: str = "OSSA_",
    *,
    dotenv: bool = True,
) -> AppConfig:
    """
    Build an AppConfig from (in precedence order):
      1) CLI overrides
      2) Environment variables (prefix OSSA_, nested via __), .env included
      3) YAML file (first existing)
      4) Built-in defaults

    Also performs:
      - ${ENV_VAR} interpolation
      - basic type coercion (bool/int)
      - validation of required fields when not in dry_run
    """
    if dotenv:
        env_path = find_dotenv(usecwd=True)
        if env_path:
            load_dotenv(env_path, override=False)

    file_cfg = _load_first_existing(files)
    env_cfg = _env_to_dict(env_prefix)

    # defaults <- file <- env <- cli
    merged = _deep_merge(_DEFAULTS, file_cfg)
    merged = _deep_merge(merged, env_cfg)
    merged = _deep_merge(merged, cli_overrides or {})

    merged = _interpolate_env(merged)
    merged = _coerce_types(merged)

    _validate(merged)

    return AppConfig(
        app=AppSection(**_known_keys("app", merged.get("app", {}))),
        opensearch=OpenSearchSection(**_known_keys("opensearch", merged.get("opensearch", {}))),
        logging=LoggingSection(**_known_keys("logging", merged.get("logging", {}))),
        paths=PathsSection(**_known_keys("paths", merged.get("paths", {}))),
    )


def build_client(cfg: AppConfig, *, logger=None) -> OpenSearchClient:
    """Client factory: one pooled session per process, injected into controllers."""
    os_cfg = cfg.opensearch
    auth = (os_cfg.username, os_cfg.password) if os_cfg.username else None
    verify = os_cfg.ca_certs or bool(os_cfg.verify_tls)
    return OpenSearchClient(
        os_cfg.url,
        auth=auth,
        verify_tls=verify,
        timeout_sec=os_cfg.timeout_sec or None,
        logger=logger,
    )
