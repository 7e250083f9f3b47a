"""
Logging for one `ossa` run.

Sinks, all sharing one format and the redaction filter:
- stderr console (INFO by default)
- <logs>/app.log, rotated at UTC midnight (DEBUG)
- <logs>/YYYY-MM-DD/<action>_<run_id>.log for the current run (DEBUG)

Each record carries run_id, action and cluster (the OpenSearch URL) through a
LoggerAdapter; plain module loggers (ossa.http, ossa.search, ...) get "-".
"""

from __future__ import annotations

import logging
import logging.handlers
import os
import re
import sys
import time
from datetime import datetime, timezone
from typing import Any, Dict, Iterable, Optional

LOG_FORMAT = (
    "%(asctime)s | %(levelname)-8s | %(name)s | "
    "run=%(run_id)s action=%(action)s cluster=%(cluster)s | %(message)s"
)


class MaskSecretsFilter(logging.Filter):
    """Redact basic/bearer credentials, URL passwords, passwords and tokens."""

    _patterns = [
        re.compile(r"(Authorization:\s*(?:Basic|Bearer)\s+)([A-Za-z0-9._~+/=-]+)", re.IGNORECASE),
        re.compile(r"(https?://[^:/\s]+:)([^@\s]+)(?=@)", re.IGNORECASE),
        re.compile(r"(password\s*[=:]\s*)([^,\s]+)", re.IGNORECASE),
        re.compile(r"(\btoken\s*[=:]\s*)([A-Za-z0-9._-]+)", re.IGNORECASE),
    ]

    @classmethod
    def mask(cls, text: str) -> str:
        for pat in cls._patterns:
            text = pat.sub(r"\1***REDACTED***", text)
        return text

    def filter(self, record: logging.LogRecord) -> bool:
        if isinstance(record.args, dict):
            record.args = {k: self.mask(str(v)) for k, v in record.args.items()}
        elif isinstance(record.args, tuple):
            record.args = tuple(self.mask(a) if isinstance(a, str) else a for a in record.args)
        if isinstance(record.msg, str):
            record.msg = self.mask(record.msg)
        return True


class ContextDefaultsFilter(logging.Filter):
    """Fill the context fields used by the format for records logged without an adapter."""

    fields = ("run_id", "action", "cluster")

    def filter(self, record: logging.LogRecord) -> bool:
        for f in self.fields:
            if not hasattr(record, f):
                setattr(record, f, "-")
        return True


def _level(name: str, default: int) -> int:
    return getattr(logging, str(name).upper(), default)


def _configure(handler: logging.Handler, level: int, formatter: logging.Formatter,
               filters: Iterable[logging.Filter]) -> logging.Handler:
    handler.setLevel(level)
    handler.setFormatter(formatter)
    for f in filters:
        handler.addFilter(f)
    return handler


def build_logger(
    *,
    name: str = "ossa",
    run_id: str,
    action: str,
    base_dir: str = "logs",
    console_level: str = "INFO",
    file_level: str = "DEBUG",
    extra: Optional[Dict[str, Any]] = None,
) -> logging.LoggerAdapter:
    """
    Configure the `<name>` logger and return an adapter on `<name>.<action>.<run_id>`.

    The console and app.log handlers of `<name>` are replaced on every call,
    so one process can run several commands (or tests) with different
    settings. The run file lives on the child logger, records propagate up.
    """
    formatter = logging.Formatter(fmt=LOG_FORMAT, datefmt="%Y-%m-%dT%H:%M:%SZ")
    formatter.converter = time.gmtime  # type: ignore[assignment]
    filters = (ContextDefaultsFilter(), MaskSecretsFilter())
    file_lvl = _level(file_level, logging.DEBUG)

    base = logging.getLogger(name)
    base.setLevel(logging.DEBUG)
    for h in list(base.handlers):
        # leaves handlers owned by others (pytest's caplog) alone
        if type(h) is logging.StreamHandler or isinstance(h, logging.handlers.TimedRotatingFileHandler):
            base.removeHandler(h)
            h.close()

    os.makedirs(base_dir, exist_ok=True)
    base.addHandler(_configure(
        logging.StreamHandler(stream=sys.stderr), _level(console_level, logging.INFO), formatter, filters,
    ))
    base.addHandler(_configure(
        logging.handlers.TimedRotatingFileHandler(
            os.path.join(base_dir, "app.log"), when="midnight", backupCount=14, encoding="utf-8", utc=True,
        ),
        file_lvl, formatter, filters,
    ))

    run_logger = logging.getLogger(f"{name}.{action}.{run_id}")
    run_logger.setLevel(logging.DEBUG)
    if not run_logger.handlers:
        day_dir = os.path.join(base_dir, datetime.now(timezone.utc).strftime("%Y-%m-%d"))
        os.makedirs(day_dir, exist_ok=True)
        run_logger.addHandler(_configure(
            logging.FileHandler(os.path.join(day_dir, f"{action}_{run_id}.log"), encoding="utf-8"),
            file_lvl, formatter, filters,
        ))

    adapter = logging.LoggerAdapter(
        run_logger,
        {
            "run_id": run_id,
            "action": action,
            # not part of msg/args, so mask it here
            "cluster": MaskSecretsFilter.mask(str((extra or {}).get("cluster") or "-")),
        },
    )
    adapter.debug("Logger initialised")
    return adapter
