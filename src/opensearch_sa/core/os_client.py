"""
OpenSearch HTTP client for the security analytics plugin API.

- requests.Session based, one session per client (connection pooling).
- Method: perform_request(method, path, body=...) returning the raw body.
- JSON decoding: decode_json (keeps the body on failure).
- Path templating with escaped values: expand_path("/rules/{id}", id=...).
- No retries: the first failure is raised.
- Errors as TransportError (status, url, body) / DecodeError / UrlBuildError.

Usage:
    client = OpenSearchClient("https://localhost:9200", auth=("admin", "admin"))
    raw = client.perform_request("POST", SA_BASE + "/detectors", body=detector_json)
"""

from __future__ import annotations

import json
import logging
import re
import time
import warnings
from typing import Any, Dict, Mapping, Optional, Tuple, Union
from urllib.parse import quote

import requests
import urllib3

from .errors import DecodeError, TransportError, UrlBuildError

SA_BASE = "/_plugins/_security_analytics"

Body = Union[str, bytes, Mapping[str, Any], None]

_PLACEHOLDER = re.compile(r"\{([A-Za-z_][A-Za-z0-9_]*)\}")


def expand_path(template: str, **values: Any) -> str:
    """
    Fill `{name}` placeholders in a path template.

    Values are percent-encoded as a single path/query component, so an id
    like "a/b" can never address another resource. Missing, empty or
    non-string values raise UrlBuildError.
    """

    def repl(m: re.Match[str]) -> str:
        key = m.group(1)
        if key not in values:
            raise UrlBuildError(f"missing value for '{key}' in {template}")
        val = values[key]
        if not isinstance(val, str) or not val.strip():
            raise UrlBuildError(f"invalid value for '{key}' in {template}: {val!r}")
        if any(ord(c) < 0x20 for c in val):
            raise UrlBuildError(f"control character in '{key}' for {template}")
        return quote(val, safe="")

    return _PLACEHOLDER.sub(repl, template)


def decode_json(raw: Union[str, bytes], what: str) -> Any:
    """Parse a response body, keeping the body in the error for diagnosis."""
    text = raw.decode("utf-8", errors="replace") if isinstance(raw, bytes) else raw
    try:
        return json.loads(text)
    except json.JSONDecodeError as e:
        raise DecodeError(what=what, body=text, message=str(e)) from e


class OpenSearchClient:
    """Minimal JSON HTTP client bound to one OpenSearch cluster."""

    def __init__(
        self,
        base_url: str,
        *,
        auth: Optional[Tuple[str, str]] = None,
        verify_tls: Union[bool, str] = True,
        timeout_sec: Optional[float] = None,
        session: Optional[requests.Session] = None,
        logger: Optional[logging.LoggerAdapter] = None,
    ) -> None:
        if not base_url:
            raise ValueError("base_url is required")
        self.base_url = base_url.rstrip("/")
        self.timeout = float(timeout_sec) if timeout_sec else None
        self.verify = verify_tls
        self.log = logger or logging.getLogger("ossa.http")

        self.session = session or requests.Session()
        self.session.headers.update({
            "Accept": "application/json",
            "User-Agent": "opensearch-sa-sync/HTTPClient",
        })
        if auth:
            self.session.auth = auth

        if verify_tls is False:
            warnings.filterwarnings("ignore", category=urllib3.exceptions.InsecureRequestWarning)

    # ------------- Public API -------------

    def perform_request(
        self,
        method: str,
        path: str,
        *,
        body: Body = None,
        content_type: str = "application/json",
    ) -> bytes:
        """
        Send one request and return the raw response body.

        `body` may be a pre-serialized string (sent verbatim, as configured
        by the user) or a mapping (serialized to JSON here).

        Raises:
            TransportError: network failure (status=0) or non-2xx response.
        """
        url = self._url(path)
        data: Optional[bytes] = None
        headers: Dict[str, str] = {}
        if body is not None:
            if isinstance(body, Mapping):
                data = json.dumps(body).encode("utf-8")
            elif isinstance(body, str):
                data = body.encode("utf-8")
            elif isinstance(body, (bytes, bytearray)):
                data = bytes(body)
            else:
                raise TypeError(f"unsupported request body type: {type(body).__name__}")
            headers["Content-Type"] = content_type

        start = time.time()
        try:
            resp = self.session.request(
                method=method.upper(),
                url=url,
                data=data,
                headers=headers,
                timeout=self.timeout,
                verify=self.verify,
            )
        except requests.RequestException as e:
            err = TransportError(status=0, url=url, message=str(e))
            self._log_err(method, path, 0, err)
            raise err from e

        elapsed = (time.time() - start) * 1000
        if resp.status_code >= 300:
            err = TransportError(
                status=resp.status_code,
                url=url,
                body=resp.text,
                message=resp.reason or "",
            )
            self._log_err(method, path, resp.status_code, err)
            raise err

        self._log_ok(method, path, resp.status_code, elapsed)
        return resp.content or b""

    def close(self) -> None:
        self.session.close()

    # ------------- Internal -------------

    def _url(self, path: str) -> str:
        if path.startswith("http://") or path.startswith("https://"):
            return path
        return f"{self.base_url}/{path.lstrip('/')}"

    def _log_ok(self, method: str, path: str, status: int, elapsed_ms: float) -> None:
        self.log.debug("%s %s -> %s in %.1fms", method, path, status, elapsed_ms)

    def _log_err(self, method: str, path: str, status: int, err: TransportError) -> None:
        self.log.warning("%s %s failed (status=%s): %s", method, path, status, err)
