import json
import threading
from http.server import BaseHTTPRequestHandler, ThreadingHTTPServer
from urllib.parse import parse_qs, urlparse

import pytest

SA = "/_plugins/_security_analytics"


class _SaHandler(BaseHTTPRequestHandler):
    """In-memory stand-in for the security analytics plugin."""

    protocol_version = "HTTP/1.1"

    detectors = {}
    rules = {}
    calls = []
    counter = {"n": 0}
    # (METHOD, path) -> (status, body) served once
    inject = {}
    # detector search hits carry {"detector": {...}} in _source when True
    wrap_detector_source = True
    # a detector PUT answers 200 but the document is gone afterwards
    drop_detector_on_put = False

    @classmethod
    def reset(cls):
        cls.detectors = {}
        cls.rules = {}
        cls.calls = []
        cls.counter = {"n": 0}
        cls.inject = {}
        cls.wrap_detector_source = True
        cls.drop_detector_on_put = False

    # ---- helpers ----

    def _send_raw(self, status, raw):
        self.send_response(status)
        self.send_header("Content-Type", "application/json")
        self.send_header("Content-Length", str(len(raw)))
        self.end_headers()
        self.wfile.write(raw)

    def _send_json(self, status, obj):
        self._send_raw(status, json.dumps(obj).encode("utf-8"))

    def _body(self):
        length = int(self.headers.get("Content-Length", "0"))
        return (self.rfile.read(length) if length else b"").decode("utf-8")

    def _new_id(self, prefix):
        _SaHandler.counter["n"] += 1
        return f"{prefix}{_SaHandler.counter['n']}"

    def _record(self, body):
        _SaHandler.calls.append((self.command, self.path, body))

    def _injected(self, path):
        for (method, target), (status, payload) in list(_SaHandler.inject.items()):
            if method == self.command and path == target:
                del _SaHandler.inject[(method, target)]
                if isinstance(payload, bytes):
                    self._send_raw(status, payload)
                else:
                    self._send_json(status, payload)
                return True
        return False

    @staticmethod
    def _server_fields(detector, det_id):
        out = dict(detector)
        out.update({
            "last_update_time": 1718800000000,
            "enabled_time": 1718800000000,
            "monitor_id": ["mon-" + det_id],
            "findings_index": ".opensearch-sap-cloudtrail-findings",
            "alert_index": ".opensearch-sap-cloudtrail-alerts",
        })
        out["triggers"] = [dict(t, id=f"trg-{i}") for i, t in enumerate(detector.get("triggers", []))]
        if not detector.get("triggers"):
            out.pop("triggers")
        return out

    @staticmethod
    def _search_response(hits):
        return {"took": 1, "hits": {"total": {"value": len(hits), "relation": "eq"}, "hits": hits}}

    @staticmethod
    def _wanted_ids(body):
        query = json.loads(body or "{}")
        return query.get("query", {}).get("ids", {}).get("values", [])

    # ---- verbs ----

    def do_GET(self):  # noqa: N802
        self._record("")
        path = urlparse(self.path).path
        if self._injected(path):
            return
        if path.startswith(f"{SA}/detectors/"):
            det_id = path.rsplit("/", 1)[-1]
            entry = _SaHandler.detectors.get(det_id)
            if entry is None:
                self._send_json(404, {"error": "detector not found"})
                return
            self._send_json(200, {"_id": det_id, "_version": entry["version"], "detector": entry["doc"]})
            return
        self._send_json(404, {"error": "not found"})

    def do_POST(self):  # noqa: N802
        body = self._body()
        self._record(body)
        parsed = urlparse(self.path)
        path, qs = parsed.path, parse_qs(parsed.query)
        if self._injected(path):
            return

        if path == f"{SA}/detectors/_search":
            hits = []
            for det_id in self._wanted_ids(body)[:1]:
                entry = _SaHandler.detectors.get(det_id)
                if entry:
                    source = {"detector": entry["doc"]} if _SaHandler.wrap_detector_source else entry["doc"]
                    hits.append({"_id": det_id, "_version": entry["version"], "_source": source})
            self._send_json(200, self._search_response(hits))
        elif path == f"{SA}/detectors":
            try:
                doc = json.loads(body)
            except ValueError:
                self._send_json(400, {"error": "invalid detector json"})
                return
            det_id = self._new_id("det")
            stored = self._server_fields(doc, det_id)
            _SaHandler.detectors[det_id] = {"version": 1, "doc": stored}
            self._send_json(201, {"_id": det_id, "_version": 1, "detector": stored})
        elif path == f"{SA}/rules/_search":
            if qs.get("pre_packaged") != ["false"]:
                self._send_json(400, {"error": "expected pre_packaged=false"})
                return
            hits = []
            for rule_id in self._wanted_ids(body)[:1]:
                entry = _SaHandler.rules.get(rule_id)
                if entry:
                    hits.append({"_id": rule_id, "_version": entry["version"], "_source": entry["doc"]})
            self._send_json(200, self._search_response(hits))
        elif path == f"{SA}/rules":
            category = (qs.get("category") or [""])[0]
            if not category:
                self._send_json(400, {"error": "category is required"})
                return
            rule_id = self._new_id("rule")
            doc = {"category": category, "rule": body, "title": body.splitlines()[0] if body else ""}
            _SaHandler.rules[rule_id] = {"version": 1, "doc": doc}
            self._send_json(201, {"_id": rule_id, "_version": 1, "rule": doc})
        else:
            self._send_json(404, {"error": "not found"})

    def do_PUT(self):  # noqa: N802
        body = self._body()
        self._record(body)
        parsed = urlparse(self.path)
        path, qs = parsed.path, parse_qs(parsed.query)
        if self._injected(path):
            return

        if path.startswith(f"{SA}/detectors/"):
            det_id = path.rsplit("/", 1)[-1]
            entry = _SaHandler.detectors.get(det_id)
            if entry is None:
                self._send_json(404, {"error": "detector not found"})
                return
            entry["version"] += 1
            entry["doc"] = self._server_fields(json.loads(body), det_id)
            if _SaHandler.drop_detector_on_put:
                del _SaHandler.detectors[det_id]
            self._send_json(200, {"_id": det_id, "_version": entry["version"], "detector": entry["doc"]})
        elif path.startswith(f"{SA}/rules/"):
            rule_id = path.rsplit("/", 1)[-1]
            entry = _SaHandler.rules.get(rule_id)
            if entry is None:
                self._send_json(404, {"error": "rule not found"})
                return
            if qs.get("forced") != ["true"]:
                self._send_json(400, {"error": "rule is in use by a detector"})
                return
            entry["version"] += 1
            entry["doc"] = {"category": qs["category"][0], "rule": body, "title": body.splitlines()[0]}
            self._send_json(200, {"_id": rule_id, "_version": entry["version"], "rule": entry["doc"]})
        else:
            self._send_json(404, {"error": "not found"})

    def do_DELETE(self):  # noqa: N802
        self._record("")
        parsed = urlparse(self.path)
        path, qs = parsed.path, parse_qs(parsed.query)
        if self._injected(path):
            return

        if path.startswith(f"{SA}/detectors/"):
            store, key = _SaHandler.detectors, path.rsplit("/", 1)[-1]
        elif path.startswith(f"{SA}/rules/"):
            if qs.get("forced") != ["true"]:
                self._send_json(400, {"error": "rule is in use by a detector"})
                return
            store, key = _SaHandler.rules, path.rsplit("/", 1)[-1]
        else:
            self._send_json(404, {"error": "not found"})
            return
        entry = store.pop(key, None)
        if entry is None:
            self._send_json(404, {"error": f"{key} not found"})
            return
        self._send_json(200, {"_id": key, "_version": entry["version"]})

    def log_message(self, fmt, *args):  # silence test server logs
        return


@pytest.fixture()
def sa_server():
    _SaHandler.reset()
    srv = ThreadingHTTPServer(("127.0.0.1", 0), _SaHandler)
    t = threading.Thread(target=srv.serve_forever, daemon=True)
    t.start()
    base_url = f"http://{srv.server_address[0]}:{srv.server_address[1]}"
    try:
        yield _SaHandler, base_url
    finally:
        srv.shutdown()
        srv.server_close()
        t.join(timeout=1.0)


@pytest.fixture()
def client(sa_server):
    from opensearch_sa.core.os_client import OpenSearchClient

    _, base_url = sa_server
    c = OpenSearchClient(base_url, auth=("admin", "admin"), timeout_sec=5)
    yield c
    c.close()
