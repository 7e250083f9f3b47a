"""
Search-by-id lookup.

The security analytics plugin has no usable get-by-id endpoint for
detectors and custom rules, so reads go through a size-1 `ids` query on the
kind-specific `_search` endpoint.
"""

from __future__ import annotations

import json
import logging
from dataclasses import dataclass
from typing import Any, Dict, Optional

from .errors import DecodeError, NotFoundError
from .os_client import SA_BASE, OpenSearchClient, decode_json

DETECTORS_SEARCH = f"{SA_BASE}/detectors/_search"
RULES_SEARCH = f"{SA_BASE}/rules/_search?pre_packaged=false"

log = logging.getLogger("ossa.search")


@dataclass(frozen=True)
class SearchHit:
    """First hit of a search-by-id, with `_source` unwrapped one level."""
    id: str
    version: int
    source: Dict[str, Any]


def ids_query(entity_id: str) -> Dict[str, Any]:
    return {
        "size": 1,
        "query": {
            "ids": {
                "values": [entity_id],
            },
        },
    }


def _total_hits(hits: Dict[str, Any]) -> int:
    total = hits.get("total")
    if isinstance(total, dict):
        return int(total.get("value") or 0)
    if isinstance(total, int):
        return total
    return len(hits.get("hits") or [])


def search_by_id(
    client: OpenSearchClient,
    path: str,
    entity_id: str,
    *,
    unwrap: Optional[str] = None,
    logger: Optional[logging.LoggerAdapter] = None,
) -> SearchHit:
    """
    Find one entity by id.

    Args:
        path: search endpoint (DETECTORS_SEARCH or RULES_SEARCH).
        unwrap: sub-field of `_source` holding the document ("detector");
            None keeps the whole `_source` (rules).

    Raises:
        NotFoundError: zero hits.
        DecodeError: the search response or the hit source is malformed.
        TransportError: from the client.
    """
    lg = logger or log
    query = ids_query(entity_id)
    lg.debug("queryBody=%s", json.dumps(query))

    raw = client.perform_request("POST", path, body=query)
    result = decode_json(raw, "search result")

    hits = result.get("hits") if isinstance(result, dict) else None
    if not isinstance(hits, dict):
        raise DecodeError(what="search result", body=raw.decode("utf-8", errors="replace"), message="missing 'hits'")

    hit_list = hits.get("hits") or []
    if _total_hits(hits) == 0 or not hit_list:
        raise NotFoundError(entity_id)

    first = hit_list[0]
    source = first.get("_source")
    if unwrap and isinstance(source, dict) and isinstance(source.get(unwrap), dict):
        source = source[unwrap]
    if not isinstance(source, dict):
        raise DecodeError(what=f"{unwrap or 'hit'} source", body=json.dumps(first), message="not an object")

    return SearchHit(
        id=str(first.get("_id", "")),
        version=int(first.get("_version") or 0),
        source=source,
    )
