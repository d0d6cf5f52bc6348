"""Side-probe helpers shared by the built-in rules."""

from __future__ import annotations

import json
import xml.etree.ElementTree as ET
from typing import Any, Optional
from urllib.parse import urlsplit, urlunsplit

from ..context import ServiceContext
from ..models import PayloadFormat
from ..probe import Fetcher, Headers, ProbeResponse

ACCEPT_TEXT = "text/plain"
NS_ATOM = "http://www.w3.org/2005/Atom"
NEXT_LINK_KEYS = ("@odata.nextLink", "odata.nextLink", "__next")


def base_path(uri: str) -> str:
    """``uri`` without query string, fragment and trailing slash."""
    parts = urlsplit(uri)
    return urlunsplit((parts.scheme, parts.netloc, parts.path.rstrip("/"), "", ""))


def with_accept(ctx: ServiceContext, accept: Optional[str]) -> Headers:
    """The context's request headers with Accept replaced (or dropped when ``accept`` is None)."""
    kept = Headers(tuple((k, v) for k, v in ctx.request_headers if k.lower() != "accept"))
    return kept.merged({"Accept": accept}) if accept else kept


def fetch_count(ctx: ServiceContext, fetcher: Fetcher) -> Optional[int]:
    resp = fetcher.get_or_fetch(base_path(ctx.uri) + "/$count", with_accept(ctx, ACCEPT_TEXT))
    if resp.status != 200:
        return None
    try:
        count = int(resp.text.strip())
    except ValueError:
        return None
    return count if count >= 0 else None


def load_json(resp_or_text: ProbeResponse | str) -> Optional[Any]:
    text = resp_or_text if isinstance(resp_or_text, str) else resp_or_text.text
    try:
        return json.loads(text)
    except (ValueError, RecursionError):
        return None


def json_entries(doc: Any) -> Optional[list]:
    """Entries of a JSON (light or verbose) collection payload."""
    if not isinstance(doc, dict):
        return None
    if "d" in doc:
        inner = doc["d"]
        if isinstance(inner, dict):
            inner = inner.get("results")
        return inner if isinstance(inner, list) else None
    value = doc.get("value")
    return value if isinstance(value, list) else None


def feed_summary(ctx: ServiceContext) -> tuple[Optional[int], bool]:
    """(number of entries, has next-page link) for the context's feed payload."""
    if ctx.payload_format.is_json:
        doc = load_json(ctx.text)
        entries = json_entries(doc)
        has_next = isinstance(doc, dict) and (
            any(k in doc for k in NEXT_LINK_KEYS) or (isinstance(doc.get("d"), dict) and "__next" in doc["d"])
        )
        return (len(entries) if entries is not None else None), bool(has_next)

    if ctx.payload_format == PayloadFormat.ATOM:
        try:
            root = ET.fromstring(ctx.body)
        except ET.ParseError:
            return None, False
        entries = root.findall(f"{{{NS_ATOM}}}entry")
        has_next = any(link.get("rel") == "next" for link in root.findall(f"{{{NS_ATOM}}}link"))
        return len(entries), has_next

    return None, False
