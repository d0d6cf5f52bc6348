from __future__ import annotations

import logging
import threading
from dataclasses import dataclass, field
from typing import Callable, Dict, Optional, Tuple
from urllib.parse import urlsplit, urlunsplit

from common.conformance_engine.errors import RunCancelledError
from common.conformance_engine.probe import HeaderInput, Headers, ProbeResponse

from .client import probe_get
from .config import ProbeSettings

logger = logging.getLogger(__name__)

# Headers that never change what a service returns. Everything else is part of the key.
CACHE_IRRELEVANT_HEADERS = frozenset(
    {
        "user-agent",
        "x-request-id",
        "x-correlation-id",
        "x-ms-client-request-id",
        "traceparent",
        "tracestate",
    }
)

CacheKey = Tuple[str, Tuple[Tuple[str, str], ...]]
FetchFn = Callable[[str, Headers], ProbeResponse]


def normalize_uri(uri: str) -> str:
    parts = urlsplit(uri.strip())
    return urlunsplit((parts.scheme.lower(), parts.netloc.lower(), parts.path or "/", parts.query, ""))


def cache_key(uri: str, headers: HeaderInput = None) -> CacheKey:
    pairs = sorted(
        (name.lower(), value.strip())
        for name, value in Headers.of(headers)
        if name.lower() not in CACHE_IRRELEVANT_HEADERS
    )
    return normalize_uri(uri), tuple(pairs)


@dataclass
class _Entry:
    done: threading.Event = field(default_factory=threading.Event)
    response: Optional[ProbeResponse] = None
    error: Optional[BaseException] = None


class FetchCache:
    """Per-run probe cache: the first caller for a key fetches, concurrent callers wait for it.

    Failed fetches are cached as failures and re-raised to later callers, except
    cancellation, which leaves the key unfetched.
    """

    def __init__(
        self,
        fetch: Optional[FetchFn] = None,
        *,
        settings: Optional[ProbeSettings] = None,
        cancel_event: Optional[threading.Event] = None,
    ):
        self._cancel_event = cancel_event
        self._fetch = fetch or (
            lambda uri, headers: probe_get(uri, headers, settings=settings, cancel_event=cancel_event)
        )
        self._lock = threading.Lock()
        self._entries: Dict[CacheKey, _Entry] = {}
        self.fetch_count = 0

    def _cancelled(self) -> bool:
        return self._cancel_event is not None and self._cancel_event.is_set()

    def get_or_fetch(self, uri: str, headers: HeaderInput = None) -> ProbeResponse:
        if self._cancelled():
            raise RunCancelledError(f"Run cancelled before fetching {uri}")

        headers = Headers.of(headers)
        key = cache_key(uri, headers)
        with self._lock:
            entry = self._entries.get(key)
            owner = entry is None
            if owner:
                entry = _Entry()
                self._entries[key] = entry
                self.fetch_count += 1

        if not owner:
            logger.debug("Fetch cache hit: %s", uri)
            while not entry.done.wait(0.05):
                if self._cancelled():
                    raise RunCancelledError(f"Run cancelled while waiting for {uri}")
            if entry.error is not None:
                raise entry.error
            return entry.response

        logger.debug("Fetch cache miss: %s", uri)
        try:
            entry.response = self._fetch(uri, headers)
            return entry.response
        except RunCancelledError as exc:
            entry.error = exc
            with self._lock:
                self._entries.pop(key, None)
            raise
        except Exception as exc:
            entry.error = exc
            raise
        finally:
            entry.done.set()

    def __len__(self) -> int:
        with self._lock:
            return len(self._entries)
