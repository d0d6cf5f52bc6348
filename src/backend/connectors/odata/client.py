from __future__ import annotations

import base64
import logging
import threading
import time
from http.client import HTTPException
from typing import Optional
from urllib.error import HTTPError, URLError
from urllib.parse import unquote, urlsplit, urlunsplit
from urllib.request import Request, urlopen

from common.conformance_engine.errors import OversizedPayloadError, ProbeNetworkError, RunCancelledError
from common.conformance_engine.probe import HeaderInput, Headers, ProbeResponse

from .config import ProbeSettings

logger = logging.getLogger(__name__)


def probe_get(
    uri: str,
    headers: HeaderInput = None,
    *,
    settings: Optional[ProbeSettings] = None,
    cancel_event: Optional[threading.Event] = None,
) -> ProbeResponse:
    """
    Issue one GET probe and return whatever the service answered.

    HTTP error statuses are data and come back as responses. Transport faults are retried
    ``settings.max_retries`` times, then raised as ProbeNetworkError. Bodies larger than
    ``settings.max_payload_bytes`` raise OversizedPayloadError instead of being buffered.
    """
    settings = settings or ProbeSettings()
    url, auth_header = _split_credentials(uri)
    request_headers = settings.extra_headers.merged({"User-Agent": settings.user_agent}).merged(headers)
    if auth_header and "Authorization" not in request_headers:
        request_headers = request_headers.merged({"Authorization": auth_header})

    retries = 0
    backoff = 0.5

    while True:
        if cancel_event is not None and cancel_event.is_set():
            raise RunCancelledError(f"Run cancelled before probing {uri}")

        req = Request(url, method="GET")
        for name, value in request_headers:
            req.add_header(name, value)

        try:
            with urlopen(req, timeout=settings.timeout_seconds) as resp:
                return _read_response(uri, resp.status, resp.headers, resp, settings.max_payload_bytes)
        except HTTPError as exc:
            try:
                return _read_response(uri, exc.code, exc.headers, exc if exc.fp else None, settings.max_payload_bytes)
            finally:
                exc.close()
        except (URLError, HTTPException, OSError) as exc:
            reason = getattr(exc, "reason", exc)
            if retries < settings.max_retries:
                logger.warning("Probe %s failed (%s); retrying", uri, reason)
                _backoff(uri, backoff, cancel_event)
                retries += 1
                backoff *= 2
                continue
            raise ProbeNetworkError(uri, str(reason)) from exc


def _backoff(uri: str, seconds: float, cancel_event: Optional[threading.Event]) -> None:
    if cancel_event is None:
        time.sleep(seconds)
    elif cancel_event.wait(seconds):
        raise RunCancelledError(f"Run cancelled while retrying {uri}")


def _read_response(uri: str, status: int, raw_headers, stream, limit: int) -> ProbeResponse:
    headers = Headers.of(list(raw_headers.items()) if raw_headers is not None else None)

    declared = headers.get("Content-Length")
    if declared and declared.isdigit() and int(declared) > limit:
        raise OversizedPayloadError(uri, limit, int(declared))

    body = stream.read(limit + 1) if stream is not None else b""
    if len(body) > limit:
        raise OversizedPayloadError(uri, limit)
    return ProbeResponse(uri=uri, status=status, headers=headers, body=body)


def _split_credentials(uri: str) -> tuple[str, Optional[str]]:
    """Move ``user:password@`` out of the URL into a Basic Authorization header."""
    parts = urlsplit(uri)
    if not parts.username:
        return uri, None
    netloc = parts.hostname or ""
    if parts.port:
        netloc = f"{netloc}:{parts.port}"
    token = f"{unquote(parts.username)}:{unquote(parts.password or '')}".encode("utf-8")
    clean = urlunsplit((parts.scheme, netloc, parts.path, parts.query, parts.fragment))
    return clean, "Basic " + base64.b64encode(token).decode("ascii")
