from __future__ import annotations

import logging
import threading
from dataclasses import dataclass
from typing import Iterable, Optional
from urllib.parse import urlsplit, urlunsplit

from common.conformance_engine.config import RunConfig
from common.conformance_engine.context import ServiceContext, build_context
from common.conformance_engine.errors import ProbeError, RunAbortedError
from common.conformance_engine.models import PayloadKind, RuleRunReport
from common.conformance_engine.negotiation import accept_header_for_format
from common.conformance_engine.payload import classify
from common.conformance_engine.probe import Fetcher, HeaderInput, Headers, ProbeRequest, ProbeResponse
from common.conformance_engine.rule import Rule
from common.conformance_engine.runner import RulesRunner
from connectors.odata.cache import FetchCache
from connectors.odata.config import ProbeSettings, get_probe_settings

logger = logging.getLogger(__name__)

METADATA_SEGMENT = "$metadata"
ACCEPT_METADATA = "application/xml"


@dataclass(frozen=True)
class ServiceDiscovery:
    service_root: Optional[str] = None
    service_document: Optional[bytes] = None
    metadata_document: Optional[bytes] = None


def _strip(uri: str) -> str:
    parts = urlsplit(uri)
    return urlunsplit((parts.scheme, parts.netloc, parts.path.rstrip("/"), "", ""))


def _parent_candidates(uri: str) -> list[str]:
    """Parent paths of ``uri``, nearest first, ending at the host root."""
    parts = urlsplit(uri)
    segments = [s for s in parts.path.split("/") if s]
    return [
        urlunsplit((parts.scheme, parts.netloc, "/" + "/".join(segments[:i]), "", "")).rstrip("/")
        for i in range(len(segments) - 1, -1, -1)
    ]


def _try_fetch(fetcher: Fetcher, uri: str, headers: Headers) -> Optional[ProbeResponse]:
    try:
        return fetcher.get_or_fetch(uri, headers)
    except ProbeError as exc:
        logger.debug("Discovery probe %s failed: %s", uri, exc)
        return None


def discover_service(uri: str, primary: ProbeResponse, fetcher: Fetcher, headers: Headers) -> ServiceDiscovery:
    """Locate the service root, service document and metadata document around ``uri``."""
    kind = classify(primary.body, primary.headers).kind
    root: Optional[str] = None
    service_document: Optional[bytes] = None
    metadata_document: Optional[bytes] = None

    if kind == PayloadKind.SERVICE_DOCUMENT:
        root, service_document = _strip(uri), primary.body
    elif kind == PayloadKind.METADATA and _strip(uri).endswith("/" + METADATA_SEGMENT):
        root = _strip(uri)[: -len(METADATA_SEGMENT) - 1]
        metadata_document = primary.body
        resp = _try_fetch(fetcher, root, headers)
        if resp is not None and resp.status == 200 and classify(resp.body, resp.headers).kind == PayloadKind.SERVICE_DOCUMENT:
            service_document = resp.body
    else:
        for candidate in _parent_candidates(uri):
            resp = _try_fetch(fetcher, candidate, headers)
            if resp is None or resp.status != 200:
                continue
            if classify(resp.body, resp.headers).kind == PayloadKind.SERVICE_DOCUMENT:
                root, service_document = candidate, resp.body
                break

    if root is not None and metadata_document is None:
        resp = _try_fetch(fetcher, f"{root}/{METADATA_SEGMENT}", headers.merged({"Accept": ACCEPT_METADATA}))
        if resp is not None and resp.status == 200 and classify(resp.body, resp.headers).kind == PayloadKind.METADATA:
            metadata_document = resp.body
        else:
            logger.warning("No usable metadata document under %s; validating without schema", root)

    logger.info(
        "Discovered service root=%s service_document=%s metadata=%s",
        root,
        service_document is not None,
        metadata_document is not None,
    )
    return ServiceDiscovery(root, service_document, metadata_document)


def build_live_context(
    uri: str,
    fetcher: Fetcher,
    *,
    fmt: str = "json",
    request_headers: HeaderInput = None,
) -> ServiceContext:
    headers = Headers.of({"Accept": accept_header_for_format(fmt)}).merged(request_headers)
    try:
        primary = fetcher.get_or_fetch(uri, headers)
    except ProbeError as exc:
        raise RunAbortedError(uri, exc) from exc

    discovery = discover_service(uri, primary, fetcher, headers)
    return build_context(
        ProbeRequest(uri=uri, headers=headers),
        primary,
        metadata_document=discovery.metadata_document,
        service_document=discovery.service_document,
        service_root=discovery.service_root,
        live=True,
    )


def run_validation(
    uri: str,
    *,
    fmt: str = "json",
    category: Optional[str] = "core",
    request_headers: HeaderInput = None,
    settings: Optional[ProbeSettings] = None,
    run_config: Optional[RunConfig] = None,
    rules: Optional[Iterable[Rule]] = None,
    fetcher: Optional[Fetcher] = None,
    cancel_event: Optional[threading.Event] = None,
) -> RuleRunReport:
    """Probe ``uri`` and run every applicable rule against it. One fetch cache per run."""
    settings = settings or get_probe_settings()
    cancel_event = cancel_event or threading.Event()
    fetcher = fetcher or FetchCache(settings=settings, cancel_event=cancel_event)

    logger.info("Starting conformance run against %s (format=%s, category=%s)", uri, fmt, category)
    ctx = build_live_context(uri, fetcher, fmt=fmt, request_headers=request_headers)
    config = run_config or RunConfig(category=category, max_workers=settings.max_workers)
    return RulesRunner(rules, config=config).run(ctx, fetcher, cancel_event=cancel_event)
