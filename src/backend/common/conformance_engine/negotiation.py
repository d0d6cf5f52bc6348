from __future__ import annotations

import re
from typing import Optional

from .models import JsonMetadataLevel, ProtocolVersion
from .probe import Headers

ODATA_VERSION = "OData-Version"
DATA_SERVICE_VERSION = "DataServiceVersion"

ACCEPT_ATOM = "*/*; q=0.2, application/atom+xml, application/xml; q=0.5"
ACCEPT_JSON = "application/json"
ACCEPT_V3_JSON_VERBOSE = ACCEPT_JSON + ";odata=verbose"
ACCEPT_V3_JSON_FULL = ACCEPT_JSON + ";odata=fullmetadata"
ACCEPT_V3_JSON_MINIMAL = ACCEPT_JSON + ";odata=minimalmetadata"
ACCEPT_V3_JSON_NONE = ACCEPT_JSON + ";odata=nometadata"
ACCEPT_V4_JSON_FULL = ACCEPT_JSON + ";odata.metadata=full"
ACCEPT_V4_JSON_MINIMAL = ACCEPT_JSON + ";odata.metadata=minimal"
ACCEPT_V4_JSON_NONE = ACCEPT_JSON + ";odata.metadata=none"

FORMAT_ACCEPT_HEADERS = {
    "atom": ACCEPT_ATOM,
    "json": ACCEPT_JSON,
    "jsonverbose": ACCEPT_V3_JSON_VERBOSE,
    "jsonfullmetadata": ACCEPT_V3_JSON_FULL,
    "jsonminimalmetadata": ACCEPT_V3_JSON_MINIMAL,
    "jsonnometadata": ACCEPT_V3_JSON_NONE,
    "v4jsonfullmetadata": ACCEPT_V4_JSON_FULL,
    "v4jsonminimalmetadata": ACCEPT_V4_JSON_MINIMAL,
    "v4jsonnometadata": ACCEPT_V4_JSON_NONE,
}

_VERSION_PATTERN = re.compile(r"^\s*([1-4])\.0\s*;?")


def accept_header_for_format(fmt: str) -> str:
    return FORMAT_ACCEPT_HEADERS.get((fmt or "").strip().lower(), ACCEPT_ATOM)


def metadata_level_for_accept(accept: Optional[str]) -> Optional[JsonMetadataLevel]:
    """JSON metadata level requested by an Accept value; ``None`` for non-JSON and verbose requests."""
    value = (accept or "").replace(" ", "").lower()
    if not value.startswith(ACCEPT_JSON) or value == ACCEPT_V3_JSON_VERBOSE:
        return None
    if value in (ACCEPT_V3_JSON_FULL, ACCEPT_V4_JSON_FULL):
        return JsonMetadataLevel.FULL
    if value in (ACCEPT_V3_JSON_NONE, ACCEPT_V4_JSON_NONE):
        return JsonMetadataLevel.NONE
    # Plain application/json negotiates the protocol default.
    return JsonMetadataLevel.MINIMAL


def parse_version(value: Optional[str]) -> ProtocolVersion:
    """Map a version header value (``"4.0"``, ``"2.0; pyslet 0.4"``) to a protocol version."""
    if not value:
        return ProtocolVersion.UNKNOWN
    match = _VERSION_PATTERN.match(value)
    if not match:
        return ProtocolVersion.UNKNOWN
    return ProtocolVersion("V" + match.group(1))


def version_from_headers(headers: Headers) -> ProtocolVersion:
    # DataServiceVersion wins when both are present (V1-V3 services sometimes echo both).
    legacy = headers.get(DATA_SERVICE_VERSION)
    if legacy:
        return parse_version(legacy)
    return parse_version(headers.get(ODATA_VERSION))


def requested_version(request_headers: Headers) -> Optional[ProtocolVersion]:
    """Version pinned by the caller through any request header whose name mentions ``version``."""
    pinned: Optional[ProtocolVersion] = None
    for name, value in request_headers:
        if "version" not in name.lower() or "max" in name.lower():
            continue
        if value.strip().startswith("3.0"):
            pinned = ProtocolVersion.V3
        elif value.strip().startswith("4.0"):
            pinned = ProtocolVersion.V4
        else:
            pinned = ProtocolVersion.V2
    return pinned
