"""Payload classifier: sniff raw bytes + response headers into (kind, format, version).

Classification never raises. Bodies that do not parse as the negotiated format come
back as ``PayloadKind.OTHER`` so rules targeting a concrete kind simply do not apply.
"""

from __future__ import annotations

import json
import logging
import xml.etree.ElementTree as ET
from dataclasses import dataclass
from typing import Any, Optional, Union

from .models import PayloadFormat, PayloadKind, ProtocolVersion
from .negotiation import parse_version, version_from_headers
from .probe import HeaderInput, Headers

logger = logging.getLogger(__name__)

NS_ATOM = "http://www.w3.org/2005/Atom"
NS_APP = "http://www.w3.org/2007/app"
NS_V4_METADATA = "http://docs.oasis-open.org/odata/ns/metadata"
NS_V4_DATA = "http://docs.oasis-open.org/odata/ns/data"
NS_V3_METADATA = "http://schemas.microsoft.com/ado/2007/08/dataservices/metadata"
NS_V3_DATA = "http://schemas.microsoft.com/ado/2007/08/dataservices"

V4_CONTEXT = "@odata.context"
V3_CONTEXT = "odata.metadata"

_JSON_TYPES = ("application/json", "text/json")
_XML_TYPES = ("application/xml", "text/xml", "application/atom+xml", "application/atomsvc+xml")
_GENERIC_TYPES = ("text/plain", "application/octet-stream", "*/*", "text/html")
_MEDIA_ANNOTATIONS = ("mediaReadLink", "mediaEditLink", "mediaContentType", "mediaEtag")


@dataclass(frozen=True)
class PayloadClassification:
    kind: PayloadKind
    format: PayloadFormat
    version: ProtocolVersion
    entity_type: Optional[str] = None
    entity_set: Optional[str] = None
    entity_id: Optional[str] = None
    is_media_link_entry: bool = False


def classify(body: Union[bytes, str, None], headers: HeaderInput = None) -> PayloadClassification:
    headers = Headers.of(headers)
    text = _decode(body)
    header_version = version_from_headers(headers)
    if not text.strip():
        return PayloadClassification(PayloadKind.NONE, PayloadFormat.NONE, header_version)

    content_type = (headers.get("Content-Type") or "").split(";", 1)[0].strip().lower()
    token = text.lstrip("﻿ \t\r\n")[:1]

    if content_type in _JSON_TYPES or content_type.endswith("+json"):
        family = "json"
    elif content_type in _XML_TYPES or content_type.endswith("+xml"):
        family = "xml"
    elif not content_type or content_type in _GENERIC_TYPES:
        family = {"{": "json", "[": "json", "<": "xml"}.get(token, "raw")
    else:
        family = "raw"

    if family == "json":
        verbose = "odata=verbose" in (headers.get("Content-Type") or "").replace(" ", "").lower()
        return _classify_json(text, header_version, verbose)
    if family == "xml":
        return _classify_xml(text, header_version)
    return PayloadClassification(PayloadKind.RAW_VALUE, PayloadFormat.OTHER, header_version)


def _decode(body: Union[bytes, str, None]) -> str:
    if body is None:
        return ""
    if isinstance(body, str):
        return body
    return body.decode("utf-8", errors="replace")


# --- JSON -----------------------------------------------------------------------------------


def _classify_json(text: str, header_version: ProtocolVersion, verbose_hint: bool) -> PayloadClassification:
    try:
        doc = json.loads(text)
    except (ValueError, RecursionError):
        logger.debug("Body declared as JSON does not parse; classifying as OTHER")
        return PayloadClassification(PayloadKind.OTHER, PayloadFormat.JSON, header_version)

    if not isinstance(doc, dict):
        return PayloadClassification(PayloadKind.OTHER, PayloadFormat.JSON, header_version)

    if verbose_hint or (len(doc) == 1 and "d" in doc):
        return _classify_json_verbose(doc, header_version)

    version = header_version if header_version != ProtocolVersion.UNKNOWN else _json_version(doc)
    kind = _json_light_kind(doc)
    entity_source = doc
    if kind == PayloadKind.FEED:
        items = doc.get("value") or []
        entity_source = items[0] if items and isinstance(items[0], dict) else {}

    return PayloadClassification(
        kind=kind,
        format=PayloadFormat.JSON,
        version=version,
        entity_type=_json_type_annotation(entity_source) if kind in (PayloadKind.ENTRY, PayloadKind.FEED) else None,
        entity_set=_context_entity_set(_context_url(doc)) if kind in (PayloadKind.ENTRY, PayloadKind.FEED) else None,
        entity_id=_first_str(doc, "@odata.id", "odata.id") if kind == PayloadKind.ENTRY else None,
        is_media_link_entry=kind == PayloadKind.ENTRY and _has_media_annotation(doc),
    )


def _json_version(doc: dict[str, Any]) -> ProtocolVersion:
    keys = list(doc.keys())
    if any(k.startswith("@odata.") for k in keys):
        return ProtocolVersion.V4
    if any(k.startswith("odata.") or "@odata" in k for k in keys):
        return ProtocolVersion.V3
    return ProtocolVersion.UNKNOWN


def _context_url(doc: dict[str, Any]) -> Optional[str]:
    return _first_str(doc, V4_CONTEXT, V3_CONTEXT)


def _json_light_kind(doc: dict[str, Any]) -> PayloadKind:
    if _is_json_error(doc):
        return PayloadKind.ERROR

    context = _context_url(doc)
    value = doc.get("value")
    if context is not None:
        base, _, fragment = context.partition("#")
        if not fragment and base.rstrip("/").endswith("$metadata"):
            return PayloadKind.SERVICE_DOCUMENT
        if fragment.endswith("$delta") or fragment.endswith("@delta"):
            return PayloadKind.DELTA
        if fragment in ("$ref", "Collection($ref)") or "/$links/" in fragment:
            return PayloadKind.ENTITY_REFERENCE
        if fragment.endswith("/$entity") or fragment.endswith("/@Element"):
            return PayloadKind.ENTRY
        if fragment.startswith("Edm.") or fragment.startswith("Collection("):
            return PayloadKind.PROPERTY
        if isinstance(value, list):
            return PayloadKind.FEED if all(isinstance(v, dict) for v in value) else PayloadKind.PROPERTY
        if "value" in doc:
            return PayloadKind.PROPERTY
        if "/" in fragment:
            return PayloadKind.PROPERTY
        return PayloadKind.ENTRY

    if isinstance(value, list):
        if value and all(isinstance(v, dict) and "url" in v and "name" in v for v in value):
            return PayloadKind.SERVICE_DOCUMENT
        return PayloadKind.FEED if all(isinstance(v, dict) for v in value) else PayloadKind.PROPERTY
    if "value" in doc:
        return PayloadKind.PROPERTY
    if set(doc.keys()) == {"@odata.id"}:
        return PayloadKind.ENTITY_REFERENCE
    return PayloadKind.ENTRY


def _is_json_error(doc: dict[str, Any]) -> bool:
    if len(doc) != 1:
        return False
    key, inner = next(iter(doc.items()))
    if key not in ("error", "odata.error") or not isinstance(inner, dict):
        return False
    return "message" in inner or "code" in inner


def _json_type_annotation(node: dict[str, Any]) -> Optional[str]:
    raw = _first_str(node, "@odata.type", "odata.type")
    if raw is None:
        return None
    return raw.lstrip("#") or None


def _context_entity_set(context: Optional[str]) -> Optional[str]:
    if not context or "#" not in context:
        return None
    fragment = context.split("#", 1)[1]
    head = fragment.split("/", 1)[0]
    name = head.split("(", 1)[0]
    return name or None


def _has_media_annotation(node: dict[str, Any]) -> bool:
    for key in node:
        for prefix in ("@odata.", "odata."):
            if any(key.endswith(prefix + media) for media in _MEDIA_ANNOTATIONS):
                return True
    return False


def _classify_json_verbose(doc: dict[str, Any], header_version: ProtocolVersion) -> PayloadClassification:
    version = header_version if header_version != ProtocolVersion.UNKNOWN else ProtocolVersion.V2
    if _is_json_error(doc):
        return PayloadClassification(PayloadKind.ERROR, PayloadFormat.JSON_VERBOSE, version)

    inner = doc.get("d")
    if isinstance(inner, dict) and isinstance(inner.get("results"), list):
        inner = inner["results"]

    if isinstance(inner, list):
        first = inner[0] if inner and isinstance(inner[0], dict) else {}
        if first and set(first.keys()) == {"uri"}:
            return PayloadClassification(PayloadKind.ENTITY_REFERENCE, PayloadFormat.JSON_VERBOSE, version)
        return PayloadClassification(
            PayloadKind.FEED,
            PayloadFormat.JSON_VERBOSE,
            version,
            entity_type=_verbose_metadata(first, "type"),
        )

    if not isinstance(inner, dict):
        return PayloadClassification(PayloadKind.OTHER, PayloadFormat.JSON_VERBOSE, version)
    if "EntitySets" in inner and len(inner) == 1:
        return PayloadClassification(PayloadKind.SERVICE_DOCUMENT, PayloadFormat.JSON_VERBOSE, version)
    if "__metadata" in inner:
        return PayloadClassification(
            PayloadKind.ENTRY,
            PayloadFormat.JSON_VERBOSE,
            version,
            entity_type=_verbose_metadata(inner, "type"),
            entity_id=_verbose_metadata(inner, "uri"),
            is_media_link_entry=_verbose_metadata(inner, "media_src") is not None,
        )
    if set(inner.keys()) == {"uri"}:
        return PayloadClassification(PayloadKind.ENTITY_REFERENCE, PayloadFormat.JSON_VERBOSE, version)
    return PayloadClassification(PayloadKind.PROPERTY, PayloadFormat.JSON_VERBOSE, version)


def _verbose_metadata(node: dict[str, Any], key: str) -> Optional[str]:
    meta = node.get("__metadata")
    if isinstance(meta, dict) and isinstance(meta.get(key), str):
        return meta[key]
    return None


def _first_str(node: dict[str, Any], *keys: str) -> Optional[str]:
    for key in keys:
        value = node.get(key)
        if isinstance(value, str):
            return value
    return None


# --- XML ------------------------------------------------------------------------------------


def _split_tag(tag: str) -> tuple[str, str]:
    if tag.startswith("{"):
        ns, _, local = tag[1:].partition("}")
        return ns, local
    return "", tag


def _classify_xml(text: str, header_version: ProtocolVersion) -> PayloadClassification:
    try:
        root = ET.fromstring(text.lstrip("﻿").encode("utf-8"))
    except ET.ParseError:
        logger.debug("Body declared as XML does not parse; classifying as OTHER")
        return PayloadClassification(PayloadKind.OTHER, PayloadFormat.XML, header_version)

    ns, local = _split_tag(root.tag)
    version = header_version if header_version != ProtocolVersion.UNKNOWN else _xml_version(root)

    if any(_split_tag(el.tag) in ((NS_V4_METADATA, "ref"), (NS_V3_METADATA, "ref")) for el in root.iter()):
        return PayloadClassification(PayloadKind.ENTITY_REFERENCE, PayloadFormat.XML, version)
    if local == "Edmx":
        return PayloadClassification(PayloadKind.METADATA, PayloadFormat.XML, version)
    if local == "service":
        return PayloadClassification(PayloadKind.SERVICE_DOCUMENT, PayloadFormat.XML, version)
    if local == "error":
        return PayloadClassification(PayloadKind.ERROR, PayloadFormat.XML, version)
    if local in ("links", "uri") and ns in (NS_V3_DATA, NS_V4_DATA, ""):
        return PayloadClassification(PayloadKind.ENTITY_REFERENCE, PayloadFormat.XML, version)

    if ns == NS_ATOM and local == "feed":
        if any(_split_tag(el.tag)[1] == "deleted-entry" for el in root):
            return PayloadClassification(PayloadKind.DELTA, PayloadFormat.ATOM, version)
        entry = root.find(f"{{{NS_ATOM}}}entry")
        return PayloadClassification(
            PayloadKind.FEED,
            PayloadFormat.ATOM,
            version,
            entity_type=_atom_category(entry) if entry is not None else None,
            entity_set=_context_entity_set(_atom_context(root)),
        )
    if ns == NS_ATOM and local == "entry":
        id_el = root.find(f"{{{NS_ATOM}}}id")
        return PayloadClassification(
            PayloadKind.ENTRY,
            PayloadFormat.ATOM,
            version,
            entity_type=_atom_category(root),
            entity_set=_context_entity_set(_atom_context(root)),
            entity_id=(id_el.text or "").strip() or None if id_el is not None else None,
            is_media_link_entry=_atom_is_media_link_entry(root),
        )

    if ns in (NS_V3_DATA, NS_V4_DATA, NS_V3_METADATA, NS_V4_METADATA):
        return PayloadClassification(PayloadKind.PROPERTY, PayloadFormat.XML, version)
    return PayloadClassification(PayloadKind.OTHER, PayloadFormat.XML, version)


def _xml_version(root: ET.Element) -> ProtocolVersion:
    ns, local = _split_tag(root.tag)
    if local == "Edmx":
        for child in root:
            for attr, value in child.attrib.items():
                if _split_tag(attr)[1] == "DataServiceVersion":
                    return parse_version(value)
        if root.get("Version", "").startswith("4."):
            return ProtocolVersion.V4
    for el in root.iter():
        el_ns = _split_tag(el.tag)[0]
        if el_ns in (NS_V4_METADATA, NS_V4_DATA) or el_ns.startswith("http://docs.oasis-open.org/odata/"):
            return ProtocolVersion.V4
        if any(_split_tag(a)[0] == NS_V4_METADATA for a in el.attrib):
            return ProtocolVersion.V4
    return ProtocolVersion.UNKNOWN


def _atom_category(entry: ET.Element) -> Optional[str]:
    category = entry.find(f"{{{NS_ATOM}}}category")
    if category is None:
        return None
    term = category.get("term")
    return term.lstrip("#") if term else None


def _atom_context(root: ET.Element) -> Optional[str]:
    for attr, value in root.attrib.items():
        if _split_tag(attr) == (NS_V4_METADATA, "context"):
            return value
    return None


def _atom_is_media_link_entry(entry: ET.Element) -> bool:
    content = entry.find(f"{{{NS_ATOM}}}content")
    if content is None or not content.get("src"):
        return False
    return any(_split_tag(el.tag)[1] == "properties" for el in entry)
