"""Resolve request paths against a parsed schema into an addressing pattern.

Resolution is pure: no I/O, no exceptions for bad input. Paths that cannot address
anything in the schema come back as ``AddressKind.UNRESOLVABLE`` with a reason.
"""

from __future__ import annotations

import logging
import re
from dataclasses import dataclass
from typing import List, Optional, Sequence, Tuple
from urllib.parse import unquote, urlsplit

from .models import AddressKind
from .schema import ComplexTypeDef, EntityTypeDef, PropertyDef, ServiceSchema

logger = logging.getLogger(__name__)

_INT = r"[+-]?\d+"
_FLOAT = r"[+-]?(?:\d+\.?\d*|\.\d+)(?:[eE][+-]?\d+)?"
_GUID = r"[0-9a-fA-F]{8}-[0-9a-fA-F]{4}-[0-9a-fA-F]{4}-[0-9a-fA-F]{4}-[0-9a-fA-F]{12}"
_DATE = r"\d{4}-\d{2}-\d{2}"
_TIME = r"\d{2}:\d{2}(?::\d{2}(?:\.\d+)?)?"
_OFFSET = r"(?:Z|[+-]\d{2}:\d{2})?"

_LITERALS = {
    "Edm.String": re.compile(r"^'(?:[^']|'')*'$"),
    "Edm.Byte": re.compile(r"^\d+$"),
    "Edm.SByte": re.compile(rf"^{_INT}$"),
    "Edm.Int16": re.compile(rf"^{_INT}$"),
    "Edm.Int32": re.compile(rf"^{_INT}$"),
    "Edm.Int64": re.compile(rf"^{_INT}[lL]?$"),
    "Edm.Decimal": re.compile(rf"^{_FLOAT}[mM]?$"),
    "Edm.Double": re.compile(rf"^(?:{_FLOAT}[dD]?|INF|-INF|NaN)$"),
    "Edm.Single": re.compile(rf"^(?:{_FLOAT}[fF]?|INF|-INF|NaN)$"),
    "Edm.Boolean": re.compile(r"^(?:true|false)$", re.IGNORECASE),
    "Edm.Guid": re.compile(rf"^(?:{_GUID}|guid'{_GUID}')$"),
    "Edm.Date": re.compile(rf"^{_DATE}$"),
    "Edm.TimeOfDay": re.compile(rf"^{_TIME}$"),
    "Edm.DateTime": re.compile(rf"^datetime'{_DATE}T{_TIME}'$"),
    "Edm.DateTimeOffset": re.compile(rf"^(?:{_DATE}T{_TIME}{_OFFSET}|datetimeoffset'{_DATE}T{_TIME}{_OFFSET}')$"),
    "Edm.Time": re.compile(r"^time'P[0-9DTHMS.]+'$"),
    "Edm.Duration": re.compile(r"^(?:duration)?'-?P[0-9DTHMS.]+'$"),
    "Edm.Binary": re.compile(r"^(?:binary|X)'[0-9A-Fa-f]*'$"),
}


@dataclass(frozen=True)
class AddressResolution:
    kind: AddressKind
    entity_type: Optional[str] = None
    error: Optional[str] = None
    is_collection: bool = False
    entity_set: Optional[str] = None
    property_type: Optional[str] = None

    @property
    def is_resolvable(self) -> bool:
        return self.kind != AddressKind.UNRESOLVABLE


def _unresolvable(reason: str) -> AddressResolution:
    logger.debug("Unresolvable address: %s", reason)
    return AddressResolution(kind=AddressKind.UNRESOLVABLE, error=reason)


def split_segment(segment: str) -> Tuple[str, Optional[str]]:
    """``Products(5)`` -> (``Products``, ``5``); ``Products`` -> (``Products``, None)."""
    start = segment.find("(")
    if start < 0 or not segment.endswith(")"):
        return segment, None
    return segment[:start], segment[start + 1 : -1]


def _split_key_parts(text: str) -> List[str]:
    parts, buf, quoted = [], [], False
    for ch in text:
        if ch == "'":
            quoted = not quoted
        if ch == "," and not quoted:
            parts.append("".join(buf).strip())
            buf = []
            continue
        buf.append(ch)
    parts.append("".join(buf).strip())
    return parts


def _literal_matches(prop: PropertyDef, literal: str) -> bool:
    pattern = _LITERALS.get(prop.type_name)
    if pattern is None:
        # Enum and type-definition keys: any non-empty literal is syntactically acceptable.
        return bool(literal)
    return bool(pattern.match(literal))


def validate_key(key_text: str, key_props: Sequence[PropertyDef]) -> Optional[str]:
    """Check a key predicate against the declared key. Returns a reason on mismatch."""
    if not key_props:
        return "entity type declares no key"
    parts = _split_key_parts(key_text)
    if any(not p for p in parts):
        return f"empty key value in ({key_text})"

    named = ["=" in p.split("'", 1)[0] for p in parts]
    if any(named) and not all(named):
        return f"mixed positional and named key values in ({key_text})"

    if not any(named):
        if len(key_props) != 1 or len(parts) != 1:
            return f"key arity {len(parts)} does not match declared key arity {len(key_props)}"
        if not _literal_matches(key_props[0], parts[0]):
            return f"key value {parts[0]!r} is not a valid {key_props[0].type_name} literal"
        return None

    values = {}
    for part in parts:
        name, _, literal = part.partition("=")
        name = name.strip()
        if name in values:
            return f"key property {name!r} given twice"
        values[name] = literal.strip()
    declared = {p.name: p for p in key_props}
    if set(values) != set(declared):
        return f"key properties {sorted(values)} do not match declared key {sorted(declared)}"
    for name, literal in values.items():
        if not _literal_matches(declared[name], literal):
            return f"key value {literal!r} is not a valid {declared[name].type_name} literal"
    return None


class _Walk:
    """Mutable resolution state while walking segments left to right."""

    def __init__(self, schema: ServiceSchema):
        self.schema = schema
        self.kind = AddressKind.SERVICE_ROOT
        self.entity: Optional[EntityTypeDef] = None
        self.structured: Optional[ComplexTypeDef] = None
        self.primitive: Optional[PropertyDef] = None
        self.is_collection = False
        self.entity_set: Optional[str] = None
        self.terminal = False

    def result(self) -> AddressResolution:
        return AddressResolution(
            kind=self.kind,
            entity_type=self.entity.qualified_name if self.entity is not None else None,
            is_collection=self.is_collection,
            entity_set=self.entity_set,
            property_type=self.primitive.type_name if self.primitive is not None else None,
        )


def resolve_address(schema: ServiceSchema, segments: Sequence[str]) -> AddressResolution:
    segments = [s for s in segments if s != ""]
    if not segments:
        return AddressResolution(kind=AddressKind.SERVICE_ROOT)

    head = segments[0]
    if head in ("$metadata", "$batch"):
        if len(segments) > 1:
            return _unresolvable(f"{head} does not accept further segments")
        return AddressResolution(kind=AddressKind.METADATA if head == "$metadata" else AddressKind.BATCH)

    walk = _Walk(schema)
    error = _resolve_head(walk, head)
    if error:
        return _unresolvable(error)

    rest = segments[1:]
    i = 0
    while i < len(rest):
        segment = rest[i]
        if walk.terminal:
            return _unresolvable(f"segment {segment!r} follows a terminal segment")
        if segment == "$links":
            if i + 1 >= len(rest):
                return _unresolvable("$links must be followed by a navigation property")
            error = _step_navigation(walk, rest[i + 1])
            if error:
                return _unresolvable(error)
            walk.kind = AddressKind.REFERENCE
            walk.terminal = True
            i += 2
            continue
        error = _step(walk, segment)
        if error:
            return _unresolvable(error)
        i += 1

    return walk.result()


def _resolve_head(walk: _Walk, segment: str) -> Optional[str]:
    schema = walk.schema
    name, key_text = split_segment(segment)

    set_type = schema.entity_set_type(name)
    if set_type is not None:
        walk.entity = schema.entity_type(set_type)
        if walk.entity is None:
            return f"entity set {name!r} references unknown type {set_type!r}"
        walk.entity_set = name
        if key_text:
            key_error = validate_key(key_text, schema.key_properties(walk.entity))
            if key_error:
                return key_error
            walk.kind = AddressKind.ENTITY
        else:
            walk.kind = AddressKind.COLLECTION
            walk.is_collection = True
        return None

    singleton_type = schema.singleton_type(name)
    if singleton_type is not None:
        if key_text:
            return f"singleton {name!r} does not accept a key"
        walk.entity = schema.entity_type(singleton_type)
        walk.kind = AddressKind.ENTITY
        return None

    function = schema.function_import(name)
    if function is not None:
        walk.kind = AddressKind.FUNCTION
        walk.is_collection = function.returns_collection
        walk.entity = schema.entity_type(function.return_type)
        if walk.entity is None:
            walk.structured = schema.complex_type(function.return_type)
        walk.entity_set = function.entity_set
        return None

    return f"unknown entity set, singleton or function {name!r}"


def _step(walk: _Walk, segment: str) -> Optional[str]:
    schema = walk.schema

    if segment == "$count":
        if not walk.is_collection:
            return "$count applies only to collections"
        walk.kind = AddressKind.COUNT
        walk.terminal = True
        return None

    if segment == "$ref":
        if walk.entity is None or walk.primitive is not None or walk.structured is not None:
            return "$ref applies only to entities and entity collections"
        walk.kind = AddressKind.REFERENCE
        walk.terminal = True
        return None

    if segment == "$value":
        if walk.primitive is not None and not walk.is_collection:
            walk.kind = AddressKind.PROPERTY_VALUE
            walk.terminal = True
            return None
        if walk.entity is not None and walk.structured is None and not walk.is_collection:
            if not schema.has_stream(walk.entity):
                return f"entity type {walk.entity.qualified_name!r} is not a media entity"
            walk.kind = AddressKind.MEDIA_RESOURCE
            walk.terminal = True
            return None
        return "$value applies only to primitive properties and media entities"

    if segment.startswith("$"):
        return f"system segment {segment!r} is not valid here"

    name, key_text = split_segment(segment)

    if "." in name and walk.entity is not None and walk.structured is None:
        return _step_cast(walk, name, key_text)

    if walk.is_collection:
        return f"segment {segment!r} cannot follow a collection without a key"

    if walk.entity is not None and walk.structured is None and walk.primitive is None:
        if schema.find_navigation(walk.entity, name) is not None:
            return _step_navigation(walk, segment)

    owner = walk.structured if walk.structured is not None else walk.entity
    if owner is None or walk.primitive is not None:
        return f"segment {segment!r} cannot follow a primitive value"
    prop = schema.find_property(owner, name)
    if prop is None:
        return f"type {owner.qualified_name!r} has no property or navigation {name!r}"
    if key_text is not None:
        return f"property {name!r} does not accept a key"

    complex_def = schema.complex_type(prop.item_type)
    walk.kind = AddressKind.PROPERTY
    walk.is_collection = prop.is_collection
    if complex_def is not None:
        walk.structured = complex_def
        walk.primitive = None
    else:
        walk.structured = None
        walk.primitive = prop
    return None


def _step_navigation(walk: _Walk, segment: str) -> Optional[str]:
    schema = walk.schema
    name, key_text = split_segment(segment)
    if walk.entity is None or walk.is_collection:
        return f"navigation {name!r} requires a single entity"
    nav = schema.find_navigation(walk.entity, name)
    if nav is None:
        return f"entity type {walk.entity.qualified_name!r} has no navigation property {name!r}"
    target = schema.entity_type(nav.target_type)
    if target is None:
        return f"navigation {name!r} targets unknown type {nav.target_type!r}"

    walk.entity = target
    walk.entity_set = None
    walk.kind = AddressKind.NAVIGATION
    walk.is_collection = nav.is_collection
    if key_text:
        if not nav.is_collection:
            return f"single-valued navigation {name!r} does not accept a key"
        key_error = validate_key(key_text, schema.key_properties(target))
        if key_error:
            return key_error
        walk.kind = AddressKind.ENTITY
        walk.is_collection = False
    return None


def _step_cast(walk: _Walk, type_name: str, key_text: Optional[str]) -> Optional[str]:
    schema = walk.schema
    derived = schema.entity_type(type_name)
    if derived is None:
        return f"unknown type cast {type_name!r}"
    if not schema.is_derived_from(derived, walk.entity):
        return f"{type_name!r} does not derive from {walk.entity.qualified_name!r}"
    walk.entity = derived
    if key_text:
        if not walk.is_collection:
            return f"type cast {type_name!r} on a single entity does not accept a key"
        key_error = validate_key(key_text, schema.key_properties(derived))
        if key_error:
            return key_error
        walk.kind = AddressKind.ENTITY
        walk.is_collection = False
    return None


def relative_segments(
    uri: str,
    service_root: Optional[str] = None,
    schema: Optional[ServiceSchema] = None,
) -> List[str]:
    """Path segments of ``uri`` relative to the service root, percent-decoded.

    Without a known root, the path starts at the first segment naming a container
    child of ``schema`` or a system resource. When no segment does, the last one is
    kept so the resolver reports it as unknown.
    """
    raw = [s for s in urlsplit(uri).path.split("/") if s]
    if service_root:
        root = [s for s in urlsplit(service_root).path.split("/") if s]
        if raw[: len(root)] == root:
            return [unquote(s) for s in raw[len(root) :]]

    for index, segment in enumerate(raw):
        name = split_segment(unquote(segment))[0]
        if name in ("$metadata", "$batch"):
            return [unquote(s) for s in raw[index:]]
        if schema is not None and schema.has_container_child(name):
            return [unquote(s) for s in raw[index:]]
    if schema is None:
        return [unquote(s) for s in raw]
    return [unquote(raw[-1])] if raw else []
