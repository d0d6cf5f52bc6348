"""CSDL (``$metadata``) parser.

Builds a read-only lookup model of the service schema: entity containers, entity types
with keys and navigation properties, complex types and function imports. Both the V4
(``docs.oasis-open.org``) and the V1-V3 (``schemas.microsoft.com``) vocabularies are
accepted; elements are matched on local name so namespace revisions do not matter.
"""

from __future__ import annotations

import logging
import xml.etree.ElementTree as ET
from dataclasses import dataclass, field
from typing import Dict, Iterator, Mapping, Optional, Tuple, Union

from .errors import SchemaError
from .models import ProtocolVersion
from .negotiation import parse_version

logger = logging.getLogger(__name__)

COLLECTION_PREFIX = "Collection("


def _local(tag: str) -> str:
    return tag.rsplit("}", 1)[-1]


def _children(el: ET.Element, local: str) -> Iterator[ET.Element]:
    return (child for child in el if _local(child.tag) == local)


def _attr(el: ET.Element, local: str) -> Optional[str]:
    """Attribute lookup by local name (``m:HasStream`` and ``HasStream`` both match)."""
    value = el.get(local)
    if value is not None:
        return value
    for name, val in el.attrib.items():
        if _local(name) == local:
            return val
    return None


def split_collection(type_name: str) -> Tuple[str, bool]:
    """``Collection(NS.T)`` -> (``NS.T``, True); ``NS.T`` -> (``NS.T``, False)."""
    text = (type_name or "").strip()
    if text.startswith(COLLECTION_PREFIX) and text.endswith(")"):
        return text[len(COLLECTION_PREFIX) : -1].strip(), True
    return text, False


@dataclass(frozen=True)
class PropertyDef:
    name: str
    type_name: str
    nullable: bool = True

    @property
    def is_collection(self) -> bool:
        return split_collection(self.type_name)[1]

    @property
    def item_type(self) -> str:
        return split_collection(self.type_name)[0]


@dataclass(frozen=True)
class NavigationDef:
    name: str
    target_type: str
    is_collection: bool


@dataclass(frozen=True)
class EntityTypeDef:
    qualified_name: str
    key: Tuple[str, ...] = ()
    properties: Tuple[PropertyDef, ...] = ()
    navigations: Tuple[NavigationDef, ...] = ()
    base_type: Optional[str] = None
    has_stream: bool = False
    abstract: bool = False

    @property
    def name(self) -> str:
        return self.qualified_name.rsplit(".", 1)[-1]


@dataclass(frozen=True)
class ComplexTypeDef:
    qualified_name: str
    properties: Tuple[PropertyDef, ...] = ()
    base_type: Optional[str] = None


@dataclass(frozen=True)
class FunctionImportDef:
    name: str
    return_type: Optional[str] = None
    entity_set: Optional[str] = None

    @property
    def returns_collection(self) -> bool:
        return bool(self.return_type) and split_collection(self.return_type)[1]


@dataclass(frozen=True)
class EntityContainerDef:
    name: str
    entity_sets: Mapping[str, str] = field(default_factory=dict)
    singletons: Mapping[str, str] = field(default_factory=dict)
    function_imports: Mapping[str, FunctionImportDef] = field(default_factory=dict)


@dataclass(frozen=True)
class ServiceSchema:
    version: ProtocolVersion
    namespaces: Tuple[str, ...]
    aliases: Mapping[str, str]
    entity_types: Mapping[str, EntityTypeDef]
    complex_types: Mapping[str, ComplexTypeDef]
    containers: Tuple[EntityContainerDef, ...]

    # --- name resolution -----------------------------------------------------------------

    def qualify(self, type_name: str) -> str:
        """Expand an alias-qualified name (``Self.Product`` -> ``Demo.Product``)."""
        name, is_collection = split_collection(type_name)
        prefix, sep, local = name.rpartition(".")
        if sep and prefix in self.aliases:
            name = f"{self.aliases[prefix]}.{local}"
        return f"{COLLECTION_PREFIX}{name})" if is_collection else name

    def entity_type(self, type_name: Optional[str]) -> Optional[EntityTypeDef]:
        if not type_name:
            return None
        return self.entity_types.get(self.qualify(split_collection(type_name)[0]))

    def complex_type(self, type_name: Optional[str]) -> Optional[ComplexTypeDef]:
        if not type_name:
            return None
        return self.complex_types.get(self.qualify(split_collection(type_name)[0]))

    # --- containers ----------------------------------------------------------------------

    def entity_set_type(self, name: str) -> Optional[str]:
        for container in self.containers:
            if name in container.entity_sets:
                return container.entity_sets[name]
        return None

    def singleton_type(self, name: str) -> Optional[str]:
        for container in self.containers:
            if name in container.singletons:
                return container.singletons[name]
        return None

    def function_import(self, name: str) -> Optional[FunctionImportDef]:
        for container in self.containers:
            if name in container.function_imports:
                return container.function_imports[name]
        return None

    def has_container_child(self, name: str) -> bool:
        return (
            self.entity_set_type(name) is not None
            or self.singleton_type(name) is not None
            or self.function_import(name) is not None
        )

    # --- inheritance-aware lookups -------------------------------------------------------

    def _lineage(self, type_def: Union[EntityTypeDef, ComplexTypeDef]) -> Iterator:
        seen = set()
        current = type_def
        while current is not None and current.qualified_name not in seen:
            seen.add(current.qualified_name)
            yield current
            if not current.base_type:
                return
            if isinstance(current, EntityTypeDef):
                current = self.entity_type(current.base_type)
            else:
                current = self.complex_type(current.base_type)

    def key_properties(self, type_def: EntityTypeDef) -> Tuple[PropertyDef, ...]:
        """Declared key of the type, inherited from the nearest ancestor that declares one."""
        key_names: Tuple[str, ...] = ()
        for ancestor in self._lineage(type_def):
            if ancestor.key:
                key_names = ancestor.key
                break
        props = {p.name: p for p in self.all_properties(type_def)}
        return tuple(props.get(name, PropertyDef(name, "Edm.String", False)) for name in key_names)

    def all_properties(self, type_def: Union[EntityTypeDef, ComplexTypeDef]) -> Tuple[PropertyDef, ...]:
        collected: Dict[str, PropertyDef] = {}
        for ancestor in self._lineage(type_def):
            for prop in ancestor.properties:
                collected.setdefault(prop.name, prop)
        return tuple(collected.values())

    def find_property(self, type_def: Union[EntityTypeDef, ComplexTypeDef], name: str) -> Optional[PropertyDef]:
        for ancestor in self._lineage(type_def):
            for prop in ancestor.properties:
                if prop.name == name:
                    return prop
        return None

    def find_navigation(self, type_def: EntityTypeDef, name: str) -> Optional[NavigationDef]:
        for ancestor in self._lineage(type_def):
            for nav in ancestor.navigations:
                if nav.name == name:
                    return nav
        return None

    def has_stream(self, type_def: EntityTypeDef) -> bool:
        return any(ancestor.has_stream for ancestor in self._lineage(type_def))

    def is_derived_from(self, derived: EntityTypeDef, base: EntityTypeDef) -> bool:
        return any(ancestor.qualified_name == base.qualified_name for ancestor in self._lineage(derived))


def parse_schema(document: Union[str, bytes]) -> ServiceSchema:
    """Parse a CSDL document; raises :class:`SchemaError` when it is not one."""
    if isinstance(document, str):
        document = document.lstrip("﻿").encode("utf-8")
    try:
        root = ET.fromstring(document)
    except ET.ParseError as exc:
        raise SchemaError(f"Metadata document is not well-formed XML: {exc}") from exc

    if _local(root.tag) != "Edmx":
        raise SchemaError(f"Metadata document root is {_local(root.tag)!r}, expected 'Edmx'")

    data_services = next(_children(root, "DataServices"), None)
    if data_services is None:
        raise SchemaError("Metadata document has no DataServices element")

    version = parse_version(_attr(data_services, "DataServiceVersion"))
    if version == ProtocolVersion.UNKNOWN and (root.get("Version") or "").startswith("4."):
        version = ProtocolVersion.V4

    schemas = list(_children(data_services, "Schema"))
    if not schemas:
        raise SchemaError("Metadata document declares no Schema")

    namespaces = []
    aliases: Dict[str, str] = {}
    for schema_el in schemas:
        ns = schema_el.get("Namespace")
        if not ns:
            raise SchemaError("Schema element without Namespace")
        namespaces.append(ns)
        if schema_el.get("Alias"):
            aliases[schema_el.get("Alias")] = ns

    def qualify(name: Optional[str]) -> Optional[str]:
        if not name:
            return None
        inner, is_collection = split_collection(name)
        prefix, sep, local = inner.rpartition(".")
        if sep and prefix in aliases:
            inner = f"{aliases[prefix]}.{local}"
        return f"{COLLECTION_PREFIX}{inner})" if is_collection else inner

    # V1-V3 navigation targets are declared on associations, not on the property.
    association_ends: Dict[Tuple[str, str], Tuple[str, str]] = {}
    function_returns: Dict[str, Optional[str]] = {}
    for schema_el in schemas:
        ns = schema_el.get("Namespace")
        for assoc in _children(schema_el, "Association"):
            for end in _children(assoc, "End"):
                association_ends[(f"{ns}.{assoc.get('Name')}", end.get("Role") or "")] = (
                    qualify(end.get("Type")) or "",
                    end.get("Multiplicity") or "1",
                )
        for fn in list(_children(schema_el, "Function")) + list(_children(schema_el, "Action")):
            ret = next(_children(fn, "ReturnType"), None)
            function_returns.setdefault(f"{ns}.{fn.get('Name')}", qualify(ret.get("Type")) if ret is not None else None)

    entity_types: Dict[str, EntityTypeDef] = {}
    complex_types: Dict[str, ComplexTypeDef] = {}
    containers = []

    for schema_el in schemas:
        ns = schema_el.get("Namespace")
        for et in _children(schema_el, "EntityType"):
            qualified = f"{ns}.{et.get('Name')}"
            key_el = next(_children(et, "Key"), None)
            key = tuple(ref.get("Name") or "" for ref in _children(key_el, "PropertyRef")) if key_el is not None else ()
            navigations = []
            for nav in _children(et, "NavigationProperty"):
                navigations.append(_navigation(nav, qualify, association_ends, qualified))
            entity_types[qualified] = EntityTypeDef(
                qualified_name=qualified,
                key=key,
                properties=_properties(et, qualify),
                navigations=tuple(navigations),
                base_type=qualify(et.get("BaseType")),
                has_stream=(_attr(et, "HasStream") or "").lower() == "true",
                abstract=(et.get("Abstract") or "").lower() == "true",
            )
        for ct in _children(schema_el, "ComplexType"):
            qualified = f"{ns}.{ct.get('Name')}"
            complex_types[qualified] = ComplexTypeDef(
                qualified_name=qualified,
                properties=_properties(ct, qualify),
                base_type=qualify(ct.get("BaseType")),
            )
        for container_el in _children(schema_el, "EntityContainer"):
            containers.append(_container(container_el, qualify, function_returns))

    logger.debug(
        "Parsed schema: %d entity types, %d complex types, %d containers",
        len(entity_types),
        len(complex_types),
        len(containers),
    )
    return ServiceSchema(
        version=version,
        namespaces=tuple(namespaces),
        aliases=aliases,
        entity_types=entity_types,
        complex_types=complex_types,
        containers=tuple(containers),
    )


def _properties(el: ET.Element, qualify) -> Tuple[PropertyDef, ...]:
    return tuple(
        PropertyDef(
            name=prop.get("Name") or "",
            type_name=qualify(prop.get("Type")) or "Edm.String",
            nullable=(prop.get("Nullable") or "true").lower() != "false",
        )
        for prop in _children(el, "Property")
    )


def _navigation(nav: ET.Element, qualify, association_ends, owner: str) -> NavigationDef:
    name = nav.get("Name") or ""
    if nav.get("Type"):
        target, is_collection = split_collection(qualify(nav.get("Type")) or "")
        return NavigationDef(name=name, target_type=target, is_collection=is_collection)

    relationship = qualify(nav.get("Relationship")) or ""
    end = association_ends.get((relationship, nav.get("ToRole") or ""))
    if end is None:
        raise SchemaError(f"Navigation property {owner}/{name} references unknown association {relationship!r}")
    target, multiplicity = end
    return NavigationDef(name=name, target_type=target, is_collection=multiplicity == "*")


def _container(el: ET.Element, qualify, function_returns) -> EntityContainerDef:
    entity_sets = {es.get("Name") or "": qualify(es.get("EntityType")) or "" for es in _children(el, "EntitySet")}
    singletons = {s.get("Name") or "": qualify(s.get("Type")) or "" for s in _children(el, "Singleton")}

    imports: Dict[str, FunctionImportDef] = {}
    for fi in list(_children(el, "FunctionImport")) + list(_children(el, "ActionImport")):
        name = fi.get("Name") or ""
        return_type = qualify(fi.get("ReturnType"))
        target = fi.get("Function") or fi.get("Action")
        if return_type is None and target:
            return_type = function_returns.get(qualify(target) or "")
        imports.setdefault(name, FunctionImportDef(name=name, return_type=return_type, entity_set=fi.get("EntitySet")))

    return EntityContainerDef(
        name=el.get("Name") or "",
        entity_sets=entity_sets,
        singletons=singletons,
        function_imports=imports,
    )
