"""Applicability filter: which registered rules apply to a service context."""

from __future__ import annotations

import logging
from typing import Any, Callable, Dict, Iterable, List, Optional, TypeVar, Union

from .context import ServiceContext
from .models import RuleDescriptor
from .rule import Rule

logger = logging.getLogger(__name__)

T = TypeVar("T", Rule, RuleDescriptor)

# Descriptor predicate -> context fact it is compared against. Context facts are read
# lazily so schema parsing only happens for rules that declare a metadata dependency.
_CONTEXT_FACTS: Dict[str, Callable[[ServiceContext], Any]] = {
    "payload_kind": lambda ctx: ctx.payload_kind,
    "payload_format": lambda ctx: ctx.payload_format,
    "versions": lambda ctx: ctx.version,
    "require_metadata": lambda ctx: ctx.has_metadata,
    "require_service_document": lambda ctx: ctx.has_service_document,
    "requires_live": lambda ctx: ctx.live,
    "is_media_link_entry": lambda ctx: ctx.is_media_link_entry,
    "projection": lambda ctx: ctx.projection,
    "metadata_level": lambda ctx: ctx.metadata_level,
}


def _descriptor(item: Union[Rule, RuleDescriptor]) -> RuleDescriptor:
    return item.descriptor if isinstance(item, Rule) else item


def _predicate_matches(name: str, expected: Any, ctx: ServiceContext) -> bool:
    actual = _CONTEXT_FACTS[name](ctx)
    if name == "versions":
        return actual in expected
    return actual == expected


def mismatched_predicates(item: Union[Rule, RuleDescriptor], ctx: ServiceContext) -> List[str]:
    """Names of the declared predicates that the context does not satisfy."""
    descriptor = _descriptor(item)
    return [
        name for name, expected in descriptor.predicates().items() if not _predicate_matches(name, expected, ctx)
    ]


def is_applicable(item: Union[Rule, RuleDescriptor], ctx: ServiceContext) -> bool:
    descriptor = _descriptor(item)
    for name, expected in descriptor.predicates().items():
        if not _predicate_matches(name, expected, ctx):
            logger.debug("Rule %s not applicable: %s mismatch", descriptor.name, name)
            return False
    return True


def select_applicable(
    items: Iterable[T],
    ctx: ServiceContext,
    *,
    category: Optional[str] = None,
) -> List[T]:
    """Applicable rules (or descriptors), in the order given."""
    wanted = category.strip().lower() if category else None
    selected = []
    for item in items:
        if wanted is not None and _descriptor(item).category != wanted:
            continue
        if is_applicable(item, ctx):
            selected.append(item)
    return selected
