from __future__ import annotations

import re

from ..context import ServiceContext
from ..models import AddressKind, Aspect, PayloadKind, RequirementLevel, RuleDescriptor, Verdict, ViolationInfo
from ..probe import Fetcher
from ..registry import register_rule

_TEXT_PLAIN = re.compile(r"\s*text/plain\b", re.IGNORECASE)

DESCRIPTOR = RuleDescriptor(
    name="Value.Core.2000",
    description=(
        'By default, the raw value (identified via URIs with Resource Paths ending in "$value") of any '
        "EDMSimpleType property (except those of type Edm.Binary) SHOULD be represented using the "
        "text/plain media type."
    ),
    spec_sections=("2.2.6.1.1",),
    requirement_level=RequirementLevel.SHOULD,
    aspect=Aspect.SYNTAX,
    payload_kind=PayloadKind.RAW_VALUE,
    require_metadata=True,
    requires_live=True,
)


@register_rule(DESCRIPTOR)
def VALUE_CORE_2000(ctx: ServiceContext, fetcher: Fetcher):
    address = ctx.address
    if address is None or address.kind != AddressKind.PROPERTY_VALUE:
        return None, None
    if address.property_type == "Edm.Binary":
        return None, None

    content_type = ctx.response_headers.get("Content-Type") or ""
    if _TEXT_PLAIN.match(content_type):
        return Verdict.PASS, None
    return Verdict.FAIL, ViolationInfo(message="unexpected Content-Type header value", uri=ctx.uri, content=content_type)
