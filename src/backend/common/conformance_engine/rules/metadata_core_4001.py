from __future__ import annotations

import xml.etree.ElementTree as ET

from ..context import ServiceContext
from ..models import (
    Aspect,
    PayloadFormat,
    PayloadKind,
    ProtocolVersion,
    RequirementLevel,
    RuleDescriptor,
    Verdict,
    ViolationInfo,
)
from ..probe import Fetcher
from ..registry import register_rule

NS_EDMX_V4 = "http://docs.oasis-open.org/odata/ns/edmx"

DESCRIPTOR = RuleDescriptor(
    name="Metadata.Core.4001",
    description="The edmx:Edmx root element MUST carry a Version attribute (4.0 for OData V4 services).",
    spec_sections=("3.1",),
    requirement_level=RequirementLevel.MUST,
    aspect=Aspect.SYNTAX,
    payload_kind=PayloadKind.METADATA,
    payload_format=PayloadFormat.XML,
)


@register_rule(DESCRIPTOR)
def METADATA_CORE_4001(ctx: ServiceContext, fetcher: Fetcher):
    try:
        root = ET.fromstring(ctx.body)
    except ET.ParseError:
        return None, None

    version = root.get("Version")
    if not version:
        return Verdict.FAIL, ViolationInfo(message="edmx:Edmx has no Version attribute", uri=ctx.uri)
    is_v4 = root.tag == f"{{{NS_EDMX_V4}}}Edmx" or ctx.version == ProtocolVersion.V4
    if is_v4 and not version.startswith("4."):
        return Verdict.FAIL, ViolationInfo(
            message=f"edmx:Edmx Version is {version!r}, expected 4.0",
            uri=ctx.uri,
        )
    return Verdict.PASS, None
