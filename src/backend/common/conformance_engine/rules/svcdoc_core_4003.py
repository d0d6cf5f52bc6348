from __future__ import annotations

from ..context import ServiceContext
from ..models import (
    V4_ONLY,
    Aspect,
    JsonMetadataLevel,
    PayloadFormat,
    PayloadKind,
    RequirementLevel,
    RuleDescriptor,
    Verdict,
    ViolationInfo,
)
from ..payload import V4_CONTEXT
from ..probe import Fetcher
from ..registry import register_rule
from ._probes import load_json

DESCRIPTOR = RuleDescriptor(
    name="SvcDoc.Core.4003",
    description="The value of the odata.context property MUST NOT contain any fragment part in V4.",
    spec_sections=("5",),
    requirement_level=RequirementLevel.MUST,
    aspect=Aspect.SYNTAX,
    payload_kind=PayloadKind.SERVICE_DOCUMENT,
    payload_format=PayloadFormat.JSON,
    versions=V4_ONLY,
)


@register_rule(DESCRIPTOR)
def SVCDOC_CORE_4003(ctx: ServiceContext, fetcher: Fetcher):
    if ctx.metadata_level == JsonMetadataLevel.NONE:
        return None, None
    doc = load_json(ctx.text)
    if not isinstance(doc, dict) or not doc:
        return None, None

    first_key = next(iter(doc))
    context_url = doc.get(V4_CONTEXT)
    if first_key == V4_CONTEXT and isinstance(context_url, str) and "#" not in context_url:
        return Verdict.PASS, None
    return Verdict.FAIL, ViolationInfo(message=DESCRIPTOR.failure_message, uri=ctx.uri, content=ctx.text)
