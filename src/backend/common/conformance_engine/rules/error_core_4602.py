from __future__ import annotations

from ..context import ServiceContext
from ..models import (
    V4_ONLY,
    Aspect,
    PayloadFormat,
    PayloadKind,
    RequirementLevel,
    RuleDescriptor,
    Verdict,
    ViolationInfo,
)
from ..payload import classify
from ..probe import Fetcher
from ..registry import register_rule
from ._probes import with_accept

# None probes without an Accept header.
XML_ACCEPTS = ("application/xml", "application/atom+xml", None)

DESCRIPTOR = RuleDescriptor(
    name="Error.Core.4602",
    description=(
        "In the case of an error being generated in response to a request specifying an Accept header of "
        "application/xml or application/atom+xml, or that does not specify an Accept header, the service "
        "MUST respond with an error formatted as XML."
    ),
    spec_sections=("19",),
    requirement_level=RequirementLevel.MUST,
    aspect=Aspect.SYNTAX,
    payload_kind=PayloadKind.ERROR,
    payload_format=PayloadFormat.XML,
    versions=V4_ONLY,
    requires_live=True,
)


@register_rule(DESCRIPTOR)
def ERROR_CORE_4602(ctx: ServiceContext, fetcher: Fetcher):
    verdict = None
    for accept in XML_ACCEPTS:
        resp = fetcher.get_or_fetch(ctx.uri, with_accept(ctx, accept))
        if resp.status == 200:
            continue
        found = classify(resp.body, resp.headers)
        if found.format == PayloadFormat.XML and found.kind == PayloadKind.ERROR:
            verdict = Verdict.PASS
            continue
        return Verdict.FAIL, ViolationInfo(
            message=f"Error response to Accept: {accept or '(none)'} is not an XML error",
            uri=ctx.uri,
            content=resp.text,
        )
    return verdict, None
