from __future__ import annotations

from ..context import ServiceContext
from ..models import V4_ONLY, Aspect, RequirementLevel, RuleDescriptor, Verdict, ViolationInfo
from ..negotiation import ODATA_VERSION
from ..probe import Fetcher
from ..registry import register_rule

DESCRIPTOR = RuleDescriptor(
    name="Common.Core.4000",
    description="Responses to OData V4 requests MUST carry an OData-Version header.",
    spec_sections=("8.1.5",),
    requirement_level=RequirementLevel.MUST,
    aspect=Aspect.SYNTAX,
    versions=V4_ONLY,
    requires_live=True,
)


@register_rule(DESCRIPTOR)
def COMMON_CORE_4000(ctx: ServiceContext, fetcher: Fetcher):
    if ctx.status is None:
        return None, None
    if ctx.response_headers.get(ODATA_VERSION):
        return Verdict.PASS, None
    return Verdict.FAIL, ViolationInfo(
        message=f"Response has no {ODATA_VERSION} header",
        uri=ctx.uri,
        content=ctx.response_headers.to_text(),
    )
