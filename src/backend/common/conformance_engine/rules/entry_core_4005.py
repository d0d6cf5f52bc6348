from __future__ import annotations

from typing import Optional
from urllib.parse import urljoin

from ..context import ServiceContext
from ..models import V4_ONLY, Aspect, PayloadKind, RequirementLevel, RuleDescriptor, Verdict, ViolationInfo
from ..probe import Fetcher
from ..registry import register_rule
from ._probes import base_path, load_json, with_accept

DESCRIPTOR = RuleDescriptor(
    name="Entry.Core.4005",
    description="The media resource of a media entity MUST be retrievable from its read link or $value.",
    spec_sections=("11.1.1",),
    requirement_level=RequirementLevel.MUST,
    aspect=Aspect.SEMANTIC,
    payload_kind=PayloadKind.ENTRY,
    is_media_link_entry=True,
    versions=V4_ONLY,
    requires_live=True,
)


def _media_uri(ctx: ServiceContext) -> str:
    link: Optional[str] = None
    if ctx.payload_format.is_json:
        doc = load_json(ctx.text)
        if isinstance(doc, dict) and isinstance(doc.get("@odata.mediaReadLink"), str):
            link = doc["@odata.mediaReadLink"]
    if link:
        return urljoin(ctx.uri, link)
    entity = ctx.classification.entity_id or ctx.uri
    return base_path(urljoin(ctx.uri, entity)) + "/$value"


@register_rule(DESCRIPTOR)
def ENTRY_CORE_4005(ctx: ServiceContext, fetcher: Fetcher):
    media_uri = _media_uri(ctx)
    resp = fetcher.get_or_fetch(media_uri, with_accept(ctx, "*/*"))
    if resp.status is not None and 200 <= resp.status < 300:
        return Verdict.PASS, None
    return Verdict.FAIL, ViolationInfo(
        message=f"Media resource request returned status {resp.status}",
        uri=media_uri,
        content=resp.text,
    )
