from __future__ import annotations

from ..context import ServiceContext
from ..models import Aspect, PayloadFormat, PayloadKind, RequirementLevel, RuleDescriptor, Verdict, ViolationInfo
from ..negotiation import ACCEPT_JSON
from ..probe import Fetcher
from ..registry import register_rule
from ._probes import base_path, fetch_count, json_entries, load_json, with_accept

# Entries skipped past the reported count so the probed page is empty even if the set grows.
SAFETY_TOPPING = 20

DESCRIPTOR = RuleDescriptor(
    name="Feed.Core.2000",
    description=(
        "An empty EntitySet or collection of entities (one that contains no EntityType instances) "
        "MUST be represented as an empty JSON array."
    ),
    spec_sections=("2.2.6.3.2",),
    requirement_level=RequirementLevel.MUST,
    aspect=Aspect.SEMANTIC,
    payload_kind=PayloadKind.FEED,
    payload_format=PayloadFormat.JSON,
    requires_live=True,
)


@register_rule(DESCRIPTOR)
def FEED_CORE_2000(ctx: ServiceContext, fetcher: Fetcher):
    count = fetch_count(ctx, fetcher)
    if count is None:
        return None, None

    probe_uri = f"{base_path(ctx.uri)}?$skip={count + SAFETY_TOPPING}"
    resp = fetcher.get_or_fetch(probe_uri, with_accept(ctx, ctx.request_headers.get("Accept") or ACCEPT_JSON))
    if resp.status != 200:
        return None, None
    doc = load_json(resp)
    if doc is None:
        return None, None

    entries = json_entries(doc)
    if entries == []:
        return Verdict.PASS, None
    return Verdict.FAIL, ViolationInfo(
        message="Feed past its last entry is not an empty JSON array",
        uri=probe_uri,
        content=resp.text,
    )
