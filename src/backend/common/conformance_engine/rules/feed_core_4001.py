from __future__ import annotations

from urllib.parse import unquote, urlsplit

from ..context import ServiceContext
from ..models import AddressKind, Aspect, PayloadKind, RequirementLevel, RuleDescriptor, Verdict, ViolationInfo
from ..probe import Fetcher
from ..registry import register_rule
from ._probes import base_path, feed_summary, fetch_count

# Query options that make the feed a subset of what $count reports.
_SUBSETTING_OPTIONS = ("$top", "$skip", "$filter", "$search", "$skiptoken")

DESCRIPTOR = RuleDescriptor(
    name="Feed.Core.4001",
    description="The $count of a collection SHOULD equal the number of entries in its unpaged feed.",
    spec_sections=("11.2.9",),
    requirement_level=RequirementLevel.SHOULD,
    aspect=Aspect.SEMANTIC,
    payload_kind=PayloadKind.FEED,
    require_metadata=True,
    requires_live=True,
)


@register_rule(DESCRIPTOR)
def FEED_CORE_4001(ctx: ServiceContext, fetcher: Fetcher):
    address = ctx.address
    if address is None or not address.is_collection:
        return None, None
    if address.kind not in (AddressKind.COLLECTION, AddressKind.NAVIGATION):
        return None, None
    query = unquote(urlsplit(ctx.uri).query)
    if any(f"{option}=" in query for option in _SUBSETTING_OPTIONS):
        return None, None

    entries, has_next = feed_summary(ctx)
    if entries is None or has_next:
        return None, None

    count = fetch_count(ctx, fetcher)
    if count is None:
        return None, None
    if count == entries:
        return Verdict.PASS, None
    return Verdict.FAIL, ViolationInfo(
        message=f"$count reports {count} but the feed holds {entries} entries",
        uri=base_path(ctx.uri) + "/$count",
    )
