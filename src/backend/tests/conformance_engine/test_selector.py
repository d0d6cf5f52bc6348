import json

from common.conformance_engine.models import (
    ALL_VERSIONS,
    V1_V2_V3,
    V3_V4,
    JsonMetadataLevel,
    PayloadFormat,
    PayloadKind,
    ProtocolVersion,
    RequirementLevel,
    RuleDescriptor,
)
from common.conformance_engine.selector import is_applicable, mismatched_predicates, select_applicable

FEED_BODY = json.dumps({"@odata.context": "http://svc.example/odata/$metadata#Products", "value": [{"Id": 1}]})
ATOM_FEED = '<feed xmlns="http://www.w3.org/2005/Atom"><title>Products</title></feed>'
VERBOSE_FEED = '{"d": {"results": [{"__metadata": {"type": "Demo.Product"}, "Id": 1}]}}'


def _desc(name="Test.Rule.1", **predicates):
    return RuleDescriptor(name=name, description=name, requirement_level=RequirementLevel.MUST, **predicates)


def _feed_ctx(make_ctx, **overrides):
    params = {
        "uri": "http://svc.example/odata/Products",
        "body": FEED_BODY,
        "headers": {"Content-Type": "application/json", "OData-Version": "4.0"},
    }
    params.update(overrides)
    return make_ctx(**params)


def test_kind_and_format_both_required(make_ctx):
    desc = _desc(payload_kind=PayloadKind.FEED, payload_format=PayloadFormat.JSON)

    assert is_applicable(desc, _feed_ctx(make_ctx))
    entry = _feed_ctx(make_ctx, body='{"@odata.context": "http://x/$metadata#Products/$entity", "Id": 1}')
    assert not is_applicable(desc, entry)
    assert mismatched_predicates(desc, entry) == ["payload_kind"]

    atom = _feed_ctx(make_ctx, body=ATOM_FEED, headers={"Content-Type": "application/atom+xml"})
    assert mismatched_predicates(desc, atom) == ["payload_format"]


def test_unset_dimension_matches_everything(make_ctx):
    desc = _desc(payload_kind=PayloadKind.FEED)
    contexts = [
        _feed_ctx(make_ctx),
        _feed_ctx(make_ctx, body=ATOM_FEED, headers={"Content-Type": "application/atom+xml"}),
        _feed_ctx(make_ctx, body=VERBOSE_FEED, headers={"Content-Type": "application/json;odata=verbose"}),
        _feed_ctx(make_ctx, headers={"Content-Type": "application/json", "DataServiceVersion": "3.0"}),
    ]
    assert all(is_applicable(desc, ctx) for ctx in contexts)


def test_version_sets(make_ctx):
    v4 = _feed_ctx(make_ctx)
    v3 = _feed_ctx(make_ctx, headers={"Content-Type": "application/json", "DataServiceVersion": "3.0"})
    unknown = _feed_ctx(make_ctx, body='{"value": [{"Id": 1}]}', headers={"Content-Type": "application/json"})
    assert unknown.version == ProtocolVersion.UNKNOWN

    legacy = _desc(versions=V1_V2_V3)
    assert not is_applicable(legacy, v4)
    assert is_applicable(legacy, v3)
    assert not is_applicable(legacy, unknown)

    assert is_applicable(_desc(versions=V3_V4), v4)
    assert is_applicable(_desc(versions=ALL_VERSIONS), v3)
    assert not is_applicable(_desc(versions=ALL_VERSIONS), unknown)
    assert is_applicable(_desc(), unknown)


def test_boolean_predicates_are_tri_state(make_ctx, v4_metadata):
    without = _feed_ctx(make_ctx)
    with_meta = _feed_ctx(make_ctx, metadata=v4_metadata)

    needs = _desc(require_metadata=True)
    forbids = _desc(require_metadata=False)
    either = _desc()
    assert (is_applicable(needs, without), is_applicable(needs, with_meta)) == (False, True)
    assert (is_applicable(forbids, without), is_applicable(forbids, with_meta)) == (True, False)
    assert is_applicable(either, without) and is_applicable(either, with_meta)

    projected = _feed_ctx(make_ctx, uri="http://svc.example/odata/Products?$select=Name")
    assert is_applicable(_desc(projection=True), projected)
    assert not is_applicable(_desc(projection=False), projected)


def test_live_and_metadata_level(make_ctx):
    offline = _feed_ctx(make_ctx, live=False)
    assert not is_applicable(_desc(requires_live=True), offline)

    full = _feed_ctx(make_ctx, request_headers={"Accept": "application/json;odata.metadata=full"})
    assert is_applicable(_desc(metadata_level=JsonMetadataLevel.FULL), full)
    assert not is_applicable(_desc(metadata_level=JsonMetadataLevel.NONE), full)


def test_select_preserves_order_and_filters_category(make_ctx):
    ctx = _feed_ctx(make_ctx)
    descriptors = [
        _desc("B.Rule", payload_kind=PayloadKind.FEED),
        _desc("A.Rule", payload_kind=PayloadKind.ENTRY),
        _desc("C.Rule", category="Core"),
        _desc("D.Rule", category="minimal"),
    ]
    assert [d.name for d in select_applicable(descriptors, ctx)] == ["B.Rule", "C.Rule", "D.Rule"]
    assert [d.name for d in select_applicable(descriptors, ctx, category="CORE")] == ["B.Rule", "C.Rule"]
    assert [d.name for d in select_applicable(descriptors, ctx, category="minimal")] == ["D.Rule"]


def test_universal_descriptor():
    desc = _desc()
    assert desc.applies_universally
    assert desc.predicates() == {}
    assert not _desc(require_metadata=False).applies_universally
