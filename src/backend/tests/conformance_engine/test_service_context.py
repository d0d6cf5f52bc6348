import dataclasses
import json
import logging

import pytest

from common.conformance_engine.context import OFFLINE_TARGET, build_offline_context
from common.conformance_engine.models import AddressKind, JsonMetadataLevel, PayloadKind, ProtocolVersion

ROOT = "http://svc.example/odata"
ENTRY = json.dumps({"@odata.context": f"{ROOT}/$metadata#Products/$entity", "Id": 5, "Name": "Chai"})
ERROR = json.dumps({"error": {"code": "404", "message": "Not found"}})
JSON_V4 = {"Content-Type": "application/json", "OData-Version": "4.0"}


def test_context_without_metadata(make_ctx):
    ctx = make_ctx(uri=f"{ROOT}/Products(5)", body=ENTRY, headers=JSON_V4)

    assert ctx.payload_kind == PayloadKind.ENTRY
    assert ctx.version == ProtocolVersion.V4
    assert ctx.schema is None
    assert ctx.has_metadata is False
    assert ctx.address is None
    assert ctx.address_kind is None
    assert ctx.resource_exists is True


def test_context_resolves_address_and_entity_type(make_ctx, v4_metadata):
    ctx = make_ctx(uri=f"{ROOT}/Products(5)", body=ENTRY, headers=JSON_V4, metadata=v4_metadata)

    assert ctx.has_metadata
    assert ctx.relative_segments == ("Products(5)",)
    assert ctx.address_kind == AddressKind.ENTITY
    assert ctx.entity_type_name == "Demo.Product"
    # Parsed once and reused.
    assert ctx.schema is ctx.schema


def test_missing_resource_is_distinct_from_malformed_address(make_ctx, v4_metadata):
    missing = make_ctx(uri=f"{ROOT}/Products(999)", body=ERROR, headers=JSON_V4, status=404, metadata=v4_metadata)
    assert missing.payload_kind == PayloadKind.ERROR
    assert missing.address.is_resolvable
    assert missing.address_kind == AddressKind.ENTITY
    assert missing.resource_exists is False

    malformed = make_ctx(uri=f"{ROOT}/Products('x')", body=ERROR, headers=JSON_V4, status=400, metadata=v4_metadata)
    assert malformed.address_kind == AddressKind.UNRESOLVABLE
    assert malformed.address.error


def test_address_without_known_service_root(make_ctx, v4_metadata):
    ctx = make_ctx(
        uri="http://other.example/api/v2/Products(5)/Category",
        body="{}",
        headers=JSON_V4,
        metadata=v4_metadata,
        service_root=None,
    )
    assert ctx.relative_segments == ("Products(5)", "Category")
    assert ctx.address_kind == AddressKind.NAVIGATION


def test_request_version_header_pins_version(make_ctx):
    pinned = make_ctx(
        body=ENTRY,
        headers={"Content-Type": "application/json", "DataServiceVersion": "3.0"},
        request_headers={"OData-Version": "4.0"},
    )
    assert pinned.version == ProtocolVersion.V4

    unpinned = make_ctx(
        body=ENTRY,
        headers={"Content-Type": "application/json", "DataServiceVersion": "3.0"},
        request_headers={"OData-MaxVersion": "4.0"},
    )
    assert unpinned.version == ProtocolVersion.V3


def test_unparsable_metadata_means_no_schema(make_ctx, caplog):
    ctx = make_ctx(body=ENTRY, headers=JSON_V4, metadata="<html>not metadata</html>")
    with caplog.at_level(logging.WARNING):
        assert ctx.schema is None
    assert ctx.has_metadata is False
    assert "unparsable metadata" in caplog.text


def test_request_derived_facts(make_ctx):
    full = make_ctx(
        uri=f"{ROOT}/Products?%24select=Name",
        body='{"value": []}',
        headers=JSON_V4,
        request_headers={"Accept": "application/json;odata.metadata=full"},
    )
    assert full.metadata_level == JsonMetadataLevel.FULL
    assert full.projection is True

    atom = make_ctx(uri=f"{ROOT}/Products", request_headers={"Accept": "application/atom+xml"})
    assert atom.metadata_level is None
    assert atom.projection is False
    assert atom.payload_kind == PayloadKind.NONE


def test_context_is_immutable(make_ctx):
    ctx = make_ctx(body=ENTRY, headers=JSON_V4)
    with pytest.raises(dataclasses.FrozenInstanceError):
        ctx.live = False


def test_unknown_set_without_known_service_root_is_unresolvable(make_ctx, v4_metadata):
    ctx = make_ctx(uri=f"{ROOT}/Bogus(1)", body="{}", headers=JSON_V4, metadata=v4_metadata, service_root=None)

    assert ctx.relative_segments == ("Bogus(1)",)
    assert ctx.address_kind == AddressKind.UNRESOLVABLE
    assert "Bogus" in ctx.address.error


def test_offline_context_with_unknown_set_is_unresolvable(v4_metadata):
    payload = json.dumps(
        {
            "@odata.context": "http://svc/$metadata#Bogus/$entity",
            "@odata.id": "http://svc/Bogus(1)",
            "Id": 1,
        }
    )
    ctx = build_offline_context(payload, v4_metadata, response_headers=JSON_V4)

    assert ctx.uri == "http://svc/Bogus(1)"
    assert ctx.address_kind == AddressKind.UNRESOLVABLE


def test_offline_context_targets_payload_id(v4_metadata):
    payload = json.dumps(
        {
            "@odata.context": f"{ROOT}/$metadata#Products/$entity",
            "@odata.id": f"{ROOT}/Products(5)",
            "Id": 5,
        }
    )
    ctx = build_offline_context(payload, v4_metadata, response_headers=JSON_V4)

    assert ctx.uri == f"{ROOT}/Products(5)"
    assert ctx.live is False
    assert ctx.status is None
    assert ctx.resource_exists is None
    assert ctx.has_metadata
    assert ctx.address_kind == AddressKind.ENTITY


def test_offline_context_defaults(caplog):
    with caplog.at_level(logging.WARNING):
        ctx = build_offline_context('{"value": [{"Id": 1}]}', metadata='{"not": "xml"}')

    assert ctx.uri == OFFLINE_TARGET
    assert ctx.payload_kind == PayloadKind.FEED
    assert ctx.metadata_document is None
    assert "not a metadata document" in caplog.text
