from __future__ import annotations

import logging
from dataclasses import dataclass, field
from functools import cached_property
from typing import Optional, Tuple, Union
from urllib.parse import unquote, urlsplit

from .errors import SchemaError
from .models import AddressKind, JsonMetadataLevel, PayloadFormat, PayloadKind, ProtocolVersion
from .negotiation import metadata_level_for_accept, requested_version
from .payload import PayloadClassification, classify
from .probe import HeaderInput, Headers, ProbeRequest, ProbeResponse
from .schema import ServiceSchema, parse_schema
from .uri import AddressResolution, relative_segments, resolve_address

logger = logging.getLogger(__name__)

OFFLINE_TARGET = "http://offline"


@dataclass(frozen=True)
class ServiceContext:
    """Everything a rule may inspect about one probed response. Never mutated.

    Schema parsing and address resolution are deferred until a rule (or the
    applicability filter) first asks for them.
    """

    request: ProbeRequest
    response: ProbeResponse
    classification: PayloadClassification
    version: ProtocolVersion
    metadata_document: Optional[str] = None
    service_document: Optional[str] = None
    service_root: Optional[str] = None
    live: bool = True
    parsed_schema: Optional[ServiceSchema] = field(default=None, compare=False, repr=False)

    # --- request / response ------------------------------------------------------------

    @property
    def uri(self) -> str:
        return self.request.uri

    @property
    def request_headers(self) -> Headers:
        return self.request.headers

    @property
    def status(self) -> Optional[int]:
        return self.response.status

    @property
    def response_headers(self) -> Headers:
        return self.response.headers

    @property
    def body(self) -> bytes:
        return self.response.body

    @property
    def text(self) -> str:
        return self.response.text

    # --- classification ----------------------------------------------------------------

    @property
    def payload_kind(self) -> PayloadKind:
        return self.classification.kind

    @property
    def payload_format(self) -> PayloadFormat:
        return self.classification.format

    @property
    def is_media_link_entry(self) -> bool:
        return self.classification.is_media_link_entry

    @property
    def has_service_document(self) -> bool:
        return bool(self.service_document)

    @property
    def metadata_level(self) -> Optional[JsonMetadataLevel]:
        return metadata_level_for_accept(self.request_headers.get("Accept"))

    @property
    def projection(self) -> bool:
        return "$select=" in unquote(urlsplit(self.uri).query)

    @property
    def resource_exists(self) -> Optional[bool]:
        if not self.live or self.status is None:
            return None
        return self.status not in (404, 410)

    # --- schema-dependent facts --------------------------------------------------------

    @cached_property
    def schema(self) -> Optional[ServiceSchema]:
        if self.parsed_schema is not None:
            return self.parsed_schema
        if not self.metadata_document:
            return None
        try:
            return parse_schema(self.metadata_document)
        except SchemaError as exc:
            logger.warning("Ignoring unparsable metadata document for %s: %s", self.uri, exc)
            return None

    @property
    def has_metadata(self) -> bool:
        return self.schema is not None

    @cached_property
    def relative_segments(self) -> Tuple[str, ...]:
        return tuple(relative_segments(self.uri, self.service_root, self.schema))

    @cached_property
    def address(self) -> Optional[AddressResolution]:
        if self.schema is None:
            return None
        return resolve_address(self.schema, self.relative_segments)

    @property
    def address_kind(self) -> Optional[AddressKind]:
        return self.address.kind if self.address is not None else None

    @cached_property
    def entity_type_name(self) -> Optional[str]:
        if self.classification.entity_type:
            return self.classification.entity_type
        if self.schema is not None and self.classification.entity_set:
            set_type = self.schema.entity_set_type(self.classification.entity_set)
            if set_type:
                return set_type
        if self.address is not None:
            return self.address.entity_type
        return None


def build_context(
    request: ProbeRequest,
    response: ProbeResponse,
    *,
    metadata_document: Union[str, bytes, None] = None,
    service_document: Union[str, bytes, None] = None,
    service_root: Optional[str] = None,
    schema: Optional[ServiceSchema] = None,
    live: bool = True,
) -> ServiceContext:
    classification = classify(response.body, response.headers)
    version = requested_version(request.headers) or classification.version
    return ServiceContext(
        request=request,
        response=response,
        classification=classification,
        version=version,
        metadata_document=_as_text(metadata_document),
        service_document=_as_text(service_document),
        service_root=service_root,
        live=live,
        parsed_schema=schema,
    )


def build_offline_context(
    payload: Union[str, bytes],
    metadata: Union[str, bytes, None] = None,
    *,
    response_headers: HeaderInput = None,
    request_headers: HeaderInput = None,
) -> ServiceContext:
    """Context for a pasted payload: no network, target taken from the payload id when present."""
    body = payload.encode("utf-8") if isinstance(payload, str) else payload
    headers = Headers.of(response_headers)
    classification = classify(body, headers)

    target = OFFLINE_TARGET
    if classification.kind in (PayloadKind.ENTRY, PayloadKind.FEED) and classification.entity_id:
        target = classification.entity_id

    metadata_text = _as_text(metadata)
    if metadata_text and classify(metadata_text, {"Content-Type": "application/xml"}).kind != PayloadKind.METADATA:
        logger.warning("Offline metadata is not a metadata document; validating without schema")
        metadata_text = None

    request = ProbeRequest(uri=target, headers=Headers.of(request_headers))
    response = ProbeResponse(uri=target, status=None, headers=headers, body=body)
    return ServiceContext(
        request=request,
        response=response,
        classification=classification,
        version=requested_version(request.headers) or classification.version,
        metadata_document=metadata_text,
        live=False,
    )


def _as_text(value: Union[str, bytes, None]) -> Optional[str]:
    if value is None:
        return None
    if isinstance(value, bytes):
        return value.decode("utf-8", errors="replace")
    return value
