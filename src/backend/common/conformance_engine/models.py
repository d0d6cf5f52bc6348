from __future__ import annotations

from datetime import datetime
from enum import Enum
from typing import Any, Dict, FrozenSet, List, Optional, Tuple

from pydantic import BaseModel, ConfigDict, Field, field_validator


class PayloadKind(str, Enum):
    SERVICE_DOCUMENT = "SERVICE_DOCUMENT"
    METADATA = "METADATA"
    ENTRY = "ENTRY"
    FEED = "FEED"
    PROPERTY = "PROPERTY"
    RAW_VALUE = "RAW_VALUE"
    ERROR = "ERROR"
    ENTITY_REFERENCE = "ENTITY_REFERENCE"
    DELTA = "DELTA"
    OTHER = "OTHER"
    NONE = "NONE"


class PayloadFormat(str, Enum):
    JSON = "JSON"
    JSON_VERBOSE = "JSON_VERBOSE"
    ATOM = "ATOM"
    XML = "XML"
    OTHER = "OTHER"
    NONE = "NONE"

    @property
    def is_json(self) -> bool:
        return self in (PayloadFormat.JSON, PayloadFormat.JSON_VERBOSE)

    @property
    def is_xml(self) -> bool:
        return self in (PayloadFormat.ATOM, PayloadFormat.XML)


class ProtocolVersion(str, Enum):
    V1 = "V1"
    V2 = "V2"
    V3 = "V3"
    V4 = "V4"
    UNKNOWN = "UNKNOWN"


# Version "ranges" are sets: the protocol history is not contiguous for every rule.
V1_V2: FrozenSet[ProtocolVersion] = frozenset({ProtocolVersion.V1, ProtocolVersion.V2})
V1_V2_V3: FrozenSet[ProtocolVersion] = V1_V2 | {ProtocolVersion.V3}
V3_V4: FrozenSet[ProtocolVersion] = frozenset({ProtocolVersion.V3, ProtocolVersion.V4})
V4_ONLY: FrozenSet[ProtocolVersion] = frozenset({ProtocolVersion.V4})
ALL_VERSIONS: FrozenSet[ProtocolVersion] = V1_V2_V3 | V4_ONLY


class RequirementLevel(str, Enum):
    MUST = "MUST"
    MUST_NOT = "MUST_NOT"
    SHOULD = "SHOULD"
    SHOULD_NOT = "SHOULD_NOT"
    MAY = "MAY"
    RECOMMENDED = "RECOMMENDED"


class Aspect(str, Enum):
    SYNTAX = "syntax"
    SEMANTIC = "semantic"


class JsonMetadataLevel(str, Enum):
    FULL = "full"
    MINIMAL = "minimal"
    NONE = "none"


class AddressKind(str, Enum):
    SERVICE_ROOT = "SERVICE_ROOT"
    METADATA = "METADATA"
    BATCH = "BATCH"
    COLLECTION = "COLLECTION"
    ENTITY = "ENTITY"
    PROPERTY = "PROPERTY"
    PROPERTY_VALUE = "PROPERTY_VALUE"
    NAVIGATION = "NAVIGATION"
    MEDIA_RESOURCE = "MEDIA_RESOURCE"
    REFERENCE = "REFERENCE"
    COUNT = "COUNT"
    FUNCTION = "FUNCTION"
    UNRESOLVABLE = "UNRESOLVABLE"


class Verdict(str, Enum):
    PASS = "PASS"
    FAIL = "FAIL"
    NOT_APPLICABLE = "NOT_APPLICABLE"


class RuleOutcome(str, Enum):
    PASS = "PASS"
    FAIL = "FAIL"
    NOT_APPLICABLE = "NOT_APPLICABLE"
    INCONCLUSIVE = "INCONCLUSIVE"
    ERROR = "ERROR"
    CANCELLED = "CANCELLED"

    @classmethod
    def from_verdict(cls, verdict: Verdict) -> "RuleOutcome":
        return cls(verdict.value)


class Classification(str, Enum):
    SUCCESS = "success"
    ERROR = "error"
    WARNING = "warning"
    RECOMMENDATION = "recommendation"
    NOT_APPLICABLE = "notApplicable"
    INCONCLUSIVE = "inconclusive"
    ABORTED = "aborted"


def classification_for(outcome: RuleOutcome, level: RequirementLevel) -> Classification:
    if outcome == RuleOutcome.FAIL:
        return {
            RequirementLevel.MUST: Classification.ERROR,
            RequirementLevel.MUST_NOT: Classification.ERROR,
            RequirementLevel.SHOULD: Classification.WARNING,
            RequirementLevel.SHOULD_NOT: Classification.WARNING,
            RequirementLevel.MAY: Classification.RECOMMENDATION,
            RequirementLevel.RECOMMENDED: Classification.RECOMMENDATION,
        }[level]
    return {
        RuleOutcome.PASS: Classification.SUCCESS,
        RuleOutcome.NOT_APPLICABLE: Classification.NOT_APPLICABLE,
        RuleOutcome.INCONCLUSIVE: Classification.INCONCLUSIVE,
        RuleOutcome.ERROR: Classification.ABORTED,
        RuleOutcome.CANCELLED: Classification.ABORTED,
    }[outcome]


PREDICATE_FIELDS: Tuple[str, ...] = (
    "payload_kind",
    "payload_format",
    "versions",
    "require_metadata",
    "require_service_document",
    "requires_live",
    "is_media_link_entry",
    "projection",
    "metadata_level",
)


class RuleDescriptor(BaseModel):
    """Immutable metadata for one rule.

    Every applicability predicate is tri-state: ``None`` means "don't care", any other
    value (including ``False``) requires an exact match against the service context.
    """

    model_config = ConfigDict(frozen=True)

    name: str
    category: str = "core"
    description: str
    spec_sections: Tuple[str, ...] = ()
    requirement_level: RequirementLevel
    aspect: Optional[Aspect] = None
    error_message: str = ""
    help_link: Optional[str] = None

    payload_kind: Optional[PayloadKind] = None
    payload_format: Optional[PayloadFormat] = None
    versions: Optional[FrozenSet[ProtocolVersion]] = None
    require_metadata: Optional[bool] = None
    require_service_document: Optional[bool] = None
    requires_live: Optional[bool] = None
    is_media_link_entry: Optional[bool] = None
    projection: Optional[bool] = None
    metadata_level: Optional[JsonMetadataLevel] = None

    @field_validator("name")
    @classmethod
    def _name_required(cls, value: str) -> str:
        value = value.strip()
        if not value:
            raise ValueError("Rule descriptor must define a name")
        return value

    @field_validator("category")
    @classmethod
    def _normalize_category(cls, value: str) -> str:
        value = value.strip().lower()
        if not value:
            raise ValueError("Rule descriptor must define a category")
        return value

    @field_validator("versions")
    @classmethod
    def _versions_not_empty(
        cls, value: Optional[FrozenSet[ProtocolVersion]]
    ) -> Optional[FrozenSet[ProtocolVersion]]:
        if value is None:
            return None
        if not value:
            raise ValueError("versions must be unset or a non-empty set")
        if ProtocolVersion.UNKNOWN in value:
            raise ValueError("UNKNOWN is not a selectable protocol version")
        return value

    def predicates(self) -> Dict[str, Any]:
        return {name: getattr(self, name) for name in PREDICATE_FIELDS if getattr(self, name) is not None}

    @property
    def applies_universally(self) -> bool:
        return not self.predicates()

    @property
    def failure_message(self) -> str:
        return self.error_message or self.description


MAX_EXCERPT_CHARS = 2000


class ViolationInfo(BaseModel):
    message: str
    uri: Optional[str] = None
    content: Optional[str] = None
    line_number: Optional[int] = None

    @field_validator("content")
    @classmethod
    def _bounded_excerpt(cls, value: Optional[str]) -> Optional[str]:
        if value is not None and len(value) > MAX_EXCERPT_CHARS:
            return value[:MAX_EXCERPT_CHARS] + "..."
        return value


class RuleResult(BaseModel):
    descriptor: RuleDescriptor
    outcome: RuleOutcome
    classification: Classification
    violation: Optional[ViolationInfo] = None
    error_detail: Optional[str] = None

    @property
    def rule_name(self) -> str:
        return self.descriptor.name


class RuleRunReport(BaseModel):
    run_id: str
    generated_at: datetime
    target: str

    results: List[RuleResult] = Field(default_factory=list)
    totals: Dict[RuleOutcome, int] = Field(default_factory=dict)

    def as_tuples(self) -> List[Tuple[RuleDescriptor, RuleOutcome, Optional[ViolationInfo]]]:
        return [(res.descriptor, res.outcome, res.violation) for res in self.results]
