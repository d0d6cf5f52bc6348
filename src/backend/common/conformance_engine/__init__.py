"""Rule-dispatch and context-resolution engine for OData conformance checks.

This package intentionally contains only engine logic:
- Rules see an immutable ServiceContext built from one probe request/response.
- Side probes go through the Fetcher protocol; no sockets are opened here.
"""

from .context import ServiceContext, build_context, build_offline_context
from .models import (
    PayloadFormat,
    PayloadKind,
    ProtocolVersion,
    RuleDescriptor,
    RuleOutcome,
    RuleResult,
    RuleRunReport,
    Verdict,
    ViolationInfo,
)
from .payload import classify
from .registry import register_rule, registry
from .runner import RulesRunner, execute_rule
from .schema import parse_schema
from .selector import select_applicable
from .uri import resolve_address

# Import built-in rules so they self-register with the global registry.
from . import rules as _builtin_rules  # noqa: F401
