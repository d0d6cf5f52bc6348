from __future__ import annotations

import logging
import threading
import uuid
from concurrent.futures import ThreadPoolExecutor, as_completed
from datetime import datetime, timezone
from typing import Iterable, List, Optional

from .config import RunConfig
from .context import ServiceContext
from .errors import ProbeError, RuleDefinitionError, RunCancelledError
from .models import RuleOutcome, RuleResult, RuleRunReport, Verdict, ViolationInfo, classification_for
from .probe import Fetcher
from .registry import registry
from .rule import CheckResult, Rule
from .selector import select_applicable

logger = logging.getLogger(__name__)


def _unpack(raw: CheckResult) -> tuple[Optional[Verdict], Optional[ViolationInfo]]:
    if raw is None:
        return None, None
    if not isinstance(raw, tuple) or len(raw) != 2:
        raise RuleDefinitionError(f"check must return (verdict, violation), got {raw!r}")
    verdict, violation = raw
    if verdict is not None and not isinstance(verdict, Verdict):
        raise RuleDefinitionError(f"check returned {verdict!r}; expected a Verdict or None")
    if violation is not None and not isinstance(violation, ViolationInfo):
        raise RuleDefinitionError(f"check returned violation {violation!r}; expected ViolationInfo")
    return verdict, violation


def _result(
    rule: Rule,
    outcome: RuleOutcome,
    *,
    violation: Optional[ViolationInfo] = None,
    error_detail: Optional[str] = None,
) -> RuleResult:
    return RuleResult(
        descriptor=rule.descriptor,
        outcome=outcome,
        classification=classification_for(outcome, rule.descriptor.requirement_level),
        violation=violation,
        error_detail=error_detail,
    )


def execute_rule(
    rule: Rule,
    ctx: ServiceContext,
    fetcher: Fetcher,
    *,
    cancel_event: Optional[threading.Event] = None,
) -> RuleResult:
    """Run one rule's check; every fault is contained here and becomes an outcome."""
    if cancel_event is not None and cancel_event.is_set():
        return _result(rule, RuleOutcome.CANCELLED)

    try:
        verdict, violation = _unpack(rule.check(ctx, fetcher))
    except RunCancelledError:
        return _result(rule, RuleOutcome.CANCELLED)
    except ProbeError as exc:
        logger.warning("Rule %s inconclusive: %s", rule.name, exc)
        return _result(rule, RuleOutcome.INCONCLUSIVE, error_detail=str(exc))
    except Exception as exc:
        logger.exception("Rule %s raised while checking %s", rule.name, ctx.uri)
        return _result(rule, RuleOutcome.ERROR, error_detail=f"{type(exc).__name__}: {exc}")

    if verdict is None:
        return _result(rule, RuleOutcome.NOT_APPLICABLE)
    outcome = RuleOutcome.from_verdict(verdict)
    if outcome != RuleOutcome.FAIL:
        return _result(rule, outcome)
    if violation is None:
        violation = ViolationInfo(message=rule.descriptor.failure_message, uri=ctx.uri)
    return _result(rule, outcome, violation=violation)


class RulesRunner:
    def __init__(self, rules: Optional[Iterable[Rule]] = None, *, config: Optional[RunConfig] = None):
        self._rules = list(rules) if rules is not None else registry.rules()
        self._config = config or RunConfig()

    def select(self, ctx: ServiceContext) -> List[Rule]:
        enabled = [rule for rule in self._rules if self._config.is_enabled(rule.name)]
        return select_applicable(enabled, ctx, category=self._config.category)

    def run(
        self,
        ctx: ServiceContext,
        fetcher: Fetcher,
        *,
        cancel_event: Optional[threading.Event] = None,
    ) -> RuleRunReport:
        selected = self.select(ctx)
        logger.info("Running %d of %d rules against %s", len(selected), len(self._rules), ctx.uri)

        # Results land at their registration index, whatever order workers finish in.
        results: List[Optional[RuleResult]] = [None] * len(selected)
        workers = min(self._config.max_workers, len(selected)) or 1
        if workers == 1:
            for index, rule in enumerate(selected):
                results[index] = execute_rule(rule, ctx, fetcher, cancel_event=cancel_event)
        else:
            with ThreadPoolExecutor(max_workers=workers) as executor:
                futures = {
                    executor.submit(execute_rule, rule, ctx, fetcher, cancel_event=cancel_event): index
                    for index, rule in enumerate(selected)
                }
                for future in as_completed(futures):
                    results[futures[future]] = future.result()

        ordered = [res for res in results if res is not None]
        totals: dict[RuleOutcome, int] = {}
        for res in ordered:
            totals[res.outcome] = totals.get(res.outcome, 0) + 1
        logger.info("Finished run against %s: %s", ctx.uri, {k.value: v for k, v in totals.items()})

        return RuleRunReport(
            run_id=str(uuid.uuid4()),
            generated_at=datetime.now(timezone.utc),
            target=ctx.uri,
            results=ordered,
            totals=totals,
        )
