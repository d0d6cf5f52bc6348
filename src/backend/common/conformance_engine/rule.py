from __future__ import annotations

from dataclasses import dataclass
from typing import Callable, Optional, Tuple

from .context import ServiceContext
from .models import RuleDescriptor, Verdict, ViolationInfo
from .probe import Fetcher

CheckResult = Tuple[Optional[Verdict], Optional[ViolationInfo]]
CheckFn = Callable[[ServiceContext, Fetcher], CheckResult]


@dataclass(frozen=True)
class Rule:
    """A descriptor paired with the plain function that performs the check.

    The check returns ``(verdict, violation)``; a ``None`` verdict means the rule does
    not apply to what it found and is reported as NOT_APPLICABLE, never as PASS.
    """

    descriptor: RuleDescriptor
    check: CheckFn

    @property
    def name(self) -> str:
        return self.descriptor.name

    def __call__(self, ctx: ServiceContext, fetcher: Fetcher) -> CheckResult:
        return self.check(ctx, fetcher)
