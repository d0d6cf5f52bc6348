from __future__ import annotations

from typing import Dict, Iterator, List

from .errors import RuleDefinitionError
from .models import RuleDescriptor
from .rule import CheckFn, Rule


class RuleRegistry:
    """Rules in registration order; that order is also the report order."""

    def __init__(self):
        self._rules: Dict[str, Rule] = {}

    def register(self, rule: Rule) -> Rule:
        if not callable(rule.check):
            raise RuleDefinitionError(f"Rule {rule.name} has no callable check")
        if rule.name in self._rules:
            raise RuleDefinitionError(f"Duplicate rule registered: {rule.name}")
        self._rules[rule.name] = rule
        return rule

    def rules(self) -> List[Rule]:
        return list(self._rules.values())

    def descriptors(self) -> List[RuleDescriptor]:
        return [rule.descriptor for rule in self._rules.values()]

    def get(self, name: str) -> Rule:
        return self._rules[name]

    def names(self) -> List[str]:
        return list(self._rules.keys())

    def __contains__(self, name: object) -> bool:
        return name in self._rules

    def __iter__(self) -> Iterator[Rule]:
        return iter(self.rules())

    def __len__(self) -> int:
        return len(self._rules)


registry = RuleRegistry()


def register_rule(descriptor: RuleDescriptor, *, target: RuleRegistry | None = None):
    """Decorator turning a check function into a registered :class:`Rule`."""

    def decorator(check: CheckFn) -> Rule:
        return (target or registry).register(Rule(descriptor=descriptor, check=check))

    return decorator
