from __future__ import annotations

from typing import Any, Dict, Optional, Type, TypeVar

from pydantic import BaseModel, Field

T = TypeVar("T", bound=BaseModel)


class RuleConfigBase(BaseModel):
    enabled: bool = True


class RunConfig(BaseModel):
    """Per-run settings for the rules runner.

    Rules pull their typed config via `get_rule_config`.
    """

    # None runs every category.
    category: Optional[str] = "core"
    max_workers: int = Field(default=4, ge=1)
    rules: Dict[str, Dict[str, Any]] = Field(default_factory=dict)

    def get_rule_config(
        self,
        name: str,
        model: Type[T],
        default: Optional[T] = None,
    ) -> T:
        if name not in self.rules:
            if default is not None:
                return default
            return model()  # type: ignore[call-arg]
        raw = self.rules.get(name, {})
        return model.model_validate(raw)

    def is_enabled(self, name: str) -> bool:
        return self.get_rule_config(name, RuleConfigBase).enabled
