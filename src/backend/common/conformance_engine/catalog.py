from __future__ import annotations

import argparse
import json
from enum import Enum
from typing import Any, Dict, List, Optional

from pydantic import BaseModel, Field

from .registry import RuleRegistry, registry

# Ensure built-in rules are imported/registered when generating a catalog.
from . import rules as _builtin_rules  # noqa: F401


class RuleCatalogEntry(BaseModel):
    name: str
    category: str
    description: str
    spec_sections: List[str] = Field(default_factory=list)
    requirement_level: str
    aspect: Optional[str] = None
    help_link: Optional[str] = None

    module: str
    predicates: Dict[str, Any] = Field(default_factory=dict)


def _plain(value: Any) -> Any:
    if isinstance(value, Enum):
        return value.value
    if isinstance(value, frozenset):
        return sorted(_plain(v) for v in value)
    return value


def build_catalog(source: Optional[RuleRegistry] = None) -> List[RuleCatalogEntry]:
    entries: List[RuleCatalogEntry] = []
    for rule in (source or registry).rules():
        desc = rule.descriptor
        entries.append(
            RuleCatalogEntry(
                name=desc.name,
                category=desc.category,
                description=desc.description,
                spec_sections=list(desc.spec_sections),
                requirement_level=desc.requirement_level.value,
                aspect=desc.aspect.value if desc.aspect is not None else None,
                help_link=desc.help_link,
                module=getattr(rule.check, "__module__", ""),
                predicates={name: _plain(value) for name, value in desc.predicates().items()},
            )
        )

    entries.sort(key=lambda e: e.name)
    return entries


def _dump_json(catalog: list[dict[str, Any]]) -> str:
    return json.dumps(catalog, indent=2, sort_keys=True)


def _dump_yaml(catalog: list[dict[str, Any]]) -> str:
    import yaml

    return yaml.safe_dump(catalog, sort_keys=True)


def main(argv: list[str] | None = None) -> None:
    parser = argparse.ArgumentParser(description="Generate a conformance rule catalog from the registry.")
    parser.add_argument(
        "--format",
        choices=("yaml", "json"),
        default="yaml",
        help="Output format (default: yaml).",
    )
    args = parser.parse_args(argv)

    catalog = [e.model_dump() for e in build_catalog()]
    if args.format == "json":
        print(_dump_json(catalog))
    else:
        print(_dump_yaml(catalog))


if __name__ == "__main__":
    main()
