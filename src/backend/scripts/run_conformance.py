from __future__ import annotations

import argparse
import json
import logging
import sys
from pathlib import Path


def _ensure_backend_on_path() -> None:
    backend_dir = Path(__file__).resolve().parents[1]
    if str(backend_dir) not in sys.path:
        sys.path.insert(0, str(backend_dir))


def _write_markdown(report, out_path: Path) -> None:
    lines = [
        f"# Conformance Report {report.target}",
        "",
        f"Run: {report.run_id}",
        f"Generated at: {report.generated_at.isoformat()}",
        "",
        "## Totals",
    ]
    for outcome, count in report.totals.items():
        lines.append(f"- {getattr(outcome, 'value', outcome)}: {count}")
    lines.append("")
    lines.append("## Results")
    for res in report.results:
        desc = res.descriptor
        lines.append("")
        lines.append(f"### {desc.name}: {res.outcome.value} ({res.classification.value})")
        lines.append(desc.description)
        lines.append(f"- Requirement: {desc.requirement_level.value}")
        if desc.spec_sections:
            lines.append(f"- Sections: {', '.join(desc.spec_sections)}")
        if res.violation is not None:
            lines.append(f"- Violation: {res.violation.message}")
            if res.violation.uri:
                lines.append(f"- URI: {res.violation.uri}")
        if res.error_detail:
            lines.append(f"- Detail: {res.error_detail}")
    out_path.write_text("\n".join(lines))


def main(argv: list[str] | None = None) -> int:
    _ensure_backend_on_path()

    from common.conformance_engine.errors import RunAbortedError
    from common.conformance_engine.negotiation import FORMAT_ACCEPT_HEADERS
    from pipelines.live_validation import run_validation

    parser = argparse.ArgumentParser(description="Run OData conformance rules against a live service URL.")
    parser.add_argument("url", help="Service root, metadata, or resource URL to validate.")
    parser.add_argument(
        "--format",
        choices=sorted(FORMAT_ACCEPT_HEADERS),
        default="json",
        help="Payload format to negotiate (default: json).",
    )
    parser.add_argument(
        "--category",
        default="core",
        help="Rule category to run; 'all' runs every category (default: core).",
    )
    parser.add_argument(
        "--header",
        action="append",
        default=[],
        help="Extra request header 'Name: value' (repeatable).",
    )
    parser.add_argument(
        "--out",
        default=None,
        help="Write the report to a .json or .md file (default: JSON on stdout).",
    )
    parser.add_argument("--log-level", default="INFO", help="Logging level (default: INFO).")
    args = parser.parse_args(argv)

    logging.basicConfig(
        level=getattr(logging, args.log_level.upper(), logging.INFO),
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )

    headers = []
    for raw in args.header:
        name, sep, value = raw.partition(":")
        if not sep or not name.strip():
            parser.error(f"--header expects 'Name: value', got {raw!r}")
        headers.append((name.strip(), value.strip()))

    category = None if args.category.strip().lower() == "all" else args.category
    try:
        report = run_validation(args.url, fmt=args.format, category=category, request_headers=headers)
    except RunAbortedError as exc:
        logging.getLogger(__name__).error("Run aborted: %s", exc)
        return 2

    payload = json.dumps(report.model_dump(mode="json"), indent=2)
    if args.out is None:
        print(payload)
        return 0

    out_path = Path(args.out)
    out_path.parent.mkdir(parents=True, exist_ok=True)
    if out_path.suffix.lower() == ".md":
        _write_markdown(report, out_path)
    else:
        out_path.write_text(payload)
    return 0


if __name__ == "__main__":
    raise SystemExit(main())
