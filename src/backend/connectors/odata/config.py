from __future__ import annotations

import os
from dataclasses import dataclass, field

from dotenv import load_dotenv

from common.conformance_engine.probe import Headers


load_dotenv()

DEFAULT_MAX_PAYLOAD_BYTES = 1024 * 1024
DEFAULT_TIMEOUT_SECONDS = 8.0
DEFAULT_USER_AGENT = "odata-conformance/0.1"


@dataclass(frozen=True)
class ProbeSettings:
    max_payload_bytes: int = DEFAULT_MAX_PAYLOAD_BYTES
    timeout_seconds: float = DEFAULT_TIMEOUT_SECONDS
    max_retries: int = 1
    max_workers: int = 4
    user_agent: str = DEFAULT_USER_AGENT
    extra_headers: Headers = field(default_factory=Headers)


def get_probe_settings() -> ProbeSettings:
    """
    Load probe settings from environment variables (a local .env is honoured).

    Reads:
      CONFORMANCE_MAX_PAYLOAD_BYTES, CONFORMANCE_TIMEOUT_SECONDS, CONFORMANCE_MAX_RETRIES,
      CONFORMANCE_MAX_WORKERS, CONFORMANCE_USER_AGENT, CONFORMANCE_EXTRA_HEADERS
    """
    return ProbeSettings(
        max_payload_bytes=_int_env("CONFORMANCE_MAX_PAYLOAD_BYTES", DEFAULT_MAX_PAYLOAD_BYTES, minimum=1),
        timeout_seconds=_float_env("CONFORMANCE_TIMEOUT_SECONDS", DEFAULT_TIMEOUT_SECONDS),
        max_retries=_int_env("CONFORMANCE_MAX_RETRIES", 1, minimum=0),
        max_workers=_int_env("CONFORMANCE_MAX_WORKERS", 4, minimum=1),
        user_agent=os.getenv("CONFORMANCE_USER_AGENT", "").strip() or DEFAULT_USER_AGENT,
        extra_headers=parse_extra_headers(os.getenv("CONFORMANCE_EXTRA_HEADERS", "")),
    )


def parse_extra_headers(text: str) -> Headers:
    """``"Name: value;Other: value"`` -> Headers."""
    return Headers.parse("\n".join(part for part in (text or "").split(";") if part.strip()))


def _int_env(name: str, default: int, *, minimum: int) -> int:
    raw = os.getenv(name, "").strip()
    if not raw:
        return default
    try:
        value = int(raw)
    except ValueError as exc:
        raise ValueError(f"{name} must be an integer, got {raw!r}") from exc
    if value < minimum:
        raise ValueError(f"{name} must be >= {minimum}, got {value}")
    return value


def _float_env(name: str, default: float) -> float:
    raw = os.getenv(name, "").strip()
    if not raw:
        return default
    try:
        value = float(raw)
    except ValueError as exc:
        raise ValueError(f"{name} must be a number, got {raw!r}") from exc
    if value <= 0:
        raise ValueError(f"{name} must be positive, got {value}")
    return value
