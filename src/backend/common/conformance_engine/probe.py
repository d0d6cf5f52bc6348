from __future__ import annotations

from dataclasses import dataclass, field
from typing import Iterable, Iterator, Mapping, Optional, Protocol, Union

HeaderInput = Union[Mapping[str, str], Iterable[tuple[str, str]], None]


@dataclass(frozen=True)
class Headers:
    """Ordered, case-insensitive multi-map of HTTP headers (names may repeat)."""

    items: tuple[tuple[str, str], ...] = ()

    @classmethod
    def of(cls, raw: HeaderInput = None) -> "Headers":
        if raw is None:
            return cls()
        if isinstance(raw, Headers):
            return raw
        pairs = raw.items() if isinstance(raw, Mapping) else raw
        return cls(tuple((str(k).strip(), str(v).strip()) for k, v in pairs if k and str(k).strip()))

    @classmethod
    def parse(cls, text: str | None) -> "Headers":
        """Parse a raw ``Name: value`` header block (one header per line)."""
        if not text:
            return cls()
        pairs = []
        for line in text.splitlines():
            name, sep, value = line.partition(":")
            if sep and name.strip():
                pairs.append((name.strip(), value.strip()))
        return cls(tuple(pairs))

    def get(self, name: str, default: Optional[str] = None) -> Optional[str]:
        key = name.lower()
        for k, v in self.items:
            if k.lower() == key:
                return v
        return default

    def get_all(self, name: str) -> list[str]:
        key = name.lower()
        return [v for k, v in self.items if k.lower() == key]

    def __contains__(self, name: object) -> bool:
        return isinstance(name, str) and self.get(name) is not None

    def __iter__(self) -> Iterator[tuple[str, str]]:
        return iter(self.items)

    def __len__(self) -> int:
        return len(self.items)

    def merged(self, overrides: HeaderInput) -> "Headers":
        """Return a copy where every header named in ``overrides`` is replaced."""
        extra = Headers.of(overrides)
        replaced = {k.lower() for k, _ in extra.items}
        kept = tuple((k, v) for k, v in self.items if k.lower() not in replaced)
        return Headers(kept + extra.items)

    def to_text(self) -> str:
        return "\r\n".join(f"{k}: {v}" for k, v in self.items)


@dataclass(frozen=True)
class ProbeRequest:
    uri: str
    headers: Headers = field(default_factory=Headers)
    method: str = "GET"


@dataclass(frozen=True)
class ProbeResponse:
    uri: str
    status: Optional[int]
    headers: Headers = field(default_factory=Headers)
    body: bytes = b""

    @property
    def content_type(self) -> Optional[str]:
        raw = self.headers.get("Content-Type")
        if not raw:
            return None
        return raw.split(";", 1)[0].strip().lower() or None

    @property
    def charset(self) -> Optional[str]:
        raw = self.headers.get("Content-Type") or ""
        for part in raw.split(";")[1:]:
            key, sep, value = part.partition("=")
            if sep and key.strip().lower() == "charset":
                return value.strip().strip('"') or None
        return None

    @property
    def text(self) -> str:
        encoding = self.charset or "utf-8"
        try:
            return self.body.decode(encoding, errors="replace")
        except LookupError:
            return self.body.decode("utf-8", errors="replace")


class Fetcher(Protocol):
    """What rules use to issue side probes (implemented by the shared fetch cache)."""

    def get_or_fetch(self, uri: str, headers: HeaderInput = None) -> ProbeResponse:
        ...
