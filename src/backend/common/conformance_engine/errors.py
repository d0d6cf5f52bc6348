from __future__ import annotations


class ProbeError(RuntimeError):
    """Infrastructure fault while issuing a probe request (never an HTTP status)."""

    def __init__(self, uri: str, message: str):
        super().__init__(f"Probe {uri}: {message}")
        self.uri = uri


class ProbeNetworkError(ProbeError):
    pass


class OversizedPayloadError(ProbeError):
    def __init__(self, uri: str, limit: int, size: int | None = None):
        detail = f"payload exceeds {limit} bytes" if size is None else f"payload of {size} bytes exceeds {limit} bytes"
        super().__init__(uri, detail)
        self.limit = limit
        self.size = size


class RunCancelledError(RuntimeError):
    pass


class RunAbortedError(RuntimeError):
    """The primary probe produced no response at all."""

    def __init__(self, uri: str, cause: BaseException | None = None):
        super().__init__(f"No response obtainable for {uri}: {cause}")
        self.uri = uri
        self.cause = cause


class SchemaError(ValueError):
    pass


class RuleDefinitionError(ValueError):
    pass
