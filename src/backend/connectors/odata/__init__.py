"""OData probe connector (network + caching lives here; the engine only sees the Fetcher protocol)."""

from .cache import FetchCache, cache_key
from .client import probe_get
from .config import ProbeSettings, get_probe_settings

__all__ = ["FetchCache", "cache_key", "probe_get", "ProbeSettings", "get_probe_settings"]
