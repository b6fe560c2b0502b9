"""
Exception types shared by the geo services.

None of these are meant to escape a build: the resolver and the asset manager
catch them at their public boundary, log, and degrade.
"""


class GeoError(Exception):
    """Base class for place resolution and map asset errors."""


class ProviderError(GeoError):
    """A geocoding backend failed transiently (network, timeout, non-2xx, bad payload)."""

    def __init__(self, provider: str, query: str, reason: str):
        super().__init__(f"{provider} lookup failed for {query!r}: {reason}")
        self.provider = provider
        self.query = query
        self.reason = reason


class StorePersistError(GeoError):
    """The place store could not be written to disk."""


class MapConfigError(GeoError):
    """The static map descriptor table is inconsistent."""


class MergeError(GeoError):
    """A composite map could not be built from its sources."""
