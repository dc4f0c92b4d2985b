from __future__ import annotations


class GeoTallyError(Exception):
    """Base class for errors raised by the geo-analytics engine."""


class DatasetError(GeoTallyError):
    """The geographic range dataset is missing, unreadable or malformed."""


class StoreError(GeoTallyError):
    """The analytics store could not be opened, read or written."""


class ConfigError(GeoTallyError):
    """A required setting is missing from the environment."""
