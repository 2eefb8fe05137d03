"""Exception taxonomy for the exporter.

Three families, handled at three different places:

  ConfigurationError: raised while the process is being wired up.
    Nothing catches it; the process must not start with a broken target
    or queries file.

  DefinitionError: one custom query definition cannot be turned into an
    instrument.  The loader logs it and skips that definition.

  ScrapeError: raised by a collection cycle to the HTTP layer.  Each
    subclass maps to its own status code so monitoring can tell
    "overloaded" (ScrapeBusy) from "broken" (CollectionFailed,
    RenderFailed).
"""

from __future__ import annotations


class ExporterError(Exception):
    """Base class for all exporter errors."""


class ConfigurationError(ExporterError):
    """Fatal startup error: missing or malformed configuration."""


class DefinitionError(ExporterError):
    """A single metric definition was rejected."""


class DuplicateMetricName(DefinitionError):
    """The exposed metric name is already taken by another instrument."""

    def __init__(self, name: str) -> None:
        super().__init__(f"metric name {name!r} is already registered")
        self.name = name


class ScrapeError(ExporterError):
    """Base class for caller-facing collection outcomes other than success."""


class ScrapeBusy(ScrapeError):
    """Another collection cycle holds the single-flight gate."""


class CollectionFailed(ScrapeError):
    """The orchestration itself failed (not an individual target)."""


class RenderFailed(ScrapeError):
    """Serializing the instrument registry failed after collection."""
