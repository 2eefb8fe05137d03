"""Metric instrument registry built on the Prometheus client library.

Every metric the exporter exposes lives in one ``MetricRegistry``: the
fixed built-in instruments (exporter health plus per-target PostgreSQL
statistics) and one instrument per accepted custom query definition.

THE TWO METRIC TYPES WE SUPPORT
---------------------------------

1. GAUGE: a point-in-time value.  ``set`` overwrites whatever was there,
   so a gauge has no memory of earlier scrapes.  Re-running a cycle over
   unchanged data yields the same numbers.

2. COUNTER: a number that only goes up.  ``inc`` adds to it.  Counters
   are always exposed with a ``_total`` suffix; a definition named
   ``rows_inserted`` shows up as ``rows_inserted_total``.

WHY A PRIVATE CollectorRegistry
---------------------------------
prometheus_client ships a process-global ``REGISTRY``.  We wrap our own
``CollectorRegistry`` instead so the registry is an object owned by the
exporter: tests build a fresh one per case and never have to reason about
deltas against global state.

Thread-safety comes from prometheus_client itself: every labeled child
guards its value with a lock, so concurrent ``set``/``inc`` calls from
different scrape tasks cannot tear a value and ``collect()`` never reads
one mid-write.
"""

from __future__ import annotations

import logging
from collections.abc import Mapping, Sequence
from dataclasses import dataclass

from prometheus_client import CollectorRegistry, Counter, Gauge, disable_created_metrics

from pg_exporter.core.errors import DefinitionError, DuplicateMetricName
from pg_exporter.models.metric import DB_LABEL, MetricKind, MetricSpec

logger = logging.getLogger(__name__)

# Counters would otherwise also emit a ``<name>_created`` series, which the
# classic exposition format used by PostgreSQL exporters does not have.
disable_created_metrics()


class MetricInstrument:
    """A named, typed, labeled numeric container.

    Wraps one prometheus_client Gauge or Counter and enforces the label
    schema: label keys on every write must be a subset of ``spec.labels``.
    Declared keys missing from a write are recorded as empty strings, which
    the exposition format treats the same as an absent label.
    """

    def __init__(self, spec: MetricSpec, metric: Gauge | Counter) -> None:
        self.spec = spec
        self._metric = metric

    @property
    def name(self) -> str:
        return self.spec.exposed_name

    @property
    def kind(self) -> MetricKind:
        return self.spec.kind

    def _child(self, labels: Mapping[str, object]) -> Gauge | Counter:
        unknown = set(labels) - set(self.spec.labels)
        if unknown:
            raise ValueError(
                f"labels {sorted(unknown)} not in schema {list(self.spec.labels)} "
                f"for {self.name}"
            )
        if not self.spec.labels:
            return self._metric
        values = {key: str(labels.get(key, "")) for key in self.spec.labels}
        return self._metric.labels(**values)

    def set(self, labels: Mapping[str, object], value: float) -> None:
        if self.kind != "gauge":
            raise TypeError(f"{self.name} is a counter; use inc()")
        self._child(labels).set(float(value))  # type: ignore[union-attr]

    def inc(self, labels: Mapping[str, object], value: float = 1.0) -> None:
        # Checked before _child() so a rejected delta leaves no zero series.
        if value < 0:
            raise ValueError(f"{self.name} can only be incremented by non-negative amounts")
        self._child(labels).inc(float(value))

    def apply(self, labels: Mapping[str, object], value: float) -> None:
        """Gauge: overwrite.  Counter: add."""
        if self.kind == "gauge":
            self.set(labels, value)
        else:
            self.inc(labels, value)

    def value(self, labels: Mapping[str, object] | None = None) -> float | None:
        """Current value for one label set, or None if never written."""
        wanted = {key: str((labels or {}).get(key, "")) for key in self.spec.labels}
        for sample_labels, sample_value in self.samples():
            if sample_labels == wanted:
                return sample_value
        return None

    def samples(self) -> list[tuple[dict[str, str], float]]:
        result: list[tuple[dict[str, str], float]] = []
        for family in self._metric.collect():
            for sample in family.samples:
                if sample.name == self.name:
                    result.append((dict(sample.labels), sample.value))
        return result


@dataclass(frozen=True, slots=True)
class MetricSnapshot:
    """Read-only view of one instrument for the rendering boundary."""

    name: str
    help: str
    kind: MetricKind
    labels: tuple[str, ...]
    samples: tuple[tuple[dict[str, str], float], ...]


# ---------------------------------------------------------------------------
# Built-in instruments (registered unconditionally)
# ---------------------------------------------------------------------------

EXPORTER_UP = MetricSpec("exporter_up", "Exporter process is running")
SCRAPE_DURATION = MetricSpec(
    "exporter_scrape_duration_seconds", "Duration of last scrape in seconds"
)
EXPORTER_ERRORS = MetricSpec(
    "exporter_errors_total", "Total scrape errors encountered", kind="counter"
)
SCRAPE_LOCKOUTS = MetricSpec(
    "exporter_scrape_lockouts_total",
    "Number of scrape requests rejected due to concurrency lock",
    kind="counter",
)
PG_ACTIVE_CONNECTIONS = MetricSpec(
    "pg_active_connections",
    "Number of active PostgreSQL connections",
    labels=(DB_LABEL,),
)
PG_DATABASE_SIZE = MetricSpec(
    "pg_database_size_bytes",
    "Database size in bytes",
    labels=(DB_LABEL, "database"),
)
PG_SCRAPE_SUCCESS = MetricSpec(
    "pg_scrape_success",
    "Database scrape success (1=success, 0=failure)",
    labels=(DB_LABEL,),
)
PG_SCRAPE_DURATION = MetricSpec(
    "pg_scrape_duration_seconds",
    "Scrape duration per database",
    labels=(DB_LABEL,),
)

BUILTIN_SPECS: tuple[MetricSpec, ...] = (
    EXPORTER_UP,
    SCRAPE_DURATION,
    EXPORTER_ERRORS,
    SCRAPE_LOCKOUTS,
    PG_ACTIVE_CONNECTIONS,
    PG_DATABASE_SIZE,
    PG_SCRAPE_SUCCESS,
    PG_SCRAPE_DURATION,
)


class MetricRegistry:
    """Process-wide mapping from metric name to instrument.

    Construction registers the built-ins and sets ``exporter_up`` to 1.
    Custom instruments are added with ``register()``; a name that collides
    with anything already exposed raises ``DuplicateMetricName``.
    """

    def __init__(self, registry: CollectorRegistry | None = None) -> None:
        self.collector_registry = registry or CollectorRegistry()
        self._instruments: dict[str, MetricInstrument] = {}
        for spec in BUILTIN_SPECS:
            self.register(spec)
        self.get(EXPORTER_UP.name).set({}, 1)

    def register(self, spec: MetricSpec) -> MetricInstrument:
        # Compare against the exposed name: a counter "foo" and a gauge
        # "foo_total" would otherwise both render as foo_total.
        if spec.exposed_name in self._instruments:
            raise DuplicateMetricName(spec.exposed_name)

        metric_cls = Gauge if spec.kind == "gauge" else Counter
        try:
            metric = metric_cls(
                spec.name, spec.help, labelnames=spec.labels, registry=None
            )
        except ValueError as exc:
            raise DefinitionError(f"invalid metric {spec.name!r}: {exc}") from exc

        try:
            self.collector_registry.register(metric)
        except ValueError as exc:
            # prometheus_client also reserves suffixed names (foo_total,
            # foo_created) that our exposed-name check does not see.
            raise DuplicateMetricName(spec.exposed_name) from exc

        instrument = MetricInstrument(spec, metric)
        self._instruments[spec.exposed_name] = instrument
        logger.debug("Registered %s %s labels=%s", spec.kind, instrument.name, spec.labels)
        return instrument

    def get(self, name: str) -> MetricInstrument:
        """Look up by exposed name, or by configured name for counters."""
        instrument = self._instruments.get(name)
        if instrument is None:
            instrument = self._instruments.get(f"{name}_total")
            if instrument is None or instrument.kind != "counter":
                raise KeyError(f"no metric named {name!r}")
        return instrument

    def names(self) -> list[str]:
        return list(self._instruments)

    def snapshot_all(self) -> Sequence[MetricSnapshot]:
        return [
            MetricSnapshot(
                name=instrument.name,
                help=instrument.spec.help,
                kind=instrument.kind,
                labels=instrument.spec.labels,
                samples=tuple(instrument.samples()),
            )
            for instrument in self._instruments.values()
        ]
