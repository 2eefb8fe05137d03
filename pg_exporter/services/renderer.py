"""Prometheus text exposition of a MetricRegistry.

Rendering reads the registry only through ``snapshot_all()``.  Each
snapshot is turned back into a prometheus_client metric family and the
library's own text encoder does the formatting, so escaping, float
formatting and the counter ``_total`` convention stay exactly what the
client library produces.

Example output:
  # HELP pg_scrape_success Database scrape success (1=success, 0=failure)
  # TYPE pg_scrape_success gauge
  pg_scrape_success{db="primary"} 1.0
  pg_scrape_success{db="reporting"} 0.0
"""

from __future__ import annotations

import logging
from collections.abc import Iterator

from prometheus_client import CONTENT_TYPE_LATEST, generate_latest
from prometheus_client.core import CounterMetricFamily, GaugeMetricFamily, Metric

from pg_exporter.core.errors import RenderFailed
from pg_exporter.core.metrics import MetricRegistry, MetricSnapshot

logger = logging.getLogger(__name__)


def _family(snapshot: MetricSnapshot) -> Metric:
    family: GaugeMetricFamily | CounterMetricFamily
    if snapshot.kind == "counter":
        # CounterMetricFamily strips "_total" and adds it back per sample.
        family = CounterMetricFamily(snapshot.name, snapshot.help, labels=snapshot.labels)
    else:
        family = GaugeMetricFamily(snapshot.name, snapshot.help, labels=snapshot.labels)
    for labels, value in snapshot.samples:
        family.add_metric([labels.get(name, "") for name in snapshot.labels], value)
    return family


class _SnapshotCollector:
    """Adapts ``snapshot_all()`` to the collector interface generate_latest reads."""

    def __init__(self, registry: MetricRegistry) -> None:
        self._registry = registry

    def collect(self) -> Iterator[Metric]:
        for snapshot in self._registry.snapshot_all():
            yield _family(snapshot)


class MetricsRenderer:
    """Serialize every instrument in a registry on demand."""

    def __init__(self, registry: MetricRegistry) -> None:
        self._collector = _SnapshotCollector(registry)

    @property
    def content_type(self) -> str:
        return CONTENT_TYPE_LATEST

    def generate(self) -> bytes:
        try:
            return generate_latest(self._collector)  # type: ignore[arg-type]
        except Exception as exc:
            logger.exception("Failed to generate metrics output")
            raise RenderFailed(str(exc)) from exc
