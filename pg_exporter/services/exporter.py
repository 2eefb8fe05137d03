"""Wiring: everything one running exporter owns.

Built once at startup from Settings and torn down at shutdown.  Building
is where configuration errors surface: a missing databases file, a
malformed record or zero targets raises ConfigurationError before the
HTTP server accepts a single request.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass

from pg_exporter.core.config import Settings
from pg_exporter.core.metrics import MetricRegistry
from pg_exporter.db.targets import TargetRegistry, build_target_registry, load_target_configs
from pg_exporter.services.query_definitions import load_custom_metrics
from pg_exporter.services.scrape import ScrapeOrchestrator

logger = logging.getLogger(__name__)


@dataclass
class Exporter:
    targets: TargetRegistry
    registry: MetricRegistry
    orchestrator: ScrapeOrchestrator

    async def close(self) -> None:
        await self.targets.dispose_all()


def build_exporter(settings: Settings) -> Exporter:
    # Fail on the databases file before creating any instruments or pools.
    target_configs = load_target_configs(settings.dbs_config_file)

    registry = MetricRegistry()
    custom_metrics = load_custom_metrics(settings.queries_file, registry)
    targets = build_target_registry(
        target_configs,
        pool_size=settings.db_pool_size,
        pool_timeout=settings.db_pool_timeout,
    )

    return Exporter(
        targets=targets,
        registry=registry,
        orchestrator=ScrapeOrchestrator(targets, registry, custom_metrics),
    )
