"""Scrape orchestration: one collection cycle across every target.

CYCLE LIFECYCLE
-----------------
  Idle ──trigger──► gate held? ──yes──► Rejected (lockout +1, ScrapeBusy)
                        │
                        no
                        ▼
                     Running ──all targets settled──► Idle

SINGLE-FLIGHT GATE
--------------------
Prometheus (or a human with curl) can ask for /metrics while the previous
scrape is still waiting on a slow database.  Queuing those requests would
stack unbounded work behind the slow target, so a second trigger is
rejected immediately instead.  The gate is one boolean owned by the
orchestrator.  Everything runs on a single event loop and nothing awaits
between checking the flag and setting it, so the test-and-set is atomic.
The flag is cleared in a ``finally`` so no error can leave it stuck.

FAN-OUT
---------
Each target is scraped in its own task.  We join with
``asyncio.gather(..., return_exceptions=True)``, which waits for every
task to settle, rather than a TaskGroup, which cancels the siblings on the
first failure.  One dead database must never take down the samples of a
healthy one.  Each task also catches its own errors and returns a
ScrapeOutcome.  The only shared state between tasks is the metric
registry, and every write there is keyed by a distinct ``db`` label.

Within one target the built-in queries run before the custom ones, on the
same connection.  The two are isolated from each other: a failing built-in
query fails the target (success gauge 0, error counter +1) but the custom
queries still run, and a failing custom query only loses that query's
samples.  Only a connection that cannot be acquired skips both.
"""

from __future__ import annotations

import asyncio
import logging
import time
from collections.abc import Sequence
from dataclasses import dataclass

from pg_exporter.core.errors import CollectionFailed, ScrapeBusy
from pg_exporter.core.logging import TargetLogger
from pg_exporter.core.metrics import (
    EXPORTER_ERRORS,
    PG_ACTIVE_CONNECTIONS,
    PG_DATABASE_SIZE,
    PG_SCRAPE_DURATION,
    PG_SCRAPE_SUCCESS,
    SCRAPE_DURATION,
    SCRAPE_LOCKOUTS,
    MetricRegistry,
)
from pg_exporter.db.engine import QueryRunner
from pg_exporter.db.targets import Target, TargetRegistry
from pg_exporter.models.metric import DB_LABEL
from pg_exporter.services.extraction import BoundQuery, collect_custom_metrics
from pg_exporter.services.renderer import MetricsRenderer

logger = logging.getLogger(__name__)

ACTIVE_CONNECTIONS_SQL = "SELECT COUNT(*) AS count FROM pg_stat_activity WHERE state = 'active'"

DATABASE_SIZE_SQL = (
    "SELECT pg_database.datname, pg_database_size(pg_database.datname) AS size "
    "FROM pg_database WHERE datistemplate = false"
)


@dataclass(frozen=True, slots=True)
class ScrapeOutcome:
    """Result of scraping one target in one cycle.  Never stored."""

    target: str
    succeeded: bool
    duration_seconds: float
    error: str | None = None


@dataclass(frozen=True, slots=True)
class CycleReport:
    outcomes: tuple[ScrapeOutcome, ...]
    duration_seconds: float

    @property
    def failed(self) -> list[str]:
        return [o.target for o in self.outcomes if not o.succeeded]


class ScrapeOrchestrator:
    """Owns the single-flight gate and runs collection cycles."""

    def __init__(
        self,
        targets: TargetRegistry,
        registry: MetricRegistry,
        custom_metrics: Sequence[BoundQuery] = (),
    ) -> None:
        self._targets = targets
        self._registry = registry
        self._custom_metrics = tuple(custom_metrics)
        self._renderer = MetricsRenderer(registry)
        self._in_flight = False

        self._active_connections = registry.get(PG_ACTIVE_CONNECTIONS.name)
        self._database_size = registry.get(PG_DATABASE_SIZE.name)
        self._scrape_success = registry.get(PG_SCRAPE_SUCCESS.name)
        self._target_duration = registry.get(PG_SCRAPE_DURATION.name)
        self._cycle_duration = registry.get(SCRAPE_DURATION.name)
        self._errors = registry.get(EXPORTER_ERRORS.name)
        self._lockouts = registry.get(SCRAPE_LOCKOUTS.name)

    @property
    def in_flight(self) -> bool:
        return self._in_flight

    @property
    def custom_metrics(self) -> tuple[BoundQuery, ...]:
        return self._custom_metrics

    async def scrape(self) -> tuple[bytes, str]:
        """Run one cycle and render the registry.

        Raises ScrapeBusy, CollectionFailed or RenderFailed.  Individual
        target failures are not raised; they show up as pg_scrape_success 0.
        """
        await self.collect()
        return self._renderer.generate(), self._renderer.content_type

    async def collect(self) -> CycleReport:
        if self._in_flight:
            self._lockouts.inc({})
            logger.warning("Scrape rejected: another collection is in progress")
            raise ScrapeBusy("a collection cycle is already in progress")

        self._in_flight = True
        start = time.monotonic()
        try:
            outcomes = await self._run_cycle()
        except Exception as exc:
            self._errors.inc({})
            logger.exception("Failed to collect metrics")
            raise CollectionFailed(str(exc)) from exc
        finally:
            elapsed = time.monotonic() - start
            self._cycle_duration.set({}, elapsed)
            self._in_flight = False

        report = CycleReport(outcomes=tuple(outcomes), duration_seconds=elapsed)
        logger.info(
            "Scrape finished: %d target(s), %d failed (%.3fs)",
            len(report.outcomes),
            len(report.failed),
            elapsed,
            extra={"duration_ms": round(elapsed * 1000, 1)},
        )
        return report

    async def _run_cycle(self) -> list[ScrapeOutcome]:
        targets = self._targets.targets()
        results = await asyncio.gather(
            *(self._scrape_target(target) for target in targets),
            return_exceptions=True,
        )

        outcomes: list[ScrapeOutcome] = []
        for target, result in zip(targets, results):
            if isinstance(result, BaseException):
                # _scrape_target catches Exception; only cancellation-style
                # errors reach this branch.
                result = ScrapeOutcome(
                    target=target.name,
                    succeeded=False,
                    duration_seconds=0.0,
                    error=repr(result),
                )
            outcomes.append(result)

            labels = {DB_LABEL: target.name}
            self._scrape_success.set(labels, 1 if result.succeeded else 0)
            if not result.succeeded:
                self._errors.inc({})

        return outcomes

    async def _scrape_target(self, target: Target) -> ScrapeOutcome:
        log = TargetLogger(logger, target.name)
        start = time.monotonic()
        labels = {DB_LABEL: target.name}
        error: str | None = None

        try:
            async with target.connector.connect() as runner:
                try:
                    await self._collect_builtin(runner, target.name)
                except Exception as exc:
                    error = _describe(exc)
                    log.error(
                        "Built-in queries failed on %s: %s",
                        target.name,
                        error,
                        extra={"status": "failed"},
                    )
                await collect_custom_metrics(runner, target.name, self._custom_metrics)
        except Exception as exc:
            error = _describe(exc)
            log.error("Failed to scrape %s: %s", target.name, error, extra={"status": "failed"})
        finally:
            elapsed = time.monotonic() - start
            self._target_duration.set(labels, elapsed)

        return ScrapeOutcome(
            target=target.name,
            succeeded=error is None,
            duration_seconds=elapsed,
            error=error,
        )

    async def _collect_builtin(self, runner: QueryRunner, db_name: str) -> None:
        rows = await runner.fetch_all(ACTIVE_CONNECTIONS_SQL)
        active = int(rows[0]["count"]) if rows else 0  # type: ignore[call-overload]
        self._active_connections.set({DB_LABEL: db_name}, active)

        for row in await runner.fetch_all(DATABASE_SIZE_SQL):
            self._database_size.set(
                {DB_LABEL: db_name, "database": row["datname"]},
                int(row["size"]),  # type: ignore[call-overload]
            )


def _describe(exc: BaseException) -> str:
    return str(exc) or exc.__class__.__name__
