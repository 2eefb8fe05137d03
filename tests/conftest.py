from __future__ import annotations

import asyncio
import sys
from collections.abc import AsyncIterator, Callable
from contextlib import asynccontextmanager
from dataclasses import replace
from pathlib import Path

import pytest
from fastapi.testclient import TestClient

# Ensure repo root is on sys.path so `import pg_exporter` works under pytest.
ROOT = Path(__file__).resolve().parents[1]
if str(ROOT) not in sys.path:
    sys.path.insert(0, str(ROOT))

from pg_exporter.core.config import SETTINGS, Settings  # noqa: E402
from pg_exporter.core.metrics import MetricRegistry  # noqa: E402
from pg_exporter.db.targets import Target, TargetRegistry  # noqa: E402
from pg_exporter.main import create_app  # noqa: E402
from pg_exporter.services.exporter import Exporter  # noqa: E402
from pg_exporter.services.scrape import (  # noqa: E402
    ACTIVE_CONNECTIONS_SQL,
    DATABASE_SIZE_SQL,
    ScrapeOrchestrator,
)

API_KEY = "test-key"


# ---------------------------------------------------------------------------
# In-memory stand-ins for a PostgreSQL target
# ---------------------------------------------------------------------------


class FakeRunner:
    """Answers queries from a dict of SQL -> rows; raises for failing SQL."""

    def __init__(self, connector: FakeConnector) -> None:
        self._connector = connector

    async def fetch_all(self, sql: str) -> list[dict[str, object]]:
        self._connector.executed.append(sql)
        if self._connector.block is not None:
            await self._connector.block.wait()
        if sql in self._connector.failing:
            raise RuntimeError(f"query failed: {sql}")
        return [dict(row) for row in self._connector.results.get(sql, [])]


class FakeConnector:
    """Satisfies the Connector Protocol without a database.

    connect_error: raised on acquisition (unreachable host, pool timeout)
    failing:       SQL strings that raise when executed
    block:         an asyncio.Event every query waits on, for gate tests
    """

    def __init__(
        self,
        *,
        active: int = 3,
        sizes: dict[str, int] | None = None,
        results: dict[str, list[dict[str, object]]] | None = None,
        failing: set[str] | None = None,
        connect_error: Exception | None = None,
    ) -> None:
        sizes = {"postgres": 8_000_000} if sizes is None else sizes
        self.results: dict[str, list[dict[str, object]]] = {
            ACTIVE_CONNECTIONS_SQL: [{"count": active}],
            DATABASE_SIZE_SQL: [
                {"datname": name, "size": size} for name, size in sizes.items()
            ],
            **(results or {}),
        }
        self.failing = failing or set()
        self.connect_error = connect_error
        self.block: asyncio.Event | None = None
        self.executed: list[str] = []
        self.acquired = 0
        self.released = 0
        self.disposed = False

    @asynccontextmanager
    async def connect(self) -> AsyncIterator[FakeRunner]:
        if self.connect_error is not None:
            raise self.connect_error
        self.acquired += 1
        try:
            yield FakeRunner(self)
        finally:
            self.released += 1

    async def ping(self) -> None:
        async with self.connect() as runner:
            await runner.fetch_all("SELECT 1")

    async def dispose(self) -> None:
        self.disposed = True


def make_targets(**connectors: FakeConnector) -> TargetRegistry:
    return TargetRegistry([Target(name=n, connector=c) for n, c in connectors.items()])


def run(coro):
    return asyncio.run(coro)


# ---------------------------------------------------------------------------
# Fixtures
# ---------------------------------------------------------------------------


@pytest.fixture
def registry() -> MetricRegistry:
    """A fresh registry per test; nothing leaks through the global REGISTRY."""
    return MetricRegistry()


@pytest.fixture
def settings() -> Settings:
    return replace(
        SETTINGS,
        app_env="test",
        api_key=API_KEY,
        scrape_rate_limit=1000,
        scrape_rate_window=5.0,
    )


@pytest.fixture
def auth_headers() -> dict[str, str]:
    return {"Authorization": f"Bearer {API_KEY}"}


@pytest.fixture
def make_client(
    settings: Settings, registry: MetricRegistry
) -> Callable[..., TestClient]:
    """Build a TestClient around fake targets.

    Usage: make_client(primary=FakeConnector(), custom_metrics=[...])
    """

    def _make(
        *,
        custom_metrics=(),
        settings_override: Settings | None = None,
        **connectors: FakeConnector,
    ) -> TestClient:
        targets = make_targets(**(connectors or {"primary": FakeConnector()}))
        exporter = Exporter(
            targets=targets,
            registry=registry,
            orchestrator=ScrapeOrchestrator(targets, registry, custom_metrics),
        )
        app = create_app(settings_override or settings, exporter=exporter)
        return TestClient(app)

    return _make
