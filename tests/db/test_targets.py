from __future__ import annotations

import json
from pathlib import Path

import pytest

from pg_exporter.core.errors import ConfigurationError
from pg_exporter.db.engine import Connector, SqlAlchemyConnector
from pg_exporter.db.targets import (
    Target,
    TargetRegistry,
    build_target_registry,
    load_target_configs,
    parse_target_configs,
)
from tests.conftest import FakeConnector, make_targets, run


def _record(**overrides: object) -> dict[str, object]:
    record: dict[str, object] = {
        "name": "primary",
        "host": "db.internal",
        "port": 5432,
        "user": "exporter",
        "password": "secret",
        "database": "app",
    }
    record.update(overrides)
    return record


def test_parse_valid_records_in_order() -> None:
    configs = parse_target_configs([_record(), _record(name="replica", port="6432")])
    assert [c.name for c in configs] == ["primary", "replica"]
    assert configs[1].port == 6432


@pytest.mark.parametrize("missing", ["name", "host", "port", "user", "password", "database"])
def test_missing_field_is_fatal(missing: str) -> None:
    record = _record()
    del record[missing]
    with pytest.raises(ConfigurationError, match="invalid databases configuration"):
        parse_target_configs([record])


def test_non_list_shape_is_fatal() -> None:
    with pytest.raises(ConfigurationError):
        parse_target_configs(_record())


def test_load_from_file(tmp_path: Path) -> None:
    path = tmp_path / "databases.json"
    path.write_text(json.dumps([_record()]))
    [config] = load_target_configs(path)
    assert config.database == "app"


def test_empty_registry_is_fatal() -> None:
    with pytest.raises(ConfigurationError, match="no database targets"):
        TargetRegistry([])


def test_duplicate_names_are_fatal() -> None:
    with pytest.raises(ConfigurationError, match="duplicate"):
        TargetRegistry(
            [Target("primary", FakeConnector()), Target("primary", FakeConnector())]
        )


def test_targets_order_is_stable() -> None:
    registry = make_targets(zeta=FakeConnector(), alpha=FakeConnector(), mid=FakeConnector())
    assert registry.names() == ["zeta", "alpha", "mid"]
    assert registry.targets() == registry.targets()
    assert len(registry) == 3


def test_dispose_all_continues_after_failure() -> None:
    class _Failing(FakeConnector):
        async def dispose(self) -> None:
            raise RuntimeError("already closed")

    last = FakeConnector()
    registry = TargetRegistry([Target("a", _Failing()), Target("b", last)])
    run(registry.dispose_all())
    assert last.disposed is True


def test_build_creates_sqlalchemy_connectors() -> None:
    # create_async_engine is lazy: no connection is opened here.
    registry = build_target_registry(
        parse_target_configs([_record(), _record(name="replica", host="replica.internal")]),
        pool_size=3,
        pool_timeout=2.0,
    )
    connectors = [t.connector for t in registry]
    assert all(isinstance(c, SqlAlchemyConnector) for c in connectors)
    assert all(isinstance(c, Connector) for c in connectors)
    assert connectors[1].url.host == "replica.internal"  # type: ignore[attr-defined]
    assert connectors[0].url.drivername == "postgresql+asyncpg"  # type: ignore[attr-defined]
    run(registry.dispose_all())
