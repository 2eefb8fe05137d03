"""Target registry: the set of PostgreSQL databases the exporter polls.

Targets are read once from the DBS_CONFIG_FILE, validated as a whole, and
never change for the life of the process.  A missing field on any record,
a non-list file, zero targets or two targets sharing a name all abort
startup.  The ``name`` of a target becomes the ``db`` label on every
sample collected from it.
"""

from __future__ import annotations

import logging
from collections.abc import Iterator, Sequence
from dataclasses import dataclass
from pathlib import Path

from pydantic import BaseModel, Field, TypeAdapter, ValidationError

from pg_exporter.core.config_files import read_json_list
from pg_exporter.core.errors import ConfigurationError
from pg_exporter.db.engine import Connector, SqlAlchemyConnector

logger = logging.getLogger(__name__)


class TargetConfig(BaseModel):
    """One record of the databases file.  Every field is mandatory."""

    name: str = Field(min_length=1)
    host: str = Field(min_length=1)
    port: int = Field(gt=0, lt=65536)
    user: str = Field(min_length=1)
    password: str
    database: str = Field(min_length=1)


_TARGET_LIST = TypeAdapter(list[TargetConfig])


@dataclass(frozen=True, slots=True)
class Target:
    name: str
    connector: Connector


class TargetRegistry:
    """Ordered, immutable collection of targets.

    Iteration order is the order of the configuration file, so every call
    to ``targets()`` returns the same sequence.
    """

    def __init__(self, targets: Sequence[Target]) -> None:
        if not targets:
            raise ConfigurationError("no database targets configured")

        seen: set[str] = set()
        for target in targets:
            if target.name in seen:
                raise ConfigurationError(f"duplicate database target name {target.name!r}")
            seen.add(target.name)

        self._targets = tuple(targets)

    def targets(self) -> tuple[Target, ...]:
        return self._targets

    def names(self) -> list[str]:
        return [t.name for t in self._targets]

    def __iter__(self) -> Iterator[Target]:
        return iter(self._targets)

    def __len__(self) -> int:
        return len(self._targets)

    async def dispose_all(self) -> None:
        """Release every target's pool.  One failure does not stop the rest."""
        for target in self._targets:
            try:
                await target.connector.dispose()
            except Exception:
                logger.exception(
                    "Error disposing pool for %s", target.name, extra={"db": target.name}
                )


def parse_target_configs(data: object) -> list[TargetConfig]:
    try:
        return _TARGET_LIST.validate_python(data)
    except ValidationError as exc:
        raise ConfigurationError(f"invalid databases configuration: {exc}") from exc


def load_target_configs(path: str | Path) -> list[TargetConfig]:
    return parse_target_configs(read_json_list(path, "databases file"))


def build_target_registry(
    configs: Sequence[TargetConfig],
    *,
    pool_size: int = 5,
    pool_timeout: float = 5.0,
) -> TargetRegistry:
    targets = [
        Target(
            name=cfg.name,
            connector=SqlAlchemyConnector.create(
                host=cfg.host,
                port=cfg.port,
                user=cfg.user,
                password=cfg.password,
                database=cfg.database,
                pool_size=pool_size,
                pool_timeout=pool_timeout,
            ),
        )
        for cfg in configs
    ]
    registry = TargetRegistry(targets)
    logger.info("Configured %d database target(s): %s", len(registry), registry.names())
    return registry
