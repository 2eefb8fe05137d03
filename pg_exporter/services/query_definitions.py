"""Loading custom query definitions and binding them to instruments.

The queries file is a JSON array of records:

  {
    "name": "app_orders_pending",        # metric name, required
    "help": "Orders awaiting payment",   # required
    "type": "gauge",                     # gauge | counter, default gauge
    "labels": ["region"],                # label columns, default []
    "query": "SELECT region, count(*) AS pending FROM orders ...",
    "valueField": "pending"              # optional
  }

The file as a whole must be valid (see core.config_files), but individual
records are forgiving: a record that is missing a required field, has an
unsupported type, uses an invalid name, or collides with an existing
metric is skipped with a warning and the rest still load.
"""

from __future__ import annotations

import logging
from collections.abc import Sequence
from pathlib import Path

from pydantic import BaseModel, ConfigDict, Field, ValidationError

from pg_exporter.core.config_files import read_json_list
from pg_exporter.core.errors import DefinitionError
from pg_exporter.core.metrics import MetricRegistry
from pg_exporter.models.metric import DB_LABEL, QueryDefinition
from pg_exporter.services.extraction import BoundQuery

logger = logging.getLogger(__name__)

SUPPORTED_TYPES = ("gauge", "counter")


class QueryDefinitionConfig(BaseModel):
    """One record of the queries file, before type checking."""

    model_config = ConfigDict(populate_by_name=True, extra="ignore")

    name: str = Field(min_length=1)
    help: str = Field(min_length=1)
    query: str = Field(min_length=1)
    type: str = "gauge"
    labels: list[str] = Field(default_factory=list)
    value_field: str | None = Field(default=None, alias="valueField")


def parse_query_definitions(entries: Sequence[object]) -> list[QueryDefinition]:
    """Validate raw records, skipping (and logging) the bad ones."""
    definitions: list[QueryDefinition] = []

    for i, entry in enumerate(entries):
        try:
            cfg = QueryDefinitionConfig.model_validate(entry)
        except ValidationError as exc:
            logger.warning(
                "Skipping query entry #%d: missing or invalid fields (%d error(s))",
                i,
                exc.error_count(),
            )
            continue

        kind = cfg.type.lower()
        if kind not in SUPPORTED_TYPES:
            logger.warning(
                "Skipping query entry #%d: unsupported metric type %r for %s",
                i,
                cfg.type,
                cfg.name,
                extra={"metric": cfg.name},
            )
            continue

        if DB_LABEL in cfg.labels:
            logger.warning(
                "Query %s declares the reserved label %r; it is always set "
                "to the target name",
                cfg.name,
                DB_LABEL,
                extra={"metric": cfg.name},
            )

        definitions.append(
            QueryDefinition(
                name=cfg.name,
                help=cfg.help,
                query=cfg.query,
                kind=kind,  # type: ignore[arg-type]
                labels=tuple(dict.fromkeys(k for k in cfg.labels if k != DB_LABEL)),
                value_field=cfg.value_field or None,
            )
        )

    return definitions


def bind_query_definitions(
    definitions: Sequence[QueryDefinition],
    registry: MetricRegistry,
) -> list[BoundQuery]:
    """Register one instrument per definition.  Rejected ones are skipped."""
    bound: list[BoundQuery] = []
    for definition in definitions:
        try:
            instrument = registry.register(definition.metric_spec())
        except DefinitionError as exc:
            logger.warning(
                "Skipping custom metric %s: %s",
                definition.name,
                exc,
                extra={"metric": definition.name},
            )
            continue
        bound.append(BoundQuery(definition=definition, instrument=instrument))

    logger.info("Loaded %d custom metric(s)", len(bound))
    return bound


def load_custom_metrics(
    path: str | Path | None,
    registry: MetricRegistry,
) -> list[BoundQuery]:
    """Read the queries file and bind its definitions to ``registry``.

    No path configured means no custom metrics, which is allowed.  A path
    that is missing or malformed raises ConfigurationError.
    """
    if path is None:
        logger.warning("No queries file specified; no custom metrics loaded")
        return []

    entries = read_json_list(path, "queries file")
    return bind_query_definitions(parse_query_definitions(entries), registry)
