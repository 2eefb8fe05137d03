"""Turning arbitrary query rows into labeled samples.

Operators write ad-hoc SQL for custom metrics and ship no schema with it.
The only metadata is the list of label columns and, optionally, the name
of the value column.  Each row is scanned once, in column order:

  1. Columns named in ``labels`` are copied into the sample's labels.
  2. If no value column was configured, the first numeric non-label
     column becomes the value column for this row.
  3. A column whose name equals the value column (configured, or inferred
     in step 2) sets the value.
  4. Everything else is ignored.

So "one numeric column, the rest are labels" needs no configuration at
all, and ``valueField`` is the override for rows with several numeric
columns.  A row with no usable value produces no sample; that is logged
at WARNING, not treated as an error, because a query can legitimately
return rows with nothing to measure.

Failures are isolated per definition: one broken custom query logs an
error and contributes nothing this cycle, while the built-in metrics and
every other custom query for the same target carry on.
"""

from __future__ import annotations

import logging
from collections.abc import Mapping, Sequence
from dataclasses import dataclass
from decimal import Decimal

from pg_exporter.core.logging import TargetLogger
from pg_exporter.core.metrics import MetricInstrument
from pg_exporter.db.engine import QueryRunner
from pg_exporter.models.metric import DB_LABEL, QueryDefinition, Sample

logger = logging.getLogger(__name__)


@dataclass(frozen=True, slots=True)
class BoundQuery:
    """A query definition permanently bound to its instrument."""

    definition: QueryDefinition
    instrument: MetricInstrument


def is_numeric(value: object) -> bool:
    """True for SQL numeric types as asyncpg returns them.

    bool is an int subclass in Python but a boolean column is not a
    measurement.  Strings never qualify, even "42".
    """
    if isinstance(value, bool):
        return False
    return isinstance(value, (int, float, Decimal))


def _label_value(value: object) -> str:
    return "" if value is None else str(value)


def extract_sample(
    row: Mapping[str, object],
    definition: QueryDefinition,
    db_name: str,
) -> Sample | None:
    """Scan one row and return its sample, or None if it has no value."""
    labels: dict[str, str] = {DB_LABEL: db_name}
    value_field = definition.value_field
    value: object = None

    for key, field_value in row.items():
        if key in definition.labels:
            labels[key] = _label_value(field_value)
        elif value_field is None and value is None and is_numeric(field_value):
            value_field = key
            value = field_value
        elif key == value_field:
            # Also re-entered when a later column repeats the inferred
            # name; the later value wins.
            value = field_value

    if value is None:
        return None
    return Sample(labels=labels, value=value, value_field=value_field)


def apply_rows(
    bound: BoundQuery,
    db_name: str,
    rows: Sequence[Mapping[str, object]],
) -> int:
    """Apply every row's sample to the bound instrument.  Returns samples applied."""
    definition = bound.definition
    log = TargetLogger(logger, db_name)
    context = {"metric": definition.name}
    applied = 0

    for row in rows:
        sample = extract_sample(row, definition, db_name)
        if sample is None:
            log.warning(
                "No numeric value found for %s row=%r", definition.name, dict(row), extra=context
            )
            continue

        try:
            value = float(sample.value)  # type: ignore[arg-type]
            bound.instrument.apply(sample.labels, value)
        except (TypeError, ValueError) as exc:
            # A non-numeric explicit valueField or a negative counter delta
            # spoils this row only.
            log.warning(
                "Cannot apply %s=%r from %r: %s",
                definition.name,
                sample.value,
                sample.value_field,
                exc,
                extra=context,
            )
            continue

        applied += 1
        log.debug(
            "Set %s %s = %s (from %r)",
            definition.name,
            sample.labels,
            value,
            sample.value_field,
            extra=context,
        )

    return applied


async def collect_custom_metrics(
    runner: QueryRunner,
    db_name: str,
    bound_queries: Sequence[BoundQuery],
) -> None:
    """Run every custom query on one target's connection, best effort."""
    log = TargetLogger(logger, db_name)
    for bound in bound_queries:
        name = bound.definition.name
        try:
            rows = await runner.fetch_all(bound.definition.query)
            apply_rows(bound, db_name, rows)
        except Exception as exc:
            log.error(
                "Custom query %s failed on %s: %s",
                name,
                db_name,
                exc,
                extra={"metric": name, "status": "error"},
            )
