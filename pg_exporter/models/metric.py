from __future__ import annotations

from dataclasses import dataclass, field
from typing import Literal

MetricKind = Literal["gauge", "counter"]

# Injected into every custom metric so samples from different targets
# never share a label set.
DB_LABEL = "db"


@dataclass(frozen=True, slots=True)
class MetricSpec:
    """Shape of one instrument: name, help text, kind and full label schema."""

    name: str
    help: str
    kind: MetricKind = "gauge"
    labels: tuple[str, ...] = ()

    @property
    def exposed_name(self) -> str:
        """Name as it appears in the exposition output.

        Counters are always rendered with a ``_total`` suffix, so a counter
        configured as ``queries`` is exposed as ``queries_total``.
        """
        if self.kind == "counter" and not self.name.endswith("_total"):
            return f"{self.name}_total"
        return self.name


@dataclass(frozen=True, slots=True)
class QueryDefinition:
    """Operator-authored SQL plus the metadata for turning rows into samples.

    ``labels`` are the declared label columns; ``db`` is never declared
    here, it is added by ``metric_spec()``.  ``value_field`` forces which
    column carries the value; when unset the first numeric non-label column
    of each row is used.
    """

    name: str
    help: str
    query: str
    kind: MetricKind = "gauge"
    labels: tuple[str, ...] = ()
    value_field: str | None = None

    def metric_spec(self) -> MetricSpec:
        declared = tuple(dict.fromkeys(k for k in self.labels if k != DB_LABEL))
        return MetricSpec(
            name=self.name,
            help=self.help,
            kind=self.kind,
            labels=(*declared, DB_LABEL),
        )

    def to_dict(self) -> dict[str, object]:
        """Render back to the queries-file shape (used by /configz)."""
        data: dict[str, object] = {
            "name": self.name,
            "help": self.help,
            "type": self.kind,
            "labels": list(self.labels),
            "query": self.query,
        }
        if self.value_field is not None:
            data["valueField"] = self.value_field
        return data


@dataclass(frozen=True, slots=True)
class Sample:
    """One labeled value ready to be applied to an instrument."""

    labels: dict[str, str] = field(default_factory=dict)
    value: object = None
    value_field: str | None = None
