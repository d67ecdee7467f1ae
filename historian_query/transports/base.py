"""
Transport contract between the query facade and a historian backend.

A transport hands out opaque server, system and database handles, reports
whether the server and system sessions are live, and answers the typed
reads. Everything above this layer (connection lifecycle, handle validity,
value classification) lives in ``historian_query.services``.
"""

from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime
from typing import Any, Literal, Protocol, Sequence

from historian_query.services.values import HistorianValue

SummaryType = Literal["total", "average", "minimum", "maximum", "range", "count", "std_dev"]
CalculationBasis = Literal["time_weighted", "event_weighted"]
TimestampPolicy = Literal["auto", "earliest", "most_recent"]

SUMMARY_TYPES: tuple[str, ...] = ("total", "average", "minimum", "maximum", "range", "count", "std_dev")
CALCULATION_BASES: tuple[str, ...] = ("time_weighted", "event_weighted")
TIMESTAMP_POLICIES: tuple[str, ...] = ("auto", "earliest", "most_recent")


@dataclass(frozen=True)
class Credential:
    username: str
    secret: str
    auth_domain: str | None = None

    @property
    def qualified_username(self) -> str:
        if self.auth_domain:
            return f"{self.auth_domain}\\{self.username}"
        return self.username


@dataclass(frozen=True)
class PointInfo:
    name: str
    ref: Any
    point_type: str = "float64"
    source: str = ""
    engineering_units: str = ""
    descriptor: str = ""
    step: bool = False


@dataclass(frozen=True)
class UnitOfMeasure:
    name: str
    abbreviation: str
    uom_class: str
    description: str = ""
    deleted: bool = False


class HistorianTransport(Protocol):
    def find_server(self, server_name: str) -> Any | None: ...

    def connect_server(self, server: Any) -> None: ...

    def disconnect_server(self, server: Any) -> None: ...

    def server_is_connected(self, server: Any) -> bool: ...

    def system_for_server(self, server: Any) -> Any | None: ...

    def default_system(self) -> Any | None: ...

    def connect_system(self, system: Any, credential: Credential | None) -> None: ...

    def disconnect_system(self, system: Any) -> None: ...

    def system_is_connected(self, system: Any) -> bool: ...

    def find_database(self, system: Any, database_name: str) -> Any | None: ...

    def find_point(self, server: Any, name: str) -> PointInfo | None: ...

    def find_points(
        self,
        server: Any,
        *,
        name_filter: str,
        source_filter: str = "",
    ) -> list[PointInfo]: ...

    def recorded_values(
        self,
        database: Any,
        point: PointInfo,
        *,
        start: datetime,
        end: datetime,
        filter_expression: str | None = None,
    ) -> list[HistorianValue] | None: ...

    def recorded_values_by_count(
        self,
        database: Any,
        point: PointInfo,
        *,
        anchor: datetime,
        count: int,
        forward: bool,
    ) -> list[HistorianValue] | None: ...

    def interpolated_values(
        self,
        database: Any,
        point: PointInfo,
        *,
        start: datetime,
        end: datetime,
        interval_seconds: float,
        filter_expression: str | None = None,
    ) -> list[HistorianValue] | None: ...

    def interpolated_values_at_times(
        self,
        database: Any,
        point: PointInfo,
        *,
        times: Sequence[datetime],
    ) -> list[HistorianValue] | None: ...

    def summaries(
        self,
        database: Any,
        point: PointInfo,
        *,
        start: datetime,
        end: datetime,
        duration_seconds: float,
        summary_type: SummaryType,
        calculation_basis: CalculationBasis,
        timestamp_policy: TimestampPolicy,
    ) -> list[HistorianValue] | None: ...

    def list_units_of_measure(self, system: Any) -> list[UnitOfMeasure]: ...
