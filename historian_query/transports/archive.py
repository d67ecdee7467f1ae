"""
Historian transport backed by a SQL archive.

The archive only stores recorded values, so interpolation, filter
expressions and summaries are computed here with
``historian_query.services.calculations``. The server is the database
engine itself; systems are the distinct ``system_name`` values of
``archive_databases``.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from datetime import datetime
from typing import Any, Callable, Sequence, TypeVar

from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session, sessionmaker

from historian_query.core.errors import HistorianConnectionError, TransportError
from historian_query.db.models import ArchivePoint
from historian_query.db.session import check_db_connection
from historian_query.repositories.archive import (
    fetch_by_count,
    fetch_next,
    fetch_previous,
    fetch_recorded,
    find_points,
    get_database,
    get_point_by_name,
    list_system_names,
    list_units,
)
from historian_query.services.calculations import (
    ValuePredicate,
    apply_filter,
    compile_filter_expression,
    interpolate_many,
    interval_times,
    summarize,
)
from historian_query.services.values import INTEGER_POINT_TYPES, HistorianValue, as_utc
from historian_query.transports.base import (
    CalculationBasis,
    Credential,
    PointInfo,
    SummaryType,
    TimestampPolicy,
    UnitOfMeasure,
)

T = TypeVar("T")

# rows read per statement while searching for a value that passes a filter
WALK_BATCH_SIZE = 500


@dataclass
class ArchiveServer:
    name: str
    connected: bool = False


@dataclass
class ArchiveSystem:
    name: str
    connected: bool = False


@dataclass(frozen=True)
class ArchiveDatabaseRef:
    id: int
    system_name: str
    name: str


class ArchiveTransport:
    def __init__(
        self,
        *,
        session_factory: sessionmaker,
        server_name: str,
        system_name: str | None = None,
        page_size: int = 1000,
    ):
        self._session_factory = session_factory
        self._server_name = server_name
        self._system_name = system_name or server_name
        self._page_size = max(1, page_size)
        self._logger = logging.getLogger("historian_query.archive")

    # -- connection ---------------------------------------------------------

    def find_server(self, server_name: str) -> ArchiveServer | None:
        if server_name.strip().lower() != self._server_name.strip().lower():
            return None
        return ArchiveServer(name=self._server_name)

    def connect_server(self, server: ArchiveServer) -> None:
        with self._session_factory() as db:
            ok, error = check_db_connection(db)
        if not ok:
            raise HistorianConnectionError(f"Archive database is not reachable: {error}")
        server.connected = True

    def disconnect_server(self, server: ArchiveServer) -> None:
        server.connected = False

    def server_is_connected(self, server: ArchiveServer) -> bool:
        return server.connected

    def system_for_server(self, server: ArchiveServer) -> ArchiveSystem | None:
        names = self._run(list_system_names)
        for name in names:
            if name.lower() == self._system_name.lower():
                return ArchiveSystem(name=name)
        return None

    def default_system(self) -> ArchiveSystem | None:
        names = self._run(list_system_names)
        if not names:
            return None
        return ArchiveSystem(name=names[0])

    def connect_system(self, system: ArchiveSystem, credential: Credential | None) -> None:
        # the archive has no authentication of its own; access is governed by the database URL
        if credential is not None:
            self._logger.debug("archive ignores credential user=%s", credential.qualified_username)
        system.connected = True

    def disconnect_system(self, system: ArchiveSystem) -> None:
        system.connected = False

    def system_is_connected(self, system: ArchiveSystem) -> bool:
        return system.connected

    def find_database(self, system: ArchiveSystem, database_name: str) -> ArchiveDatabaseRef | None:
        database = self._run(lambda db: get_database(db, system_name=system.name, name=database_name))
        if database is None:
            return None
        return ArchiveDatabaseRef(id=database.id, system_name=database.system_name, name=database.name)

    # -- points ---------------------------------------------------------------

    def find_point(self, server: ArchiveServer, name: str) -> PointInfo | None:
        point = self._run(lambda db: get_point_by_name(db, name))
        return _to_point_info(point) if point is not None else None

    def find_points(
        self,
        server: ArchiveServer,
        *,
        name_filter: str,
        source_filter: str = "",
    ) -> list[PointInfo]:
        found: list[PointInfo] = []
        offset = 0
        while True:
            page = self._run(
                lambda db: find_points(
                    db,
                    name_filter=name_filter,
                    source_filter=source_filter,
                    offset=offset,
                    limit=self._page_size,
                )
            )
            found.extend(_to_point_info(point) for point in page)
            if len(page) < self._page_size:
                return found
            offset += self._page_size

    # -- reads ----------------------------------------------------------------

    def recorded_values(
        self,
        database: ArchiveDatabaseRef,
        point: PointInfo,
        *,
        start: datetime,
        end: datetime,
        filter_expression: str | None = None,
    ) -> list[HistorianValue] | None:
        def read(db: Session) -> list[HistorianValue]:
            row = self._point_row(db, point)
            values = fetch_recorded(db, point=row, start=start, end=end)
            return apply_filter(values, filter_expression, tag_name=row.name)

        return self._run(read)

    def recorded_values_by_count(
        self,
        database: ArchiveDatabaseRef,
        point: PointInfo,
        *,
        anchor: datetime,
        count: int,
        forward: bool,
    ) -> list[HistorianValue] | None:
        return self._run(
            lambda db: fetch_by_count(db, point=self._point_row(db, point), anchor=anchor, count=count, forward=forward)
        )

    def interpolated_values(
        self,
        database: ArchiveDatabaseRef,
        point: PointInfo,
        *,
        start: datetime,
        end: datetime,
        interval_seconds: float,
        filter_expression: str | None = None,
    ) -> list[HistorianValue] | None:
        times = interval_times(start, end, interval_seconds)
        predicate = (
            compile_filter_expression(filter_expression, tag_name=point.name)
            if filter_expression and filter_expression.strip()
            else None
        )

        def read(db: Session) -> list[HistorianValue]:
            row = self._point_row(db, point)
            values = self._bracketed(db, row, start=start, end=end, predicate=predicate)
            return interpolate_many(values, times, step=point.step, integer=row.point_type in INTEGER_POINT_TYPES)

        return self._run(read)

    def interpolated_values_at_times(
        self,
        database: ArchiveDatabaseRef,
        point: PointInfo,
        *,
        times: Sequence[datetime],
    ) -> list[HistorianValue] | None:
        if not times:
            return []
        stamps = [as_utc(item) for item in times]

        def read(db: Session) -> list[HistorianValue]:
            row = self._point_row(db, point)
            values = self._bracketed(db, row, start=min(stamps), end=max(stamps), predicate=None)
            return interpolate_many(values, stamps, step=point.step, integer=row.point_type in INTEGER_POINT_TYPES)

        return self._run(read)

    def summaries(
        self,
        database: ArchiveDatabaseRef,
        point: PointInfo,
        *,
        start: datetime,
        end: datetime,
        duration_seconds: float,
        summary_type: SummaryType,
        calculation_basis: CalculationBasis,
        timestamp_policy: TimestampPolicy,
    ) -> list[HistorianValue] | None:
        def read(db: Session) -> list[HistorianValue]:
            row = self._point_row(db, point)
            values = self._bracketed(db, row, start=start, end=end, predicate=None)
            return summarize(
                values,
                start=start,
                end=end,
                duration_seconds=duration_seconds,
                summary_type=summary_type,
                calculation_basis=calculation_basis,
                timestamp_policy=timestamp_policy,
                step=point.step,
            )

        return self._run(read)

    def list_units_of_measure(self, system: ArchiveSystem) -> list[UnitOfMeasure]:
        records = self._run(lambda db: list_units(db, system_name=system.name))
        return [
            UnitOfMeasure(
                name=record.name,
                abbreviation=record.abbreviation,
                uom_class=record.uom_class,
                description=record.description,
                deleted=bool(record.deleted),
            )
            for record in records
        ]

    # -- helpers --------------------------------------------------------------

    def _run(self, operation: Callable[[Session], T]) -> T:
        try:
            with self._session_factory() as db:
                return operation(db)
        except SQLAlchemyError as exc:
            self._logger.error("archive read failed error=%s", exc)
            raise TransportError(status_code=503, detail=str(exc)) from exc

    def _point_row(self, db: Session, point: PointInfo) -> ArchivePoint:
        row = db.get(ArchivePoint, point.ref)
        if row is None:
            raise TransportError(status_code=404, detail=f"Point {point.name!r} no longer exists in the archive")
        return row

    def _bracketed(
        self,
        db: Session,
        row: ArchivePoint,
        *,
        start: datetime,
        end: datetime,
        predicate: ValuePredicate | None,
    ) -> list[HistorianValue]:
        inside = fetch_recorded(db, point=row, start=start, end=end)
        if predicate is not None:
            inside = [item for item in inside if predicate(item.value)]
        values: list[HistorianValue] = []
        before = _walk(
            lambda when, limit: fetch_previous(db, point=row, before=when, limit=limit),
            start,
            predicate,
        )
        if before is not None:
            values.append(before)
        values.extend(inside)
        after = _walk(
            lambda when, limit: fetch_next(db, point=row, after=when, limit=limit),
            end,
            predicate,
        )
        if after is not None:
            values.append(after)
        return values


def _walk(
    fetch: Callable[[datetime, int], list[HistorianValue]],
    origin: datetime,
    predicate: ValuePredicate | None,
) -> HistorianValue | None:
    # nearest recorded value past origin that survives the filter
    limit = 1 if predicate is None else WALK_BATCH_SIZE
    when = origin
    while True:
        batch = fetch(when, limit)
        for item in batch:
            if predicate is None or predicate(item.value):
                return item
        if len(batch) < limit:
            return None
        when = batch[-1].timestamp


def _to_point_info(point: Any) -> PointInfo:
    return PointInfo(
        name=point.name,
        ref=point.id,
        point_type=point.point_type,
        source=point.source,
        engineering_units=point.engineering_units,
        descriptor=point.descriptor,
        step=bool(point.step),
    )
