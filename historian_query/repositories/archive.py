from __future__ import annotations

from datetime import datetime
from typing import Any, Iterable

from sqlalchemy import func, select
from sqlalchemy.orm import Session

from historian_query.db.models import ArchiveDatabase, ArchivePoint, ArchiveValue, UnitOfMeasureRecord
from historian_query.services.values import (
    FLOAT_POINT_TYPES,
    INTEGER_POINT_TYPES,
    CategoricalValue,
    HistorianValue,
    as_utc,
    normalize_point_type,
)

LIKE_ESCAPE = "\\"


def get_database(db: Session, *, system_name: str, name: str) -> ArchiveDatabase | None:
    return db.scalars(
        select(ArchiveDatabase).where(
            func.lower(ArchiveDatabase.system_name) == system_name.lower(),
            func.lower(ArchiveDatabase.name) == name.lower(),
        )
    ).first()


def list_system_names(db: Session) -> list[str]:
    rows = db.scalars(select(ArchiveDatabase.system_name).distinct().order_by(ArchiveDatabase.system_name))
    return [str(row) for row in rows]


def get_point_by_name(db: Session, name: str) -> ArchivePoint | None:
    return db.scalars(select(ArchivePoint).where(func.lower(ArchivePoint.name) == name.strip().lower())).first()


def find_points(
    db: Session,
    *,
    name_filter: str,
    source_filter: str = "",
    offset: int = 0,
    limit: int = 1000,
) -> list[ArchivePoint]:
    statement = select(ArchivePoint)
    if name_filter and name_filter != "*":
        statement = statement.where(
            func.lower(ArchivePoint.name).like(glob_to_like(name_filter).lower(), escape=LIKE_ESCAPE)
        )
    if source_filter and source_filter != "*":
        statement = statement.where(
            func.lower(ArchivePoint.source).like(glob_to_like(source_filter).lower(), escape=LIKE_ESCAPE)
        )
    statement = statement.order_by(ArchivePoint.name).offset(max(0, offset)).limit(max(1, limit))
    return list(db.scalars(statement))


def fetch_recorded(db: Session, *, point: ArchivePoint, start: datetime, end: datetime) -> list[HistorianValue]:
    rows = db.scalars(
        select(ArchiveValue)
        .where(
            ArchiveValue.point_id == point.id,
            ArchiveValue.ts >= as_utc(start),
            ArchiveValue.ts <= as_utc(end),
        )
        .order_by(ArchiveValue.ts.asc(), ArchiveValue.id.asc())
    )
    return [to_historian_value(point.point_type, row) for row in rows]


def fetch_previous(db: Session, *, point: ArchivePoint, before: datetime, limit: int = 1) -> list[HistorianValue]:
    """Values strictly before ``before``, newest first."""
    rows = db.scalars(
        select(ArchiveValue)
        .where(ArchiveValue.point_id == point.id, ArchiveValue.ts < as_utc(before))
        .order_by(ArchiveValue.ts.desc(), ArchiveValue.id.desc())
        .limit(max(1, limit))
    )
    return [to_historian_value(point.point_type, row) for row in rows]


def fetch_next(db: Session, *, point: ArchivePoint, after: datetime, limit: int = 1) -> list[HistorianValue]:
    """Values strictly after ``after``, oldest first."""
    rows = db.scalars(
        select(ArchiveValue)
        .where(ArchiveValue.point_id == point.id, ArchiveValue.ts > as_utc(after))
        .order_by(ArchiveValue.ts.asc(), ArchiveValue.id.asc())
        .limit(max(1, limit))
    )
    return [to_historian_value(point.point_type, row) for row in rows]


def fetch_by_count(
    db: Session,
    *,
    point: ArchivePoint,
    anchor: datetime,
    count: int,
    forward: bool,
) -> list[HistorianValue]:
    if count <= 0:
        return []
    statement = select(ArchiveValue).where(ArchiveValue.point_id == point.id)
    if forward:
        statement = statement.where(ArchiveValue.ts >= as_utc(anchor)).order_by(
            ArchiveValue.ts.asc(), ArchiveValue.id.asc()
        )
    else:
        statement = statement.where(ArchiveValue.ts <= as_utc(anchor)).order_by(
            ArchiveValue.ts.desc(), ArchiveValue.id.desc()
        )
    rows = db.scalars(statement.limit(count))
    return [to_historian_value(point.point_type, row) for row in rows]


def list_units(db: Session, *, system_name: str) -> list[UnitOfMeasureRecord]:
    return list(
        db.scalars(
            select(UnitOfMeasureRecord)
            .where(func.lower(UnitOfMeasureRecord.system_name) == system_name.lower())
            .order_by(UnitOfMeasureRecord.uom_class, UnitOfMeasureRecord.name)
        )
    )


def create_database(db: Session, *, system_name: str, name: str, description: str = "") -> ArchiveDatabase:
    database = ArchiveDatabase(system_name=system_name, name=name, description=description)
    db.add(database)
    db.commit()
    return database


def create_point(
    db: Session,
    *,
    name: str,
    point_type: str = "float64",
    source: str = "",
    step: bool = False,
    engineering_units: str = "",
    descriptor: str = "",
) -> ArchivePoint:
    point = ArchivePoint(
        name=name,
        point_type=normalize_point_type(point_type),
        source=source,
        step=step,
        engineering_units=engineering_units,
        descriptor=descriptor,
    )
    db.add(point)
    db.commit()
    return point


def insert_values(db: Session, *, point: ArchivePoint, values: Iterable[HistorianValue]) -> int:
    inserted = 0
    for item in values:
        value_num, value_text, value_bool, value_ts = _split_value_columns(point.point_type, item.value)
        db.add(
            ArchiveValue(
                point_id=point.id,
                ts=as_utc(item.timestamp),
                value_num=value_num,
                value_text=value_text,
                value_bool=value_bool,
                value_ts=value_ts,
                good=item.good,
            )
        )
        inserted += 1
    db.commit()
    return inserted


def create_unit(
    db: Session,
    *,
    system_name: str,
    name: str,
    abbreviation: str,
    uom_class: str,
    description: str = "",
    deleted: bool = False,
) -> UnitOfMeasureRecord:
    unit = UnitOfMeasureRecord(
        system_name=system_name,
        name=name,
        abbreviation=abbreviation,
        uom_class=uom_class,
        description=description,
        deleted=deleted,
    )
    db.add(unit)
    db.commit()
    return unit


def to_historian_value(point_type: str, row: ArchiveValue) -> HistorianValue:
    return HistorianValue(
        timestamp=as_utc(row.ts),
        value=_join_value_columns(point_type, row),
        good=bool(row.good),
    )


def glob_to_like(pattern: str) -> str:
    escaped = (
        pattern.replace(LIKE_ESCAPE, LIKE_ESCAPE * 2)
        .replace("%", LIKE_ESCAPE + "%")
        .replace("_", LIKE_ESCAPE + "_")
    )
    return escaped.replace("*", "%").replace("?", "_")


def _join_value_columns(point_type: str, row: ArchiveValue) -> Any:
    kind = normalize_point_type(point_type)
    if kind in FLOAT_POINT_TYPES:
        return float(row.value_num) if row.value_num is not None else row.value_text
    if kind in INTEGER_POINT_TYPES:
        return int(row.value_num) if row.value_num is not None else row.value_text
    if kind == "digital":
        if row.value_text is None:
            return None
        code = int(row.value_num) if row.value_num is not None else None
        return CategoricalValue(label=row.value_text, code=code)
    if kind == "boolean":
        return row.value_bool
    if kind == "timestamp":
        return as_utc(row.value_ts) if row.value_ts is not None else row.value_text
    return row.value_text


def _split_value_columns(
    point_type: str,
    value: Any,
) -> tuple[float | None, str | None, bool | None, datetime | None]:
    if value is None:
        return None, None, None, None
    if isinstance(value, CategoricalValue):
        return (float(value.code) if value.code is not None else None), value.label, None, None
    if isinstance(value, bool):
        return None, None, value, None
    if isinstance(value, datetime):
        return None, None, None, as_utc(value)
    if isinstance(value, (int, float)):
        return float(value), None, None, None
    kind = normalize_point_type(point_type)
    text_value = str(value)
    if kind in FLOAT_POINT_TYPES or kind in INTEGER_POINT_TYPES:
        try:
            return float(text_value), None, None, None
        except ValueError:
            # system states such as "Shutdown" are kept as text on numeric points
            return None, text_value, None, None
    return None, text_value, None, None
