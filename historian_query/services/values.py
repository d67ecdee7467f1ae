from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime, timezone
from decimal import Decimal
from typing import Any, Literal

ValueKind = Literal["float", "integer", "boolean", "string", "categorical", "datetime", "unknown"]

FLOAT_POINT_TYPES = frozenset({"float16", "float32", "float64"})
INTEGER_POINT_TYPES = frozenset({"int16", "int32", "int64"})
POINT_TYPES = FLOAT_POINT_TYPES | INTEGER_POINT_TYPES | frozenset(
    {"digital", "boolean", "string", "timestamp", "blob"}
)
STEP_POINT_TYPES = frozenset({"digital", "boolean", "string", "timestamp", "blob"})

NO_DATA_LABEL = "No Data"


@dataclass(frozen=True)
class CategoricalValue:
    label: str
    code: int | None = None
    is_system: bool = False


NO_DATA = CategoricalValue(label=NO_DATA_LABEL, code=248, is_system=True)


@dataclass(frozen=True)
class HistorianValue:
    timestamp: datetime
    value: Any
    good: bool = True


@dataclass(frozen=True)
class Sample:
    tag: str
    timestamp: datetime
    kind: ValueKind
    value: Any
    good: bool
    type_name: str

    @property
    def local_timestamp(self) -> datetime:
        return self.timestamp.astimezone()


def normalize_point_type(point_type: str | None) -> str:
    if point_type is None:
        return "float64"
    normalized = point_type.strip().lower()
    if normalized in {"float", "double", "real"}:
        return "float64"
    if normalized in {"int", "integer"}:
        return "int32"
    if normalized in {"bool", "flag"}:
        return "boolean"
    if normalized in {"datetime", "time"}:
        return "timestamp"
    if normalized in POINT_TYPES:
        return normalized
    return normalized or "float64"


def is_numeric_value(value: Any) -> bool:
    return isinstance(value, (int, float, Decimal)) and not isinstance(value, bool)


def classify_value(value: Any, *, point_type: str | None = None) -> tuple[ValueKind, Any]:
    declared = normalize_point_type(point_type) if point_type is not None else None

    if isinstance(value, CategoricalValue):
        return "categorical", value
    if isinstance(value, bool):
        return "boolean", value
    if isinstance(value, datetime):
        return "datetime", value
    if isinstance(value, (int, float, Decimal)):
        if declared in INTEGER_POINT_TYPES and float(value).is_integer():
            return "integer", int(value)
        if declared in FLOAT_POINT_TYPES or isinstance(value, (float, Decimal)):
            return "float", float(value)
        return "integer", int(value)
    if isinstance(value, str):
        if declared == "timestamp":
            parsed = parse_timestamp(value)
            if parsed is not None:
                return "datetime", parsed
        return "string", value
    return "unknown", value


def to_sample(tag: str, item: HistorianValue, *, point_type: str | None = None) -> Sample:
    kind, value = classify_value(item.value, point_type=point_type)
    return Sample(
        tag=tag,
        timestamp=as_utc(item.timestamp),
        kind=kind,
        value=value,
        good=item.good,
        type_name=type(item.value).__name__,
    )


def as_utc(value: datetime) -> datetime:
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value.astimezone(timezone.utc)


def parse_timestamp(value: Any) -> datetime | None:
    if value is None:
        return None
    if isinstance(value, datetime):
        return as_utc(value)
    if isinstance(value, str):
        text = value.strip()
        if text == "":
            return None
        if text.endswith("Z"):
            text = text[:-1] + "+00:00"
        # PI Web API emits 7 fractional digits; fromisoformat accepts at most 6.
        if "." in text:
            head, _, tail = text.partition(".")
            digits = ""
            rest = ""
            for index, char in enumerate(tail):
                if not char.isdigit():
                    rest = tail[index:]
                    break
                digits += char
            text = f"{head}.{digits[:6].ljust(6, '0')}{rest}" if digits else f"{head}{rest}"
        try:
            return as_utc(datetime.fromisoformat(text))
        except ValueError:
            return None
    return None


def format_timestamp_utc(value: datetime) -> str:
    return as_utc(value).isoformat().replace("+00:00", "Z")
