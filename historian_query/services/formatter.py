from __future__ import annotations

from datetime import datetime
from typing import Any

from historian_query.services.values import CategoricalValue, Sample

DEFAULT_DATE_FORMAT = "%Y.%m.%d. %H:%M:%S"


class ValueFormatter:
    def __init__(self, *, date_format: str = DEFAULT_DATE_FORMAT):
        self._date_format = date_format

    def format(self, sample: Sample) -> str:
        kind = sample.kind
        value = sample.value
        if kind == "categorical" and isinstance(value, CategoricalValue):
            return value.label
        if kind == "float":
            return f"{float(value):.2f}"
        if kind == "boolean":
            return "TRUE" if value else "FALSE"
        if kind == "integer":
            return str(int(value))
        if kind == "string":
            return str(value)
        if kind == "datetime" and isinstance(value, datetime):
            return _local(value).strftime(self._date_format)
        return _unknown(sample.type_name, value)


def _local(value: datetime) -> datetime:
    # naive timestamps are already local wall-clock time
    if value.tzinfo is None:
        return value
    return value.astimezone()


def _unknown(type_name: str | None, value: Any) -> str:
    name = type_name or type(value).__name__
    return f"{name} - Unknown type"
