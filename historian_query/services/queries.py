from __future__ import annotations

import logging
from dataclasses import dataclass, field
from datetime import datetime
from typing import Any, Iterable, Mapping, Sequence

from historian_query.core.errors import InvalidHandleError
from historian_query.services.calculations import MAX_RESULT_COUNT, bucket_count, interval_count
from historian_query.services.connection import ConnectionManager
from historian_query.services.tags import TagHandle, TagResolver
from historian_query.services.values import NO_DATA, HistorianValue, Sample, as_utc, to_sample
from historian_query.transports.base import (
    CALCULATION_BASES,
    SUMMARY_TYPES,
    TIMESTAMP_POLICIES,
    CalculationBasis,
    SummaryType,
    TimestampPolicy,
)

PATH_PLACEHOLDER = "{path}"


@dataclass(frozen=True)
class TimeRange:
    start: datetime
    end: datetime

    def __post_init__(self) -> None:
        if as_utc(self.start) > as_utc(self.end):
            raise ValueError("start must not be after end")


@dataclass(frozen=True)
class CountSpec:
    anchor: datetime
    count: int
    forward: bool = True

    def __post_init__(self) -> None:
        if self.count < 0:
            raise ValueError("count must not be negative")


@dataclass(frozen=True)
class InstantList:
    times: tuple[datetime, ...] = field(default_factory=tuple)


@dataclass(frozen=True)
class SummarySpec:
    duration_seconds: float
    summary_type: SummaryType = "average"
    calculation_basis: CalculationBasis = "time_weighted"
    timestamp_policy: TimestampPolicy = "earliest"

    def __post_init__(self) -> None:
        if self.duration_seconds <= 0:
            raise ValueError("duration_seconds must be positive")
        if self.summary_type not in SUMMARY_TYPES:
            raise ValueError(f"Unsupported summary type: {self.summary_type}")
        if self.calculation_basis not in CALCULATION_BASES:
            raise ValueError(f"Unsupported calculation basis: {self.calculation_basis}")
        if self.timestamp_policy not in TIMESTAMP_POLICIES:
            raise ValueError(f"Unsupported timestamp policy: {self.timestamp_policy}")


TimeSpec = TimeRange | CountSpec | InstantList


class QueryEngine:
    """Typed reads against resolved tags.

    Every query reuses the connection owned by ``ConnectionManager``. A result
    of ``None`` means the backend returned no result set at all, which is
    different from an empty list (a valid query with no data in range).
    """

    def __init__(self, *, connection: ConnectionManager, resolver: TagResolver):
        self._connection = connection
        self._resolver = resolver
        self._logger = logging.getLogger("historian_query.queries")

    @property
    def resolver(self) -> TagResolver:
        return self._resolver

    def query(self, tag: TagHandle, spec: TimeSpec) -> list[Sample] | None:
        if isinstance(spec, TimeRange):
            return self.query_raw(tag, spec.start, spec.end)
        if isinstance(spec, CountSpec):
            return self.query_raw_by_count(tag, spec.anchor, spec.count, forward=spec.forward)
        if isinstance(spec, InstantList):
            return self.query_interpolated_at_times(tag, spec.times)
        raise TypeError(f"Unsupported time specification: {type(spec).__name__}")

    def query_raw(
        self,
        tag: TagHandle,
        start: datetime,
        end: datetime,
        filter_expression: str | None = None,
    ) -> list[Sample] | None:
        window = TimeRange(start=start, end=end)
        database = self._require(tag)
        values = self._connection.transport.recorded_values(
            database,
            tag.to_point(),
            start=window.start,
            end=window.end,
            filter_expression=filter_expression,
        )
        return self._to_samples(tag, values)

    def query_raw_by_count(
        self,
        tag: TagHandle,
        anchor: datetime,
        count: int,
        forward: bool = True,
    ) -> list[Sample] | None:
        spec = CountSpec(anchor=anchor, count=count, forward=forward)
        database = self._require(tag)
        if spec.count == 0:
            return []
        values = self._connection.transport.recorded_values_by_count(
            database,
            tag.to_point(),
            anchor=spec.anchor,
            count=spec.count,
            forward=spec.forward,
        )
        if values is not None:
            values = values[: spec.count]
        return self._to_samples(tag, values)

    def query_interpolated(
        self,
        tag: TagHandle,
        start: datetime,
        end: datetime,
        interval_seconds: float,
        filter_expression: str | None = None,
    ) -> list[Sample] | None:
        window = TimeRange(start=start, end=end)
        interval_count(window.start, window.end, interval_seconds)
        database = self._require(tag)
        values = self._connection.transport.interpolated_values(
            database,
            tag.to_point(),
            start=window.start,
            end=window.end,
            interval_seconds=interval_seconds,
            filter_expression=filter_expression,
        )
        return self._to_samples(tag, values)

    def query_interpolated_at_times(self, tag: TagHandle, times: Iterable[datetime]) -> list[Sample] | None:
        requested = [as_utc(item) for item in times]
        if len(requested) > MAX_RESULT_COUNT:
            raise ValueError(f"At most {MAX_RESULT_COUNT} times may be requested at once, got {len(requested)}")
        database = self._require(tag)
        if not requested:
            return []
        values = self._connection.transport.interpolated_values_at_times(database, tag.to_point(), times=requested)
        if values is not None:
            values = _align_to_times(values, requested)
        return self._to_samples(tag, values)

    def query_summary(
        self,
        tag: TagHandle,
        start: datetime,
        end: datetime,
        summary: SummarySpec,
    ) -> list[Sample] | None:
        window = TimeRange(start=start, end=end)
        bucket_count(window.start, window.end, summary.duration_seconds)
        database = self._require(tag)
        values = self._connection.transport.summaries(
            database,
            tag.to_point(),
            start=window.start,
            end=window.end,
            duration_seconds=summary.duration_seconds,
            summary_type=summary.summary_type,
            calculation_basis=summary.calculation_basis,
            timestamp_policy=summary.timestamp_policy,
        )
        point_type = "int64" if summary.summary_type == "count" else "float64"
        return self._to_samples(tag, values, point_type=point_type)

    def query_interpolated_multi(
        self,
        tags: Sequence[TagHandle | str],
        start: datetime,
        end: datetime,
        interval_seconds: float,
        filter_expression: str | None = None,
    ) -> dict[str, list[Sample] | None]:
        window = TimeRange(start=start, end=end)
        interval_count(window.start, window.end, interval_seconds)
        # resolve everything up front so a bad name fails before any data is read
        handles = [tag if isinstance(tag, TagHandle) else self._resolver.resolve(tag) for tag in tags]

        results: dict[str, list[Sample] | None] = {}
        for handle in handles:
            expression = filter_expression.replace(PATH_PLACEHOLDER, handle.path) if filter_expression else None
            samples = self.query_interpolated(handle, start, end, interval_seconds, filter_expression=expression)
            self._logger.debug(
                "multi-tag interpolated tag=%s samples=%s",
                handle.name,
                len(samples) if samples is not None else None,
            )
            results[handle.name] = samples
        return results

    def _require(self, tag: TagHandle) -> Any:
        database = self._connection.database_for(tag.generation)
        if database is None:
            raise InvalidHandleError(
                f"Tag handle {tag.name!r} belongs to a connection that is no longer live; resolve it again"
            )
        return database

    def _to_samples(
        self,
        tag: TagHandle,
        values: Sequence[HistorianValue] | None,
        *,
        point_type: str | None = None,
    ) -> list[Sample] | None:
        if values is None:
            self._logger.warning("query returned no result set tag=%s", tag.name)
            return None
        return [to_sample(tag.name, item, point_type=point_type or tag.point_type) for item in values]


def flatten_results(results: Mapping[str, Sequence[Sample] | None]) -> list[Sample]:
    flat: list[Sample] = []
    for samples in results.values():
        if samples:
            flat.extend(samples)
    return flat


def _align_to_times(values: Sequence[HistorianValue], times: Sequence[datetime]) -> list[HistorianValue]:
    if len(values) == len(times) and all(as_utc(item.timestamp) == when for item, when in zip(values, times)):
        return list(values)
    by_time = {as_utc(item.timestamp): item for item in values}
    aligned: list[HistorianValue] = []
    for when in times:
        item = by_time.get(when)
        if item is None:
            item = HistorianValue(timestamp=when, value=NO_DATA, good=False)
        aligned.append(item)
    return aligned
