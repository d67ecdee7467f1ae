from __future__ import annotations

from datetime import datetime
from typing import Any

from fastapi import APIRouter, Depends, HTTPException, Query, status

from historian_query.core.errors import (
    ConfigurationError,
    HistorianConnectionError,
    HistorianError,
    InvalidHandleError,
    NotFoundError,
    TransportError,
)
from historian_query.dependencies import (
    get_query_engine,
    get_reference_service,
    get_tag_resolver,
    get_value_formatter,
)
from historian_query.schemas.queries import (
    MultiInterpolatedRequest,
    MultiSeriesResponse,
    PointResponse,
    QueryKind,
    SampleResponse,
    SeriesResponse,
    UnitOfMeasureResponse,
)
from historian_query.services.formatter import ValueFormatter
from historian_query.services.queries import QueryEngine, SummarySpec
from historian_query.services.reference import ReferenceDataService
from historian_query.services.tags import TagHandle, TagResolver
from historian_query.services.values import CategoricalValue, Sample
from historian_query.transports.base import CalculationBasis, SummaryType, TimestampPolicy

NO_RESULT_SET_DETAIL = "Query returned no result set. Check tag name and query parameters."

router = APIRouter(prefix="/api/historian", tags=["historian"])


@router.get("/points", response_model=list[PointResponse])
def list_points(
    name_filter: str = Query(default="*", min_length=1, max_length=255),
    source_filter: str = Query(default="", max_length=64),
    resolver: TagResolver = Depends(get_tag_resolver),
) -> list[PointResponse]:
    try:
        handles = resolver.find_by_filter(name_filter, source_filter)
    except (HistorianError, ValueError) as exc:
        raise _http_error(exc) from exc
    return [_point_response(handle) for handle in handles]


@router.get("/points/{tag}/recorded", response_model=SeriesResponse)
def get_recorded(
    tag: str,
    from_ts: datetime = Query(alias="from"),
    to_ts: datetime = Query(alias="to"),
    filter_expression: str | None = Query(default=None, max_length=2000),
    resolver: TagResolver = Depends(get_tag_resolver),
    engine: QueryEngine = Depends(get_query_engine),
    formatter: ValueFormatter = Depends(get_value_formatter),
) -> SeriesResponse:
    try:
        handle = resolver.resolve(tag)
        samples = engine.query_raw(handle, from_ts, to_ts, filter_expression=filter_expression)
    except (HistorianError, ValueError) as exc:
        raise _http_error(exc) from exc
    return _series_response(handle, "recorded", samples, formatter)


@router.get("/points/{tag}/recorded/count", response_model=SeriesResponse)
def get_recorded_by_count(
    tag: str,
    anchor: datetime = Query(),
    count: int = Query(ge=0, le=150000),
    forward: bool = Query(default=True),
    resolver: TagResolver = Depends(get_tag_resolver),
    engine: QueryEngine = Depends(get_query_engine),
    formatter: ValueFormatter = Depends(get_value_formatter),
) -> SeriesResponse:
    try:
        handle = resolver.resolve(tag)
        samples = engine.query_raw_by_count(handle, anchor, count, forward=forward)
    except (HistorianError, ValueError) as exc:
        raise _http_error(exc) from exc
    return _series_response(handle, "recorded_by_count", samples, formatter)


@router.get("/points/{tag}/interpolated", response_model=SeriesResponse)
def get_interpolated(
    tag: str,
    from_ts: datetime = Query(alias="from"),
    to_ts: datetime = Query(alias="to"),
    interval_seconds: float = Query(gt=0, le=315_360_000),
    filter_expression: str | None = Query(default=None, max_length=2000),
    resolver: TagResolver = Depends(get_tag_resolver),
    engine: QueryEngine = Depends(get_query_engine),
    formatter: ValueFormatter = Depends(get_value_formatter),
) -> SeriesResponse:
    try:
        handle = resolver.resolve(tag)
        samples = engine.query_interpolated(
            handle,
            from_ts,
            to_ts,
            interval_seconds,
            filter_expression=filter_expression,
        )
    except (HistorianError, ValueError) as exc:
        raise _http_error(exc) from exc
    return _series_response(handle, "interpolated", samples, formatter)


@router.get("/points/{tag}/interpolated/at", response_model=SeriesResponse)
def get_interpolated_at_times(
    tag: str,
    time: list[datetime] = Query(default=[]),
    resolver: TagResolver = Depends(get_tag_resolver),
    engine: QueryEngine = Depends(get_query_engine),
    formatter: ValueFormatter = Depends(get_value_formatter),
) -> SeriesResponse:
    try:
        handle = resolver.resolve(tag)
        samples = engine.query_interpolated_at_times(handle, time)
    except (HistorianError, ValueError) as exc:
        raise _http_error(exc) from exc
    return _series_response(handle, "interpolated_at_times", samples, formatter)


@router.get("/points/{tag}/summary", response_model=SeriesResponse)
def get_summary(
    tag: str,
    from_ts: datetime = Query(alias="from"),
    to_ts: datetime = Query(alias="to"),
    duration_seconds: float = Query(default=3600.0, gt=0, le=315_360_000),
    summary_type: SummaryType = Query(default="average"),
    calculation_basis: CalculationBasis = Query(default="time_weighted"),
    timestamp_policy: TimestampPolicy = Query(default="earliest"),
    resolver: TagResolver = Depends(get_tag_resolver),
    engine: QueryEngine = Depends(get_query_engine),
    formatter: ValueFormatter = Depends(get_value_formatter),
) -> SeriesResponse:
    try:
        summary = SummarySpec(
            duration_seconds=duration_seconds,
            summary_type=summary_type,
            calculation_basis=calculation_basis,
            timestamp_policy=timestamp_policy,
        )
        handle = resolver.resolve(tag)
        samples = engine.query_summary(handle, from_ts, to_ts, summary)
    except (HistorianError, ValueError) as exc:
        raise _http_error(exc) from exc
    return _series_response(handle, "summary", samples, formatter)


@router.post("/interpolated", response_model=MultiSeriesResponse)
def post_interpolated_multi(
    payload: MultiInterpolatedRequest,
    resolver: TagResolver = Depends(get_tag_resolver),
    engine: QueryEngine = Depends(get_query_engine),
    formatter: ValueFormatter = Depends(get_value_formatter),
) -> MultiSeriesResponse:
    try:
        handles = [resolver.resolve(name) for name in payload.tags]
        results = engine.query_interpolated_multi(
            handles,
            payload.from_ts,
            payload.to_ts,
            payload.interval_seconds,
            filter_expression=payload.filter_expression,
        )
    except (HistorianError, ValueError) as exc:
        raise _http_error(exc) from exc
    return MultiSeriesResponse(
        series=[_series_response(handle, "interpolated", results[handle.name], formatter) for handle in handles]
    )


@router.get("/units", response_model=list[UnitOfMeasureResponse])
def list_units(
    include_deleted: bool = Query(default=False),
    service: ReferenceDataService = Depends(get_reference_service),
) -> list[UnitOfMeasureResponse]:
    try:
        units = service.list_units_of_measure() if include_deleted else service.list_display_units()
    except HistorianError as exc:
        raise _http_error(exc) from exc
    return [
        UnitOfMeasureResponse(
            name=unit.name,
            abbreviation=unit.abbreviation,
            uom_class=unit.uom_class,
            description=unit.description,
            deleted=unit.deleted,
        )
        for unit in units
    ]


def _http_error(exc: Exception) -> HTTPException:
    if isinstance(exc, NotFoundError):
        return HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail=str(exc))
    if isinstance(exc, InvalidHandleError):
        return HTTPException(status_code=status.HTTP_409_CONFLICT, detail=str(exc))
    if isinstance(exc, (ConfigurationError, HistorianConnectionError)):
        return HTTPException(status_code=status.HTTP_503_SERVICE_UNAVAILABLE, detail=str(exc))
    if isinstance(exc, TransportError):
        return HTTPException(status_code=status.HTTP_502_BAD_GATEWAY, detail=exc.detail)
    if isinstance(exc, ValueError):
        return HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail=str(exc))
    return HTTPException(status_code=status.HTTP_500_INTERNAL_SERVER_ERROR, detail=str(exc))


def _point_response(handle: TagHandle) -> PointResponse:
    return PointResponse(
        name=handle.name,
        path=handle.path,
        point_type=handle.point_type,
        source=handle.source,
        engineering_units=handle.engineering_units,
        step=handle.step,
    )


def _series_response(
    handle: TagHandle,
    query: QueryKind,
    samples: list[Sample] | None,
    formatter: ValueFormatter,
) -> SeriesResponse:
    if samples is None:
        raise HTTPException(
            status_code=status.HTTP_502_BAD_GATEWAY,
            detail=NO_RESULT_SET_DETAIL,
        )
    return SeriesResponse(
        tag=handle.name,
        path=handle.path,
        query=query,
        points=[
            SampleResponse(
                timestamp=sample.timestamp,
                kind=sample.kind,
                value=_json_value(sample.value),
                display_value=formatter.format(sample),
                good=sample.good,
            )
            for sample in samples
        ],
    )


def _json_value(value: Any) -> Any:
    if isinstance(value, CategoricalValue):
        return value.label
    if value is None or isinstance(value, (bool, int, float, str, datetime)):
        return value
    return str(value)
