from __future__ import annotations

from datetime import datetime
from typing import Any, Literal

from pydantic import BaseModel, ConfigDict, Field

QueryKind = Literal["recorded", "recorded_by_count", "interpolated", "interpolated_at_times", "summary"]
SampleKind = Literal["float", "integer", "boolean", "string", "categorical", "datetime", "unknown"]


class PointResponse(BaseModel):
    name: str
    path: str
    point_type: str
    source: str
    engineering_units: str
    step: bool


class SampleResponse(BaseModel):
    timestamp: datetime
    kind: SampleKind
    value: Any = None
    display_value: str
    good: bool


class SeriesResponse(BaseModel):
    tag: str
    path: str
    query: QueryKind
    points: list[SampleResponse] = Field(default_factory=list)


class MultiInterpolatedRequest(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    tags: list[str] = Field(min_length=1, max_length=500)
    from_ts: datetime = Field(alias="from")
    to_ts: datetime = Field(alias="to")
    interval_seconds: float = Field(gt=0, le=315_360_000)
    filter_expression: str | None = Field(default=None, max_length=2000)


class MultiSeriesResponse(BaseModel):
    series: list[SeriesResponse] = Field(default_factory=list)


class UnitOfMeasureResponse(BaseModel):
    name: str
    abbreviation: str
    uom_class: str
    description: str = ""
    deleted: bool = False


class HistorianStatusResponse(BaseModel):
    transport: str
    server_name: str
    database_name: str
    state: Literal["connected", "disconnected"]
    error: str | None = None
