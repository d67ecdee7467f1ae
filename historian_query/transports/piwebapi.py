from __future__ import annotations

import base64
import json
import logging
from dataclasses import dataclass
from datetime import datetime
from typing import Any, Sequence
from urllib.error import HTTPError, URLError
from urllib.parse import quote, urlencode, urljoin
from urllib.request import Request, urlopen

from historian_query.core.errors import TransportError
from historian_query.services.values import CategoricalValue, HistorianValue, format_timestamp_utc, parse_timestamp
from historian_query.transports.base import (
    CalculationBasis,
    Credential,
    PointInfo,
    SummaryType,
    TimestampPolicy,
    UnitOfMeasure,
)

# PI Web API answers at most this many recorded values per request unless the server is reconfigured.
RECORDED_MAX_COUNT = 150000

_EARLIEST_TIME = "1970-01-01T00:00:00Z"
_LATEST_TIME = "2100-01-01T00:00:00Z"

_SUMMARY_TYPE_NAMES: dict[str, str] = {
    "total": "Total",
    "average": "Average",
    "minimum": "Minimum",
    "maximum": "Maximum",
    "range": "Range",
    "count": "Count",
    "std_dev": "StdDev",
}
_CALCULATION_BASIS_NAMES: dict[str, str] = {
    "time_weighted": "TimeWeighted",
    "event_weighted": "EventWeighted",
}
_TIME_TYPE_NAMES: dict[str, str] = {
    "auto": "Auto",
    "earliest": "EarliestTime",
    "most_recent": "MostRecentTime",
}


@dataclass
class PiServer:
    web_id: str
    name: str
    connected: bool = False


@dataclass
class PiSystem:
    web_id: str
    name: str
    connected: bool = False


@dataclass(frozen=True)
class PiDatabase:
    web_id: str
    name: str
    path: str = ""


class PiWebApiTransport:
    def __init__(
        self,
        *,
        base_url: str,
        timeout_seconds: float = 30.0,
        credential: Credential | None = None,
        page_size: int = 1000,
        recorded_page_size: int = RECORDED_MAX_COUNT,
    ):
        self._base_url = base_url.rstrip("/") + "/"
        self._timeout_seconds = timeout_seconds
        self._credential = credential
        self._page_size = max(1, page_size)
        self._recorded_page_size = max(1, min(recorded_page_size, RECORDED_MAX_COUNT))
        self._logger = logging.getLogger("historian_query.piwebapi")

    def find_server(self, server_name: str) -> PiServer | None:
        payload = self._get_or_none("dataservers", query={"name": server_name})
        if not isinstance(payload, dict) or not payload.get("WebId"):
            return None
        return PiServer(web_id=str(payload["WebId"]), name=str(payload.get("Name") or server_name))

    def connect_server(self, server: PiServer) -> None:
        payload = self._request_json("GET", f"dataservers/{_segment(server.web_id)}")
        server.connected = bool(payload.get("IsConnected", True)) if isinstance(payload, dict) else False

    def disconnect_server(self, server: PiServer) -> None:
        server.connected = False

    def server_is_connected(self, server: PiServer) -> bool:
        return server.connected

    def system_for_server(self, server: PiServer) -> PiSystem | None:
        payload = self._get_or_none("assetservers", query={"path": f"\\\\{server.name}"})
        return _to_system(payload)

    def default_system(self) -> PiSystem | None:
        payload = self._request_json("GET", "assetservers")
        for item in _items(payload) or []:
            system = _to_system(item)
            if system is not None:
                return system
        return None

    def connect_system(self, system: PiSystem, credential: Credential | None) -> None:
        if credential is not None:
            self._credential = credential
        payload = self._request_json("GET", f"assetservers/{_segment(system.web_id)}")
        system.connected = bool(payload.get("IsConnected", True)) if isinstance(payload, dict) else False

    def disconnect_system(self, system: PiSystem) -> None:
        system.connected = False

    def system_is_connected(self, system: PiSystem) -> bool:
        return system.connected

    def find_database(self, system: PiSystem, database_name: str) -> PiDatabase | None:
        payload = self._request_json("GET", f"assetservers/{_segment(system.web_id)}/assetdatabases")
        wanted = database_name.strip().lower()
        for item in _items(payload) or []:
            if str(item.get("Name", "")).lower() == wanted and item.get("WebId"):
                return PiDatabase(web_id=str(item["WebId"]), name=str(item["Name"]), path=str(item.get("Path") or ""))
        return None

    def find_point(self, server: PiServer, name: str) -> PointInfo | None:
        payload = self._get_or_none("points", query={"path": f"\\\\{server.name}\\{name}"})
        if not isinstance(payload, dict) or not payload.get("WebId"):
            return None
        return _to_point_info(payload)

    def find_points(
        self,
        server: PiServer,
        *,
        name_filter: str,
        source_filter: str = "",
    ) -> list[PointInfo]:
        # the points endpoint has no point-source parameter; the caller filters on PointInfo.source
        found: list[PointInfo] = []
        start_index = 0
        while True:
            payload = self._request_json(
                "GET",
                f"dataservers/{_segment(server.web_id)}/points",
                query={
                    "nameFilter": name_filter or "*",
                    "startIndex": start_index,
                    "maxCount": self._page_size,
                },
            )
            page = _items(payload) or []
            found.extend(_to_point_info(item) for item in page if item.get("WebId"))
            if len(page) < self._page_size:
                return found
            start_index += self._page_size

    def recorded_values(
        self,
        database: PiDatabase,
        point: PointInfo,
        *,
        start: datetime,
        end: datetime,
        filter_expression: str | None = None,
    ) -> list[HistorianValue] | None:
        # a full page means more values may follow; the next page restarts at
        # the last timestamp, so values already seen at that instant are skipped
        collected: list[HistorianValue] = []
        page_start = start
        while True:
            payload = self._request_json(
                "GET",
                f"streams/{_segment(point.ref)}/recorded",
                query={
                    "startTime": format_timestamp_utc(page_start),
                    "endTime": format_timestamp_utc(end),
                    "boundaryType": "Inside",
                    "filterExpression": filter_expression or None,
                    "maxCount": self._recorded_page_size,
                },
            )
            page = _values(payload)
            if page is None:
                if not collected:
                    return None
                raise TransportError(status_code=502, detail="PI Web API recorded page without Items")
            fresh = _skip_seen(page, collected)
            collected.extend(fresh)
            if len(page) < self._recorded_page_size:
                return collected
            if not fresh:
                raise TransportError(
                    status_code=502,
                    detail=f"More than {self._recorded_page_size} recorded values share one timestamp",
                )
            page_start = collected[-1].timestamp
            self._logger.debug("recorded page full point=%s next_start=%s", point.name, page_start)

    def recorded_values_by_count(
        self,
        database: PiDatabase,
        point: PointInfo,
        *,
        anchor: datetime,
        count: int,
        forward: bool,
    ) -> list[HistorianValue] | None:
        if count <= 0:
            return []
        # an end time before the start time makes the archive walk backwards
        payload = self._request_json(
            "GET",
            f"streams/{_segment(point.ref)}/recorded",
            query={
                "startTime": format_timestamp_utc(anchor),
                "endTime": _LATEST_TIME if forward else _EARLIEST_TIME,
                "boundaryType": "Inside",
                "maxCount": count,
            },
        )
        return _values(payload)

    def interpolated_values(
        self,
        database: PiDatabase,
        point: PointInfo,
        *,
        start: datetime,
        end: datetime,
        interval_seconds: float,
        filter_expression: str | None = None,
    ) -> list[HistorianValue] | None:
        payload = self._request_json(
            "GET",
            f"streams/{_segment(point.ref)}/interpolated",
            query={
                "startTime": format_timestamp_utc(start),
                "endTime": format_timestamp_utc(end),
                "interval": _format_duration(interval_seconds),
                "filterExpression": filter_expression or None,
            },
        )
        return _values(payload)

    def interpolated_values_at_times(
        self,
        database: PiDatabase,
        point: PointInfo,
        *,
        times: Sequence[datetime],
    ) -> list[HistorianValue] | None:
        if not times:
            return []
        payload = self._request_json(
            "GET",
            f"streams/{_segment(point.ref)}/interpolatedattimes",
            query={"time": [format_timestamp_utc(item) for item in times]},
        )
        return _values(payload)

    def summaries(
        self,
        database: PiDatabase,
        point: PointInfo,
        *,
        start: datetime,
        end: datetime,
        duration_seconds: float,
        summary_type: SummaryType,
        calculation_basis: CalculationBasis,
        timestamp_policy: TimestampPolicy,
    ) -> list[HistorianValue] | None:
        payload = self._request_json(
            "GET",
            f"streams/{_segment(point.ref)}/summary",
            query={
                "startTime": format_timestamp_utc(start),
                "endTime": format_timestamp_utc(end),
                "summaryType": _SUMMARY_TYPE_NAMES[summary_type],
                "calculationBasis": _CALCULATION_BASIS_NAMES[calculation_basis],
                "timeType": _TIME_TYPE_NAMES[timestamp_policy],
                "summaryDuration": _format_duration(duration_seconds),
            },
        )
        items = _items(payload)
        if items is None:
            return None
        return [_to_value(item.get("Value") or {}) for item in items]

    def list_units_of_measure(self, system: PiSystem) -> list[UnitOfMeasure]:
        classes = self._request_json("GET", f"assetservers/{_segment(system.web_id)}/unitclasses")
        units: list[UnitOfMeasure] = []
        for uom_class in _items(classes) or []:
            class_id = uom_class.get("WebId")
            if not class_id:
                continue
            payload = self._request_json("GET", f"unitclasses/{_segment(class_id)}/units")
            for unit in _items(payload) or []:
                units.append(
                    UnitOfMeasure(
                        name=str(unit.get("Name", "")),
                        abbreviation=str(unit.get("Abbreviation", "")),
                        uom_class=str(uom_class.get("Name", "")),
                        description=str(unit.get("Description") or ""),
                    )
                )
        return units

    def _get_or_none(self, path: str, *, query: dict[str, Any]) -> Any | None:
        try:
            return self._request_json("GET", path, query=query)
        except TransportError as exc:
            if exc.status_code == 404:
                return None
            raise

    def _request_json(
        self,
        method: str,
        path: str,
        *,
        query: dict[str, Any] | None = None,
    ) -> Any:
        status_code, content_type, body = self._request_raw(method, path, query=query)
        if status_code not in (200, 201):
            raise TransportError(status_code=status_code, detail=body or "Unexpected PI Web API response")
        if "application/json" not in content_type.lower():
            raise TransportError(status_code=502, detail="PI Web API response is not JSON")
        try:
            return json.loads(body) if body else {}
        except json.JSONDecodeError as exc:
            raise TransportError(status_code=502, detail=f"Invalid PI Web API JSON response: {exc}") from exc

    def _request_raw(
        self,
        method: str,
        path: str,
        *,
        query: dict[str, Any] | None = None,
    ) -> tuple[int, str, str]:
        url = urljoin(self._base_url, path.lstrip("/"))
        if query:
            filtered = {k: v for k, v in query.items() if v is not None}
            if filtered:
                url = f"{url}?{urlencode(filtered, doseq=True)}"

        headers = {"Accept": "application/json"}
        if self._credential is not None:
            token = f"{self._credential.qualified_username}:{self._credential.secret}".encode("utf-8")
            headers["Authorization"] = "Basic " + base64.b64encode(token).decode("ascii")

        self._logger.debug("piwebapi request method=%s url=%s", method, url)
        request = Request(url=url, method=method.upper(), headers=headers)
        try:
            with urlopen(request, timeout=self._timeout_seconds) as response:
                body = response.read().decode("utf-8", errors="replace")
                return response.status, response.headers.get("content-type", ""), body
        except HTTPError as exc:
            detail = exc.read().decode("utf-8", errors="replace")
            raise TransportError(status_code=exc.code, detail=detail or str(exc))
        except URLError as exc:
            raise TransportError(status_code=503, detail=str(exc))
        except TimeoutError as exc:
            raise TransportError(status_code=504, detail=str(exc))


def _segment(web_id: Any) -> str:
    return quote(str(web_id), safe="")


def _items(payload: Any) -> list[dict[str, Any]] | None:
    if not isinstance(payload, dict) or "Items" not in payload:
        return None
    items = payload.get("Items")
    if not isinstance(items, list):
        return None
    return [item for item in items if isinstance(item, dict)]


def _values(payload: Any) -> list[HistorianValue] | None:
    items = _items(payload)
    if items is None:
        return None
    return [_to_value(item) for item in items]


def _to_value(item: dict[str, Any]) -> HistorianValue:
    timestamp = parse_timestamp(item.get("Timestamp"))
    if timestamp is None:
        raise TransportError(status_code=502, detail=f"PI Web API value without a valid timestamp: {item!r}")
    raw = item.get("Value")
    if isinstance(raw, dict) and "Name" in raw:
        code = raw.get("Value")
        raw = CategoricalValue(
            label=str(raw.get("Name")),
            code=int(code) if isinstance(code, (int, float)) and not isinstance(code, bool) else None,
            is_system=bool(raw.get("IsSystem", False)),
        )
    return HistorianValue(timestamp=timestamp, value=raw, good=bool(item.get("Good", True)))


def _to_system(payload: Any) -> PiSystem | None:
    if not isinstance(payload, dict) or not payload.get("WebId"):
        return None
    return PiSystem(web_id=str(payload["WebId"]), name=str(payload.get("Name") or ""))


def _to_point_info(payload: dict[str, Any]) -> PointInfo:
    return PointInfo(
        name=str(payload.get("Name", "")),
        ref=str(payload["WebId"]),
        point_type=str(payload.get("PointType") or "float64"),
        source=str(payload.get("PointSource") or ""),
        engineering_units=str(payload.get("EngineeringUnits") or ""),
        descriptor=str(payload.get("Descriptor") or ""),
        step=bool(payload.get("Step", False)),
    )


def _format_duration(seconds: float) -> str:
    if seconds <= 0:
        raise ValueError("duration must be positive")
    if float(seconds).is_integer():
        return f"{int(seconds)}s"
    return f"{seconds}s"


def _skip_seen(page: list[HistorianValue], collected: list[HistorianValue]) -> list[HistorianValue]:
    if not collected:
        return page
    last = collected[-1].timestamp
    seen = 0
    for item in reversed(collected):
        if item.timestamp != last:
            break
        seen += 1
    skip = 0
    while skip < len(page) and skip < seen and page[skip].timestamp == last:
        skip += 1
    return page[skip:]
