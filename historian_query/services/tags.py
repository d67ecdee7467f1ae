from __future__ import annotations

import re
from dataclasses import dataclass
from typing import Any

from historian_query.core.errors import NotFoundError
from historian_query.services.connection import ConnectionManager
from historian_query.services.values import STEP_POINT_TYPES, normalize_point_type
from historian_query.transports.base import PointInfo

_TAG_PATH_PATTERN = re.compile(
    r"^\\\\(?:PI)?Server\[(?P<server>[^\]]+)\]\\(?:PI)?Point\[(?P<tag>[^\]]+)\]$",
    re.IGNORECASE,
)


@dataclass(frozen=True)
class TagHandle:
    name: str
    path: str
    ref: Any
    point_type: str
    source: str
    engineering_units: str
    step: bool
    generation: int

    def to_point(self) -> PointInfo:
        return PointInfo(
            name=self.name,
            ref=self.ref,
            point_type=self.point_type,
            source=self.source,
            engineering_units=self.engineering_units,
            step=self.step,
        )


def build_tag_path(server_name: str, tag_name: str) -> str:
    if not server_name.strip() or not tag_name.strip():
        raise ValueError("server_name and tag_name must not be empty")
    return f"\\\\Server[{server_name}]\\Point[{tag_name}]"


def parse_tag_path(path: str) -> tuple[str, str]:
    match = _TAG_PATH_PATTERN.match(path.strip())
    if match is None:
        raise ValueError(f"Not a tag path: {path!r}")
    return match.group("server"), match.group("tag")


def matches_name_filter(name: str, pattern: str) -> bool:
    if pattern in ("", "*"):
        return True
    return _compile_filter(pattern).match(name) is not None


def _compile_filter(pattern: str) -> re.Pattern[str]:
    parts: list[str] = []
    for char in pattern:
        if char == "*":
            parts.append(".*")
        elif char == "?":
            parts.append(".")
        else:
            parts.append(re.escape(char))
    return re.compile("^" + "".join(parts) + "$", re.IGNORECASE | re.DOTALL)


class TagResolver:
    def __init__(self, *, connection: ConnectionManager):
        self._connection = connection

    def resolve(self, name: str) -> TagHandle:
        clean_name = name.strip()
        if clean_name == "":
            raise NotFoundError("Tag name must not be empty")
        self._connection.ensure_connected()
        point = self._connection.transport.find_point(self._connection.server, clean_name)
        if point is None or point.name.lower() != clean_name.lower():
            raise NotFoundError(f"Tag {clean_name!r} was not found on server {self._connection.server_name!r}")
        return self._to_handle(point)

    def find_by_filter(self, pattern: str, source_filter: str = "") -> list[TagHandle]:
        self._connection.ensure_connected()
        points = self._connection.transport.find_points(
            self._connection.server,
            name_filter=pattern or "*",
            source_filter=source_filter,
        )
        return [
            self._to_handle(point)
            for point in points
            if matches_name_filter(point.name, pattern or "*")
            and matches_name_filter(point.source, source_filter or "*")
        ]

    def _to_handle(self, point: PointInfo) -> TagHandle:
        point_type = normalize_point_type(point.point_type)
        return TagHandle(
            name=point.name,
            path=build_tag_path(self._connection.server_name, point.name),
            ref=point.ref,
            point_type=point_type,
            source=point.source,
            engineering_units=point.engineering_units,
            step=point.step or point_type in STEP_POINT_TYPES,
            generation=self._connection.generation,
        )
