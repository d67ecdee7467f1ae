from __future__ import annotations

from historian_query.core.config import Settings
from historian_query.db.session import create_archive_engine, create_session_factory, init_archive_schema
from historian_query.services.connection import credential_from_settings
from historian_query.transports.archive import ArchiveTransport
from historian_query.transports.base import HistorianTransport
from historian_query.transports.piwebapi import PiWebApiTransport


def build_transport(settings: Settings) -> HistorianTransport:
    if settings.historian_transport == "piwebapi":
        return PiWebApiTransport(
            base_url=settings.historian_base_url,
            timeout_seconds=settings.historian_http_timeout_seconds,
            credential=credential_from_settings(settings),
            page_size=settings.historian_point_page_size,
        )

    engine = create_archive_engine(settings.archive_database_url)
    init_archive_schema(engine)
    return ArchiveTransport(
        session_factory=create_session_factory(engine),
        server_name=settings.historian_server_name,
        page_size=settings.historian_point_page_size,
    )
