import logging
from contextlib import asynccontextmanager

from fastapi import FastAPI, Request

from historian_query.api.queries import router as historian_router
from historian_query.core.config import Settings, get_settings
from historian_query.core.errors import HistorianError
from historian_query.core.logging import configure_logging
from historian_query.schemas.queries import HistorianStatusResponse
from historian_query.services.connection import ConnectionManager
from historian_query.services.formatter import ValueFormatter
from historian_query.services.queries import QueryEngine
from historian_query.services.reference import ReferenceDataService
from historian_query.services.tags import TagResolver
from historian_query.transports.factory import build_transport

logger = logging.getLogger("historian_query.app")


@asynccontextmanager
async def lifespan(app: FastAPI):
    settings = get_settings()
    configure_logging(settings.log_level)
    transport = build_transport(settings)
    connection_manager = ConnectionManager.from_settings(settings, transport=transport)
    tag_resolver = TagResolver(connection=connection_manager)

    app.state.settings = settings
    app.state.connection_manager = connection_manager
    app.state.tag_resolver = tag_resolver
    app.state.query_engine = QueryEngine(connection=connection_manager, resolver=tag_resolver)
    app.state.value_formatter = ValueFormatter(date_format=settings.historian_date_display_format)
    app.state.reference_service = ReferenceDataService(connection=connection_manager)

    try:
        yield
    finally:
        connection_manager.disconnect()


app = FastAPI(title="Historian Query Service", lifespan=lifespan)
app.include_router(historian_router)


@app.get("/health")
def health():
    return {"status": "ok", "service": "historian-query"}


@app.get("/status", response_model=HistorianStatusResponse)
def status(request: Request) -> HistorianStatusResponse:
    settings: Settings | None = getattr(request.app.state, "settings", None)
    connection_manager: ConnectionManager | None = getattr(request.app.state, "connection_manager", None)
    if settings is None or connection_manager is None:
        return HistorianStatusResponse(
            transport="unknown",
            server_name="",
            database_name="",
            state="disconnected",
            error="Historian connection is not initialized",
        )

    error: str | None = None
    try:
        connection_manager.ensure_connected()
    except HistorianError as exc:
        logger.warning("historian status check failed error=%s", exc)
        error = str(exc)
    return HistorianStatusResponse(
        transport=settings.historian_transport,
        server_name=connection_manager.server_name,
        database_name=connection_manager.database_name,
        state="connected" if connection_manager.is_connected() else "disconnected",
        error=error,
    )
