from typing import TYPE_CHECKING

from fastapi import HTTPException, Request

if TYPE_CHECKING:
    from historian_query.services.formatter import ValueFormatter
    from historian_query.services.queries import QueryEngine
    from historian_query.services.reference import ReferenceDataService
    from historian_query.services.tags import TagResolver


def get_tag_resolver(request: Request) -> "TagResolver":
    resolver = getattr(request.app.state, "tag_resolver", None)
    if resolver is None:
        raise HTTPException(status_code=503, detail="Tag resolver is not initialized")
    return resolver


def get_query_engine(request: Request) -> "QueryEngine":
    engine = getattr(request.app.state, "query_engine", None)
    if engine is None:
        raise HTTPException(status_code=503, detail="Query engine is not initialized")
    return engine


def get_value_formatter(request: Request) -> "ValueFormatter":
    formatter = getattr(request.app.state, "value_formatter", None)
    if formatter is None:
        raise HTTPException(status_code=503, detail="Value formatter is not initialized")
    return formatter


def get_reference_service(request: Request) -> "ReferenceDataService":
    service = getattr(request.app.state, "reference_service", None)
    if service is None:
        raise HTTPException(status_code=503, detail="Reference data service is not initialized")
    return service
