"""REST route handlers.

Handlers read their dependencies from ``request.app.state`` (populated by
:func:`kubemirror.api.app.create_app`).
"""

from __future__ import annotations

from fastapi import APIRouter, Query, Request
from fastapi.responses import JSONResponse, Response
from prometheus_client import CONTENT_TYPE_LATEST, generate_latest

from kubemirror.api.schemas import (
    ErrorResponse,
    HealthResponse,
    ObjectDetail,
    ObjectList,
    ObjectSummary,
    VersionResponse,
)
from kubemirror.models.objects import ClusterObject

router = APIRouter(tags=["objects"])
ops_router = APIRouter(tags=["ops"])


def _summary(key: str, obj: ClusterObject) -> ObjectSummary:
    return ObjectSummary(
        key=key,
        name=obj.name,
        namespace=obj.namespace,
        api_version=obj.types.api_version if obj.types else None,
        kind=obj.types.kind if obj.types else None,
        labels=obj.labels,
        creation_timestamp=obj.creation_timestamp,
    )


@ops_router.get("/healthz", response_model=HealthResponse)
async def healthz(request: Request) -> HealthResponse:
    return HealthResponse(status="ok", objects=len(request.app.state.cache))


@ops_router.get("/version", response_model=VersionResponse)
async def version(request: Request) -> VersionResponse:
    from kubemirror import __version__

    return VersionResponse(
        version=__version__,
        k8s_version=request.app.state.k8s_version or "n/a",
        cluster=request.app.state.cluster,
    )


@ops_router.get("/metrics")
async def metrics() -> Response:
    return Response(content=generate_latest(), media_type=CONTENT_TYPE_LATEST)


@router.get("/objects", response_model=ObjectList)
async def list_objects(
    request: Request,
    kind: str | None = Query(default=None, max_length=253),
    namespace: str | None = Query(default=None, max_length=253),
) -> ObjectList:
    """List cached objects, optionally filtered by kind and namespace."""
    items: list[ObjectSummary] = []
    for key, obj in request.app.state.cache.snapshot():
        if kind is not None and (obj.types is None or obj.types.kind.lower() != kind.lower()):
            continue
        if namespace is not None and obj.namespace != namespace:
            continue
        items.append(_summary(key, obj))
    return ObjectList(count=len(items), items=items)


@router.get(
    "/objects/{namespace}/{name}",
    response_model=ObjectDetail,
    responses={404: {"model": ErrorResponse}},
)
async def get_object(request: Request, namespace: str, name: str) -> ObjectDetail | JSONResponse:
    """Fetch one cached object. Use ``none`` as the namespace for cluster-scoped objects."""
    obj = request.app.state.cache.get(namespace, name)
    if obj is None:
        return JSONResponse(
            status_code=404,
            content=ErrorResponse(
                error="OBJECT_NOT_FOUND",
                detail=f"No cached object {namespace}/{name}",
            ).model_dump(),
        )
    return ObjectDetail(key=obj.key, object=obj.to_dict())
