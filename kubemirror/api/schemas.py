"""Pydantic response schemas for the REST API."""

from __future__ import annotations

from typing import Any

from pydantic import BaseModel, Field


class ErrorResponse(BaseModel):
    """Error envelope returned for every non-2xx response."""

    error: str
    detail: str = ""


class HealthResponse(BaseModel):
    status: str = "ok"
    objects: int = 0


class VersionResponse(BaseModel):
    version: str
    k8s_version: str
    cluster: str = ""


class ObjectSummary(BaseModel):
    """One cached object as listed by /objects."""

    key: str
    name: str
    namespace: str | None = None
    api_version: str | None = None
    kind: str | None = None
    labels: dict[str, str] = Field(default_factory=dict)
    creation_timestamp: str | None = None


class ObjectList(BaseModel):
    count: int
    items: list[ObjectSummary]


class ObjectDetail(BaseModel):
    """A cached object in wire form."""

    key: str
    object: dict[str, Any]
