from __future__ import annotations

import math
from typing import Any, Dict, Generic, List, Optional, TypeVar

from pydantic import BaseModel, ConfigDict, Field, model_serializer

T = TypeVar("T")


class Pagination(BaseModel):
    page: int = Field(ge=1)
    limit: int = Field(ge=1)
    total: int = Field(ge=0)
    pages: int = Field(ge=0)

    @classmethod
    def build(cls, *, page: int, limit: int, total: int) -> "Pagination":
        return cls(page=page, limit=limit, total=total, pages=math.ceil(total / limit))


class ApiResponse(BaseModel, Generic[T]):
    """Envelope shared by every endpoint."""

    success: bool = True
    message: Optional[str] = None
    data: Optional[T] = None
    error: Optional[str] = None
    errors: Optional[List[Dict[str, Any]]] = None
    pagination: Optional[Pagination] = None

    model_config = ConfigDict(populate_by_name=True)

    @model_serializer(mode="wrap")
    def _drop_empty_fields(self, handler):
        body = handler(self)
        return {key: value for key, value in body.items() if value is not None or key == "data"}


def ok(
    data: Any = None,
    *,
    message: Optional[str] = None,
    pagination: Optional[Pagination] = None,
) -> ApiResponse:
    return ApiResponse(success=True, data=data, message=message, pagination=pagination)


def page_offset(page: int, limit: int) -> int:
    return (page - 1) * limit
