"""Shared response schemas."""

from __future__ import annotations

import math
from typing import Generic, TypeVar

from pydantic import BaseModel

T = TypeVar("T")


class Pagination(BaseModel):
    page: int
    limit: int
    total: int
    pages: int

    @classmethod
    def build(cls, page: int, limit: int, total: int) -> Pagination:
        return cls(page=page, limit=limit, total=total, pages=math.ceil(total / limit))


class PaginatedResponse(BaseModel, Generic[T]):
    items: list[T]
    pagination: Pagination
