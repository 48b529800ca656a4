from __future__ import annotations

import math

from pydantic import BaseModel, ConfigDict
from pydantic.alias_generators import to_camel


class CamelModel(BaseModel):
    """Base schema: camelCase on the wire, snake_case in Python."""

    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)


class ORMModel(CamelModel):
    model_config = ConfigDict(
        alias_generator=to_camel,
        populate_by_name=True,
        from_attributes=True,
    )


class Pagination(CamelModel):
    current_page: int
    per_page: int
    total_items: int
    total_pages: int
    has_next: bool
    has_prev: bool

    @classmethod
    def build(cls, *, page: int, per_page: int, total: int) -> "Pagination":
        return cls(
            current_page=page,
            per_page=per_page,
            total_items=total,
            total_pages=math.ceil(total / per_page) if per_page else 0,
            has_next=page * per_page < total,
            has_prev=page > 1,
        )


class MessageOut(CamelModel):
    message: str
