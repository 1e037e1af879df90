"""Pydantic models describing the external license API envelopes.

Record bodies are kept as raw mappings: field-level checks belong to the license
validator, which also has to see malformed records to count them as failures.
"""

from __future__ import annotations

import math
from collections.abc import Mapping, Sequence
from typing import Any, cast

from pydantic import BaseModel, ConfigDict, Field, field_validator, model_validator


class ExternalApiBaseModel(BaseModel):
    model_config = ConfigDict(extra="ignore", populate_by_name=True)


class PageMeta(ExternalApiBaseModel):
    page: int | None = None
    limit: int | None = None
    total: int | None = None
    total_pages: int | None = Field(default=None, alias="totalPages")

    @field_validator("page", "limit", "total", "total_pages", mode="before")
    @classmethod
    def _coerce_int(cls, value: object) -> object:
        if isinstance(value, str) and value.strip().isdigit():
            return int(value)
        return value

    def resolved_total_pages(self, limit: int) -> int | None:
        if self.total_pages is not None:
            return self.total_pages
        if self.total is not None and limit > 0:
            return max(1, math.ceil(self.total / limit))
        return None


class LicenseListResponse(ExternalApiBaseModel):
    data: list[Any] = Field(default_factory=list)
    meta: PageMeta | None = None

    @model_validator(mode="before")
    @classmethod
    def _wrap_bare_list(cls, value: object) -> object:
        if isinstance(value, Sequence) and not isinstance(value, str | bytes):
            return {"data": list(cast("Sequence[object]", value))}
        return value


class LicenseResponse(ExternalApiBaseModel):
    data: dict[str, Any] | None = None

    @model_validator(mode="before")
    @classmethod
    def _wrap_bare_record(cls, value: object) -> object:
        if isinstance(value, Mapping) and "data" not in value:
            return {"data": dict(cast("Mapping[str, object]", value))}
        return value


class ErrorResponse(ExternalApiBaseModel):
    message: str | None = None
    error: str | None = None

    @property
    def text(self) -> str:
        return self.message or self.error or "unknown error"
