"""Shared response envelope."""

from datetime import datetime
from typing import Generic, TypeVar

from pydantic import BaseModel, ConfigDict, Field
from pydantic.alias_generators import to_camel

from app.database import utcnow

T = TypeVar("T")


class CamelModel(BaseModel):
    """Serialized with camelCase keys; accepts either case on input."""

    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)


class ApiResponse(CamelModel, Generic[T]):
    success: bool = True
    message: str | None = None
    data: T | None = None
    error_code: str | None = None
    timestamp: datetime = Field(default_factory=utcnow)

    @classmethod
    def error(cls, message: str, error_code: str) -> "ApiResponse[T]":
        return cls(success=False, message=message, error_code=error_code)
