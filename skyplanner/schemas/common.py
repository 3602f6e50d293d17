"""Response envelope shared by all API routes."""

from typing import Generic, TypeVar

from pydantic import BaseModel, ConfigDict
from pydantic.alias_generators import to_camel

T = TypeVar("T")


class CamelModel(BaseModel):
    """Snake-case attributes, camelCase on the wire."""

    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)


class Envelope(BaseModel, Generic[T]):
    """``{success, data}`` wrapper; errors use the same shape with ``error``."""

    success: bool = True
    data: T | None = None


class MessageData(BaseModel):
    message: str
