"""Response envelope shared by every endpoint.

Successful responses carry ``data``; failures carry ``error`` (rendered by the
exception handlers in app.main).
"""
from typing import Any, Generic, TypeVar

from pydantic import BaseModel

T = TypeVar("T")


class Envelope(BaseModel, Generic[T]):
    success: bool = True
    data: T | None = None
    error: str | None = None


class StatusResponse(BaseModel):
    status: str


def ok(data: Any = None) -> dict:
    """Wrap a payload in the success envelope.

    Returned as a plain dict so FastAPI validates ``data`` (ORM objects included)
    against the route's ``Envelope[...]`` response model.
    """
    return {"success": True, "data": data, "error": None}


def fail(error: str, data: Any = None) -> dict:
    return {"success": False, "data": data, "error": error}
