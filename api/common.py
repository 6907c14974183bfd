# api/common.py
"""
Response envelope shared by every endpoint.

    success: {"success": true, "data": ..., "message": ...}
    failure: {"success": false, "error": {"code", "message", "details"}}
"""
from typing import Any, Generic, TypeVar

from pydantic import BaseModel

T = TypeVar("T")


class ErrorBody(BaseModel):
    code: str
    message: str
    details: dict | list | None = None


class Envelope(BaseModel, Generic[T]):
    success: bool = True
    data: T | None = None
    message: str | None = None
    error: ErrorBody | None = None


def ok(data: Any = None, message: str | None = None) -> dict[str, Any]:
    """Wrap a payload in the success envelope."""
    return {"success": True, "data": data, "message": message}


def error_envelope(code: str, message: str, details: dict | list | None = None) -> dict[str, Any]:
    body = ErrorBody(code=code, message=message, details=details)
    return {"success": False, "error": body.model_dump()}
