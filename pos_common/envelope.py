from typing import Any, Generic, Optional, TypeVar

from fastapi.encoders import jsonable_encoder
from pydantic import BaseModel

T = TypeVar("T")


class ErrorBody(BaseModel):
    code: str
    message: str
    retryable: bool = False


class Envelope(BaseModel, Generic[T]):
    ok: bool = True
    result: Optional[T] = None
    error: Optional[ErrorBody] = None


def success(result: Any) -> dict:
    return {"ok": True, "result": result, "error": None}


def failure(code: str, message: str, retryable: bool = False, result: Any = None) -> dict:
    return {
        "ok": False,
        "result": jsonable_encoder(result) if result is not None else None,
        "error": {"code": code, "message": message, "retryable": retryable},
    }
