"""Error taxonomy shared by every service.

Each error carries a stable ``code`` and a ``retryable`` hint so that clients
can decide between retrying (upstream, conflict) and surfacing the message.
"""
import logging

from fastapi import FastAPI, Request
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse
from starlette.exceptions import HTTPException as StarletteHTTPException

from pos_common.envelope import failure

logger = logging.getLogger(__name__)


class POSError(Exception):
    code = "error"
    status_code = 500
    retryable = False

    def __init__(self, message: str, result=None):
        super().__init__(message)
        self.message = message
        # Committed data that still belongs in the response (partial success)
        self.result = result


class ValidationError(POSError):
    code = "validation"
    status_code = 400


class InvalidStateError(POSError):
    code = "invalid_state"
    status_code = 409


class InsufficientPaymentError(POSError):
    code = "insufficient_payment"
    status_code = 400


class NotFoundError(POSError):
    code = "not_found"
    status_code = 404


class ConflictError(POSError):
    code = "conflict"
    status_code = 409
    retryable = True


class UpstreamError(POSError):
    code = "upstream"
    status_code = 502
    retryable = True


class AuthenticationError(POSError):
    code = "unauthenticated"
    status_code = 401


class PermissionDeniedError(POSError):
    code = "forbidden"
    status_code = 403


_HTTP_CODES = {
    400: "validation",
    401: "unauthenticated",
    403: "forbidden",
    404: "not_found",
    405: "method_not_allowed",
    409: "conflict",
}


async def pos_error_handler(request: Request, exc: POSError):
    if isinstance(exc, UpstreamError):
        logger.warning("Upstream failure on %s %s: %s", request.method, request.url.path, exc.message)
    return JSONResponse(
        status_code=exc.status_code,
        content=failure(exc.code, exc.message, exc.retryable, result=exc.result),
    )


async def request_validation_handler(request: Request, exc: RequestValidationError):
    parts = []
    for err in exc.errors():
        loc = ".".join(str(p) for p in err.get("loc", ()) if p != "body")
        parts.append(f"{loc}: {err.get('msg')}" if loc else err.get("msg", "invalid"))
    return JSONResponse(status_code=422, content=failure("validation", "; ".join(parts), False))


async def http_error_handler(request: Request, exc: StarletteHTTPException):
    code = _HTTP_CODES.get(exc.status_code, "error")
    return JSONResponse(
        status_code=exc.status_code,
        content=failure(code, str(exc.detail), exc.status_code >= 500),
    )


def install_error_handlers(app: FastAPI):
    app.add_exception_handler(POSError, pos_error_handler)
    app.add_exception_handler(RequestValidationError, request_validation_handler)
    app.add_exception_handler(StarletteHTTPException, http_error_handler)
