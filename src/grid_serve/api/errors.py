from typing import Any, Dict, Optional
from fastapi import Request
from fastapi.responses import JSONResponse, Response
from fastapi.exceptions import RequestValidationError
from loguru import logger
from starlette.exceptions import HTTPException as StarletteHTTPException
from pydantic import BaseModel, Field

from grid_serve.ports.storage import StoreUnavailableError

# The gateway never sends a body with these.
BODILESS_STATUSES = {404, 405}


class GatewayError(BaseModel):
    code: str = Field(..., description="Stable machine-readable code")
    message: str = Field(..., description="Human-readable explanation")
    status: int = Field(..., description="HTTP status code duplicated here for convenience")
    details: Optional[Dict[str, Any]] = Field(default=None, description="Optional diagnostic details")

    @staticmethod
    def code_for_status(status: int) -> str:
        return {
            400: "bad_request",
            404: "not_found",
            405: "method_not_allowed",
            500: "internal_error",
            503: "unavailable",
        }.get(status, "error")


def _error_response(status: int, message: str, details: Optional[Dict[str, Any]] = None) -> JSONResponse:
    err = GatewayError(
        code=GatewayError.code_for_status(status),
        message=message,
        status=status,
        details=details,
    )
    return JSONResponse({"error": err.model_dump()}, status_code=status)


def http_exception_handler(request: Request, exc: StarletteHTTPException) -> Response:
    if exc.status_code in BODILESS_STATUSES:
        return Response(status_code=exc.status_code, headers=getattr(exc, "headers", None))
    message = exc.detail if isinstance(exc.detail, str) else "Error"
    details = exc.detail if isinstance(exc.detail, dict) else None
    return _error_response(exc.status_code, message, details)


def request_validation_exception_handler(request: Request, exc: RequestValidationError) -> JSONResponse:
    # Normalize FastAPI/Pydantic 422 into 400 with consistent shape
    return _error_response(400, "Invalid request", {"errors": exc.errors()})


def store_unavailable_handler(request: Request, exc: StoreUnavailableError) -> JSONResponse:
    # Only reached before any body byte is sent; later faults abort the connection instead.
    logger.opt(exception=exc).error(f"Store fault serving {request.url.path}: {exc}")
    return _error_response(500, "Store unavailable")
