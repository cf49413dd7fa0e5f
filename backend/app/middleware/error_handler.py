"""Application errors and the `{"error", "detail"}` envelope every failure is returned in."""

import logging
from typing import Any

from fastapi import FastAPI, Request
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse
from starlette.middleware.base import BaseHTTPMiddleware

logger = logging.getLogger(__name__)

Detail = str | list[str] | None


class AppError(Exception):
    def __init__(self, message: str, status_code: int = 400, detail: Detail = None):
        self.message = message
        self.status_code = status_code
        self.detail = detail
        super().__init__(self.message)


class NotFoundError(AppError):
    def __init__(self, message: str = "Resource not found", detail: Detail = None):
        super().__init__(message=message, status_code=404, detail=detail)


class ValidationError(AppError):
    """Bad client input: unsupported upload, malformed request, rejected text."""

    def __init__(self, message: str = "Validation error", detail: Detail = None):
        super().__init__(message=message, status_code=422, detail=detail)


class LLMError(AppError):
    """The model proxy failed or answered with something unusable."""

    def __init__(self, message: str = "LLM service error", detail: Detail = None):
        super().__init__(message=message, status_code=502, detail=detail)


def format_validation_errors(errors: list[dict[str, Any]]) -> list[str]:
    """Flatten pydantic error dicts into `loc.path: message` lines."""
    return [
        f"{'.'.join(str(part) for part in err['loc'] if part != 'body')}: {err['msg']}"
        for err in errors
    ]


def error_response(status_code: int, message: str, detail: Detail = None) -> JSONResponse:
    return JSONResponse(status_code=status_code, content={"error": message, "detail": detail})


async def request_validation_handler(request: Request, exc: RequestValidationError) -> JSONResponse:
    detail = format_validation_errors(exc.errors())
    logger.info("Rejected request to %s: %s", request.url.path, detail)
    return error_response(422, "Validation failed", detail)


def register_exception_handlers(app: FastAPI) -> None:
    app.add_exception_handler(RequestValidationError, request_validation_handler)


class ErrorHandlerMiddleware(BaseHTTPMiddleware):
    async def dispatch(self, request: Request, call_next):
        try:
            return await call_next(request)
        except AppError as e:
            logger.warning("Application error: %s (detail: %s)", e.message, e.detail)
            return error_response(e.status_code, e.message, e.detail)
        except Exception:
            logger.exception("Unhandled error on %s %s", request.method, request.url.path)
            return error_response(500, "Internal server error")
