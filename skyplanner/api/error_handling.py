"""Convert raised errors into the JSON error envelope."""

import logging

from fastapi import FastAPI, Request
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse
from starlette.exceptions import HTTPException as StarletteHTTPException

from skyplanner.core.errors import AppError, AuthError, ConfigError, ValidationError

logger = logging.getLogger(__name__)

_STATUS_TO_CODE = {
    400: "BAD_REQUEST",
    401: "UNAUTHORIZED",
    403: "FORBIDDEN",
    404: "NOT_FOUND",
    405: "METHOD_NOT_ALLOWED",
    409: "CONFLICT",
    429: "TOO_MANY_REQUESTS",
}

_STATUS_TO_MESSAGE = {
    404: "Ressursen ble ikke funnet",
    405: "Metoden er ikke tillatt",
}


def error_response(error: AppError) -> JSONResponse:
    headers = {"WWW-Authenticate": "Bearer"} if isinstance(error, AuthError) else None
    return JSONResponse(
        status_code=error.status_code,
        content=error.to_envelope(),
        headers=headers,
    )


def register_exception_handlers(app: FastAPI) -> None:
    """Install handlers so every failure leaves the app as an envelope."""

    @app.exception_handler(AppError)
    async def handle_app_error(request: Request, exc: AppError) -> JSONResponse:
        if isinstance(exc, ConfigError):
            logger.error(f"{type(exc).__name__} on {request.method} {request.url.path}")
        elif exc.status_code >= 500:
            logger.error(f"{exc.code} on {request.method} {request.url.path}: {exc.message}")
        else:
            logger.info(f"{exc.code} on {request.method} {request.url.path}")
        return error_response(exc)

    @app.exception_handler(RequestValidationError)
    async def handle_request_validation(
        request: Request, exc: RequestValidationError
    ) -> JSONResponse:
        fields = [".".join(str(p) for p in err.get("loc", ()) if p != "body") for err in exc.errors()]
        logger.info(f"Validation failed on {request.method} {request.url.path}: {fields}")
        return error_response(ValidationError())

    @app.exception_handler(StarletteHTTPException)
    async def handle_http_exception(
        request: Request, exc: StarletteHTTPException
    ) -> JSONResponse:
        code = _STATUS_TO_CODE.get(exc.status_code, "ERROR")
        message = _STATUS_TO_MESSAGE.get(exc.status_code, "Forespørselen kunne ikke behandles")
        return JSONResponse(
            status_code=exc.status_code,
            content={"success": False, "error": {"code": code, "message": message}},
            headers=getattr(exc, "headers", None),
        )

    @app.exception_handler(Exception)
    async def handle_unexpected(request: Request, exc: Exception) -> JSONResponse:
        logger.exception(f"Unhandled error on {request.method} {request.url.path}")
        return error_response(AppError())
