import logging
from typing import Any

from fastapi import HTTPException, Request
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse
from sqlalchemy.exc import IntegrityError

from src.core.config import settings
from src.core.exceptions import AppException
from src.shared.schemas import ErrorDetail, ErrorResponse

logger = logging.getLogger(__name__)


def _error_response(
    status_code: int,
    message: str,
    errors: list[ErrorDetail] | None = None,
    details: dict[str, Any] | None = None,
) -> JSONResponse:
    response = ErrorResponse(
        message=message,
        errors=errors if errors is not None else [ErrorDetail(message=message)],
        details=details or {},
    )
    return JSONResponse(status_code=status_code, content=response.model_dump())


async def app_exception_handler(request: Request, exc: AppException) -> JSONResponse:
    """Render a rejected ledger operation; its context goes into ``details``."""
    if exc.status_code >= 500:
        logger.error("%s on %s %s: %s", type(exc).__name__, request.method, request.url.path, exc.message)
    else:
        logger.info("Rejected %s %s: %s", request.method, request.url.path, exc.message)

    details = {k: v for k, v in exc.details.items() if k != "field"}
    return _error_response(
        exc.status_code,
        exc.message,
        errors=[ErrorDetail(field=exc.details.get("field"), message=exc.message)],
        details=details,
    )


def _format_validation_errors(errors: list[dict]) -> list[ErrorDetail]:
    details: list[ErrorDetail] = []
    for error in errors:
        loc = error.get("loc", ())
        # Drop top-level "body" for cleaner field paths
        if loc and loc[0] == "body":
            loc = loc[1:]
        field = ".".join(str(part) for part in loc) if loc else None
        details.append(ErrorDetail(field=field, message=error.get("msg", "Invalid value")))
    return details


async def validation_exception_handler(
    request: Request, exc: RequestValidationError
) -> JSONResponse:
    return _error_response(422, "Validation error", errors=_format_validation_errors(exc.errors()))


async def http_exception_handler(request: Request, exc: HTTPException) -> JSONResponse:
    message = str(exc.detail) if exc.detail else "HTTP error"
    return _error_response(exc.status_code, message)


def _friendly_db_error(exc: Exception) -> tuple[str, int]:
    """
    Convert database errors that escaped a unit of work to a stable message.

    Full DB error details are only exposed when debug is enabled.
    """
    raw = str(getattr(exc, "orig", exc))
    lower = raw.lower()

    if "does not exist" in lower and ("column" in lower or "relation" in lower):
        return ("Database schema is out of date. Run the latest migrations and try again.", 500)

    if isinstance(exc, IntegrityError):
        # Usually two writers racing for the same document number or sequence
        return ("Conflicting ledger update, retry the operation", 409)

    return (raw if settings.debug else "Database error", 500)


async def sqlalchemy_db_error_handler(request: Request, exc: Exception) -> JSONResponse:
    logger.error("Unhandled database error on %s %s: %s", request.method, request.url.path, exc)
    message, status_code = _friendly_db_error(exc)
    return _error_response(status_code, message)
