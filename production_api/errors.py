"""
Translation of kernel exceptions into HTTP responses.

Services raise typed ProductionEngineError subclasses and never know
about HTTP.  This module is the single place where an error kind becomes
a status code; the body always carries the machine-readable ``code``,
the message, the ``retryable`` flag and the exception's structured
attributes.

    ValidationError                     -> 400
    NotFoundError                       -> 404
    ConflictError, DuplicateReworkError -> 409
    InvalidTransitionError,
    PrecondGateError                    -> 422
    LedgerIntegrityError,
    ImmutabilityViolationError,
    AuditChainBrokenError               -> 500
"""

from typing import Any

from fastapi import FastAPI, Request, status
from fastapi.encoders import jsonable_encoder
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse

from production_kernel.exceptions import (
    AuditChainBrokenError,
    ConflictError,
    DuplicateReworkError,
    ImmutabilityViolationError,
    InvalidTransitionError,
    LedgerIntegrityError,
    NotFoundError,
    PrecondGateError,
    ProductionEngineError,
    ValidationError,
)
from production_kernel.logging_config import get_logger

logger = get_logger("api.errors")

# Checked in order; the first matching base class wins.
STATUS_BY_ERROR: tuple[tuple[type[ProductionEngineError], int], ...] = (
    (ValidationError, status.HTTP_400_BAD_REQUEST),
    (NotFoundError, status.HTTP_404_NOT_FOUND),
    (ConflictError, status.HTTP_409_CONFLICT),
    (DuplicateReworkError, status.HTTP_409_CONFLICT),
    (InvalidTransitionError, status.HTTP_422_UNPROCESSABLE_ENTITY),
    (PrecondGateError, status.HTTP_422_UNPROCESSABLE_ENTITY),
    (LedgerIntegrityError, status.HTTP_500_INTERNAL_SERVER_ERROR),
    (ImmutabilityViolationError, status.HTTP_500_INTERNAL_SERVER_ERROR),
    (AuditChainBrokenError, status.HTTP_500_INTERNAL_SERVER_ERROR),
)


def status_for(exc: ProductionEngineError) -> int:
    for error_type, status_code in STATUS_BY_ERROR:
        if isinstance(exc, error_type):
            return status_code
    return status.HTTP_500_INTERNAL_SERVER_ERROR


def error_body(
    code: str, message: str, retryable: bool = False, details: dict[str, Any] | None = None
) -> dict[str, Any]:
    return {
        "code": code,
        "message": message,
        "retryable": retryable,
        "details": jsonable_encoder(details or {}),
    }


def _details(exc: ProductionEngineError) -> dict[str, Any]:
    return {k: v for k, v in vars(exc).items() if not k.startswith("_")}


async def engine_error_handler(request: Request, exc: ProductionEngineError) -> JSONResponse:
    status_code = status_for(exc)
    extra = {
        "error_code": exc.code,
        "status_code": status_code,
        "path": request.url.path,
        "method": request.method,
    }
    if status_code >= 500:
        logger.error("request_failed", extra=extra)
    else:
        logger.info("request_rejected", extra=extra)
    return JSONResponse(
        status_code=status_code,
        content=error_body(exc.code, str(exc), exc.retryable, _details(exc)),
    )


async def request_validation_handler(request: Request, exc: RequestValidationError) -> JSONResponse:
    """Malformed payloads are ValidationErrors like any other bad input."""
    errors = exc.errors()
    first = errors[0] if errors else {}
    field = ".".join(str(p) for p in first.get("loc", ()) if p != "body") or None
    logger.info(
        "request_rejected",
        extra={
            "error_code": ValidationError.code,
            "status_code": status.HTTP_400_BAD_REQUEST,
            "path": request.url.path,
            "method": request.method,
        },
    )
    return JSONResponse(
        status_code=status.HTTP_400_BAD_REQUEST,
        content=error_body(
            ValidationError.code,
            first.get("msg", "Invalid request"),
            details={
                "field": field,
                "errors": [
                    {"loc": list(e.get("loc", ())), "msg": e.get("msg"), "type": e.get("type")}
                    for e in errors
                ],
            },
        ),
    )


def register_error_handlers(app: FastAPI) -> None:
    app.add_exception_handler(ProductionEngineError, engine_error_handler)
    app.add_exception_handler(RequestValidationError, request_validation_handler)
