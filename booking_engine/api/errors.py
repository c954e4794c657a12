# booking_engine/api/errors.py
"""Translate engine errors into the `{ok: false, error: {...}}` envelope."""
from __future__ import annotations

from typing import Any, Dict, List

from fastapi import FastAPI, Request
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse
from pydantic import ValidationError as PydanticValidationError

from booking_engine.core.errors import BookingEngineError, ErrorSeverity, log_error


def _error_body(code: str, message: str, **extra: Any) -> Dict[str, Any]:
    return {"ok": False, "error": {"code": code, "message": message, **extra}}


def _fields(errors) -> List[Dict[str, Any]]:
    return [
        {"loc": [str(p) for p in e.get("loc", ())], "msg": e.get("msg", ""), "type": e.get("type", "")}
        for e in errors
    ]


def _context(request: Request) -> Dict[str, Any]:
    return {
        "endpoint": request.url.path,
        "method": request.method,
        "org_id": request.path_params.get("org_id"),
    }


async def engine_error_handler(request: Request, exc: BookingEngineError) -> JSONResponse:
    log_error(exc, _context(request))
    return JSONResponse(status_code=exc.status_code, content={"ok": False, "error": exc.to_dict()})


async def request_validation_handler(request: Request, exc: RequestValidationError) -> JSONResponse:
    log_error(exc, _context(request), ErrorSeverity.LOW)
    return JSONResponse(
        status_code=422,
        content=_error_body("validation_error", "Invalid request", fields=_fields(exc.errors())),
    )


async def pydantic_validation_handler(request: Request, exc: PydanticValidationError) -> JSONResponse:
    log_error(exc, _context(request), ErrorSeverity.LOW)
    return JSONResponse(
        status_code=422,
        content=_error_body("validation_error", "Invalid request", fields=_fields(exc.errors())),
    )


async def unhandled_error_handler(request: Request, exc: Exception) -> JSONResponse:
    log_error(exc, _context(request), ErrorSeverity.CRITICAL)
    return JSONResponse(status_code=500, content=_error_body("internal_error", "Internal server error"))


def register_exception_handlers(app: FastAPI) -> None:
    app.add_exception_handler(BookingEngineError, engine_error_handler)
    app.add_exception_handler(RequestValidationError, request_validation_handler)
    app.add_exception_handler(PydanticValidationError, pydantic_validation_handler)
    app.add_exception_handler(Exception, unhandled_error_handler)
