"""
Translate scheduling errors into JSON responses.

Every rejection carries a machine-readable ``error`` code. Conflict bodies
list every booking in the way so the client can say exactly what collides.
"""

from fastapi import FastAPI, Request
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse

from courtbook.core.errors import SchedulingError
from courtbook.core.logging import get_logger

logger = get_logger(__name__)


async def scheduling_error_handler(request: Request, exc: SchedulingError) -> JSONResponse:
    logger.info("request_rejected", error=exc.code, message=exc.message)
    return JSONResponse(status_code=exc.status_code, content=exc.to_dict())


async def request_validation_handler(request: Request, exc: RequestValidationError) -> JSONResponse:
    errors = exc.errors()
    first = errors[0] if errors else {}
    location = [str(part) for part in first.get("loc", ()) if part not in ("body", "query", "path")]
    field = ".".join(location) or "body"
    reason = first.get("msg", "invalid request")
    logger.info("request_rejected", error="validation", field=field, reason=reason)
    return JSONResponse(
        status_code=422,
        content={"error": "validation", "field": field, "reason": reason, "details": jsonable(errors)},
    )


def jsonable(errors: list) -> list:
    # ctx may hold exception instances that JSON cannot encode
    return [{k: (str(v) if k == "ctx" else v) for k, v in error.items() if k != "input"} for error in errors]


def register_error_handlers(app: FastAPI) -> None:
    app.add_exception_handler(SchedulingError, scheduling_error_handler)
    app.add_exception_handler(RequestValidationError, request_validation_handler)
