from fastapi import FastAPI, HTTPException, Request, status
from fastapi.exceptions import RequestValidationError
from sqlalchemy.exc import DBAPIError, OperationalError
from freshcart.common.circuit_breaker import CircuitOpenError
from freshcart.common.logging_setup import get_logger
from freshcart.common.utils import build_error, json_error

logger = get_logger("freshcart.errors")


def _error_response(code: str, details, status_code: int, headers=None):
    payload = build_error(code=code, details=details)
    return json_error(payload, status_code=status_code, headers=headers)


async def fallback_handler(request: Request, exc: Exception):
    logger.error(
        "unexpected.exception",
        extra={"path": request.url.path, "method": request.method, "exc_type": type(exc).__name__},
        exc_info=exc,
    )
    return _error_response("SERVER_ERROR", {"message": "Internal Server Error"},
                           status.HTTP_500_INTERNAL_SERVER_ERROR)


async def db_unavailable_handler(request: Request, exc: Exception):
    # driver messages are never echoed to the client
    logger.error(
        "db.unavailable",
        extra={"path": request.url.path, "exc_type": type(exc).__name__},
    )
    return _error_response("DB_UNAVAILABLE", {"message": "Service temporarily unavailable, please retry"},
                           status.HTTP_503_SERVICE_UNAVAILABLE, headers={"Retry-After": "5"})


def _field_errors(exc: RequestValidationError):
    fields = []
    for err in exc.errors():
        loc = [str(part) for part in err.get("loc", ()) if part != "body"]
        fields.append({"field": ".".join(loc), "message": err.get("msg")})
    return fields


async def validation_exception_handler(request: Request, exc: RequestValidationError):
    fields = _field_errors(exc)
    logger.warning("request.validation_failed", extra={"path": request.url.path, "fields": fields})
    return _error_response("UNPROCESSABLE_ENTITY", {"message": "invalid request", "fields": fields},
                           status.HTTP_422_UNPROCESSABLE_ENTITY)


async def http_exception_handler(request: Request, exc: HTTPException):
    return _error_response(f"HTTP_{exc.status_code}", {"message": exc.detail}, exc.status_code,
                           headers=getattr(exc, "headers", None))


def register_all_exceptions(app: FastAPI):

    app.add_exception_handler(Exception, fallback_handler)

    # reads that exhausted retries or hit an open circuit
    for exc_type in (CircuitOpenError, OperationalError, DBAPIError):
        app.add_exception_handler(exc_type, db_unavailable_handler)

    app.add_exception_handler(RequestValidationError, validation_exception_handler)
    app.add_exception_handler(HTTPException, http_exception_handler)
