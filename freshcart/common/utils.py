from datetime import datetime, timezone
from decimal import ROUND_HALF_UP, Decimal
from typing import Any, Dict, Optional, Union

from fastapi.encoders import jsonable_encoder
from fastapi.responses import JSONResponse
from freshcart.common.constants import request_id_ctx

CENTS = Decimal("0.01")


def now() -> datetime:
    return datetime.now(timezone.utc)


def days_between(later: datetime, earlier: datetime) -> float:
    return (later - earlier).total_seconds() / 86400.0


def money(value: Union[Decimal, int, float, str]) -> Decimal:
    """Round to 2 places, half-up, the way Postgres ROUND(numeric, 2) does."""
    if not isinstance(value, Decimal):
        value = Decimal(str(value))
    return value.quantize(CENTS, rounding=ROUND_HALF_UP)


def _envelope(status: str, data, error, trace_id: Optional[str], request_id: Optional[str]) -> Dict[str, Any]:
    return {
        "status": status,
        "data": data,
        "error": error,
        "trace_id": trace_id,
        "request_id": request_id if request_id is not None else request_id_ctx.get(None),
    }


def build_success(data: Dict[str, Any], trace_id: Optional[str] = None,
                  request_id: Optional[str] = None) -> Dict[str, Any]:
    return _envelope("ok", data, None, trace_id, request_id)


def build_error(code: Union[str, int] = "UNKNOWN_ERROR", details: Optional[Any] = None,
                request_id: Optional[str] = None, trace_id: Optional[str] = None) -> Dict[str, Any]:
    return _envelope("error", None, {"code": code, "details": details}, trace_id, request_id)


def json_response(content: Dict[str, Any], status_code: int = 200, headers=None) -> JSONResponse:
    # Decimal and UUID values go through jsonable_encoder
    return JSONResponse(jsonable_encoder(content), status_code=status_code, headers=headers)


def json_error(content: Dict[str, Any], status_code: int = 500, headers=None) -> JSONResponse:
    return json_response(content, status_code=status_code, headers=headers)


def success_response(data: Dict[str, Any], status_code: int = 200, headers: Optional[Dict[str, Any]] = None,
                     trace_id: Optional[str] = None, request_id: Optional[str] = None) -> JSONResponse:
    return json_response(build_success(data, trace_id=trace_id, request_id=request_id),
                         status_code=status_code, headers=headers)
