from datetime import datetime
from typing import Any, Dict, Optional

from fastapi.encoders import jsonable_encoder
from fastapi.responses import JSONResponse


def success(
    data: Optional[Any] = None,
    message: str = "Success",
    meta: Optional[Dict] = None,
):
    response = {
        "success": True,
        "message": message,
        "data": data,
        "errors": None,
    }

    if meta is not None:
        response["meta"] = meta

    return jsonable_encoder(response)


def standardized_error_response(
    status_code: int,
    message: str,
    errors=None,
    error: Optional[str] = None,
) -> JSONResponse:
    content = {
        "success": False,
        "message": message,
        "data": None,
        "errors": errors or [],
        "timestamp": f"{datetime.utcnow().isoformat()}Z",
    }
    # Machine-readable reason code for clients deciding whether to retry.
    if error is not None:
        content["error"] = error

    return JSONResponse(status_code=status_code, content=jsonable_encoder(content))
