from typing import Any, Optional

from fastapi import status
from fastapi.encoders import jsonable_encoder
from fastapi.responses import JSONResponse


def api_response(
    *,
    data: Optional[Any] = None,
    message: str = "Operation successful",
    status_code: int = status.HTTP_200_OK,
    exclude_none: bool = False,
) -> JSONResponse:
    """
    Single envelope for every API response.

    ``status`` is "success" below 400 and "error" otherwise. With
    ``exclude_none`` optional fields such as a missing download url are
    dropped instead of serialized as null.
    """
    status_str = "success" if status_code < 400 else "error"
    data = jsonable_encoder(data, exclude_none=exclude_none) if data is not None else {}

    return JSONResponse(
        status_code=status_code,
        content={
            "status_code": status_code,
            "status": status_str,
            "message": message,
            "data": data,
        },
    )
