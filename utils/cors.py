import json
import os
from typing import Mapping, Optional, Union
import azure.functions as func

ALLOW_ORIGIN = os.getenv("CORS_ALLOW_ORIGIN", "*")

def cors_response(
    body: Union[str, bytes] = b"",
    status: int = 200,
    mime: str = "text/plain",
    headers: Optional[Mapping[str, str]] = None,
) -> func.HttpResponse:
    return func.HttpResponse(
        body=body,
        status_code=status,
        mimetype=mime,
        headers={
            "Access-Control-Allow-Origin": ALLOW_ORIGIN,
            "Access-Control-Allow-Methods": "GET,POST,PUT,DELETE,OPTIONS",
            "Access-Control-Allow-Headers": "Content-Type, Authorization",
            **(headers or {}),
        },
    )

def json_response(payload, status: int = 200, headers: Optional[Mapping[str, str]] = None) -> func.HttpResponse:
    return cors_response(json.dumps(payload, default=str), status, "application/json", headers)
