"""Helpers for driving blueprint handlers without the Functions host."""
import json

import azure.functions as func
import pytest

from auth.token import create_access_token


@pytest.fixture
def call():
    """Invoke a decorated handler with a synthetic HttpRequest."""
    def _call(handler, method="GET", url="/api/x", body=None, headers=None, route_params=None, principal=None,
              params=None):
        headers = dict(headers or {})
        if principal is not None:
            headers["Authorization"] = f"Bearer {create_access_token(str(principal.user_id))}"
        if isinstance(body, (dict, list)):
            body = json.dumps(body).encode("utf-8")
            headers.setdefault("Content-Type", "application/json")
        req = func.HttpRequest(
            method=method,
            url=url,
            headers=headers,
            params=params or {},
            route_params=route_params or {},
            body=body or b"",
        )
        fn = handler.build().get_user_function() if hasattr(handler, "build") else handler
        return fn(req)
    return _call
