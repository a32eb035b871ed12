"""Tests for request principals, client IPs and the auth-start device cookie."""
import uuid
from datetime import timedelta

import azure.functions as func
import pytest

from auth.deps import (
    AUTH_START_COOKIE_NAME,
    auth_start_cookie,
    auth_start_identifier,
    client_ip,
    principal_from_request,
    require_principal,
)
from auth.token import create_access_token
from utils.errors import Unauthorized


def _request(headers=None):
    return func.HttpRequest(method="GET", url="/api/profile", headers=headers or {}, body=b"")


def test_bearer_token_resolves_to_principal():
    uid = uuid.uuid4()
    req = _request({"Authorization": f"Bearer {create_access_token(str(uid))}"})
    assert principal_from_request(req).user_id == uid


@pytest.mark.parametrize(
    "headers",
    [
        {},
        {"Authorization": "Basic abc"},
        {"Authorization": "Bearer not-a-jwt"},
        {"Authorization": f"Bearer {create_access_token('not-a-uuid')}"},
        {"Authorization": f"Bearer {create_access_token(str(uuid.uuid4()), timedelta(seconds=-5))}"},
    ],
)
def test_bad_credentials_are_anonymous(headers):
    req = _request(headers)
    assert principal_from_request(req).is_anonymous
    with pytest.raises(Unauthorized):
        require_principal(req)


@pytest.mark.parametrize(
    "headers,expected",
    [
        ({"X-Forwarded-For": "203.0.113.5, 10.0.0.1"}, "203.0.113.5"),
        ({"X-Real-IP": "198.51.100.7"}, "198.51.100.7"),
        ({"CF-Connecting-IP": "192.0.2.1"}, "192.0.2.1"),
        ({"X-Forwarded-For": " , ", "X-Real-IP": "198.51.100.7"}, "198.51.100.7"),
        ({}, "unknown"),
    ],
)
def test_client_ip(headers, expected):
    assert client_ip(_request(headers)) == expected


def test_auth_start_identifier_reuses_a_valid_cookie():
    existing = "d" * 32
    ident, is_new = auth_start_identifier(_request({"Cookie": f"theme=dark; {AUTH_START_COOKIE_NAME}={existing}"}))
    assert (ident, is_new) == (existing, False)


@pytest.mark.parametrize("cookie", ["", f"{AUTH_START_COOKIE_NAME}=short", "garbage;;=="])
def test_auth_start_identifier_mints_a_new_one(cookie):
    ident, is_new = auth_start_identifier(_request({"Cookie": cookie}))
    assert is_new
    assert uuid.UUID(ident)


def test_auth_start_cookie_attributes():
    cookie = auth_start_cookie("abc")
    assert cookie.startswith(f"{AUTH_START_COOKIE_NAME}=abc;")
    assert "HttpOnly" in cookie and "Secure" in cookie and "SameSite=Lax" in cookie
