import uuid
from http.cookies import CookieError, SimpleCookie
from typing import Tuple

from auth.policies import ANONYMOUS, Principal
from auth.token import decode_token
from utils.errors import Unauthorized

AUTH_START_COOKIE_NAME = "auth_start_id"
AUTH_START_COOKIE_MAX_AGE_SECONDS = 60 * 60 * 24 * 30


def principal_from_token(token: str) -> Principal:
    payload = decode_token(token)
    if not payload or payload.get("type") != "access":
        return ANONYMOUS
    try:
        return Principal(user_id=uuid.UUID(str(payload.get("sub"))))
    except ValueError:
        return ANONYMOUS

def principal_from_request(req) -> Principal:
    """Principal from the bearer token; anything else (missing, malformed, expired) is anonymous."""
    auth = req.headers.get("Authorization", "")
    if not auth.startswith("Bearer "):
        return ANONYMOUS
    return principal_from_token(auth[7:])

def require_principal(req) -> Principal:
    principal = principal_from_request(req)
    if principal.is_anonymous:
        raise Unauthorized("Unauthorized")
    return principal


def client_ip(req) -> str:
    forwarded_for = req.headers.get("x-forwarded-for")
    if forwarded_for:
        ip = forwarded_for.split(",")[0].strip()
        if ip:
            return ip
    fallback = req.headers.get("x-real-ip") or req.headers.get("cf-connecting-ip")
    return (fallback or "").strip() or "unknown"


def _is_valid_identifier(value: str) -> bool:
    return 16 <= len(value) <= 128

def auth_start_identifier(req) -> Tuple[str, bool]:
    """(device identifier, is_new). New identifiers must be set with `auth_start_cookie`."""
    cookie = SimpleCookie()
    try:
        cookie.load(req.headers.get("cookie", ""))
    except CookieError:
        cookie = SimpleCookie()
    morsel = cookie.get(AUTH_START_COOKIE_NAME)
    existing = (morsel.value if morsel else "").strip()
    if _is_valid_identifier(existing):
        return existing, False
    return str(uuid.uuid4()), True

def auth_start_cookie(identifier: str) -> str:
    return (
        f"{AUTH_START_COOKIE_NAME}={identifier}; Max-Age={AUTH_START_COOKIE_MAX_AGE_SECONDS}; "
        "Path=/; HttpOnly; Secure; SameSite=Lax"
    )

