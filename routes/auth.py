import azure.functions as func
import logging

from auth.deps import auth_start_cookie, auth_start_identifier, client_ip
from auth.middleware import rate_limited_response, translate_errors
from services.email_verification_service import (
    create_sign_in_pin,
    normalize_email,
    verify_sign_in_pin,
)
from services.rate_limiter import enforce_auth_start, enforce_auth_verify
from utils.cors import json_response
from utils.errors import BadRequest, RateLimitExceeded
from utils.http import json_body
from utils.sanitize import safe_next_path

logger = logging.getLogger(__name__)
bp = func.Blueprint()


@bp.function_name(name="RequestPin")
@bp.route(route="auth/pin", methods=["POST", "OPTIONS"],
          auth_level=func.AuthLevel.ANONYMOUS)
@translate_errors
def request_pin(req: func.HttpRequest) -> func.HttpResponse:
    """
    Email a one-time sign-in PIN.

    Limited per IP, per device cookie and per (hashed) email. The limiter
    fails closed: if its store is down the request is refused with 503.
    A freshly minted device cookie is set on every response, 429 included,
    so a client can't dodge the device limit by dropping it.
    """
    body = json_body(req)
    email = normalize_email(body.get("email"))
    if not email:
        raise BadRequest("Enter a valid email address.")

    identifier, is_new = auth_start_identifier(req)
    headers = {"Set-Cookie": auth_start_cookie(identifier)} if is_new else {}

    try:
        enforce_auth_start(client_ip(req), identifier, email)
    except RateLimitExceeded as e:
        return rate_limited_response(e, headers)

    create_sign_in_pin(email)
    return json_response({"ok": True, "message": "Check your email for a sign-in code."}, 200, headers)


@bp.function_name(name="VerifyPin")
@bp.route(route="auth/verify", methods=["POST", "OPTIONS"],
          auth_level=func.AuthLevel.ANONYMOUS)
@translate_errors
def verify_pin(req: func.HttpRequest) -> func.HttpResponse:
    body = json_body(req)
    email = normalize_email(body.get("email"))
    if not email:
        raise BadRequest("Enter a valid email address.")

    enforce_auth_verify(client_ip(req), email)

    result = verify_sign_in_pin(email, body.get("pin"))
    result["next"] = safe_next_path(body.get("next"))
    logger.info("Sign-in verified for user %s", result["user"]["id"])
    return json_response(result)


@bp.function_name(name="Logout")
@bp.route(route="auth/logout", methods=["POST", "OPTIONS"],
          auth_level=func.AuthLevel.ANONYMOUS)
@translate_errors
def logout(req: func.HttpRequest) -> func.HttpResponse:
    # tokens are stateless; the client drops its copy
    return json_response({"ok": True})
