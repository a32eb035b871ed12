import azure.functions as func
import logging

from auth.deps import client_ip, require_principal
from auth.middleware import translate_errors
from services.profile_service import check_username, get_profile, set_avatar, update_profile
from services.rate_limiter import enforce_user_action
from services.upload_service import parse_multipart
from utils.cors import json_response
from utils.http import json_body

logger = logging.getLogger(__name__)
bp = func.Blueprint()


@bp.function_name(name="Profile")
@bp.route(route="profile", methods=["GET", "PUT", "OPTIONS"], auth_level=func.AuthLevel.ANONYMOUS)
@translate_errors
def profile(req: func.HttpRequest) -> func.HttpResponse:
    principal = require_principal(req)

    if req.method == "GET":
        return json_response(get_profile(principal))

    # PUT
    enforce_user_action("update_profile", principal.user_id, client_ip(req))
    return json_response(update_profile(principal, json_body(req)))


@bp.function_name(name="ProfileUsernameCheck")
@bp.route(route="profile/username-check", methods=["POST", "OPTIONS"], auth_level=func.AuthLevel.ANONYMOUS)
@translate_errors
def username_check(req: func.HttpRequest) -> func.HttpResponse:
    principal = require_principal(req)
    enforce_user_action("check_username", principal.user_id, client_ip(req))
    return json_response(check_username(principal, json_body(req).get("username")))


@bp.function_name(name="ProfileAvatar")
@bp.route(route="profile/avatar", methods=["POST", "OPTIONS"], auth_level=func.AuthLevel.ANONYMOUS)
@translate_errors
def profile_avatar(req: func.HttpRequest) -> func.HttpResponse:
    principal = require_principal(req)
    enforce_user_action("upload_image", principal.user_id, client_ip(req))
    form = parse_multipart(req)
    return json_response(set_avatar(principal, form["file"]), 201)
