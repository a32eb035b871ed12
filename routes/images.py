import azure.functions as func
import logging

from auth.deps import client_ip, require_principal
from auth.middleware import translate_errors
from services.image_service import delete_image, list_images, parse_parent, upload_image
from services.rate_limiter import enforce_user_action
from services.upload_service import parse_multipart
from utils.cors import cors_response, json_response
from utils.http import route_uuid

logger = logging.getLogger(__name__)
bp = func.Blueprint()


@bp.function_name(name="Images")
@bp.route(route="images", methods=["GET", "POST", "OPTIONS"], auth_level=func.AuthLevel.ANONYMOUS)
@translate_errors
def images(req: func.HttpRequest) -> func.HttpResponse:
    """
    GET  ?parent_type=vehicle|mod&parent_id=... lists the caller's images on that parent.
    POST multipart upload: `file` plus `parent_type`, `parent_id` and an optional `caption`.
    """
    principal = require_principal(req)

    if req.method == "GET":
        kind, parent_id = parse_parent(req.params.get("parent_type"), req.params.get("parent_id"))
        return json_response(list_images(principal, kind, parent_id))

    # POST
    enforce_user_action("upload_image", principal.user_id, client_ip(req))

    form = parse_multipart(req)
    fields = form["fields"]
    kind, parent_id = parse_parent(fields.get("parent_type"), fields.get("parent_id"))
    return json_response(upload_image(principal, kind, parent_id, form["file"], fields.get("caption")), 201)


@bp.function_name(name="ImageItem")
@bp.route(route="images/{image_id}", methods=["DELETE", "OPTIONS"], auth_level=func.AuthLevel.ANONYMOUS)
@translate_errors
def image_item(req: func.HttpRequest) -> func.HttpResponse:
    principal = require_principal(req)
    enforce_user_action("delete_image", principal.user_id, client_ip(req))
    delete_image(principal, route_uuid(req, "image_id"))
    return cors_response("Deleted", 200)
