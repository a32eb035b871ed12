import azure.functions as func
import logging
import uuid as _uuid

from auth.middleware import translate_errors
from services.public_service import get_public_profile, get_public_vehicle
from utils.cors import json_response
from utils.errors import NotFound

logger = logging.getLogger(__name__)
bp = func.Blueprint()


@bp.function_name(name="PublicProfile")
@bp.route(route="u/{username}", methods=["GET", "OPTIONS"], auth_level=func.AuthLevel.ANONYMOUS)
@translate_errors
def public_profile(req: func.HttpRequest) -> func.HttpResponse:
    return json_response(get_public_profile(req.route_params.get("username")))


@bp.function_name(name="PublicVehicle")
@bp.route(route="u/{username}/v/{vehicle_id}", methods=["GET", "OPTIONS"], auth_level=func.AuthLevel.ANONYMOUS)
@translate_errors
def public_vehicle(req: func.HttpRequest) -> func.HttpResponse:
    # a malformed id is just another page that doesn't exist
    try:
        vid = _uuid.UUID(req.route_params.get("vehicle_id") or "")
    except ValueError:
        raise NotFound("vehicle not found")
    return json_response(get_public_vehicle(req.route_params.get("username"), vid))
