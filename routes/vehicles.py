import azure.functions as func
import logging

from auth.deps import client_ip, require_principal
from auth.middleware import translate_errors
from services.rate_limiter import enforce_user_action
from services.reorder_service import DIRECTIONS, ReorderOutcome, reorder_mod, reorder_vehicle
from services.upload_service import parse_multipart
from services.vehicle_service import (
    create_mod,
    create_vehicle,
    delete_mod,
    delete_vehicle,
    get_vehicle,
    list_mods,
    list_vehicles,
    set_hero_image,
    update_mod,
    update_vehicle,
)
from utils.cors import cors_response, json_response
from utils.errors import BadRequest
from utils.http import json_body, route_uuid

logger = logging.getLogger(__name__)
bp = func.Blueprint()


def _direction(req: func.HttpRequest) -> str:
    direction = json_body(req).get("direction")
    if direction not in DIRECTIONS:
        raise BadRequest("direction must be 'up' or 'down'")
    return direction


def _outcome_response(outcome: ReorderOutcome) -> func.HttpResponse:
    return json_response({"outcome": outcome.value}, 404 if outcome is ReorderOutcome.NOT_FOUND else 200)


@bp.function_name(name="Vehicles")
@bp.route(route="vehicles", methods=["GET", "POST", "OPTIONS"], auth_level=func.AuthLevel.ANONYMOUS)
@translate_errors
def vehicles(req: func.HttpRequest) -> func.HttpResponse:
    principal = require_principal(req)

    if req.method == "GET":
        return json_response(list_vehicles(principal))

    # POST
    enforce_user_action("create_vehicle", principal.user_id, client_ip(req))
    return json_response(create_vehicle(principal, json_body(req)), 201)


@bp.function_name(name="VehicleItem")
@bp.route(route="vehicles/{vehicle_id}", methods=["GET", "PUT", "DELETE", "OPTIONS"], auth_level=func.AuthLevel.ANONYMOUS)
@translate_errors
def vehicle_item(req: func.HttpRequest) -> func.HttpResponse:
    principal = require_principal(req)
    vid = route_uuid(req, "vehicle_id")

    if req.method == "GET":
        return json_response(get_vehicle(principal, vid))

    if req.method == "PUT":
        enforce_user_action("update_vehicle", principal.user_id, client_ip(req))
        return json_response(update_vehicle(principal, vid, json_body(req)))

    # DELETE
    enforce_user_action("delete_vehicle", principal.user_id, client_ip(req))
    delete_vehicle(principal, vid)
    return cors_response("Deleted", 200)


@bp.function_name(name="VehicleMove")
@bp.route(route="vehicles/{vehicle_id}/move", methods=["POST", "OPTIONS"], auth_level=func.AuthLevel.ANONYMOUS)
@translate_errors
def vehicle_move(req: func.HttpRequest) -> func.HttpResponse:
    principal = require_principal(req)
    enforce_user_action("move_vehicle", principal.user_id, client_ip(req))
    vid = route_uuid(req, "vehicle_id")
    return _outcome_response(reorder_vehicle(principal, vid, _direction(req)))


@bp.function_name(name="VehicleHero")
@bp.route(route="vehicles/{vehicle_id}/hero", methods=["POST", "OPTIONS"], auth_level=func.AuthLevel.ANONYMOUS)
@translate_errors
def vehicle_hero(req: func.HttpRequest) -> func.HttpResponse:
    principal = require_principal(req)
    enforce_user_action("upload_image", principal.user_id, client_ip(req))
    vid = route_uuid(req, "vehicle_id")
    form = parse_multipart(req)
    return json_response(set_hero_image(principal, vid, form["file"]), 201)


@bp.function_name(name="VehicleMods")
@bp.route(route="vehicles/{vehicle_id}/mods", methods=["GET", "POST", "OPTIONS"], auth_level=func.AuthLevel.ANONYMOUS)
@translate_errors
def vehicle_mods(req: func.HttpRequest) -> func.HttpResponse:
    principal = require_principal(req)
    vid = route_uuid(req, "vehicle_id")

    if req.method == "GET":
        return json_response(list_mods(principal, vid))

    enforce_user_action("create_mod", principal.user_id, client_ip(req))
    return json_response(create_mod(principal, vid, json_body(req)), 201)


@bp.function_name(name="VehicleModItem")
@bp.route(route="vehicles/{vehicle_id}/mods/{mod_id}", methods=["PUT", "DELETE", "OPTIONS"], auth_level=func.AuthLevel.ANONYMOUS)
@translate_errors
def vehicle_mod_item(req: func.HttpRequest) -> func.HttpResponse:
    principal = require_principal(req)
    vid = route_uuid(req, "vehicle_id")
    mid = route_uuid(req, "mod_id")

    if req.method == "PUT":
        enforce_user_action("update_mod", principal.user_id, client_ip(req))
        return json_response(update_mod(principal, vid, mid, json_body(req)))

    enforce_user_action("delete_mod", principal.user_id, client_ip(req))
    delete_mod(principal, vid, mid)
    return cors_response("Deleted", 200)


@bp.function_name(name="VehicleModMove")
@bp.route(route="vehicles/{vehicle_id}/mods/{mod_id}/move", methods=["POST", "OPTIONS"], auth_level=func.AuthLevel.ANONYMOUS)
@translate_errors
def vehicle_mod_move(req: func.HttpRequest) -> func.HttpResponse:
    principal = require_principal(req)
    enforce_user_action("move_mod", principal.user_id, client_ip(req))
    vid = route_uuid(req, "vehicle_id")
    mid = route_uuid(req, "mod_id")
    return _outcome_response(reorder_mod(principal, vid, mid, _direction(req)))
