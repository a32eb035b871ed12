import uuid

from utils.errors import BadRequest


def json_body(req) -> dict:
    """Request JSON as a dict; malformed or non-object bodies are a 400."""
    try:
        body = req.get_json()
    except ValueError:
        raise BadRequest("Invalid JSON body")
    if not isinstance(body, dict):
        raise BadRequest("Expected a JSON object")
    return body


def route_uuid(req, name: str) -> uuid.UUID:
    try:
        return uuid.UUID(req.route_params.get(name) or "")
    except ValueError:
        raise BadRequest(f"Invalid {name.replace('_', ' ')}")
