# services/upload_service.py
import io
import logging
import uuid
from typing import Dict, Optional

from PIL import Image as PILImage, UnidentifiedImageError
from requests_toolbelt.multipart import decoder as mp
from sqlalchemy.orm import Session

from auth.policies import Principal
from auth.storage_paths import require_object_write
from services.blob_service import put_object
from utils.errors import BadRequest

logger = logging.getLogger(__name__)

MAX_UPLOAD_BYTES = 5 * 1024 * 1024
ALLOWED_CONTENT = {"image/jpeg": "jpg", "image/png": "png", "image/webp": "webp"}
# Pillow format name -> content type it must have been uploaded as
_PIL_FORMATS = {"JPEG": "image/jpeg", "PNG": "image/png", "WEBP": "image/webp"}


def _disposition_param(disp: str, name: str) -> Optional[str]:
    for token in disp.split(";"):
        token = token.strip()
        if token.startswith(f"{name}="):
            return token.split("=", 1)[1].strip().strip('"')
    return None


def parse_multipart(req) -> Dict:
    """
    Parse multipart/form-data from an Azure Functions HttpRequest.
    Returns {"fields": {name: str}, "file": {"filename", "content_type", "data"} | None}
    """
    ctype = req.headers.get("content-type") or req.headers.get("Content-Type")
    if not ctype or "multipart/form-data" not in ctype:
        raise BadRequest("Expected multipart/form-data")

    try:
        parts = mp.MultipartDecoder(req.get_body(), ctype).parts
    except (mp.ImproperBodyPartContentException, mp.NonMultipartContentTypeException) as e:
        raise BadRequest("Malformed multipart body") from e

    fields, file = {}, None
    for p in parts:
        disp = p.headers.get(b"Content-Disposition", b"").decode("utf-8", "ignore")
        name = _disposition_param(disp, "name")
        filename = _disposition_param(disp, "filename")
        if filename is not None:
            if name == "file" or file is None:
                file = {
                    "filename": filename or "upload.bin",
                    "content_type": p.headers.get(b"Content-Type", b"application/octet-stream").decode("utf-8", "ignore"),
                    "data": p.content,
                }
        elif name:
            fields[name] = p.text
    return {"fields": fields, "file": file}


def validate_image(file: Optional[Dict]) -> Dict:
    if not file or not file.get("data"):
        raise BadRequest("Choose an image to upload.")
    if len(file["data"]) > MAX_UPLOAD_BYTES:
        raise BadRequest("Image must be 5MB or smaller.")
    if file["content_type"] not in ALLOWED_CONTENT:
        raise BadRequest("Only JPEG, PNG, or WEBP images are allowed.")

    # the declared type must match the actual bytes
    try:
        im = PILImage.open(io.BytesIO(file["data"]))
        fmt = im.format
        im.verify()
    except (UnidentifiedImageError, OSError, SyntaxError) as e:
        raise BadRequest("File is not a valid image.") from e
    if _PIL_FORMATS.get(fmt) != file["content_type"]:
        raise BadRequest("Only JPEG, PNG, or WEBP images are allowed.")
    return file


def object_path(prefix: str, content_type: str) -> str:
    return f"{prefix}/{uuid.uuid4()}.{ALLOWED_CONTENT[content_type]}"


def store_image(db: Session, principal: Principal, prefix: str, file: Dict) -> str:
    """Validate, authorize the target path for `principal`, upload. Returns the stored path."""
    file = validate_image(file)
    path = object_path(prefix, file["content_type"])
    require_object_write(db, path, principal)
    put_object(path, file["data"], file["content_type"])
    logger.info("Stored upload %s (%d bytes) for %s", path, len(file["data"]), principal.user_id)
    return path
