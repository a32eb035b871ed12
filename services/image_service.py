# services/image_service.py
import logging
import uuid
from typing import Dict, List, Optional

from sqlalchemy import func, select

from auth.policies import EntityKind, Principal, resolve_parent_owner
from db import session_for
from models import DEFAULT_BUCKET, Image
from services.blob_service import object_url, remove_objects
from services.limits import enforce_image_limit
from services.upload_service import store_image
from utils.errors import BadRequest, NotFound
from utils.sanitize import optional_text

logger = logging.getLogger(__name__)

CAPTION_MAX = 120
PARENT_FOLDERS = {EntityKind.VEHICLE: "vehicles", EntityKind.MOD: "mods"}


def image_dict(i: Image) -> Dict:
    return {
        "id": str(i.id),
        "vehicle_id": str(i.vehicle_id) if i.vehicle_id else None,
        "mod_id": str(i.mod_id) if i.mod_id else None,
        "url": object_url(i.storage_path, i.storage_bucket),
        "caption": i.caption,
        "sort_order": i.sort_order,
        "created_at": i.created_at.isoformat() if i.created_at else None,
    }


def parse_parent(parent_type: Optional[str], parent_id: Optional[str]):
    try:
        kind = EntityKind((parent_type or "").strip().lower())
    except ValueError:
        raise BadRequest("parent_type must be 'vehicle' or 'mod'")
    if kind not in PARENT_FOLDERS:
        raise BadRequest("parent_type must be 'vehicle' or 'mod'")
    try:
        return kind, uuid.UUID(str(parent_id))
    except ValueError:
        raise BadRequest("Invalid parent id")


def upload_image(
    principal: Principal,
    parent_kind: EntityKind,
    parent_id: uuid.UUID,
    file: Dict,
    caption: Optional[str] = None,
) -> Dict:
    """Attach a new image to exactly one owned vehicle or mod."""
    caption = optional_text(caption, "Caption", CAPTION_MAX)
    parent_col = Image.vehicle_id if parent_kind is EntityKind.VEHICLE else Image.mod_id

    with session_for(principal) as db:
        if resolve_parent_owner(db, parent_kind, parent_id) != principal.user_id:
            raise NotFound(f"{parent_kind.value} not found")
        enforce_image_limit(db, principal.user_id)

        path = store_image(db, principal, f"{PARENT_FOLDERS[parent_kind]}/{parent_id}", file)
        current = db.execute(select(func.max(Image.sort_order)).where(parent_col == parent_id)).scalar()
        row = Image(
            profile_id=principal.user_id,
            storage_bucket=DEFAULT_BUCKET,
            storage_path=path,
            caption=caption,
            sort_order=0 if current is None else current + 1,
            **{parent_col.key: parent_id},
        )
        db.add(row)
        try:
            db.commit()
        except Exception:
            db.rollback()
            remove_objects([path])
            raise
        db.refresh(row)
        return image_dict(row)


def list_images(principal: Principal, parent_kind: EntityKind, parent_id: uuid.UUID) -> List[Dict]:
    parent_col = Image.vehicle_id if parent_kind is EntityKind.VEHICLE else Image.mod_id
    with session_for(principal) as db:
        rows = db.execute(
            select(Image)
            .where(parent_col == parent_id, Image.profile_id == principal.user_id)
            .order_by(Image.sort_order, Image.created_at, Image.id)
        ).scalars().all()
        return [image_dict(r) for r in rows]


def delete_image(principal: Principal, image_id: uuid.UUID) -> None:
    with session_for(principal) as db:
        row = db.execute(
            select(Image).where(Image.id == image_id, Image.profile_id == principal.user_id)
        ).scalar_one_or_none()
        if not row:
            raise NotFound("image not found")
        path, bucket = row.storage_path, row.storage_bucket
        db.delete(row)
        db.commit()
    remove_objects([path], bucket)
