# auth/storage_paths.py
"""
Blob path authorization, mirroring the row level model.

Owner-writable paths (exactly two folders and a file name):
    avatars/{profile_id}/{file}
    vehicles/{vehicle_id}/{file}   vehicle owned by the caller
    mods/{mod_id}/{file}           mod whose vehicle is owned by the caller

Public readability is derived from live rows: a path is readable only while a
published profile's avatar, a public vehicle's hero image, or a public image row
points at it.
"""
import uuid
from typing import List, Optional, Tuple

from sqlalchemy import and_, or_, select
from sqlalchemy.orm import Session

from auth.guard import valid_storage_path
from auth.policies import EntityKind, Principal, public_predicate, resolve_parent_owner
from models import DEFAULT_BUCKET, Image, Profile, Vehicle
from utils.errors import AuthorizationError

_PARENT_FOLDERS = {"vehicles": EntityKind.VEHICLE, "mods": EntityKind.MOD}


def split_object_path(path: Optional[str]) -> Optional[Tuple[List[str], str]]:
    """(folders, filename) for a well-formed path, else None."""
    if not valid_storage_path(path):
        return None
    parts = path.split("/")
    folders, filename = parts[:-1], parts[-1]
    if len(folders) != 2 or not all(folders) or not filename:
        return None
    return folders, filename


def object_owner_can_write(db: Session, path: Optional[str], user_id: Optional[uuid.UUID]) -> bool:
    if user_id is None:
        return False
    parsed = split_object_path(path)
    if parsed is None:
        return False
    (root, target), _ = parsed

    if root == "avatars":
        return target == str(user_id)

    parent_kind = _PARENT_FOLDERS.get(root)
    if parent_kind is None:
        return False
    try:
        parent_id = uuid.UUID(target)
    except ValueError:
        return False
    # must be the canonical text form, same as comparing id::text in SQL
    if str(parent_id) != target:
        return False
    return resolve_parent_owner(db, parent_kind, parent_id) == user_id


def require_object_write(db: Session, path: str, principal: Principal) -> None:
    if not object_owner_can_write(db, path, principal.user_id):
        raise AuthorizationError("object path not writable")


def object_is_public_readable(db: Session, path: Optional[str], bucket: str = DEFAULT_BUCKET) -> bool:
    if not valid_storage_path(path):
        return False

    avatar = (
        select(Profile.id)
        .where(Profile.avatar_path == path, public_predicate(EntityKind.PROFILE))
        .exists()
    )
    hero = (
        select(Vehicle.id)
        .where(Vehicle.hero_image_path == path, public_predicate(EntityKind.VEHICLE))
        .exists()
    )
    image = (
        select(Image.id)
        .where(
            and_(Image.storage_bucket == bucket, Image.storage_path == path),
            public_predicate(EntityKind.IMAGE),
        )
        .exists()
    )
    return bool(db.execute(select(or_(avatar, hero, image))).scalar())
