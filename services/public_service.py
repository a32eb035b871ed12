# services/public_service.py
"""
Read-only projections for the shareable /u/{username} pages.

Only the columns listed here ever leave the database for anonymous callers; queries
run in an anonymous session so the guard's public predicates apply on top of
the explicit visibility filters below.
"""
import uuid
from typing import Dict, List

from sqlalchemy import func, select

from auth.policies import ANONYMOUS, EntityKind, public_predicate
from auth.storage_paths import object_is_public_readable
from db import session_for
from models import DEFAULT_BUCKET, Image, Mod, Profile, Vehicle
from services.blob_service import object_url
from utils.errors import NotFound
from utils.sanitize import normalize_username

PUBLIC_PROFILE_COLUMNS = (
    Profile.id, Profile.username, Profile.display_name, Profile.bio, Profile.avatar_path, Profile.created_at,
)
PUBLIC_VEHICLE_COLUMNS = (
    Vehicle.id, Vehicle.profile_id, Vehicle.name, Vehicle.year, Vehicle.make, Vehicle.model,
    Vehicle.trim, Vehicle.hero_image_path, Vehicle.sort_order, Vehicle.created_at,
)
PUBLIC_MOD_COLUMNS = (
    Mod.id, Mod.vehicle_id, Mod.title, Mod.category, Mod.cost_cents, Mod.notes,
    Mod.installed_on, Mod.sort_order, Mod.created_at,
)
PUBLIC_IMAGE_COLUMNS = (
    Image.id, Image.vehicle_id, Image.mod_id, Image.storage_bucket, Image.storage_path,
    Image.caption, Image.sort_order, Image.created_at,
)


def _public_url(db, path, bucket=DEFAULT_BUCKET):
    """URL only while the object is still referenced by published content."""
    if not path or not object_is_public_readable(db, path, bucket):
        return None
    return object_url(path, bucket)


def _public_profile(db, username: str):
    row = db.execute(
        select(*PUBLIC_PROFILE_COLUMNS).where(
            func.lower(Profile.username) == username, public_predicate(EntityKind.PROFILE)
        )
    ).first()
    if not row:
        raise NotFound("profile not found")
    return row


def _profile_out(db, p) -> Dict:
    return {
        "username": p.username,
        "display_name": p.display_name,
        "bio": p.bio,
        "avatar_url": _public_url(db, p.avatar_path),
    }


def get_public_profile(username: str) -> Dict:
    """Published profile plus its public vehicles (with mod counts)."""
    username = normalize_username(username)
    if not username:
        raise NotFound("profile not found")

    with session_for(ANONYMOUS) as db:
        p = _public_profile(db, username)
        mod_counts = (
            select(Mod.vehicle_id, func.count(Mod.id).label("mod_count"))
            .where(public_predicate(EntityKind.MOD))
            .group_by(Mod.vehicle_id)
            .subquery()
        )
        vehicles = db.execute(
            select(*PUBLIC_VEHICLE_COLUMNS, func.coalesce(mod_counts.c.mod_count, 0).label("mod_count"))
            .outerjoin(mod_counts, mod_counts.c.vehicle_id == Vehicle.id)
            .where(Vehicle.profile_id == p.id, public_predicate(EntityKind.VEHICLE))
            .order_by(Vehicle.sort_order, Vehicle.created_at, Vehicle.id)
        ).all()

        return {
            "profile": _profile_out(db, p),
            "vehicles": [
                {
                    "id": str(v.id),
                    "name": v.name,
                    "year": v.year,
                    "make": v.make,
                    "model": v.model,
                    "trim": v.trim,
                    "hero_image_url": _public_url(db, v.hero_image_path),
                    "mod_count": v.mod_count,
                }
                for v in vehicles
            ],
        }


def get_public_vehicle(username: str, vehicle_id: uuid.UUID) -> Dict:
    """One public vehicle with its mods and images; anything unpublished is a 404."""
    username = normalize_username(username)
    if not username:
        raise NotFound("profile not found")

    with session_for(ANONYMOUS) as db:
        p = _public_profile(db, username)
        v = db.execute(
            select(*PUBLIC_VEHICLE_COLUMNS).where(
                Vehicle.id == vehicle_id, Vehicle.profile_id == p.id, public_predicate(EntityKind.VEHICLE)
            )
        ).first()
        if not v:
            raise NotFound("vehicle not found")

        mods = db.execute(
            select(*PUBLIC_MOD_COLUMNS)
            .where(Mod.vehicle_id == v.id, public_predicate(EntityKind.MOD))
            .order_by(Mod.sort_order, Mod.created_at, Mod.id)
        ).all()
        mod_ids = [m.id for m in mods]

        image_parent = Image.vehicle_id == v.id
        if mod_ids:
            image_parent = image_parent | Image.mod_id.in_(mod_ids)
        images = db.execute(
            select(*PUBLIC_IMAGE_COLUMNS)
            .where(image_parent, public_predicate(EntityKind.IMAGE))
            .order_by(Image.sort_order, Image.created_at, Image.id)
        ).all()

        def _images_for(parent_col: str, parent_id) -> List[Dict]:
            return [
                {"id": str(i.id), "url": _public_url(db, i.storage_path, i.storage_bucket), "caption": i.caption}
                for i in images
                if getattr(i, parent_col) == parent_id
            ]

        return {
            "profile": _profile_out(db, p),
            "vehicle": {
                "id": str(v.id),
                "name": v.name,
                "year": v.year,
                "make": v.make,
                "model": v.model,
                "trim": v.trim,
                "hero_image_url": _public_url(db, v.hero_image_path),
                "images": _images_for("vehicle_id", v.id),
            },
            "mods": [
                {
                    "id": str(m.id),
                    "title": m.title,
                    "category": m.category,
                    "cost_cents": m.cost_cents,
                    "notes": m.notes,
                    "installed_on": m.installed_on.isoformat() if m.installed_on else None,
                    "images": _images_for("mod_id", m.id),
                }
                for m in mods
            ],
        }
