# services/vehicle_service.py
from __future__ import annotations
import logging
import uuid
from typing import Dict, List, Mapping, Optional

from sqlalchemy import func, select

from auth.policies import Principal
from db import session_for
from models import Image, Mod, Vehicle
from services.blob_service import object_url, remove_objects
from services.image_service import image_dict
from services.limits import enforce_mod_limit, enforce_vehicle_limit
from services.upload_service import store_image
from utils.errors import BadRequest, NotFound
from utils.sanitize import (
    cost_cents,
    optional_date,
    optional_text,
    required_text,
    vehicle_year,
)

logger = logging.getLogger(__name__)

VEHICLE_FIELDS = {"name", "year", "make", "model", "trim", "is_public"}
MOD_FIELDS = {"title", "category", "cost", "cost_cents", "notes", "installed_on"}


def _sanitize_patch(data: Mapping | None, allowed: set[str]) -> dict:
    """Return only keys present in `allowed`."""
    if not data:
        return {}
    return {k: v for k, v in data.items() if k in allowed}


def _as_bool(value) -> bool:
    if isinstance(value, str):
        return value.strip().lower() in {"1", "true", "on", "yes"}
    return bool(value)


def _clean_vehicle(patch: Mapping) -> dict:
    out = {}
    if "name" in patch:
        out["name"] = required_text(patch["name"], "Vehicle name", 80)
    if "year" in patch:
        out["year"] = vehicle_year(patch["year"])
    for key, label in (("make", "Make"), ("model", "Model"), ("trim", "Trim")):
        if key in patch:
            out[key] = optional_text(patch[key], label, 40)
    if "is_public" in patch:
        out["is_public"] = _as_bool(patch["is_public"])
    return out


def _clean_mod(patch: Mapping) -> dict:
    out = {}
    if "title" in patch:
        out["title"] = required_text(patch["title"], "Mod title", 80)
    if "category" in patch:
        out["category"] = optional_text(patch["category"], "Category", 40)
    if "cost" in patch or "cost_cents" in patch:
        out["cost_cents"] = cost_cents(patch["cost"]) if "cost" in patch else patch["cost_cents"]
        if out["cost_cents"] is not None and (isinstance(out["cost_cents"], bool) or not isinstance(out["cost_cents"], int)):
            raise BadRequest("Cost must be a valid amount, like 249.99.")
    if "notes" in patch:
        out["notes"] = optional_text(patch["notes"], "Notes", 2000)
    if "installed_on" in patch:
        out["installed_on"] = optional_date(patch["installed_on"])
    return out


def vehicle_dict(v: Vehicle) -> Dict:
    return {
        "id": str(v.id),
        "name": v.name,
        "year": v.year,
        "make": v.make,
        "model": v.model,
        "trim": v.trim,
        "is_public": v.is_public,
        "hero_image_url": object_url(v.hero_image_path),
        "sort_order": v.sort_order,
        "created_at": v.created_at.isoformat() if v.created_at else None,
    }


def mod_dict(m: Mod) -> Dict:
    return {
        "id": str(m.id),
        "vehicle_id": str(m.vehicle_id),
        "title": m.title,
        "category": m.category,
        "cost_cents": m.cost_cents,
        "notes": m.notes,
        "installed_on": m.installed_on.isoformat() if m.installed_on else None,
        "sort_order": m.sort_order,
        "created_at": m.created_at.isoformat() if m.created_at else None,
    }


def _next_sort_order(db, column, *criteria) -> int:
    current = db.execute(select(func.max(column)).where(*criteria)).scalar()
    return 0 if current is None else current + 1


def _owned_vehicle(db, principal: Principal, vehicle_id: uuid.UUID) -> Vehicle:
    v = db.execute(
        select(Vehicle).where(Vehicle.id == vehicle_id, Vehicle.profile_id == principal.user_id)
    ).scalar_one_or_none()
    if not v:
        raise NotFound("vehicle not found")
    return v


def _owned_mod(db, principal: Principal, vehicle_id: uuid.UUID, mod_id: uuid.UUID) -> Mod:
    m = db.execute(
        select(Mod)
        .join(Vehicle, Vehicle.id == Mod.vehicle_id)
        .where(Mod.id == mod_id, Mod.vehicle_id == vehicle_id, Vehicle.profile_id == principal.user_id)
    ).scalar_one_or_none()
    if not m:
        raise NotFound("mod not found")
    return m


def _image_paths(db, *criteria) -> List[str]:
    return list(db.execute(select(Image.storage_path).where(*criteria)).scalars())


# ───────────── VEHICLES ────────────────────────────────────────────────────────
def list_vehicles(principal: Principal) -> List[Dict]:
    with session_for(principal) as db:
        rows = db.execute(
            select(Vehicle)
            .where(Vehicle.profile_id == principal.user_id)
            .order_by(Vehicle.sort_order, Vehicle.created_at, Vehicle.id)
        ).scalars().all()
        return [vehicle_dict(v) for v in rows]


def get_vehicle(principal: Principal, vehicle_id: uuid.UUID) -> Dict:
    """Owner view for editing: the vehicle, its mods, and the images on each of them."""
    with session_for(principal) as db:
        v = _owned_vehicle(db, principal, vehicle_id)
        out = vehicle_dict(v)
        mods = _list_mods(db, principal, vehicle_id)

        parent = Image.vehicle_id == vehicle_id
        if mods:
            parent = parent | Image.mod_id.in_([uuid.UUID(m["id"]) for m in mods])
        images = [
            image_dict(i)
            for i in db.execute(
                select(Image)
                .where(parent, Image.profile_id == principal.user_id)
                .order_by(Image.sort_order, Image.created_at, Image.id)
            ).scalars()
        ]

        out["images"] = [i for i in images if i["vehicle_id"]]
        for m in mods:
            m["images"] = [i for i in images if i["mod_id"] == m["id"]]
        out["mods"] = mods
        return out


def create_vehicle(principal: Principal, data: Mapping) -> Dict:
    fields = _clean_vehicle(_sanitize_patch(data, VEHICLE_FIELDS))
    if "name" not in fields:
        raise BadRequest("Vehicle name is required.")

    with session_for(principal) as db:
        enforce_vehicle_limit(db, principal.user_id)
        v = Vehicle(
            profile_id=principal.user_id,
            sort_order=_next_sort_order(db, Vehicle.sort_order, Vehicle.profile_id == principal.user_id),
            **fields,
        )
        db.add(v)
        db.commit()
        db.refresh(v)
        logger.info("Vehicle %s created for %s", v.id, principal.user_id)
        return vehicle_dict(v)


def update_vehicle(principal: Principal, vehicle_id: uuid.UUID, data: Mapping) -> Dict:
    fields = _clean_vehicle(_sanitize_patch(data, VEHICLE_FIELDS))
    with session_for(principal) as db:
        v = _owned_vehicle(db, principal, vehicle_id)
        for k, val in fields.items():
            setattr(v, k, val)
        db.commit()
        db.refresh(v)
        return vehicle_dict(v)


def delete_vehicle(principal: Principal, vehicle_id: uuid.UUID) -> None:
    """Delete the vehicle (mods and images cascade), then its blobs."""
    with session_for(principal) as db:
        v = _owned_vehicle(db, principal, vehicle_id)
        mod_ids = select(Mod.id).where(Mod.vehicle_id == vehicle_id)
        paths = [v.hero_image_path]
        paths += _image_paths(db, Image.vehicle_id == vehicle_id)
        paths += _image_paths(db, Image.mod_id.in_(mod_ids))
        db.delete(v)
        db.commit()
    remove_objects(paths)


def set_hero_image(principal: Principal, vehicle_id: uuid.UUID, file: Dict) -> Dict:
    with session_for(principal) as db:
        v = _owned_vehicle(db, principal, vehicle_id)
        path = store_image(db, principal, f"vehicles/{vehicle_id}", file)
        old_path, v.hero_image_path = v.hero_image_path, path
        try:
            db.commit()
        except Exception:
            db.rollback()
            remove_objects([path])
            raise
        db.refresh(v)
        result = vehicle_dict(v)

    if old_path and old_path != path:
        remove_objects([old_path])
    return result


# ───────────── MODS ────────────────────────────────────────────────────────────
def _list_mods(db, principal: Principal, vehicle_id: uuid.UUID) -> List[Dict]:
    rows = db.execute(
        select(Mod)
        .join(Vehicle, Vehicle.id == Mod.vehicle_id)
        .where(Mod.vehicle_id == vehicle_id, Vehicle.profile_id == principal.user_id)
        .order_by(Mod.sort_order, Mod.created_at, Mod.id)
    ).scalars().all()
    return [mod_dict(m) for m in rows]


def list_mods(principal: Principal, vehicle_id: uuid.UUID) -> List[Dict]:
    with session_for(principal) as db:
        _owned_vehicle(db, principal, vehicle_id)
        return _list_mods(db, principal, vehicle_id)


def create_mod(principal: Principal, vehicle_id: uuid.UUID, data: Mapping) -> Dict:
    fields = _clean_mod(_sanitize_patch(data, MOD_FIELDS))
    if "title" not in fields:
        raise BadRequest("Mod title is required.")

    with session_for(principal) as db:
        _owned_vehicle(db, principal, vehicle_id)
        enforce_mod_limit(db, principal.user_id, vehicle_id)
        m = Mod(
            vehicle_id=vehicle_id,
            sort_order=_next_sort_order(db, Mod.sort_order, Mod.vehicle_id == vehicle_id),
            **fields,
        )
        db.add(m)
        db.commit()
        db.refresh(m)
        return mod_dict(m)


def update_mod(principal: Principal, vehicle_id: uuid.UUID, mod_id: uuid.UUID, data: Mapping) -> Dict:
    fields = _clean_mod(_sanitize_patch(data, MOD_FIELDS))
    with session_for(principal) as db:
        m = _owned_mod(db, principal, vehicle_id, mod_id)
        for k, val in fields.items():
            setattr(m, k, val)
        db.commit()
        db.refresh(m)
        return mod_dict(m)


def delete_mod(principal: Principal, vehicle_id: uuid.UUID, mod_id: uuid.UUID) -> None:
    with session_for(principal) as db:
        m = _owned_mod(db, principal, vehicle_id, mod_id)
        paths = _image_paths(db, Image.mod_id == mod_id)
        db.delete(m)
        db.commit()
    remove_objects(paths)
