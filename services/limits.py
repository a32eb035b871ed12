# services/limits.py
from sqlalchemy import func, select
from sqlalchemy.orm import Session

from models import Image, Mod, Profile, Vehicle
from utils.errors import LimitReached

FREE_TIER_LIMITS = {
    "vehicles": 1,
    "mods_per_vehicle": 10,
    "images_per_profile": 10,
}


def _is_pro(db: Session, profile_id) -> bool:
    profile = db.get(Profile, profile_id)
    return bool(profile and profile.is_pro)


def _count(db: Session, stmt) -> int:
    return db.execute(stmt).scalar() or 0


def enforce_vehicle_limit(db: Session, profile_id) -> None:
    if _is_pro(db, profile_id):
        return
    n = _count(db, select(func.count(Vehicle.id)).where(Vehicle.profile_id == profile_id))
    if n >= FREE_TIER_LIMITS["vehicles"]:
        raise LimitReached("vehicles", FREE_TIER_LIMITS["vehicles"])


def enforce_mod_limit(db: Session, profile_id, vehicle_id) -> None:
    if _is_pro(db, profile_id):
        return
    n = _count(db, select(func.count(Mod.id)).where(Mod.vehicle_id == vehicle_id))
    if n >= FREE_TIER_LIMITS["mods_per_vehicle"]:
        raise LimitReached("mods", FREE_TIER_LIMITS["mods_per_vehicle"])


def enforce_image_limit(db: Session, profile_id) -> None:
    if _is_pro(db, profile_id):
        return
    n = _count(db, select(func.count(Image.id)).where(Image.profile_id == profile_id))
    if n >= FREE_TIER_LIMITS["images_per_profile"]:
        raise LimitReached("images", FREE_TIER_LIMITS["images_per_profile"])
