# services/profile_service.py
from __future__ import annotations
import logging
import re
from typing import Dict, Mapping, Optional

from sqlalchemy import func, select
from sqlalchemy.exc import IntegrityError

from auth.policies import Principal
from db import session_for
from models import Profile
from services.blob_service import object_url, remove_objects
from services.upload_service import store_image
from utils.errors import BadRequest, NotFound
from utils.sanitize import is_valid_username, normalize_username, optional_text

logger = logging.getLogger(__name__)

DEFAULT_DISPLAY_NAME = "My Garage"
USERNAME_MAX = 30
DISPLAY_NAME_MAX = 60
BIO_MAX = 300


def profile_dict(p: Profile) -> Dict:
    return {
        "id": str(p.id),
        "username": p.username,
        "display_name": p.display_name,
        "bio": p.bio,
        "avatar_url": object_url(p.avatar_path),
        "is_pro": p.is_pro,
        "is_published": p.is_published,
        "created_at": p.created_at.isoformat() if p.created_at else None,
    }


# ───────────── username derivation ─────────────────────────────────────────────
def username_base_from_email(email: Optional[str]) -> str:
    local = (email or "").split("@", 1)[0].lower()
    base = re.sub(r"[^a-z0-9_]+", "_", local)
    base = re.sub(r"_+", "_", base).strip("_")
    if len(base) < 3:
        base = "user"
    return base[:USERNAME_MAX]


def username_candidates(email: Optional[str], user_id) -> list:
    """First choice from the email local part, then a suffixed fallback unique to the user."""
    base = username_base_from_email(email)
    suffix = user_id.hex[-8:]
    return [base, f"{base[:21]}_{suffix}"]


def _username_taken(db, username: str, exclude_id=None) -> bool:
    profiles = Profile.__table__
    stmt = select(profiles.c.id).where(func.lower(profiles.c.username) == username.lower())
    if exclude_id is not None:
        stmt = stmt.where(profiles.c.id != exclude_id)
    return db.execute(stmt.limit(1)).first() is not None


# ───────────── provisioning ────────────────────────────────────────────────────
def ensure_profile(principal: Principal, email: Optional[str]) -> Dict:
    """
    Idempotently create the caller's profile.
    Tries the derived username, then the suffixed fallback, and finally leaves the
    profile unpublished (NULL username) rather than failing sign-in.
    """
    uid = principal.user_id
    if uid is None:
        raise NotFound("profile not found")

    for candidate in username_candidates(email, uid) + [None]:
        with session_for(principal) as db:
            existing = db.get(Profile, uid)
            if existing:
                return profile_dict(existing)
            if candidate is not None and _username_taken(db, candidate):
                continue

            profile = Profile(id=uid, username=candidate, display_name=DEFAULT_DISPLAY_NAME)
            db.add(profile)
            try:
                db.commit()
            except IntegrityError:
                # lost a race for the username (or for the profile row itself)
                db.rollback()
                logger.info("Username %r unavailable while provisioning %s", candidate, uid)
                continue
            db.refresh(profile)
            return profile_dict(profile)

    with session_for(principal) as db:
        existing = db.get(Profile, uid)
        if existing:
            return profile_dict(existing)
    raise RuntimeError(f"Could not provision profile for {uid}")


# ───────────── owner operations ────────────────────────────────────────────────
def _owned_profile(db, principal: Principal) -> Profile:
    profile = db.get(Profile, principal.user_id) if principal.user_id else None
    if not profile:
        raise NotFound("profile not found")
    return profile


def get_profile(principal: Principal) -> Dict:
    with session_for(principal) as db:
        return profile_dict(_owned_profile(db, principal))


def check_username(principal: Principal, raw) -> Dict:
    username = normalize_username(raw)
    if not username or not is_valid_username(username):
        return {"username": username, "valid": False, "available": False}
    with session_for(principal) as db:
        taken = _username_taken(db, username, exclude_id=principal.user_id)
    return {"username": username, "valid": True, "available": not taken}


def update_profile(principal: Principal, data: Mapping) -> Dict:
    """Patch username/display_name/bio. An empty username unpublishes the profile."""
    with session_for(principal) as db:
        profile = _owned_profile(db, principal)

        if "username" in data:
            username = normalize_username(data.get("username"))
            if username is not None and not is_valid_username(username):
                raise BadRequest("Username must be 3-30 characters: lowercase letters, numbers, or underscores.")
            if username is not None and _username_taken(db, username, exclude_id=profile.id):
                raise BadRequest("That username is taken.")
            profile.username = username
        if "display_name" in data:
            profile.display_name = optional_text(data.get("display_name"), "Display name", DISPLAY_NAME_MAX)
        if "bio" in data:
            profile.bio = optional_text(data.get("bio"), "Bio", BIO_MAX)

        try:
            db.commit()
        except IntegrityError:
            db.rollback()
            raise BadRequest("That username is taken.")
        db.refresh(profile)
        return profile_dict(profile)


def set_avatar(principal: Principal, file: Dict) -> Dict:
    with session_for(principal) as db:
        profile = _owned_profile(db, principal)
        path = store_image(db, principal, f"avatars/{principal.user_id}", file)
        old_path, profile.avatar_path = profile.avatar_path, path
        try:
            db.commit()
        except Exception:
            db.rollback()
            remove_objects([path])
            raise
        db.refresh(profile)
        result = profile_dict(profile)

    if old_path and old_path != path:
        remove_objects([old_path])
    return result
