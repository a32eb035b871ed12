# auth/policies.py
"""
Ownership and public-visibility predicates for Profile -> Vehicle -> Mod -> Image.

Every owner check is derived from one traversal (`root_owner_expr` for SQL over a
whole table, `resolve_root_owner` for a single object) that walks parent references
up to the owning profile id. Parent tables are always aliased inside the
subqueries so they never auto-correlate with an outer query that already selects
the parent entity, and so the guard's loader criteria never recurse into them.
"""
import enum
import uuid
from dataclasses import dataclass
from typing import Optional

from sqlalchemy import and_, or_, case, false, select
from sqlalchemy.orm import Session

from models import Profile, Vehicle, Mod, Image


@dataclass(frozen=True)
class Principal:
    """Authenticated caller. `user_id is None` means anonymous."""
    user_id: Optional[uuid.UUID] = None

    @property
    def is_anonymous(self) -> bool:
        return self.user_id is None


ANONYMOUS = Principal()


class EntityKind(str, enum.Enum):
    PROFILE = "profile"
    VEHICLE = "vehicle"
    MOD = "mod"
    IMAGE = "image"


MODEL_BY_KIND = {
    EntityKind.PROFILE: Profile,
    EntityKind.VEHICLE: Vehicle,
    EntityKind.MOD: Mod,
    EntityKind.IMAGE: Image,
}
KIND_BY_MODEL = {model: kind for kind, model in MODEL_BY_KIND.items()}


def kind_of(obj) -> Optional[EntityKind]:
    cls = obj if isinstance(obj, type) else type(obj)
    return KIND_BY_MODEL.get(cls)


# ───────────── parent traversal ────────────────────────────────────────────────
def _parent_owner(parent_kind: EntityKind, parent_id):
    """Scalar subquery: owning profile id of the vehicle or mod `parent_id`."""
    v = Vehicle.__table__.alias("owner_vehicle")
    if parent_kind is EntityKind.VEHICLE:
        return select(v.c.profile_id).where(v.c.id == parent_id).scalar_subquery()
    m = Mod.__table__.alias("owner_mod")
    return (
        select(v.c.profile_id)
        .select_from(m.join(v, v.c.id == m.c.vehicle_id))
        .where(m.c.id == parent_id)
        .scalar_subquery()
    )


def _parent_ref(kind: EntityKind, row):
    """(parent kind, parent id) of a vehicle-owned or mod-owned row; works on classes and instances."""
    if kind is EntityKind.MOD:
        return EntityKind.VEHICLE, row.vehicle_id
    if kind is EntityKind.IMAGE:
        if isinstance(row, type):
            raise TypeError("images have two possible parents; use root_owner_expr")
        if row.vehicle_id is not None:
            return EntityKind.VEHICLE, row.vehicle_id
        return EntityKind.MOD, row.mod_id
    raise TypeError(f"{kind.value} has no parent entity")


def root_owner_expr(kind: EntityKind):
    """SQL expression yielding the owning profile id for rows of `kind`."""
    if kind is EntityKind.PROFILE:
        return Profile.id
    if kind is EntityKind.VEHICLE:
        return Vehicle.profile_id
    if kind is EntityKind.MOD:
        return _parent_owner(*_parent_ref(kind, Mod))
    return case(
        (Image.vehicle_id.isnot(None), _parent_owner(EntityKind.VEHICLE, Image.vehicle_id)),
        else_=_parent_owner(EntityKind.MOD, Image.mod_id),
    )


def resolve_parent_owner(db: Session, parent_kind: EntityKind, parent_id) -> Optional[uuid.UUID]:
    if parent_id is None:
        return None
    return db.execute(select(_parent_owner(parent_kind, parent_id))).scalar()


def resolve_root_owner(db: Session, kind: EntityKind, row) -> Optional[uuid.UUID]:
    """Owning profile id for a single object, following the same traversal as `root_owner_expr`.

    Parents are looked up with Core selects so pending parents must be flushed first.
    """
    if kind is EntityKind.PROFILE:
        return row.id
    if kind is EntityKind.VEHICLE:
        return row.profile_id
    return resolve_parent_owner(db, *_parent_ref(kind, row))


# ───────────── predicates ──────────────────────────────────────────────────────
def owner_predicate(kind: EntityKind, user_id: Optional[uuid.UUID]):
    if user_id is None:
        return false()
    clause = root_owner_expr(kind) == user_id
    if kind is EntityKind.IMAGE:
        # the referenced parent must be owned too, not just images.profile_id
        clause = and_(Image.profile_id == user_id, clause)
    return clause


def _vehicle_is_public(vehicle_id):
    v = Vehicle.__table__.alias("public_vehicle")
    p = Profile.__table__.alias("public_profile")
    return (
        select(v.c.id)
        .select_from(v.join(p, p.c.id == v.c.profile_id))
        .where(v.c.id == vehicle_id, v.c.is_public.is_(True), p.c.username.isnot(None))
        .exists()
    )


def _mod_is_public(mod_id):
    m = Mod.__table__.alias("public_mod")
    v = Vehicle.__table__.alias("public_mod_vehicle")
    p = Profile.__table__.alias("public_mod_profile")
    return (
        select(m.c.id)
        .select_from(m.join(v, v.c.id == m.c.vehicle_id).join(p, p.c.id == v.c.profile_id))
        .where(m.c.id == mod_id, v.c.is_public.is_(True), p.c.username.isnot(None))
        .exists()
    )


def public_predicate(kind: EntityKind):
    if kind is EntityKind.PROFILE:
        return Profile.username.isnot(None)
    if kind is EntityKind.VEHICLE:
        p = Profile.__table__.alias("public_owner")
        published = (
            select(p.c.id)
            .where(p.c.id == Vehicle.profile_id, p.c.username.isnot(None))
            .exists()
        )
        return and_(Vehicle.is_public.is_(True), published)
    if kind is EntityKind.MOD:
        return _vehicle_is_public(Mod.vehicle_id)
    return or_(
        and_(Image.vehicle_id.isnot(None), _vehicle_is_public(Image.vehicle_id)),
        and_(Image.mod_id.isnot(None), _mod_is_public(Image.mod_id)),
    )


def read_predicate(kind: EntityKind, principal: Principal):
    if principal.is_anonymous:
        return public_predicate(kind)
    return or_(owner_predicate(kind, principal.user_id), public_predicate(kind))
