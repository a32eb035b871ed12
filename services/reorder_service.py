# services/reorder_service.py
"""
Move a vehicle (within its profile) or a mod (within its vehicle) one slot up or down.

Siblings are totally ordered by (sort_order, created_at, id). A move takes a
transaction-scoped advisory lock for the owner (and vehicle, for mods), locks the
target and its neighbour, and swaps their two sort_order values in one UPDATE
limited to those two ids. No other row is touched, so duplicates can't appear.
"""
import enum
import hashlib
import logging
import uuid

from sqlalchemy import and_, case, or_, select, text, update

from auth.policies import Principal
from db import session_for
from models import Mod, Vehicle

logger = logging.getLogger(__name__)

DIRECTIONS = ("up", "down")


class ReorderOutcome(str, enum.Enum):
    MOVED = "moved"
    BOUNDARY = "boundary"
    NOT_FOUND = "not_found"


def advisory_lock_key(name: str) -> int:
    """Stable signed 64-bit key for pg_advisory_xact_lock."""
    digest = hashlib.sha256(name.encode("utf-8")).digest()
    return int.from_bytes(digest[:8], "big", signed=True)


def _advisory_lock(db, name: str) -> None:
    # SQLite serializes writers on its own; only PostgreSQL needs the explicit lock
    if db.get_bind().dialect.name == "postgresql":
        db.execute(text("select pg_advisory_xact_lock(:key)"), {"key": advisory_lock_key(name)})


def _after(model, target):
    """Rows strictly after `target` in (sort_order, created_at, id) order."""
    return or_(
        model.sort_order > target.sort_order,
        and_(model.sort_order == target.sort_order, model.created_at > target.created_at),
        and_(model.sort_order == target.sort_order, model.created_at == target.created_at, model.id > target.id),
    )


def _before(model, target):
    return or_(
        model.sort_order < target.sort_order,
        and_(model.sort_order == target.sort_order, model.created_at < target.created_at),
        and_(model.sort_order == target.sort_order, model.created_at == target.created_at, model.id < target.id),
    )


def _neighbour(db, model, target, direction: str, siblings):
    if direction == "up":
        adjacent = _before(model, target)
        order = (model.sort_order.desc(), model.created_at.desc(), model.id.desc())
    else:
        adjacent = _after(model, target)
        order = (model.sort_order.asc(), model.created_at.asc(), model.id.asc())
    return db.execute(
        select(model).where(siblings, model.id != target.id, adjacent).order_by(*order).limit(1).with_for_update()
    ).scalar_one_or_none()


def _swap(db, model, a, b, scope) -> None:
    db.execute(
        update(model)
        .where(model.id.in_([a.id, b.id]), scope)
        .values(sort_order=case((model.id == a.id, b.sort_order), else_=a.sort_order))
        .execution_options(synchronize_session=False)
    )


def _check_direction(direction: str) -> None:
    if direction not in DIRECTIONS:
        raise ValueError(f"direction must be one of {DIRECTIONS}, got {direction!r}")


def reorder_vehicle(principal: Principal, vehicle_id: uuid.UUID, direction: str) -> ReorderOutcome:
    _check_direction(direction)
    if principal.is_anonymous:
        return ReorderOutcome.NOT_FOUND

    owner = principal.user_id
    with session_for(principal) as db:
        _advisory_lock(db, f"reorder_vehicle:{owner}")
        scope = Vehicle.profile_id == owner
        target = db.execute(
            select(Vehicle).where(Vehicle.id == vehicle_id, scope).with_for_update()
        ).scalar_one_or_none()
        if target is None:
            db.rollback()
            return ReorderOutcome.NOT_FOUND

        other = _neighbour(db, Vehicle, target, direction, scope)
        if other is None:
            db.rollback()
            return ReorderOutcome.BOUNDARY

        _swap(db, Vehicle, target, other, scope)
        db.commit()
        logger.info("Vehicle %s moved %s for %s", vehicle_id, direction, owner)
        return ReorderOutcome.MOVED


def reorder_mod(principal: Principal, vehicle_id: uuid.UUID, mod_id: uuid.UUID, direction: str) -> ReorderOutcome:
    _check_direction(direction)
    if principal.is_anonymous:
        return ReorderOutcome.NOT_FOUND

    owner = principal.user_id
    with session_for(principal) as db:
        _advisory_lock(db, f"reorder_mod:{owner}:{vehicle_id}")
        owned_vehicle = (
            select(Vehicle.id)
            .where(Vehicle.id == vehicle_id, Vehicle.profile_id == owner)
            .scalar_subquery()
        )
        scope = and_(Mod.vehicle_id == vehicle_id, Mod.vehicle_id == owned_vehicle)
        target = db.execute(
            select(Mod).where(Mod.id == mod_id, scope).with_for_update()
        ).scalar_one_or_none()
        if target is None:
            db.rollback()
            return ReorderOutcome.NOT_FOUND

        other = _neighbour(db, Mod, target, direction, scope)
        if other is None:
            db.rollback()
            return ReorderOutcome.BOUNDARY

        _swap(db, Mod, target, other, scope)
        db.commit()
        logger.info("Mod %s moved %s on vehicle %s", mod_id, direction, vehicle_id)
        return ReorderOutcome.MOVED
