"""Tests for one-slot moves of vehicles and mods."""
import uuid

import pytest
from sqlalchemy import select

from auth.policies import ANONYMOUS
from db import session_for
from models import Mod, Vehicle
from services.reorder_service import ReorderOutcome, advisory_lock_key, reorder_mod, reorder_vehicle


@pytest.fixture
def garage(owner, make_vehicle):
    """Three vehicles for `owner`, in order a, b, c."""
    return [make_vehicle(owner, name=name, sort_order=i) for i, name in enumerate("abc")]


def _vehicle_order(principal):
    with session_for(principal) as db:
        rows = db.execute(
            select(Vehicle.id, Vehicle.sort_order)
            .where(Vehicle.profile_id == principal.user_id)
            .order_by(Vehicle.sort_order, Vehicle.created_at, Vehicle.id)
        ).all()
    return [r.id for r in rows], sorted(r.sort_order for r in rows)


def test_move_up_swaps_with_previous(owner, garage):
    a, b, c = garage

    assert reorder_vehicle(owner, b, "up") is ReorderOutcome.MOVED

    order, sort_orders = _vehicle_order(owner)
    assert order == [b, a, c]
    assert sort_orders == [0, 1, 2]


def test_up_then_down_is_a_round_trip(owner, garage):
    reorder_vehicle(owner, garage[1], "up")
    reorder_vehicle(owner, garage[1], "down")

    assert _vehicle_order(owner)[0] == garage


def test_moving_past_either_end_is_a_boundary(owner, garage):
    a, _, c = garage

    assert reorder_vehicle(owner, a, "up") is ReorderOutcome.BOUNDARY
    assert reorder_vehicle(owner, c, "down") is ReorderOutcome.BOUNDARY
    assert _vehicle_order(owner)[0] == garage


def test_other_owner_sees_not_found_and_nothing_changes(owner, other, garage):
    assert reorder_vehicle(other, garage[1], "up") is ReorderOutcome.NOT_FOUND
    assert _vehicle_order(owner)[0] == garage


def test_anonymous_and_missing_are_not_found(owner, garage):
    assert reorder_vehicle(ANONYMOUS, garage[1], "up") is ReorderOutcome.NOT_FOUND
    assert reorder_vehicle(owner, uuid.uuid4(), "up") is ReorderOutcome.NOT_FOUND


def test_invalid_direction_raises(owner, garage):
    with pytest.raises(ValueError):
        reorder_vehicle(owner, garage[0], "sideways")
    with pytest.raises(ValueError):
        reorder_mod(owner, garage[0], uuid.uuid4(), "left")


def test_mods_move_within_their_vehicle_only(owner, garage, make_mod):
    vid, other_vid = garage[0], garage[1]
    m1 = make_mod(owner, vid, title="Intake", sort_order=0)
    m2 = make_mod(owner, vid, title="Exhaust", sort_order=1)
    make_mod(owner, other_vid, title="Wheels", sort_order=0)

    assert reorder_mod(owner, vid, m2, "up") is ReorderOutcome.MOVED
    assert reorder_mod(owner, vid, m2, "up") is ReorderOutcome.BOUNDARY

    with session_for(owner) as db:
        order = db.execute(
            select(Mod.id).where(Mod.vehicle_id == vid).order_by(Mod.sort_order, Mod.created_at, Mod.id)
        ).scalars().all()
    assert order == [m2, m1]


def test_mod_under_wrong_vehicle_or_owner_is_not_found(owner, other, garage, make_mod):
    m = make_mod(owner, garage[0])
    make_mod(owner, garage[0], title="Seats", sort_order=1)

    assert reorder_mod(owner, garage[1], m, "down") is ReorderOutcome.NOT_FOUND
    assert reorder_mod(other, garage[0], m, "down") is ReorderOutcome.NOT_FOUND
    assert reorder_mod(ANONYMOUS, garage[0], m, "down") is ReorderOutcome.NOT_FOUND


def test_advisory_lock_key_is_stable_signed_64_bit():
    key = advisory_lock_key("reorder_vehicle:abc")
    assert key == advisory_lock_key("reorder_vehicle:abc")
    assert key != advisory_lock_key("reorder_vehicle:abd")
    assert -(2 ** 63) <= key < 2 ** 63
