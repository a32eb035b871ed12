"""Tests for vehicle and mod CRUD, entitlements and blob cleanup."""
import uuid

import pytest
from sqlalchemy import select

from db import session_for
from models import Image, Mod
from services.limits import FREE_TIER_LIMITS
from services.vehicle_service import (
    create_mod,
    create_vehicle,
    delete_mod,
    delete_vehicle,
    get_vehicle,
    list_mods,
    list_vehicles,
    set_hero_image,
    update_mod,
    update_vehicle,
)
from utils.errors import BadRequest, LimitReached, NotFound


def test_create_and_list_vehicles(make_principal):
    pro = make_principal(is_pro=True)

    first = create_vehicle(pro, {"name": " Miata ", "year": "1994", "make": "Mazda", "is_public": "false"})
    second = create_vehicle(pro, {"name": "E30", "ignored": "x"})

    assert first["name"] == "Miata"
    assert first["year"] == 1994
    assert first["is_public"] is False
    assert [v["id"] for v in list_vehicles(pro)] == [first["id"], second["id"]]
    assert [v["sort_order"] for v in list_vehicles(pro)] == [0, 1]


def test_vehicle_validation(owner):
    with pytest.raises(BadRequest):
        create_vehicle(owner, {"year": 2001})
    with pytest.raises(BadRequest):
        create_vehicle(owner, {"name": "x" * 81})
    with pytest.raises(BadRequest):
        create_vehicle(owner, {"name": "Old", "year": 1800})
    with pytest.raises(BadRequest):
        create_vehicle(owner, {"name": "Trim", "trim": "t" * 41})


def test_free_plan_allows_one_vehicle(owner):
    create_vehicle(owner, {"name": "Daily"})

    with pytest.raises(LimitReached) as exc:
        create_vehicle(owner, {"name": "Project"})
    assert exc.value.limit == "vehicles"
    assert exc.value.maximum == FREE_TIER_LIMITS["vehicles"]


def test_free_plan_mod_limit(owner):
    vid = uuid.UUID(create_vehicle(owner, {"name": "Daily"})["id"])
    for i in range(FREE_TIER_LIMITS["mods_per_vehicle"]):
        create_mod(owner, vid, {"title": f"Mod {i}"})

    with pytest.raises(LimitReached):
        create_mod(owner, vid, {"title": "One too many"})


def test_other_owner_cannot_read_or_change_a_vehicle(owner, other):
    vid = uuid.UUID(create_vehicle(owner, {"name": "Daily"})["id"])

    with pytest.raises(NotFound):
        get_vehicle(other, vid)
    with pytest.raises(NotFound):
        update_vehicle(other, vid, {"name": "Mine now"})
    with pytest.raises(NotFound):
        delete_vehicle(other, vid)
    with pytest.raises(NotFound):
        create_mod(other, vid, {"title": "Sneaky"})
    assert get_vehicle(owner, vid)["name"] == "Daily"


def test_update_vehicle_patches_only_given_fields(owner):
    vid = uuid.UUID(create_vehicle(owner, {"name": "Daily", "make": "Honda"})["id"])

    out = update_vehicle(owner, vid, {"model": "Civic", "profile_id": str(uuid.uuid4())})

    assert out["make"] == "Honda"
    assert out["model"] == "Civic"


def test_mod_crud_and_money_parsing(owner):
    vid = uuid.UUID(create_vehicle(owner, {"name": "Daily"})["id"])

    mod = create_mod(owner, vid, {"title": "Coilovers", "cost": "$1,249.99", "installed_on": "2024-05-01"})
    assert mod["cost_cents"] == 124999
    assert mod["installed_on"] == "2024-05-01"

    mid = uuid.UUID(mod["id"])
    updated = update_mod(owner, vid, mid, {"cost": "", "notes": "Track setup"})
    assert updated["cost_cents"] is None
    assert updated["notes"] == "Track setup"

    assert [m["id"] for m in get_vehicle(owner, vid)["mods"]] == [mod["id"]]

    delete_mod(owner, vid, mid)
    assert list_mods(owner, vid) == []


def test_mod_validation(owner):
    vid = uuid.UUID(create_vehicle(owner, {"name": "Daily"})["id"])
    with pytest.raises(BadRequest):
        create_mod(owner, vid, {"title": "Turbo", "cost": "-5"})
    with pytest.raises(BadRequest):
        create_mod(owner, vid, {"title": "Turbo", "cost_cents": -5})
    with pytest.raises(BadRequest):
        create_mod(owner, vid, {"title": "Turbo", "installed_on": "yesterday"})
    with pytest.raises(BadRequest):
        create_mod(owner, vid, {"cost": "10"})


def test_mod_paths_must_match_the_vehicle(make_principal):
    pro = make_principal(is_pro=True)
    v1 = uuid.UUID(create_vehicle(pro, {"name": "One"})["id"])
    v2 = uuid.UUID(create_vehicle(pro, {"name": "Two"})["id"])
    mid = uuid.UUID(create_mod(pro, v1, {"title": "Wing"})["id"])

    with pytest.raises(NotFound):
        update_mod(pro, v2, mid, {"title": "Moved"})


def test_delete_vehicle_cascades_rows_and_removes_blobs(owner, storage, png_file, make_image):
    vid = uuid.UUID(create_vehicle(owner, {"name": "Daily"})["id"])
    mid = uuid.UUID(create_mod(owner, vid, {"title": "Seats"})["id"])
    hero = set_hero_image(owner, vid, png_file)
    _, vehicle_image = make_image(owner, vehicle_id=vid)
    _, mod_image = make_image(owner, mod_id=mid)

    delete_vehicle(owner, vid)

    hero_path = hero["hero_image_url"].split("/mygarage/", 1)[1]
    assert {hero_path, vehicle_image, mod_image} <= set(storage.removed)
    with session_for(owner) as db:
        assert db.execute(select(Mod).where(Mod.vehicle_id == vid)).first() is None
        assert db.execute(select(Image).where(Image.profile_id == owner.user_id)).first() is None


def test_hero_image_rejects_bad_uploads(owner, storage, png_file):
    vid = uuid.UUID(create_vehicle(owner, {"name": "Daily"})["id"])

    with pytest.raises(BadRequest):
        set_hero_image(owner, vid, {**png_file, "content_type": "image/jpeg"})
    with pytest.raises(BadRequest):
        set_hero_image(owner, vid, {**png_file, "data": b"not an image"})
    with pytest.raises(BadRequest):
        set_hero_image(owner, vid, None)
    assert storage.objects == {}


def test_get_vehicle_includes_images_on_a_private_vehicle_and_its_mods(owner, storage, make_vehicle, make_mod, make_image):
    vid = make_vehicle(owner, is_public=False)
    mid = make_mod(owner, vid)
    vehicle_image, _ = make_image(owner, vehicle_id=vid)
    mod_image, _ = make_image(owner, mod_id=mid)

    out = get_vehicle(owner, vid)

    assert [i["id"] for i in out["images"]] == [str(vehicle_image)]
    assert [i["id"] for i in out["mods"][0]["images"]] == [str(mod_image)]
