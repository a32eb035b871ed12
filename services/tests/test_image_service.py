"""Tests for image uploads attached to vehicles and mods."""
import uuid

import pytest

from auth.policies import EntityKind
from services.image_service import delete_image, list_images, parse_parent, upload_image
from services.limits import FREE_TIER_LIMITS
from utils.errors import BadRequest, LimitReached, NotFound


def test_parse_parent():
    vid = uuid.uuid4()
    assert parse_parent(" Vehicle ", str(vid)) == (EntityKind.VEHICLE, vid)
    assert parse_parent("mod", str(vid)) == (EntityKind.MOD, vid)
    with pytest.raises(BadRequest):
        parse_parent("profile", str(vid))
    with pytest.raises(BadRequest):
        parse_parent("vehicle", "not-a-uuid")
    with pytest.raises(BadRequest):
        parse_parent(None, None)


def test_upload_to_vehicle_and_mod(owner, storage, png_file, make_vehicle, make_mod):
    vid = make_vehicle(owner)
    mid = make_mod(owner, vid)

    on_vehicle = upload_image(owner, EntityKind.VEHICLE, vid, png_file, caption=" Front ")
    second = upload_image(owner, EntityKind.VEHICLE, vid, png_file)
    on_mod = upload_image(owner, EntityKind.MOD, mid, png_file)

    assert on_vehicle["caption"] == "Front"
    assert on_vehicle["vehicle_id"] == str(vid) and on_vehicle["mod_id"] is None
    assert on_mod["mod_id"] == str(mid) and on_mod["vehicle_id"] is None
    assert (on_vehicle["sort_order"], second["sort_order"]) == (0, 1)
    assert any(p.startswith(f"mods/{mid}/") for p in storage.objects)
    assert [i["id"] for i in list_images(owner, EntityKind.VEHICLE, vid)] == [on_vehicle["id"], second["id"]]


def test_cannot_upload_to_someone_elses_mod(owner, other, storage, png_file, make_vehicle, make_mod):
    mid = make_mod(owner, make_vehicle(owner))

    with pytest.raises(NotFound):
        upload_image(other, EntityKind.MOD, mid, png_file)
    assert storage.objects == {}


def test_free_plan_image_limit(owner, storage, png_file, make_vehicle):
    vid = make_vehicle(owner)
    for _ in range(FREE_TIER_LIMITS["images_per_profile"]):
        upload_image(owner, EntityKind.VEHICLE, vid, png_file)

    with pytest.raises(LimitReached):
        upload_image(owner, EntityKind.VEHICLE, vid, png_file)


def test_pro_profiles_skip_the_image_limit(make_principal, storage, png_file, make_vehicle):
    pro = make_principal(is_pro=True)
    vid = make_vehicle(pro)
    for _ in range(FREE_TIER_LIMITS["images_per_profile"] + 1):
        upload_image(pro, EntityKind.VEHICLE, vid, png_file)


def test_delete_image_removes_row_then_blob(owner, other, storage, make_vehicle, make_image):
    image_id, path = make_image(owner, vehicle_id=make_vehicle(owner))

    with pytest.raises(NotFound):
        delete_image(other, image_id)

    delete_image(owner, image_id)
    assert storage.removed == [path]
    with pytest.raises(NotFound):
        delete_image(owner, image_id)
