"""Tests for blob path ownership and public readability."""
import uuid

import pytest

from auth.policies import ANONYMOUS
from auth.storage_paths import (
    object_is_public_readable,
    object_owner_can_write,
    require_object_write,
    split_object_path,
)
from db import session_for
from models import Profile, Vehicle
from utils.errors import AuthorizationError


@pytest.mark.parametrize(
    "path,expected",
    [
        ("avatars/abc/x.jpg", (["avatars", "abc"], "x.jpg")),
        ("avatars/abc/", None),
        ("avatars/x.jpg", None),
        ("a/b/c/x.jpg", None),
        ("vehicles/../x.jpg", None),
        ("vehicles//x.jpg", None),
        (None, None),
    ],
)
def test_split_object_path(path, expected):
    assert split_object_path(path) == expected


def test_owner_write_paths(owner, other, make_vehicle, make_mod):
    vid = make_vehicle(owner)
    mid = make_mod(owner, vid)

    with session_for(ANONYMOUS) as db:
        assert object_owner_can_write(db, f"avatars/{owner.user_id}/me.png", owner.user_id)
        assert object_owner_can_write(db, f"vehicles/{vid}/hero.png", owner.user_id)
        assert object_owner_can_write(db, f"mods/{mid}/a.webp", owner.user_id)

        assert not object_owner_can_write(db, f"avatars/{owner.user_id}/me.png", other.user_id)
        assert not object_owner_can_write(db, f"vehicles/{vid}/hero.png", other.user_id)
        assert not object_owner_can_write(db, f"mods/{mid}/a.webp", other.user_id)
        assert not object_owner_can_write(db, f"vehicles/{vid}/hero.png", None)


def test_non_canonical_or_unknown_paths_are_not_writable(owner, make_vehicle):
    vid = make_vehicle(owner)

    with session_for(ANONYMOUS) as db:
        assert not object_owner_can_write(db, f"vehicles/{str(vid).upper()}/hero.png", owner.user_id)
        assert not object_owner_can_write(db, f"vehicles/{vid.hex}/hero.png", owner.user_id)
        assert not object_owner_can_write(db, f"vehicles/{uuid.uuid4()}/hero.png", owner.user_id)
        assert not object_owner_can_write(db, f"profiles/{owner.user_id}/x.png", owner.user_id)
        assert not object_owner_can_write(db, f"vehicles/{vid}/nested/x.png", owner.user_id)
        with pytest.raises(AuthorizationError):
            require_object_write(db, f"avatars/{uuid.uuid4()}/x.png", owner)


def test_public_readability_follows_live_rows(owner, make_vehicle, make_image):
    avatar = f"avatars/{owner.user_id}/me.png"
    vid = make_vehicle(owner, hero_image_path=None)
    hero = f"vehicles/{vid}/hero.png"
    _, gallery = make_image(owner, vehicle_id=vid)

    with session_for(owner) as db:
        db.get(Profile, owner.user_id).avatar_path = avatar
        db.get(Vehicle, vid).hero_image_path = hero
        db.commit()

    with session_for(ANONYMOUS) as db:
        assert object_is_public_readable(db, avatar)
        assert object_is_public_readable(db, hero)
        assert object_is_public_readable(db, gallery)
        assert not object_is_public_readable(db, gallery, bucket="other-bucket")
        assert not object_is_public_readable(db, f"vehicles/{vid}/unknown.png")
        assert not object_is_public_readable(db, None)

    with session_for(owner) as db:
        db.get(Vehicle, vid).is_public = False
        db.commit()

    with session_for(ANONYMOUS) as db:
        assert object_is_public_readable(db, avatar)
        assert not object_is_public_readable(db, hero)
        assert not object_is_public_readable(db, gallery)

    with session_for(owner) as db:
        db.get(Profile, owner.user_id).username = None
        db.commit()

    with session_for(ANONYMOUS) as db:
        assert not object_is_public_readable(db, avatar)
