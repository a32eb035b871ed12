"""Tests for profile provisioning and editing."""
import uuid

import pytest

from auth.policies import Principal
from db import session_for
from models import User
from services.profile_service import (
    check_username,
    ensure_profile,
    get_profile,
    set_avatar,
    update_profile,
    username_base_from_email,
    username_candidates,
)
from utils.errors import BadRequest, NotFound


@pytest.fixture
def new_user():
    """A user row with no profile yet."""
    def _make(email):
        uid = uuid.uuid4()
        with session_for(Principal(user_id=uid)) as db:
            db.add(User(id=uid, email=email))
            db.commit()
        return Principal(user_id=uid)
    return _make


@pytest.mark.parametrize(
    "email,expected",
    [
        ("Jane.Doe+cars@example.com", "jane_doe_cars"),
        ("__x__@example.com", "user"),
        ("a@b.co", "user"),
        ("GT3-RS@example.com", "gt3_rs"),
        (None, "user"),
        ("x" * 40 + "@example.com", "x" * 30),
    ],
)
def test_username_base_from_email(email, expected):
    assert username_base_from_email(email) == expected


def test_fallback_candidate_uses_the_user_id_suffix():
    uid = uuid.UUID("12345678-1234-5678-1234-567812345678")
    assert username_candidates("a" * 30 + "@x.com", uid) == ["a" * 30, "a" * 21 + "_12345678"]


def test_ensure_profile_creates_once(new_user):
    principal = new_user("speedy@example.com")

    first = ensure_profile(principal, "speedy@example.com")
    second = ensure_profile(principal, "speedy@example.com")

    assert first["username"] == "speedy"
    assert first["display_name"] == "My Garage"
    assert second["id"] == first["id"]


def test_ensure_profile_falls_back_when_username_taken(new_user, make_principal):
    make_principal(username="speedy")
    principal = new_user("Speedy@other.com")

    profile = ensure_profile(principal, "Speedy@other.com")

    assert profile["username"] == f"speedy_{principal.user_id.hex[-8:]}"
    assert profile["is_published"]


def test_ensure_profile_leaves_profile_unpublished_when_all_candidates_taken(new_user, make_principal):
    principal = new_user("speedy@example.com")
    make_principal(username="speedy")
    make_principal(username=f"speedy_{principal.user_id.hex[-8:]}")

    profile = ensure_profile(principal, "speedy@example.com")

    assert profile["username"] is None
    assert not profile["is_published"]


def test_username_uniqueness_is_case_insensitive(owner, other):
    assert check_username(other, "OWNER") == {"username": "owner", "valid": True, "available": False}
    with pytest.raises(BadRequest):
        update_profile(other, {"username": "Owner"})


def test_check_username_reports_invalid_and_own_name(owner):
    assert check_username(owner, "ab")["valid"] is False
    assert check_username(owner, "has space")["valid"] is False
    assert check_username(owner, "owner")["available"] is True


def test_update_profile_fields(owner):
    out = update_profile(owner, {"display_name": "  Track Rat ", "bio": "Weekend builds", "username": "Track_Rat"})

    assert out["display_name"] == "Track Rat"
    assert out["bio"] == "Weekend builds"
    assert out["username"] == "track_rat"


def test_empty_username_unpublishes(owner):
    assert update_profile(owner, {"username": ""})["is_published"] is False


def test_update_profile_validation(owner):
    with pytest.raises(BadRequest):
        update_profile(owner, {"username": "no"})
    with pytest.raises(BadRequest):
        update_profile(owner, {"bio": "x" * 301})
    with pytest.raises(BadRequest):
        update_profile(owner, {"display_name": "x" * 61})


def test_get_profile_requires_an_existing_profile(owner):
    assert get_profile(owner)["username"] == "owner"
    with pytest.raises(NotFound):
        get_profile(Principal(user_id=uuid.uuid4()))


def test_set_avatar_replaces_the_previous_object(owner, storage, png_file):
    first = set_avatar(owner, png_file)
    second = set_avatar(owner, png_file)

    first_path = first["avatar_url"].split("/mygarage/", 1)[1]
    second_path = second["avatar_url"].split("/mygarage/", 1)[1]
    assert second_path.startswith(f"avatars/{owner.user_id}/")
    assert first_path in storage.removed
    assert list(storage.objects) == [second_path]
