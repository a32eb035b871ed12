"""Shared fixtures: a throwaway SQLite database per test, principals, rows and fake storage."""
import io
import os
import tempfile
import uuid

# db.py builds its engine at import time; point it somewhere harmless first
os.environ.setdefault("DATABASE_URL", "sqlite:///" + os.path.join(tempfile.gettempdir(), "mygarage-tests.db"))
os.environ.setdefault("JWT_SECRET_KEY", "test-secret")

import pytest
from PIL import Image as PILImage
from sqlalchemy import create_engine

from auth.policies import Principal
from db import SessionLocal, session_for
from models import Base, Image, Mod, Profile, User, Vehicle
from services import rate_limit_store

_UNSET = object()


@pytest.fixture(autouse=True)
def engine(tmp_path, monkeypatch):
    """Fresh file-backed SQLite schema bound to the app's session factory."""
    eng = create_engine(
        f"sqlite:///{tmp_path / 'garage.db'}",
        connect_args={"check_same_thread": False, "timeout": 30},
    )
    Base.metadata.create_all(eng)
    SessionLocal.configure(bind=eng)
    # inline cleanup is random; tests opt in explicitly
    monkeypatch.setattr(rate_limit_store, "CLEANUP_PROBABILITY", 0)
    yield eng
    eng.dispose()


@pytest.fixture
def make_principal():
    """Create a user plus profile and return the owning principal."""
    def _make(username=_UNSET, is_pro=False, email=None):
        uid = uuid.uuid4()
        if username is _UNSET:
            username = f"builder_{uid.hex[:8]}"
        principal = Principal(user_id=uid)
        with session_for(principal) as db:
            db.add(User(id=uid, email=email or f"{uid.hex[:12]}@example.com"))
            db.flush()
            db.add(Profile(id=uid, username=username, display_name="My Garage", is_pro=is_pro))
            db.commit()
        return principal
    return _make


@pytest.fixture
def owner(make_principal):
    """A published, free-plan profile."""
    return make_principal(username="owner")


@pytest.fixture
def other(make_principal):
    """A second published profile that owns nothing of `owner`'s."""
    return make_principal(username="other")


@pytest.fixture
def make_vehicle():
    def _make(principal, name="Project car", is_public=True, sort_order=0, **fields):
        with session_for(principal) as db:
            v = Vehicle(profile_id=principal.user_id, name=name, is_public=is_public, sort_order=sort_order, **fields)
            db.add(v)
            db.commit()
            return v.id
    return _make


@pytest.fixture
def make_mod():
    def _make(principal, vehicle_id, title="Coilovers", sort_order=0, **fields):
        with session_for(principal) as db:
            m = Mod(vehicle_id=vehicle_id, title=title, sort_order=sort_order, **fields)
            db.add(m)
            db.commit()
            return m.id
    return _make


@pytest.fixture
def make_image():
    def _make(principal, vehicle_id=None, mod_id=None, path=None):
        folder = f"vehicles/{vehicle_id}" if vehicle_id else f"mods/{mod_id}"
        with session_for(principal) as db:
            i = Image(
                profile_id=principal.user_id,
                vehicle_id=vehicle_id,
                mod_id=mod_id,
                storage_path=path or f"{folder}/{uuid.uuid4()}.jpg",
            )
            db.add(i)
            db.commit()
            return i.id, i.storage_path
    return _make


class FakeStorage:
    """In-memory stand-in for the blob service functions the services import."""

    def __init__(self):
        self.objects = {}
        self.removed = []

    def put_object(self, path, data, content_type, container=None):
        self.objects[path] = data
        return path

    def remove_objects(self, paths, container=None):
        for path in paths:
            if path:
                self.objects.pop(path, None)
                self.removed.append(path)

    def object_url(self, path, container=None):
        return f"https://blob.test/{container or 'mygarage'}/{path}" if path else None


@pytest.fixture
def storage(monkeypatch):
    fake = FakeStorage()
    monkeypatch.setattr("services.upload_service.put_object", fake.put_object)
    for module in ("services.vehicle_service", "services.profile_service", "services.image_service"):
        monkeypatch.setattr(f"{module}.remove_objects", fake.remove_objects)
        monkeypatch.setattr(f"{module}.object_url", fake.object_url)
    monkeypatch.setattr("services.public_service.object_url", fake.object_url)
    return fake


@pytest.fixture
def png_file():
    """A tiny valid PNG upload as produced by `parse_multipart`."""
    buf = io.BytesIO()
    PILImage.new("RGB", (4, 4), "red").save(buf, format="PNG")
    return {"filename": "car.png", "content_type": "image/png", "data": buf.getvalue()}
