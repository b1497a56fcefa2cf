"""
Shared fixtures: an in-memory tracker with local blob storage, a
controllable clock, and a small seeded directory.
"""

from __future__ import annotations

import io
from dataclasses import dataclass
from datetime import datetime, timedelta

import pytest
from pypdf import PdfWriter

from docreq.config import LifecycleConfig, StorageConfig, TrackerConfig
from docreq.store.models import Organization, UserRole
from docreq.tracker import Tracker


class FakeClock:
    def __init__(self, start: datetime) -> None:
        self.now = start

    def __call__(self) -> datetime:
        return self.now

    def advance(self, **kwargs) -> datetime:
        self.now = self.now + timedelta(**kwargs)
        return self.now


@dataclass
class World:
    org_a: Organization
    org_b: Organization


def make_pdf() -> bytes:
    writer = PdfWriter()
    writer.add_blank_page(width=72, height=72)
    buf = io.BytesIO()
    writer.write(buf)
    return buf.getvalue()


def request_data(org_id: str, reference: str = "REF-100", **overrides) -> dict:
    data = {
        "reference_number": reference,
        "date_received": "2025-01-15",
        "sender": org_id,
        "subject": "Land registry extract",
    }
    data.update(overrides)
    return data


@pytest.fixture
def clock() -> FakeClock:
    return FakeClock(datetime(2025, 1, 31, 10, 0))


@pytest.fixture
def lifecycle_config() -> LifecycleConfig:
    return LifecycleConfig()


@pytest.fixture
def tracker(tmp_path, clock, lifecycle_config):
    config = TrackerConfig(
        database_url="sqlite://",
        storage=StorageConfig(backend="local", root=str(tmp_path / "storage")),
        lifecycle=lifecycle_config,
    )
    t = Tracker.from_config(config)
    t.engine.clock = clock
    yield t
    t.close()


@pytest.fixture
def world(tracker) -> World:
    """Org A has members u1, u2. Org B has member org-user. admin-1 is an admin, u3 a processor."""
    d = tracker.directory
    org_a = d.create_organization("Ministry of Works")
    org_b = d.create_organization("Port Authority")
    for uid, role in [
        ("u1", UserRole.USER),
        ("u2", UserRole.USER),
        ("u3", UserRole.PROCESSOR),
        ("admin-1", UserRole.ADMIN),
        ("org-user", UserRole.ORGANIZATION),
    ]:
        d.create_user(uid.upper(), role=role, user_id=uid)
    d.add_member(org_a.id, "u1")
    d.add_member(org_a.id, "u2")
    d.add_member(org_b.id, "org-user", is_primary=True)
    return World(org_a=org_a, org_b=org_b)


@pytest.fixture
def pdf_bytes() -> bytes:
    return make_pdf()


@pytest.fixture
def titles(tracker):
    """Sorted notification titles a user has received."""

    def _titles(user_id: str) -> list[str]:
        return sorted(n.title for n in tracker.feed.list_for_user(user_id, limit=0))

    return _titles


@pytest.fixture
def new_request(tracker, world):
    """Create a request from org A, by default as u1."""

    def _create(actor_id: str = "u1", reference: str = "REF-100", **overrides):
        return tracker.engine.create_request(
            request_data(world.org_a.id, reference, **overrides), actor_id
        )

    return _create
