import os
import sys
from datetime import datetime

PROJECT_ROOT = os.path.dirname(os.path.dirname(__file__))
if PROJECT_ROOT not in sys.path:
    sys.path.insert(0, PROJECT_ROOT)

import pytest
from fastapi.testclient import TestClient
from sqlalchemy.pool import StaticPool
from sqlmodel import SQLModel, Session, create_engine

from chorechart import db
from chorechart import models  # ensure models are registered with metadata
from chorechart.main import app, get_now


test_engine = create_engine(
    "sqlite://",
    connect_args={"check_same_thread": False},
    poolclass=StaticPool,
)

# Wednesday; the week under test runs Mon 2025-01-13 .. Sun 2025-01-19
FROZEN_NOW = datetime(2025, 1, 15, 12, 0, 0)


class Clock:
    def __init__(self, now: datetime):
        self.now = now

    def __call__(self) -> datetime:
        return self.now


clock = Clock(FROZEN_NOW)


def override_get_session():
    with Session(test_engine) as session:
        yield session


def reset_database():
    SQLModel.metadata.drop_all(test_engine)
    SQLModel.metadata.create_all(test_engine)


db.engine = test_engine
app.dependency_overrides[db.get_session] = override_get_session
app.dependency_overrides[get_now] = clock


@pytest.fixture(autouse=True)
def setup_db():
    reset_database()
    clock.now = FROZEN_NOW
    yield


@pytest.fixture
def now():
    return clock


@pytest.fixture
def client():
    return TestClient(app)


@pytest.fixture
def session():
    with Session(test_engine) as session:
        yield session


def register_family(client, username="parent", password="parent1234", family_name="Home"):
    resp = client.post(
        "/api/register",
        json={
            "family_name": family_name,
            "username": username,
            "email": f"{username}@example.com",
            "name": username.title(),
            "password": password,
        },
    )
    assert resp.status_code == 200, resp.text
    return resp.json()["me"]


def add_member(client, username, role="KID", password="kid1234", name=None):
    resp = client.post(
        "/api/admin/family-members",
        json={
            "username": username,
            "email": f"{username}@example.com",
            "name": name or username.title(),
            "role": role,
            "password": password,
        },
    )
    assert resp.status_code == 200, resp.text
    return resp.json()["id"]


def login(client, username, password):
    client.post("/api/auth/logout")
    resp = client.post("/api/auth/login", json={"username": username, "password": password})
    assert resp.status_code == 200, resp.text
    return resp.json()["me"]


def create_chore(client, title, kid_ids, points=1, frequency="DAILY", day_of_week=None):
    resp = client.post(
        "/api/admin/chores",
        json={
            "title": title,
            "points": points,
            "frequency": frequency,
            "day_of_week": day_of_week,
            "assigned_kid_ids": kid_ids,
        },
    )
    assert resp.status_code == 200, resp.text
    return resp.json()["id"]
