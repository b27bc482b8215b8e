"""
tests/conftest.py

Shared fixtures: an in-memory SQLite database with the full schema, a
controllable clock and small factories for POIs and contacts.
"""

from __future__ import annotations

import uuid
from typing import Any

import pytest
from sqlalchemy import create_engine
from sqlalchemy.engine import Engine
from sqlalchemy.orm import Session, sessionmaker
from sqlalchemy.pool import StaticPool

import db.models  # noqa: F401  registers all ORM models on Base.metadata
from db.base import Base
from db.models.poi import POI, POIContact, TrustLevel
from fakes import FakeClock


@pytest.fixture()
def engine() -> Engine:
    engine = create_engine(
        "sqlite://",
        connect_args={"check_same_thread": False},
        poolclass=StaticPool,
    )
    Base.metadata.create_all(engine)
    yield engine
    Base.metadata.drop_all(engine)
    engine.dispose()


@pytest.fixture()
def session_factory(engine: Engine) -> sessionmaker:
    return sessionmaker(bind=engine, class_=Session, autoflush=False, expire_on_commit=False)


@pytest.fixture()
def clock() -> FakeClock:
    return FakeClock()


@pytest.fixture()
def make_poi(session_factory: sessionmaker):
    def _make(**overrides: Any) -> uuid.UUID:
        contact_email = overrides.pop("contact_email", None)
        contact_trust = overrides.pop("contact_trust", TrustLevel.HIGH)
        fields: dict[str, Any] = {
            "name": "Gasthof Zur Linde",
            "street": "Hauptstrasse 1",
            "postal_code": "79098",
            "city": "Freiburg",
            "region": "schwarzwald",
            "category": "restaurant",
            "website": "https://linde.example",
            "phone": "+49 761 123456",
        }
        fields.update(overrides)
        with session_factory() as db, db.begin():
            poi = POI(**fields)
            db.add(poi)
            db.flush()
            if contact_email:
                db.add(POIContact(poi_id=poi.id, email=contact_email, trust_level=contact_trust))
            return poi.id

    return _make
