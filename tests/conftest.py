"""Pytest configuration and fixtures."""

from datetime import datetime, timedelta
from uuid import uuid4

import pytest
from sqlalchemy import create_engine
from sqlalchemy.orm import sessionmaker
from sqlalchemy.pool import StaticPool

from roadwatch.db.database import Base, PotholeDB
from roadwatch.geocoding.nominatim import RateLimiter


@pytest.fixture
def engine():
    """In-memory SQLite engine shared across threads."""
    engine = create_engine(
        "sqlite://",
        connect_args={"check_same_thread": False},
        poolclass=StaticPool,
    )
    Base.metadata.create_all(bind=engine)
    yield engine
    engine.dispose()


@pytest.fixture
def session_factory(engine):
    return sessionmaker(autocommit=False, autoflush=False, bind=engine)


@pytest.fixture
def db(session_factory):
    session = session_factory()
    yield session
    session.close()


@pytest.fixture
def make_pothole(db):
    """Insert a pothole report; successive reports get increasing created_at."""
    base_time = datetime(2025, 1, 1, 12, 0, 0)
    created = []

    def _make(**fields):
        fields.setdefault("id", str(uuid4()))
        fields.setdefault("lat", 38.7107)
        fields.setdefault("lng", -9.1366)
        fields.setdefault("created_at", base_time + timedelta(minutes=len(created)))
        pothole = PotholeDB(**fields)
        db.add(pothole)
        db.commit()
        created.append(fields["id"])
        return fields["id"]

    return _make


@pytest.fixture
def no_wait_limiter():
    """Rate limiter that records requested waits instead of sleeping."""
    waits = []
    limiter = RateLimiter(sleep=waits.append)
    limiter.waits = waits
    return limiter


@pytest.fixture
def lisbon_response() -> dict:
    """Nominatim reverse response for a street in Lisbon."""
    return {
        "display_name": "10, Rua Augusta, Baixa, Santa Maria Maior, Lisboa, 1100-048, Portugal",
        "address": {
            "house_number": "10",
            "road": "Rua Augusta",
            "suburb": "Santa Maria Maior",
            "city": "Lisboa",
            "state_district": "Lisboa",
            "postcode": "1100-048",
            "country_code": "pt",
        },
    }
