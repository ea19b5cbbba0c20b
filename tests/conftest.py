import asyncio
import os
from datetime import timedelta

import pytest
import pytest_asyncio
from fastapi.testclient import TestClient
from httpx import ASGITransport, AsyncClient

# In-memory DB and no demo data for tests
os.environ["DATABASE_PATH"] = ":memory:"
os.environ["DATABASE_URL"] = ""
os.environ["SEED_DEMO_CASES"] = "false"

from app.database import close_db, init_db
from app.main import app
from app.models.emergency import EmergencyCase, VitalsSnapshot, utcnow


@pytest_asyncio.fixture
async def db():
    """Provide a fresh in-memory database for each test."""
    import app.database as db_mod

    # Close any existing connection
    if db_mod._db is not None:
        try:
            await db_mod._db.close()
        except Exception:
            pass
    db_mod._db = None

    # Override module-level config directly (avoids fragile importlib.reload)
    db_mod.DATABASE_PATH = ":memory:"
    db_mod.DATABASE_URL = ""
    db_mod.SEED_DEMO_CASES = False

    # The allocation lock binds to the loop that first waits on it
    import app.services.emergency_cases as cases_mod

    cases_mod._allocation_lock = asyncio.Lock()

    await init_db()
    database = await db_mod.get_db()
    yield database
    await close_db()


@pytest.fixture
def client(db):
    """Provide a synchronous TestClient for HTTP and WebSocket tests."""
    return TestClient(app)


@pytest_asyncio.fixture
async def async_client(db):
    """Provide an async httpx client for async HTTP tests."""
    async with AsyncClient(
        transport=ASGITransport(app=app),
        base_url="http://test",
    ) as ac:
        yield ac


@pytest.fixture
def normal_vitals():
    return VitalsSnapshot(
        systolic_bp=120,
        diastolic_bp=80,
        heart_rate=75,
        temperature=37.0,
        oxygen_saturation=98,
        respiratory_rate=16,
    )


@pytest.fixture
def make_case():
    """Build an EmergencyCase with sensible defaults for pure-function tests."""

    def _make(case_id="case-1", priority="Low", minutes_ago=10, **fields):
        now = utcnow()
        fields.setdefault("patient_id", f"patient-{case_id}")
        fields.setdefault("chief_complaint", "Test complaint")
        fields.setdefault("arrival_time", now - timedelta(minutes=minutes_ago))
        return EmergencyCase(id=case_id, priority=priority, **fields)

    return _make
