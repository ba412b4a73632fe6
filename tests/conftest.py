import os

import pytest
import pytest_asyncio
from fastapi.testclient import TestClient
from httpx import ASGITransport, AsyncClient

# In-memory DB and no external API keys for tests
os.environ["DATABASE_PATH"] = ":memory:"
os.environ["SEED_HOSPITALS"] = "true"
os.environ["OLA_MAPS_API_KEY"] = ""
os.environ["FUNCTIONS_BASE_URL"] = ""
os.environ["GEOCODING_ENABLED"] = "false"

from resq.database import close_db, init_db
from resq.main import app
from resq.services.app_state import create_state

# Disable external service calls
import resq.services.maps as _maps_mod
import resq.services.notifications as _notifications_mod

_maps_mod.OLA_MAPS_API_KEY = ""
_maps_mod.GEOCODING_ENABLED = False
_notifications_mod.FUNCTIONS_BASE_URL = ""


@pytest_asyncio.fixture
async def db():
    """Provide a fresh in-memory database for each test."""
    import resq.database as db_mod

    # Close any existing connection
    if db_mod._db is not None:
        try:
            await db_mod._db.close()
        except Exception:
            pass
    db_mod._db = None

    # Override module-level config directly (avoids fragile importlib.reload)
    db_mod.DATABASE_PATH = ":memory:"
    db_mod.SEED_HOSPITALS = True

    await init_db()
    database = await db_mod.get_db()
    yield database
    await close_db()


@pytest_asyncio.fixture
async def state(db):
    """Application state with short throttle windows and fast countdown ticks."""
    app_state = create_state(
        driver_window=0.05,
        patient_window=0.05,
        sos_seconds=3,
        alert_seconds=3,
        countdown_tick=0.01,
    )
    await app_state.advisor.load(db)
    app.state.resq = app_state
    yield app_state
    await app_state.close()


@pytest.fixture
def client(state):
    """Provide a synchronous TestClient for HTTP endpoint tests."""
    return TestClient(app)


@pytest_asyncio.fixture
async def async_client(state):
    """Provide an async httpx client for async HTTP tests."""
    async with AsyncClient(
        transport=ASGITransport(app=app),
        base_url="http://test",
    ) as ac:
        yield ac
