import logging
from contextlib import asynccontextmanager

from fastapi import FastAPI

from resq.database import close_db, init_db
from resq.routers import drivers, emergencies, hospital, patients, realtime
from resq.services.app_state import open_state

logging.basicConfig(
    level=logging.INFO,
    format="%(asctime)s [%(levelname)s] %(name)s: %(message)s",
)
logger = logging.getLogger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI):
    logger.info("Starting RoadResQ dispatch...")
    await init_db()
    logger.info("Database initialized")
    app.state.resq = await open_state()
    yield
    await app.state.resq.close()
    await close_db()
    logger.info("RoadResQ dispatch shut down")


app = FastAPI(
    title="RoadResQ",
    description="Emergency dispatch lifecycle coordinator for patients, hospitals and ambulance drivers",
    version="0.1.0",
    lifespan=lifespan,
)

# Include routers
app.include_router(emergencies.router)
app.include_router(hospital.router)
app.include_router(drivers.router)
app.include_router(patients.router)
app.include_router(realtime.router)


@app.get("/health")
async def health():
    state = getattr(app.state, "resq", None)
    return {
        "status": "ok",
        "hospitals": len(state.advisor.hospitals) if state else 0,
        "subscriptions": state.bus.subscriber_count if state else 0,
    }
