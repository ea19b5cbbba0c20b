import logging
from contextlib import asynccontextmanager

from fastapi import FastAPI

from app.database import close_db, init_db
from app.routers import dashboard, emergency

logging.basicConfig(
    level=logging.INFO,
    format="%(asctime)s [%(levelname)s] %(name)s: %(message)s",
)
logger = logging.getLogger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI):
    logger.info("Starting ED triage service...")
    await init_db()
    logger.info("Database initialized")
    yield
    await close_db()
    logger.info("ED triage service shut down")


app = FastAPI(
    title="ED Triage",
    description="Emergency department triage scoring, deterioration alerts and resource allocation",
    version="0.1.0",
    lifespan=lifespan,
)

app.include_router(emergency.router)
app.include_router(dashboard.router)


@app.get("/health")
async def health():
    return {"status": "ok"}
