import logging
from contextlib import asynccontextmanager
from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware
from .config import config
from .db import init_db
from .api.endpoints import router as api_router
from .scheduler import setup_scheduler

logger = logging.getLogger(__name__)

@asynccontextmanager
async def lifespan(app: FastAPI):
    """Create tables and run the refresh scheduler for the app's lifetime."""
    init_db()

    scheduler = None
    if config.scheduler_enabled:
        scheduler = setup_scheduler()
        scheduler.start()
        logger.info("Refresh scheduler started")

    yield

    if scheduler is not None:
        scheduler.shutdown(wait=False)
        logger.info("Refresh scheduler stopped")

# Create FastAPI app
app = FastAPI(
    title="Fleet Driver Drift",
    description="Daily driver metrics, 14-day baselines and burnout drift scores",
    version="1.0.0",
    lifespan=lifespan
)

if config.enable_cors:
    app.add_middleware(
        CORSMiddleware,
        allow_origins=["*"],
        allow_methods=["*"],
        allow_headers=["*"],
    )

# Include API routes
app.include_router(api_router, prefix="/api")

@app.get("/")
async def root():
    """Root endpoint."""
    return {"message": "Fleet Driver Drift API", "overview": "/api/overview"}

@app.get("/health")
async def health_check():
    """Health check endpoint."""
    return {"status": "healthy"}
