"""
FastAPI Webhook Server for the LinguaLink settlement engine
Hosts the provider webhook routes and health checks
"""
from contextlib import asynccontextmanager
import logging
import os
import time

from fastapi import FastAPI

from config import Config
from database import create_tables, managed_session
from handlers.paystack_webhook import router as paystack_router
from services.container import get_services
from services.reward_rate_cache import seed_default_rates

logger = logging.getLogger(__name__)

_startup_timestamp = None


@asynccontextmanager
async def lifespan(app: FastAPI):
    """
    Startup: verify the schema, seed missing reward rates and build the services.
    Shutdown: nothing to release; sessions are per request.
    """
    global _startup_timestamp
    logger.info(f"🔧 Worker {os.getpid()} starting...")
    Config.log_configuration()

    create_tables()
    with managed_session() as session:
        seed_default_rates(session)
    get_services()

    _startup_timestamp = time.time()
    logger.info(f"✅ Worker {os.getpid()} initialized successfully")

    yield

    logger.info(f"🔄 Worker {os.getpid()} shutting down...")


app = FastAPI(
    title="LinguaLink Settlement Webhook Server",
    description="Provider callbacks for payouts and top-ups",
    lifespan=lifespan,
)

app.include_router(paystack_router)


@app.get("/")
async def root():
    """Root endpoint"""
    return {"message": "LinguaLink settlement webhook server is running"}


@app.get("/health")
async def health_check():
    """Health check endpoint"""
    uptime = time.time() - _startup_timestamp if _startup_timestamp else 0
    return {
        "status": "healthy",
        "service": "lingualink-settlement",
        "environment": Config.ENVIRONMENT,
        "uptime_seconds": round(uptime, 2),
    }
