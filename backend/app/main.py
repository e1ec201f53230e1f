"""
BOQ Progress Tracker API
FastAPI backend over async PostgreSQL: BOQ tree, breakdown allocation,
WIR valuation, progress roll-up, invoicing periods and reports.
"""
import os
import logging
from contextlib import asynccontextmanager

from dotenv import load_dotenv

# .env must be loaded before app.config reads the environment
load_dotenv()

from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware

from app import config
from app.db import init_db
from app.services.logging_config import setup_logging
from app.services.middleware import RequestTimingMiddleware

setup_logging(level=config.LOG_LEVEL, json_output=config.LOG_JSON)
logger = logging.getLogger("boq-tracker-api")

if not os.getenv("DATABASE_URL"):
    logger.warning("MISSING env var: DATABASE_URL — running in dev mode")


@asynccontextmanager
async def lifespan(app: FastAPI):
    try:
        await init_db()
    except Exception as e:
        logger.warning(f"Table init warning: {e}")
    yield


app = FastAPI(
    title="BOQ Progress Tracker API",
    version="1.0.0",
    description="Work inspection tracking and progress valuation against a priced BOQ",
    lifespan=lifespan,
)

app.add_middleware(
    CORSMiddleware,
    allow_origins=config.CORS_ORIGINS,
    allow_credentials=True,
    allow_methods=["GET", "POST", "PUT", "PATCH", "DELETE", "OPTIONS"],
    allow_headers=["Authorization", "Content-Type", "Accept", "X-Requested-With"],
)
# Request timing + X-Request-ID must be outermost so it wraps all other middleware
app.add_middleware(RequestTimingMiddleware)

# Routers
from app.api.boq_routes import router as boq_router
from app.api.breakdown_routes import router as breakdown_router
from app.api.wir_routes import router as wir_router
from app.api.progress_routes import router as progress_router
from app.api.invoice_routes import router as invoice_router
from app.api.report_routes import router as report_router

app.include_router(boq_router)
app.include_router(breakdown_router)
app.include_router(wir_router)
app.include_router(progress_router)
app.include_router(invoice_router)
app.include_router(report_router)


@app.get("/health")
async def health_check():
    return {
        "status": "active",
        "version": "1.0.0",
        "db_configured": bool(os.getenv("DATABASE_URL")),
        "currency": config.CURRENCY_CODE,
    }
