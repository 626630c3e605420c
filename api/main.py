"""
FastAPI Application Entry Point
Hospitality Reputation Tracker
"""

import logging
import sys
import os

# Add project root to path
sys.path.insert(0, os.path.dirname(os.path.dirname(os.path.abspath(__file__))))

from fastapi import FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse

from agents.orchestrator import RefreshInProgress
from api import routes
from api.routes import router
from config.settings import settings
from db.database import init_db
from db.repository import NotFoundError

# ─── Logging ─────────────────────────────────────────────────────────────────

logging.basicConfig(
    level=logging.DEBUG if settings.DEBUG else logging.INFO,
    format="%(asctime)s | %(levelname)-8s | %(name)s | %(message)s",
    datefmt="%Y-%m-%d %H:%M:%S",
)

# ─── App ─────────────────────────────────────────────────────────────────────

app = FastAPI(
    title=settings.APP_NAME,
    version=settings.APP_VERSION,
    description=(
        "Review-score tracking for hotel portfolios. Resolves each property's identity on "
        "Google, TripAdvisor, Booking.com, Expedia and Kasa, snapshots normalized scores, "
        "self-heals missing data and rolls scores up per group."
    ),
    docs_url="/docs",
    redoc_url="/redoc",
)

# ─── CORS ────────────────────────────────────────────────────────────────────

app.add_middleware(
    CORSMiddleware,
    allow_origins=["*"],  # Tighten in production
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

# ─── Errors ──────────────────────────────────────────────────────────────────

@app.exception_handler(NotFoundError)
async def not_found_handler(request: Request, exc: NotFoundError):
    return JSONResponse(status_code=404, content={"detail": str(exc)})


@app.exception_handler(RefreshInProgress)
async def refresh_in_progress_handler(request: Request, exc: RefreshInProgress):
    return JSONResponse(status_code=409, content={"detail": str(exc)})


# ─── Lifecycle ───────────────────────────────────────────────────────────────

@app.on_event("startup")
async def startup_event():
    logging.getLogger(__name__).info("🚀 Starting Hospitality Reputation Tracker API...")
    init_db()


@app.on_event("shutdown")
async def shutdown_event():
    if routes._service is not None:
        await routes._service.aclose()


# ─── Routes ──────────────────────────────────────────────────────────────────

app.include_router(router, prefix="/api/v1")


@app.get("/", tags=["System"])
async def root():
    return {
        "name": settings.APP_NAME,
        "version": settings.APP_VERSION,
        "docs": "/docs",
        "status": "running",
    }


# ─── Run ─────────────────────────────────────────────────────────────────────

if __name__ == "__main__":
    import uvicorn
    uvicorn.run(
        "api.main:app",
        host=settings.API_HOST,
        port=settings.API_PORT,
        reload=settings.DEBUG,
    )
