"""
AI Vault Studio - FastAPI Backend
Main application entry point with health check and API routing.
"""

import logging

from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware
from contextlib import asynccontextmanager

from config import settings, validate_security_settings
from database import engine, Base
import models  # noqa: F401
from routers import (
    health,
    auth,
    credits,
    generation,
    payments,
)
from services.cashfree import gateway_configured
from services.providers import provider_capabilities

logging.basicConfig(
    level=getattr(logging, str(settings.LOG_LEVEL).upper(), logging.INFO),
    format="%(asctime)s %(levelname)s %(name)s: %(message)s",
)


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Application lifespan handler for startup/shutdown."""
    # Startup
    print("🚀 Starting AI Vault Studio API...")
    validate_security_settings()
    if settings.AUTO_CREATE_DB_SCHEMA:
        try:
            async with engine.begin() as conn:
                await conn.run_sync(Base.metadata.create_all)
            print("🗄️ Database schema verified.")
        except Exception as e:
            print(f"⚠️ Database bootstrap skipped: {e}")
    configured = [name for name, ready in provider_capabilities().items() if ready]
    if configured:
        print(f"🎬 Generation providers configured: {', '.join(configured)}")
    else:
        print("⚠️ No generation provider keys configured; requests will use demo fallbacks.")
    if not gateway_configured():
        print("💳 Cashfree credentials missing; payment orders will run in demo mode.")
    yield
    # Shutdown
    await engine.dispose()
    print("👋 Shutting down API...")


app = FastAPI(
    title="AI Vault Studio API",
    description="Credit-metered AI video, image and text generation with credit-pack purchases",
    version="0.1.0",
    lifespan=lifespan,
)

# CORS middleware
app.add_middleware(
    CORSMiddleware,
    allow_origins=settings.CORS_ORIGINS,
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

# Include routers
app.include_router(health.router, tags=["Health"])
app.include_router(auth.router, prefix="/auth", tags=["Authentication"])
app.include_router(credits.router, prefix="/credits", tags=["Credits"])
app.include_router(generation.router, prefix="/generate", tags=["Generation"])
app.include_router(payments.router, prefix="/payments", tags=["Payments"])


@app.get("/")
async def root():
    """Root endpoint."""
    return {
        "name": "AI Vault Studio API",
        "version": "0.1.0",
        "status": "running"
    }
