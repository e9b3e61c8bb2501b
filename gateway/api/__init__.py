"""API router package for the LLM gateway."""

from fastapi import APIRouter
from .routes import router as gateway_router

# Create main API router
api_router = APIRouter(prefix="/api")

# Include sub-routers
api_router.include_router(gateway_router)
