"""API router composition for all route groups."""

from fastapi import APIRouter

from .routes import ops, recommendations, users

api_router = APIRouter()
api_router.include_router(users.router, tags=["users"])
api_router.include_router(recommendations.router, prefix="/ai", tags=["ai"])
api_router.include_router(ops.router, prefix="/ops", tags=["ops"])
