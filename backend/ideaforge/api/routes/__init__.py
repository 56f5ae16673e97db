from fastapi import APIRouter

from ideaforge.api.routes import health, ideas, refine

api_router = APIRouter()

api_router.include_router(health.router, tags=["health"])
api_router.include_router(ideas.router, prefix="/ideas", tags=["ideas"])
api_router.include_router(refine.router, tags=["refine"])
