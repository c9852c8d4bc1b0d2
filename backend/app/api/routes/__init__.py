"""API routes."""

from fastapi import APIRouter

from app.api.routes import access, auth, ccp, safety_scores, training

api_router = APIRouter()

api_router.include_router(auth.router, prefix="/auth", tags=["auth"])
api_router.include_router(access.router, prefix="/access", tags=["access"])
api_router.include_router(ccp.router, prefix="/ccp", tags=["ccp", "food-safety"])
api_router.include_router(training.router, prefix="/training", tags=["training"])
api_router.include_router(safety_scores.router, prefix="/safety-scores", tags=["safety-scores"])
