"""API v1 router - includes all v1 endpoints."""

from fastapi import APIRouter

from examdesk.api.v1.endpoints import attempts, auth, evaluations, exams, health

api_router = APIRouter()

api_router.include_router(health.router, prefix="", tags=["Health"])
api_router.include_router(auth.router, prefix="/auth", tags=["Auth"])
api_router.include_router(exams.router, prefix="/exams", tags=["Exams"])
api_router.include_router(attempts.router, prefix="", tags=["Attempts"])
api_router.include_router(evaluations.router, prefix="/admin/evaluations", tags=["Evaluation"])
