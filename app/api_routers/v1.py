from fastapi import APIRouter

from app.features.reports.routes.reports import router as reports_router

api_router = APIRouter()

# Register all feature routes
api_router.include_router(reports_router)
