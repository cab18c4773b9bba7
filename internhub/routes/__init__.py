"""
internhub/routes/__init__.py
Route registration
"""
from fastapi import APIRouter

from internhub.routes import periods, allocations, registrations, weekly_reports, retake_requests

router = APIRouter()

router.include_router(periods.router)
router.include_router(allocations.router)
router.include_router(registrations.router)
router.include_router(weekly_reports.router)
router.include_router(retake_requests.router)
