"""Traffic Watch - API Routers"""
from .auth import router as auth_router
from .citizen_reports import router as citizen_reports_router
from .police import router as police_router
from .rewards import router as rewards_router
from .admin import router as admin_router
from .scheduler import router as scheduler_router

__all__ = [
    "auth_router",
    "citizen_reports_router",
    "police_router",
    "rewards_router",
    "admin_router",
    "scheduler_router",
]
