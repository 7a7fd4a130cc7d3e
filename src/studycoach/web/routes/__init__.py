"""Route handlers for Web API."""

from studycoach.web.routes.health import router as health_router
from studycoach.web.routes.profile import router as profile_router
from studycoach.web.routes.plans import router as plans_router
from studycoach.web.routes.conversations import router as conversations_router
from studycoach.web.routes.dashboard import router as dashboard_router
from studycoach.web.routes.diagnostics import router as diagnostics_router

__all__ = [
    "health_router",
    "profile_router",
    "plans_router",
    "conversations_router",
    "dashboard_router",
    "diagnostics_router",
]
