"""Routers package."""

from cyclecoach.routers.cycle import router as cycle_router
from cyclecoach.routers.plans import router as plans_router
from cyclecoach.routers.races import router as races_router
from cyclecoach.routers.runners import router as runners_router
from cyclecoach.routers.sessions import router as sessions_router

__all__ = [
    "cycle_router",
    "plans_router",
    "races_router",
    "runners_router",
    "sessions_router",
]
