"""Command Gateway - API Routers"""
from .auth import router as auth_router
from .commands import router as commands_router
from .rules import router as rules_router
from .audit import router as audit_router
from .scheduler import router as scheduler_router

__all__ = [
    "auth_router",
    "commands_router",
    "rules_router",
    "audit_router",
    "scheduler_router",
]
