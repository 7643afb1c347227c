"""
Automation API Routes Package

This package contains modular API route handlers for different endpoints.
"""

from automation_api.routes.assistant import router as assistant_router
from automation_api.routes.automation import router as automation_router
from automation_api.routes.campaigns import router as campaigns_router
from automation_api.routes.scheduler import router as scheduler_router

__all__ = ['assistant_router', 'automation_router', 'campaigns_router', 'scheduler_router']
