"""FastAPI API endpoints under /api.

Endpoint groups: settings, templates, context (sections, selection, render
preview) and rolling memory (read, refresh, cancel). Everything
project-scoped is nested under /api/projects/{slug}/.
"""

from fastapi import APIRouter

from .context import router as context_router
from .memory import router as memory_router
from .settings import router as settings_router

router = APIRouter()
router.include_router(settings_router)
router.include_router(context_router)
router.include_router(memory_router)
