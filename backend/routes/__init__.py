"""FastAPI API endpoints under /api.

Endpoint groups: health + LLM settings, runs, turns. Turns are nested
under /api/runs/{run_id}/turns.
"""

from fastapi import APIRouter

from .runs import router as runs_router
from .settings import router as settings_router
from .turns import router as turns_router

router = APIRouter()
router.include_router(settings_router)
router.include_router(runs_router)
router.include_router(turns_router)
