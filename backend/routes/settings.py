"""Health check and LLM settings endpoints."""

from fastapi import APIRouter

from backend import storage

router = APIRouter()


@router.get("/health")
async def health():
    """Health check."""
    return {"status": "ok"}


@router.get("/settings/llm")
async def get_llm_settings():
    """Current LLM settings with API keys masked."""
    return storage.public_llm_config(storage.get_llm_config())


@router.patch("/settings/llm")
async def update_llm_settings(body: dict):
    """Patch LLM settings. Takes effect from the next narration cycle."""
    return storage.public_llm_config(storage.update_llm_config(body))
