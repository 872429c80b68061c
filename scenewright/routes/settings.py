"""Health check and settings endpoints."""

from fastapi import APIRouter, HTTPException, Request
from pydantic import ValidationError

from scenewright import config

router = APIRouter()


@router.get("/health")
async def health():
    """Health check."""
    return {"status": "ok"}


@router.get("/settings")
async def get_settings(request: Request):
    """Get app settings (LLM connection, memory budgets, context order)."""
    return request.app.state.config


@router.patch("/settings")
async def update_settings(body: dict, request: Request):
    """Update app settings (partial merge). Applies to projects opened afterwards."""
    try:
        updated = config.update_config(request.app.state.storage.base_path, body)
    except ValidationError as e:
        raise HTTPException(422, str(e))
    request.app.state.config = updated
    return updated
