"""Rolling memory read and refresh endpoints.

Refresh maps failures to HTTP status codes:
  404 — unknown scene / chapter / session
  409 — superseded by a newer refresh for the same entity
  502 — the LLM call failed or returned nothing usable
"""

from fastapi import APIRouter, Depends, HTTPException

from scenewright.memory import MemoryRefreshError, RefreshCancelled
from scenewright.repository import EntityNotFound

from .deps import Workspace, get_workspace
from .models import MemoryState, RefreshWorkshopBody

router = APIRouter()


async def _refresh(work) -> MemoryState:
    try:
        summary = await work
    except EntityNotFound as e:
        raise HTTPException(404, f"Not found: {e.args[0]}")
    except RefreshCancelled as e:
        raise HTTPException(409, str(e))
    except MemoryRefreshError as e:
        raise HTTPException(502, str(e))
    return MemoryState(summary=summary)


@router.get("/projects/{slug}/memory/scenes/{scene_id}")
async def get_scene_memory(scene_id: str, ws: Workspace = Depends(get_workspace)):
    """Current scene memory ("" when stale or missing)."""
    return MemoryState(
        summary=ws.cache.rolling_scene_summary(scene_id),
        in_flight=ws.cache.in_flight("scene", scene_id),
    )


@router.post("/projects/{slug}/memory/scenes/{scene_id}/refresh")
async def refresh_scene_memory(scene_id: str, ws: Workspace = Depends(get_workspace)):
    """Regenerate a scene memory; supersedes any refresh already running for it."""
    return await _refresh(ws.cache.refresh_scene_memory(scene_id))


@router.get("/projects/{slug}/memory/chapters/{chapter_id}")
async def get_chapter_memory(chapter_id: str, ws: Workspace = Depends(get_workspace)):
    """Current chapter memory ("" when stale or missing)."""
    return MemoryState(
        summary=ws.cache.rolling_chapter_summary(chapter_id),
        in_flight=ws.cache.in_flight("chapter", chapter_id),
    )


@router.post("/projects/{slug}/memory/chapters/{chapter_id}/refresh")
async def refresh_chapter_memory(chapter_id: str, ws: Workspace = Depends(get_workspace)):
    """Regenerate a chapter memory from scene summaries or chunked scene text."""
    return await _refresh(ws.cache.refresh_chapter_memory(chapter_id))


@router.get("/projects/{slug}/memory/workshop/{session_id}")
async def get_workshop_memory(session_id: str, ws: Workspace = Depends(get_workspace)):
    """Current chat memory plus how many messages it is behind."""
    return MemoryState(
        summary=ws.cache.rolling_workshop_summary(session_id),
        in_flight=ws.cache.in_flight("workshop", session_id),
        pending_messages=ws.cache.workshop_pending_delta(session_id),
    )


@router.post("/projects/{slug}/memory/workshop/{session_id}/refresh")
async def refresh_workshop_memory(
    session_id: str,
    body: RefreshWorkshopBody | None = None,
    ws: Workspace = Depends(get_workspace),
):
    """Fold new chat messages into memory (no-op below the message threshold unless forced)."""
    force = body.force if body else False
    return await _refresh(ws.cache.refresh_workshop_memory(session_id, force=force))


@router.delete("/projects/{slug}/memory/{kind}/{entity_id}/refresh")
async def cancel_refresh(kind: str, entity_id: str, ws: Workspace = Depends(get_workspace)):
    """Cancel an in-flight refresh. The stored memory is left untouched."""
    mapping = {"scenes": "scene", "chapters": "chapter", "workshop": "workshop"}
    if kind not in mapping:
        raise HTTPException(404, "Unknown memory kind")
    return {"cancelled": ws.cache.cancel(mapping[kind], entity_id)}
