"""Context sections, selection and render-preview endpoints."""

from fastapi import APIRouter, Depends, HTTPException

from scenewright.models import ContextKind
from scenewright.templates import BUILTIN_TEMPLATES

from .deps import Workspace, get_workspace
from .models import RenderBody, SetSelectionBody, WorkshopRenderBody

router = APIRouter()


@router.get("/templates")
async def list_templates():
    """List the built-in prompt templates."""
    return BUILTIN_TEMPLATES


@router.get("/projects/{slug}/scenes/{scene_id}/context")
async def get_context(
    scene_id: str,
    mentions: str | None = None,
    include_selection: bool = True,
    ws: Workspace = Depends(get_workspace),
):
    """Build the context sections for a scene, optionally scanning text for mentions."""
    if ws.repository.get_scene(scene_id) is None:
        raise HTTPException(404, "Scene not found")
    return ws.assembler.build_context_sections(scene_id, mentions, include_selection)


@router.post("/projects/{slug}/scenes/{scene_id}/render")
async def render_scene(scene_id: str, body: RenderBody, ws: Workspace = Depends(get_workspace)):
    """Render a scene prompt. Warnings come back alongside the text."""
    if ws.repository.get_scene(scene_id) is None:
        raise HTTPException(404, "Scene not found")
    return ws.assembler.render_scene_prompt(
        scene_id,
        body.template,
        beat=body.beat,
        selection=body.selection,
        fallback_template=body.fallback_template,
        extras=body.variables,
        include_selection=body.include_selection,
    )


@router.post("/projects/{slug}/workshop/{session_id}/render")
async def render_workshop(
    session_id: str, body: WorkshopRenderBody, ws: Workspace = Depends(get_workspace)
):
    """Render a workshop chat prompt."""
    if ws.repository.get_session(session_id) is None:
        raise HTTPException(404, "Workshop session not found")
    return ws.assembler.render_workshop_prompt(
        session_id,
        body.template,
        pending_input=body.pending_input,
        scene_id=body.scene_id,
        use_scene_context=body.use_scene_context,
        use_compendium_context=body.use_compendium_context,
        fallback_template=body.fallback_template,
    )


# ── selection ───────────────────────────────────────────────


@router.get("/projects/{slug}/scenes/{scene_id}/selection/{kind}")
async def get_selection(scene_id: str, kind: ContextKind, ws: Workspace = Depends(get_workspace)):
    """Selected ids of one kind, with deleted entities filtered out."""
    return ws.assembler.selection.selected(scene_id, kind)


@router.put("/projects/{slug}/scenes/{scene_id}/selection/{kind}")
async def set_selection(
    scene_id: str, kind: ContextKind, body: SetSelectionBody, ws: Workspace = Depends(get_workspace)
):
    """Replace the selection of one kind (deduplicated, unknown ids dropped)."""
    return ws.assembler.selection.set_selected(scene_id, kind, body.ids)


@router.post("/projects/{slug}/scenes/{scene_id}/selection/{kind}/{entity_id}")
async def toggle_selection(
    scene_id: str, kind: ContextKind, entity_id: str, ws: Workspace = Depends(get_workspace)
):
    """Add the id if absent, remove it if present."""
    return ws.assembler.selection.toggle(scene_id, kind, entity_id)


@router.delete("/projects/{slug}/scenes/{scene_id}/selection/{kind}")
async def clear_selection(scene_id: str, kind: ContextKind, ws: Workspace = Depends(get_workspace)):
    """Clear the selection of one kind."""
    ws.assembler.selection.clear(scene_id, kind)
    return {"ok": True}
