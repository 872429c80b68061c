"""Pydantic request/response models for API endpoints."""

from pydantic import BaseModel, Field


class RenderBody(BaseModel):
    template: str = ""
    fallback_template: str | None = None
    beat: str = ""
    selection: str = ""
    include_selection: bool = True
    variables: dict[str, str] = Field(default_factory=dict)


class WorkshopRenderBody(BaseModel):
    template: str = ""
    fallback_template: str | None = None
    pending_input: str = ""
    scene_id: str | None = None
    use_scene_context: bool = True
    use_compendium_context: bool = True


class SetSelectionBody(BaseModel):
    ids: list[str]


class RefreshWorkshopBody(BaseModel):
    force: bool = False


class MemoryState(BaseModel):
    summary: str
    in_flight: bool = False
    pending_messages: int | None = None
