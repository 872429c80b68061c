"""Core domain models.

Every component (mention resolver, selection store, memory cache, context
builder, renderer) operates on these types. Pydantic is used for
validation and serialisation at every data boundary.
"""

from __future__ import annotations

import uuid
from datetime import datetime, timezone
from enum import Enum
from typing import Literal

from pydantic import BaseModel, ConfigDict, Field, field_validator


def _new_id() -> str:
    return str(uuid.uuid4())


def _now() -> datetime:
    return datetime.now(timezone.utc)


class CompendiumCategory(str, Enum):
    CHARACTERS = "characters"
    LOCATIONS = "locations"
    LORE = "lore"
    ITEMS = "items"
    NOTES = "notes"

    @property
    def label(self) -> str:
        """Singular label used in context lines, e.g. ``[Character]``."""
        return _CATEGORY_LABELS[self]


_CATEGORY_LABELS = {
    CompendiumCategory.CHARACTERS: "Character",
    CompendiumCategory.LOCATIONS: "Location",
    CompendiumCategory.LORE: "Lore",
    CompendiumCategory.ITEMS: "Item",
    CompendiumCategory.NOTES: "Note",
}


class ContextKind(str, Enum):
    """The three kinds of explicit context reference a scene can hold."""

    COMPENDIUM = "compendium"
    SCENE_SUMMARY = "scene_summary"
    CHAPTER_SUMMARY = "chapter_summary"


# ---------------------------------------------------------------------------
# Project entities
# ---------------------------------------------------------------------------

class CompendiumEntry(BaseModel):
    """A reusable world-building note."""

    id: str = Field(default_factory=_new_id)
    category: CompendiumCategory = CompendiumCategory.NOTES
    title: str
    body: str = ""
    tags: list[str] = Field(default_factory=list)


class Scene(BaseModel):
    id: str = Field(default_factory=_new_id)
    title: str
    content: str = ""
    summary: str = ""


class Chapter(BaseModel):
    id: str = Field(default_factory=_new_id)
    title: str
    summary: str = ""
    scenes: list[Scene] = Field(default_factory=list)


WorkshopRole = Literal["user", "assistant"]


class WorkshopMessage(BaseModel):
    id: str = Field(default_factory=_new_id)
    role: WorkshopRole
    content: str


class WorkshopSession(BaseModel):
    """A workshop chat: free conversation about the story."""

    id: str = Field(default_factory=_new_id)
    name: str
    messages: list[WorkshopMessage] = Field(default_factory=list)


class ContextSelection(BaseModel):
    """Explicit per-scene context references, one map per kind.

    Keys are scene ids; values are ordered entity id lists.
    """

    compendium: dict[str, list[str]] = Field(default_factory=dict)
    scene_summary: dict[str, list[str]] = Field(default_factory=dict)
    chapter_summary: dict[str, list[str]] = Field(default_factory=dict)

    def for_kind(self, kind: ContextKind) -> dict[str, list[str]]:
        return getattr(self, kind.value)


# ---------------------------------------------------------------------------
# Rolling memory records (immutable; replaced whole, never mutated)
# ---------------------------------------------------------------------------

class RollingSceneMemory(BaseModel):
    model_config = ConfigDict(frozen=True)

    summary: str
    source_content_hash: str
    updated_at: datetime = Field(default_factory=_now)


class RollingChapterMemory(BaseModel):
    model_config = ConfigDict(frozen=True)

    summary: str
    source_fingerprint: str
    updated_at: datetime = Field(default_factory=_now)


class RollingWorkshopMemory(BaseModel):
    model_config = ConfigDict(frozen=True)

    summary: str
    summarized_message_count: int = 0
    updated_at: datetime = Field(default_factory=_now)

    @field_validator("summarized_message_count")
    @classmethod
    def _clamp_count(cls, value: int) -> int:
        return max(0, value)


class Project(BaseModel):
    """The persisted project aggregate.

    Memory maps are keyed by the id of the scene, chapter or session the
    summary belongs to.
    """

    id: str = Field(default_factory=_new_id)
    title: str
    chapters: list[Chapter] = Field(default_factory=list)
    compendium: list[CompendiumEntry] = Field(default_factory=list)
    workshop_sessions: list[WorkshopSession] = Field(default_factory=list)
    selection: ContextSelection = Field(default_factory=ContextSelection)
    rolling_scene_memory: dict[str, RollingSceneMemory] = Field(default_factory=dict)
    rolling_chapter_memory: dict[str, RollingChapterMemory] = Field(default_factory=dict)
    rolling_workshop_memory: dict[str, RollingWorkshopMemory] = Field(default_factory=dict)


# ---------------------------------------------------------------------------
# Render-time values
# ---------------------------------------------------------------------------

class SceneContextSections(BaseModel):
    """Pre-formatted context blocks for one scene.

    `rolling_text` is never filled by the section builder; prompt assembly
    sets it so templates can address rolling memory on its own.
    """

    combined: str = ""
    compendium_text: str = ""
    scene_summaries_text: str = ""
    chapter_summaries_text: str = ""
    rolling_text: str = ""


class ChatTurn(BaseModel):
    role_label: str
    content: str


class RenderResult(BaseModel):
    text: str
    warnings: list[str] = Field(default_factory=list)


class PromptTemplate(BaseModel):
    id: str
    category: Literal["prose", "rewrite", "expand", "shorten", "summary", "workshop"]
    title: str
    user_template: str
    system_template: str = ""
