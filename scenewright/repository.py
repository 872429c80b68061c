"""Entity access over a project aggregate.

`ProjectRepository` is the seam between the core and the persistence
collaborator: the mention resolver, selection store, memory cache and
context builder read entities through it and write back only selections
and rolling-memory records. An optional `on_change` callback lets the
caller persist the project after every write (see `Storage.save_project`).

Record writes replace the whole immutable record in a single dict
assignment, so concurrent readers see either the old or the new record.
"""

from __future__ import annotations

from collections.abc import Callable, Iterator

from scenewright.models import (
    Chapter,
    CompendiumEntry,
    ContextKind,
    Project,
    RollingChapterMemory,
    RollingSceneMemory,
    RollingWorkshopMemory,
    Scene,
    WorkshopMessage,
    WorkshopSession,
)


class EntityNotFound(KeyError):
    """Raised when an operation targets a scene, chapter or session that does not exist."""


class ProjectRepository:
    def __init__(
        self,
        project: Project,
        on_change: Callable[[Project], None] | None = None,
    ) -> None:
        self._project = project
        self._on_change = on_change

    @property
    def project(self) -> Project:
        return self._project

    @property
    def title(self) -> str:
        return self._project.title

    def _changed(self) -> None:
        if self._on_change is not None:
            self._on_change(self._project)

    # ------------------------------------------------------------------
    # Entity reads
    # ------------------------------------------------------------------

    def compendium(self) -> list[CompendiumEntry]:
        return list(self._project.compendium)

    def get_compendium_entry(self, entry_id: str) -> CompendiumEntry | None:
        for entry in self._project.compendium:
            if entry.id == entry_id:
                return entry
        return None

    def chapters(self) -> list[Chapter]:
        return list(self._project.chapters)

    def get_chapter(self, chapter_id: str) -> Chapter | None:
        for chapter in self._project.chapters:
            if chapter.id == chapter_id:
                return chapter
        return None

    def iter_scenes(self) -> Iterator[tuple[Chapter, Scene]]:
        """Yield (chapter, scene) pairs in project order."""
        for chapter in self._project.chapters:
            for scene in chapter.scenes:
                yield chapter, scene

    def scene_location(self, scene_id: str) -> tuple[Chapter, Scene] | None:
        for chapter, scene in self.iter_scenes():
            if scene.id == scene_id:
                return chapter, scene
        return None

    def get_scene(self, scene_id: str) -> Scene | None:
        location = self.scene_location(scene_id)
        return location[1] if location else None

    def get_session(self, session_id: str) -> WorkshopSession | None:
        for session in self._project.workshop_sessions:
            if session.id == session_id:
                return session
        return None

    def live_ids(self, kind: ContextKind) -> set[str]:
        """Ids that a selection of the given kind may reference."""
        if kind is ContextKind.COMPENDIUM:
            return {e.id for e in self._project.compendium}
        if kind is ContextKind.SCENE_SUMMARY:
            return {s.id for _, s in self.iter_scenes()}
        return {c.id for c in self._project.chapters}

    # ------------------------------------------------------------------
    # Selections
    # ------------------------------------------------------------------

    def raw_selection(self, kind: ContextKind, scene_id: str) -> list[str]:
        return list(self._project.selection.for_kind(kind).get(scene_id, []))

    def all_selected_scene_ids(self, kind: ContextKind) -> list[str]:
        return list(self._project.selection.for_kind(kind))

    def write_selection(self, kind: ContextKind, scene_id: str, ids: list[str]) -> None:
        mapping = self._project.selection.for_kind(kind)
        if ids:
            mapping[scene_id] = list(ids)
        else:
            mapping.pop(scene_id, None)
        self._changed()

    # ------------------------------------------------------------------
    # Rolling memory records
    # ------------------------------------------------------------------

    def scene_memory(self, scene_id: str) -> RollingSceneMemory | None:
        return self._project.rolling_scene_memory.get(scene_id)

    def put_scene_memory(self, scene_id: str, record: RollingSceneMemory) -> None:
        self._project.rolling_scene_memory[scene_id] = record
        self._changed()

    def chapter_memory(self, chapter_id: str) -> RollingChapterMemory | None:
        return self._project.rolling_chapter_memory.get(chapter_id)

    def put_chapter_memory(self, chapter_id: str, record: RollingChapterMemory) -> None:
        self._project.rolling_chapter_memory[chapter_id] = record
        self._changed()

    def workshop_memory(self, session_id: str) -> RollingWorkshopMemory | None:
        return self._project.rolling_workshop_memory.get(session_id)

    def put_workshop_memory(self, session_id: str, record: RollingWorkshopMemory) -> None:
        self._project.rolling_workshop_memory[session_id] = record
        self._changed()

    # ------------------------------------------------------------------
    # Entity edits (driven by the surrounding application)
    # ------------------------------------------------------------------

    def update_scene_content(self, scene_id: str, content: str) -> Scene:
        location = self.scene_location(scene_id)
        if location is None:
            raise EntityNotFound(scene_id)
        chapter, scene = location
        updated = scene.model_copy(update={"content": content})
        chapter.scenes[chapter.scenes.index(scene)] = updated
        self._changed()
        return updated

    def delete_scene(self, scene_id: str) -> bool:
        location = self.scene_location(scene_id)
        if location is None:
            return False
        chapter, scene = location
        chapter.scenes.remove(scene)
        self._project.rolling_scene_memory.pop(scene_id, None)
        self._purge_scene_selections(scene_id)
        self._changed()
        return True

    def _purge_scene_selections(self, scene_id: str) -> None:
        """Drop the scene's own selections and its id from other scenes' summary lists."""
        for kind in ContextKind:
            self._project.selection.for_kind(kind).pop(scene_id, None)
        summaries = self._project.selection.for_kind(ContextKind.SCENE_SUMMARY)
        for owner, ids in list(summaries.items()):
            kept = [i for i in ids if i != scene_id]
            if kept:
                summaries[owner] = kept
            else:
                del summaries[owner]

    def append_workshop_message(self, session_id: str, message: WorkshopMessage) -> None:
        session = self.get_session(session_id)
        if session is None:
            raise EntityNotFound(session_id)
        session.messages.append(message)
        self._changed()

    def delete_workshop_message(self, session_id: str, message_id: str) -> bool:
        """Remove one message; the memory watermark is clamped to what remains."""
        session = self.get_session(session_id)
        if session is None:
            raise EntityNotFound(session_id)
        kept = [m for m in session.messages if m.id != message_id]
        if len(kept) == len(session.messages):
            return False
        session.messages[:] = kept
        record = self._project.rolling_workshop_memory.get(session_id)
        remaining = sum(1 for m in kept if m.content.strip())
        if record is not None and record.summarized_message_count > remaining:
            self._project.rolling_workshop_memory[session_id] = record.model_copy(
                update={"summarized_message_count": remaining}
            )
        self._changed()
        return True

    def clear_workshop_messages(self, session_id: str) -> None:
        """Empty a session and drop its rolling memory with it."""
        session = self.get_session(session_id)
        if session is None:
            raise EntityNotFound(session_id)
        session.messages.clear()
        self._project.rolling_workshop_memory.pop(session_id, None)
        self._changed()
