"""Prompt-request assembly.

Ties the pieces together for one generation request: context sections
from the builder, rolling memory from the cache (read-only, never
refreshed here), the standard variable table, then render_prompt().
"""

from __future__ import annotations

import logging
from collections.abc import Mapping

from scenewright.config import AppConfig
from scenewright.context import ContextSectionBuilder
from scenewright.memory import RollingMemoryCache
from scenewright.models import ChatTurn, RenderResult, SceneContextSections, WorkshopMessage
from scenewright.prompts import build_prompt_variables, render_prompt
from scenewright.repository import ProjectRepository
from scenewright.selection import ContextSelectionStore
from scenewright.templates import PROSE_TEMPLATE, WORKSHOP_TEMPLATE

logger = logging.getLogger(__name__)

SCENE_EXCERPT_CHARS = 4500


class PromptAssembler:
    def __init__(
        self,
        repository: ProjectRepository,
        cache: RollingMemoryCache,
        config: AppConfig | None = None,
    ) -> None:
        self._repo = repository
        self._cache = cache
        self._config = config or AppConfig()
        self.selection = ContextSelectionStore(repository)
        self.builder = ContextSectionBuilder(
            repository, self.selection, self._config.context_section_order
        )

    def build_context_sections(
        self,
        scene_id: str,
        mention_source_text: str | None = None,
        include_selection: bool = True,
    ) -> SceneContextSections:
        return self.builder.build(scene_id, mention_source_text, include_selection)

    def rolling_text(self, scene_id: str | None = None, session_id: str | None = None) -> str:
        """Valid rolling memories relevant to a request, one line each."""
        lines: list[str] = []
        location = self._repo.scene_location(scene_id) if scene_id else None
        if location is not None:
            chapter, scene = location
            chapter_memory = self._cache.rolling_chapter_summary(chapter.id)
            if chapter_memory:
                lines.append(f"- [Chapter Memory] {chapter.title}: {chapter_memory}")
            scene_memory = self._cache.rolling_scene_summary(scene.id)
            if scene_memory:
                lines.append(f"- [Scene Memory] {scene.title}: {scene_memory}")
        if session_id:
            session = self._repo.get_session(session_id)
            chat_memory = self._cache.rolling_workshop_summary(session_id)
            if session is not None and chat_memory:
                lines.append(f"- [Chat Memory] {session.name}: {chat_memory}")
        return "\n".join(lines)

    def render_scene_prompt(
        self,
        scene_id: str,
        template: str,
        beat: str = "",
        selection: str = "",
        fallback_template: str | None = None,
        extras: Mapping[str, object] | None = None,
        include_selection: bool = True,
    ) -> RenderResult:
        """Render a prose/rewrite style prompt for a scene; the beat is scanned for mentions."""
        location = self._repo.scene_location(scene_id)
        chapter_title = location[0].title if location else ""
        scene = location[1] if location else None
        content = scene.content if scene else ""

        sections = self.build_context_sections(scene_id, beat or None, include_selection)
        sections.rolling_text = self.rolling_text(scene_id=scene_id)
        variables = build_prompt_variables(
            project_title=self._repo.title,
            chapter_title=chapter_title,
            scene_title=scene.title if scene else "",
            scene_excerpt=content[-SCENE_EXCERPT_CHARS:],
            beat=beat,
            selection=selection,
            extras=extras,
        )
        result = render_prompt(
            template,
            fallback_template if fallback_template is not None else PROSE_TEMPLATE.user_template,
            variables,
            sections,
            scene_full_text=content,
            rolling_first=self._config.rolling_memory_first,
        )
        if result.warnings:
            logger.debug("scene prompt warnings scene=%s: %s", scene_id, result.warnings)
        return result

    def render_workshop_prompt(
        self,
        session_id: str,
        template: str,
        pending_input: str = "",
        scene_id: str | None = None,
        use_scene_context: bool = True,
        use_compendium_context: bool = True,
        fallback_template: str | None = None,
    ) -> RenderResult:
        """Render a workshop chat prompt; the pending input is scanned for mentions."""
        session = self._repo.get_session(session_id)
        messages: list[WorkshopMessage] = list(session.messages) if session else []
        if pending_input.strip():
            messages.append(WorkshopMessage(role="user", content=pending_input.strip()))
        turns = [
            ChatTurn(role_label="User" if m.role == "user" else "Assistant", content=m.content)
            for m in messages
            if m.content.strip()
        ]

        location = self._repo.scene_location(scene_id) if scene_id and use_scene_context else None
        scene = location[1] if location else None
        if use_compendium_context and scene_id:
            sections = self.build_context_sections(scene_id, pending_input or None)
        elif use_compendium_context:
            sections = self.build_context_sections("", pending_input or None, include_selection=False)
        else:
            sections = SceneContextSections()
        sections.rolling_text = self.rolling_text(
            scene_id=scene.id if scene else None, session_id=session_id
        )

        variables = build_prompt_variables(
            project_title=self._repo.title,
            chapter_title=location[0].title if location else "",
            scene_title=scene.title if scene else "",
            scene_excerpt=scene.content[-SCENE_EXCERPT_CHARS:] if scene else "",
            chat_name=session.name if session else "",
        )
        return render_prompt(
            template,
            fallback_template if fallback_template is not None else WORKSHOP_TEMPLATE.user_template,
            variables,
            sections,
            scene_full_text=scene.content if scene else "",
            conversation_turns=turns,
            rolling_first=self._config.rolling_memory_first,
        )
