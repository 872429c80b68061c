"""Context section builder: explicit selection + mentions → formatted text blocks.

For one scene:
  1. Explicit selections (compendium, scene summaries, chapter summaries),
     when include_selection is set.
  2. Mentions parsed from the optional free text.
  3. Compendium: explicit ids first in stored order, then mentioned entries
     not already present, deduplicated by id.
  4. Scene summaries: the same merge, deduplicated by
     (chapter title, scene title, summary text) since mentions match by title.
  5. Chapter summaries: explicit selection only.

Line formats:
  - [Character] Mira [tags: hero, sword]: body
  - [Scene Summary] Chapter One / The Duel: text
  - [Chapter Summary] Chapter One: text

`combined` joins the non-empty blocks in section order (compendium, scene
summaries, chapter summaries by default). Rolling memory is not part of
this output; prompt assembly adds it.
"""

from __future__ import annotations

from collections.abc import Sequence

from scenewright.mentions import mentioned_entities
from scenewright.models import (
    Chapter,
    CompendiumEntry,
    ContextKind,
    SceneContextSections,
)
from scenewright.repository import ProjectRepository
from scenewright.selection import ContextSelectionStore

DEFAULT_SECTION_ORDER: tuple[ContextKind, ...] = (
    ContextKind.COMPENDIUM,
    ContextKind.SCENE_SUMMARY,
    ContextKind.CHAPTER_SUMMARY,
)

SceneSummaryRef = tuple[str, str, str]  # (chapter title, scene title, summary)


def format_compendium_line(entry: CompendiumEntry) -> str:
    tag_names = [t.strip() for t in entry.tags if t.strip()]
    tags = f" [tags: {', '.join(tag_names)}]" if tag_names else ""
    return f"- [{entry.category.label}] {entry.title}{tags}: {entry.body.strip()}"


def format_scene_summary_line(ref: SceneSummaryRef) -> str:
    chapter_title, scene_title, summary = ref
    return f"- [Scene Summary] {chapter_title} / {scene_title}: {summary}"


def format_chapter_summary_line(chapter: Chapter) -> str:
    return f"- [Chapter Summary] {chapter.title}: {chapter.summary.strip()}"


class ContextSectionBuilder:
    def __init__(
        self,
        repository: ProjectRepository,
        selection: ContextSelectionStore | None = None,
        section_order: Sequence[ContextKind] = DEFAULT_SECTION_ORDER,
    ) -> None:
        self._repo = repository
        self._selection = selection or ContextSelectionStore(repository)
        self._order = tuple(section_order)

    def build(
        self,
        scene_id: str,
        mention_source_text: str | None = None,
        include_selection: bool = True,
    ) -> SceneContextSections:
        mentions = mentioned_entities(self._repo, mention_source_text)

        compendium: list[CompendiumEntry] = []
        scene_refs: list[SceneSummaryRef] = []
        chapters: list[Chapter] = []

        if include_selection:
            for entry_id in self._selection.selected(scene_id, ContextKind.COMPENDIUM):
                entry = self._repo.get_compendium_entry(entry_id)
                if entry is not None:
                    compendium.append(entry)
            for selected_scene_id in self._selection.selected(scene_id, ContextKind.SCENE_SUMMARY):
                ref = self._scene_ref(selected_scene_id)
                if ref is not None:
                    scene_refs.append(ref)
            for chapter_id in self._selection.selected(scene_id, ContextKind.CHAPTER_SUMMARY):
                chapter = self._repo.get_chapter(chapter_id)
                if chapter is not None:
                    chapters.append(chapter)

        seen_ids = {e.id for e in compendium}
        for entry in mentions.compendium:
            if entry.id not in seen_ids:
                seen_ids.add(entry.id)
                compendium.append(entry)

        seen_refs = set(scene_refs)
        scene_refs = list(dict.fromkeys(scene_refs))
        for scene in mentions.scenes:
            ref = self._scene_ref(scene.id)
            if ref is not None and ref not in seen_refs:
                seen_refs.add(ref)
                scene_refs.append(ref)

        blocks = {
            ContextKind.COMPENDIUM: "\n".join(format_compendium_line(e) for e in compendium),
            ContextKind.SCENE_SUMMARY: "\n".join(format_scene_summary_line(r) for r in scene_refs),
            ContextKind.CHAPTER_SUMMARY: "\n".join(format_chapter_summary_line(c) for c in chapters),
        }
        combined = "\n".join(blocks[kind] for kind in self._order if blocks.get(kind))

        return SceneContextSections(
            combined=combined,
            compendium_text=blocks[ContextKind.COMPENDIUM],
            scene_summaries_text=blocks[ContextKind.SCENE_SUMMARY],
            chapter_summaries_text=blocks[ContextKind.CHAPTER_SUMMARY],
        )

    def _scene_ref(self, scene_id: str) -> SceneSummaryRef | None:
        location = self._repo.scene_location(scene_id)
        if location is None:
            return None
        chapter, scene = location
        summary = scene.summary.strip()
        if not summary:
            return None
        return chapter.title, scene.title, summary
