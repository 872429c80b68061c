"""Per-scene explicit context selection.

Each scene keeps three ordered id lists (compendium entries, scenes whose
summary to include, chapters whose summary to include). Reads filter
against the live project so ids of deleted entities quietly disappear;
summary kinds also drop targets that have no summary yet. `sanitize()`
writes the filtered lists back.
"""

from __future__ import annotations

import logging

from scenewright.models import ContextKind
from scenewright.repository import ProjectRepository

logger = logging.getLogger(__name__)


def _dedupe(ids: list[str]) -> list[str]:
    return list(dict.fromkeys(ids))


class ContextSelectionStore:
    def __init__(self, repository: ProjectRepository) -> None:
        self._repo = repository

    def _usable_ids(self, kind: ContextKind) -> set[str]:
        if kind is ContextKind.COMPENDIUM:
            return self._repo.live_ids(kind)
        if kind is ContextKind.SCENE_SUMMARY:
            return {s.id for _, s in self._repo.iter_scenes() if s.summary.strip()}
        return {c.id for c in self._repo.chapters() if c.summary.strip()}

    def selected(self, scene_id: str, kind: ContextKind) -> list[str]:
        """Ordered, deduplicated ids that still resolve to a usable entity."""
        usable = self._usable_ids(kind)
        return [i for i in _dedupe(self._repo.raw_selection(kind, scene_id)) if i in usable]

    def toggle(self, scene_id: str, kind: ContextKind, entity_id: str) -> list[str]:
        """Remove the id if present, append it otherwise. Returns the new list."""
        ids = _dedupe(self._repo.raw_selection(kind, scene_id))
        if entity_id in ids:
            ids.remove(entity_id)
        elif entity_id in self._repo.live_ids(kind):
            ids.append(entity_id)
        else:
            logger.debug("toggle ignored unknown %s id=%s", kind.value, entity_id)
        self._repo.write_selection(kind, scene_id, ids)
        return self.selected(scene_id, kind)

    def set_selected(self, scene_id: str, kind: ContextKind, ids: list[str]) -> list[str]:
        live = self._repo.live_ids(kind)
        self._repo.write_selection(kind, scene_id, [i for i in _dedupe(ids) if i in live])
        return self.selected(scene_id, kind)

    def clear(self, scene_id: str, kind: ContextKind) -> None:
        self._repo.write_selection(kind, scene_id, [])

    def clear_all(self, scene_id: str) -> None:
        for kind in ContextKind:
            self.clear(scene_id, kind)

    def total_count(self, scene_id: str) -> int:
        return sum(len(self.selected(scene_id, kind)) for kind in ContextKind)

    def sanitize(self) -> int:
        """Drop ids of deleted entities from every stored selection.

        Returns the number of ids removed.
        """
        removed = 0
        for kind in ContextKind:
            live = self._repo.live_ids(kind)
            for scene_id in self._repo.all_selected_scene_ids(kind):
                raw = self._repo.raw_selection(kind, scene_id)
                kept = [i for i in _dedupe(raw) if i in live]
                if kept != raw:
                    removed += len(raw) - len(kept)
                    self._repo.write_selection(kind, scene_id, kept)
        if removed:
            logger.info("sanitized context selections: removed %d stale ids", removed)
        return removed
