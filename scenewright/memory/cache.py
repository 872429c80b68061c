"""Rolling memory cache: staleness-aware reads and latest-wins refresh.

Reads are synchronous and never call the LLM: a stale or missing record
reads as "". Refresh is the only async unit. At most one refresh task runs
per (kind, entity id); a new request cancels the one in flight, so the
latest request wins. A superseded caller gets RefreshCancelled, a failed
generation gets MemoryRefreshError, and in both cases the stored record is
left exactly as it was.

At commit time the staleness key is recomputed from the repository's
current state rather than the state seen when the refresh started, and
the whole record is replaced in one assignment.
"""

from __future__ import annotations

import asyncio
import logging
from collections.abc import Awaitable, Callable
from typing import Literal

from scenewright.config import MemorySettings
from scenewright.llm import LLM
from scenewright.models import (
    Chapter,
    RollingChapterMemory,
    RollingSceneMemory,
    RollingWorkshopMemory,
)
from scenewright.repository import EntityNotFound, ProjectRepository

from .keys import (
    chapter_fingerprint,
    is_chapter_memory_valid,
    is_scene_memory_valid,
    non_empty_message_count,
    non_empty_messages,
    pending_delta,
    scene_content_key,
)
from .merge import (
    MEMORY_SYSTEM_PROMPT,
    chapter_merge_prompt,
    chapter_summary_source,
    chapter_text_chunks,
    normalize_summary,
    scene_merge_prompt,
    workshop_merge_prompt,
)

logger = logging.getLogger(__name__)

MemoryKind = Literal["scene", "chapter", "workshop"]
ProgressCallback = Callable[[str, int, int], None]


class MemoryRefreshError(RuntimeError):
    """Raised when generating an updated summary fails."""


class RefreshCancelled(Exception):
    """Raised to a caller whose refresh was superseded or cancelled."""


class RollingMemoryCache:
    def __init__(
        self,
        repository: ProjectRepository,
        llm: LLM,
        settings: MemorySettings | None = None,
    ) -> None:
        self._repo = repository
        self._llm = llm
        self._settings = settings or MemorySettings()
        self._inflight: dict[tuple[MemoryKind, str], asyncio.Task[str]] = {}

    @property
    def settings(self) -> MemorySettings:
        return self._settings

    # ------------------------------------------------------------------
    # Reads
    # ------------------------------------------------------------------

    def rolling_scene_summary(self, scene_id: str) -> str:
        scene = self._repo.get_scene(scene_id)
        record = self._repo.scene_memory(scene_id)
        if scene is None or not is_scene_memory_valid(scene, record):
            return ""
        return record.summary

    def rolling_chapter_summary(self, chapter_id: str) -> str:
        chapter = self._repo.get_chapter(chapter_id)
        record = self._repo.chapter_memory(chapter_id)
        if chapter is None or not is_chapter_memory_valid(chapter, record):
            return ""
        return record.summary

    def rolling_workshop_summary(self, session_id: str) -> str:
        record = self._repo.workshop_memory(session_id)
        if record is None or self._repo.get_session(session_id) is None:
            return ""
        return record.summary

    def workshop_pending_delta(self, session_id: str) -> int:
        session = self._repo.get_session(session_id)
        if session is None:
            return 0
        return pending_delta(session, self._repo.workshop_memory(session_id))

    def should_refresh_workshop(self, session_id: str) -> bool:
        return self.workshop_pending_delta(session_id) >= self._settings.min_delta_messages

    # ------------------------------------------------------------------
    # In-flight bookkeeping
    # ------------------------------------------------------------------

    def in_flight(self, kind: MemoryKind, entity_id: str) -> bool:
        task = self._inflight.get((kind, entity_id))
        return task is not None and not task.done()

    def cancel(self, kind: MemoryKind, entity_id: str) -> bool:
        task = self._inflight.get((kind, entity_id))
        if task is None or task.done():
            return False
        task.cancel()
        return True

    def cancel_all(self) -> None:
        for task in self._inflight.values():
            if not task.done():
                task.cancel()

    def _is_current(self, key: tuple[MemoryKind, str]) -> bool:
        return self._inflight.get(key) is asyncio.current_task()

    async def _run(self, key: tuple[MemoryKind, str], work: Awaitable[str]) -> str:
        previous = self._inflight.get(key)
        if previous is not None and not previous.done():
            logger.debug("superseding %s refresh for %s", *key)
            previous.cancel()

        task = asyncio.ensure_future(work)
        self._inflight[key] = task
        try:
            return await task
        except asyncio.CancelledError:
            current = asyncio.current_task()
            if current is not None and current.cancelling():
                raise
            logger.debug("%s refresh for %s cancelled", *key)
            raise RefreshCancelled(f"{key[0]} refresh for {key[1]} was superseded") from None
        except MemoryRefreshError as e:
            logger.warning("%s refresh for %s failed: %s", key[0], key[1], e)
            raise
        finally:
            if self._inflight.get(key) is task:
                del self._inflight[key]

    async def _generate(self, stage: str, prompt: str, budget: int) -> str:
        try:
            raw = await self._llm(stage, MEMORY_SYSTEM_PROMPT, prompt)
        except Exception as e:
            raise MemoryRefreshError(f"{stage} generation failed: {e}") from e
        if not isinstance(raw, str):
            raise MemoryRefreshError(f"{stage} returned {type(raw).__name__}, expected text")
        summary = normalize_summary(raw, budget)
        if not summary:
            raise MemoryRefreshError(f"{stage} returned an empty summary")
        return summary

    # ------------------------------------------------------------------
    # Scene
    # ------------------------------------------------------------------

    async def refresh_scene_memory(self, scene_id: str) -> str:
        if self._repo.get_scene(scene_id) is None:
            raise EntityNotFound(scene_id)
        return await self._run(("scene", scene_id), self._refresh_scene(scene_id))

    async def _refresh_scene(self, scene_id: str) -> str:
        key: tuple[MemoryKind, str] = ("scene", scene_id)
        scene = self._repo.get_scene(scene_id)
        if scene is None:
            raise EntityNotFound(scene_id)
        record = self._repo.scene_memory(scene_id)
        budget = self._settings.scene_summary_chars
        prompt = scene_merge_prompt(
            scene,
            record.summary if record else "",
            self._settings.scene_source_chars,
            budget,
        )
        summary = await self._generate("scene_memory", prompt, budget)

        latest = self._repo.get_scene(scene_id)
        if latest is None:
            logger.warning("scene %s was deleted during refresh; memory not stored", scene_id)
            return summary
        if not self._is_current(key):
            return summary
        self._repo.put_scene_memory(
            scene_id,
            RollingSceneMemory(summary=summary, source_content_hash=scene_content_key(latest)),
        )
        logger.info("scene memory stored scene=%s len=%d", scene_id, len(summary))
        return summary

    # ------------------------------------------------------------------
    # Chapter
    # ------------------------------------------------------------------

    async def refresh_chapter_memory(
        self,
        chapter_id: str,
        on_progress: ProgressCallback | None = None,
    ) -> str:
        """Refresh a chapter summary.

        Uses the scene summaries when every scene has one; otherwise folds
        raw scene text chunk by chunk, reporting each intermediate summary
        through `on_progress(summary, done, total)`.
        """
        if self._repo.get_chapter(chapter_id) is None:
            raise EntityNotFound(chapter_id)
        return await self._run(
            ("chapter", chapter_id), self._refresh_chapter(chapter_id, on_progress)
        )

    def _scene_summaries(self, chapter: Chapter) -> dict[str, str]:
        return {
            scene.id: self.rolling_scene_summary(scene.id) or scene.summary.strip()
            for scene in chapter.scenes
        }

    async def _refresh_chapter(self, chapter_id: str, on_progress: ProgressCallback | None) -> str:
        key: tuple[MemoryKind, str] = ("chapter", chapter_id)
        chapter = self._repo.get_chapter(chapter_id)
        if chapter is None:
            raise EntityNotFound(chapter_id)
        record = self._repo.chapter_memory(chapter_id)
        budget = self._settings.chapter_summary_chars
        summaries = self._scene_summaries(chapter)

        if chapter.scenes and all(summaries.values()):
            source = chapter_summary_source(chapter, summaries, self._settings.chapter_source_chars)
            summary = await self._generate(
                "chapter_memory",
                chapter_merge_prompt(chapter, record.summary if record else "", source, budget),
                budget,
            )
            if on_progress is not None:
                on_progress(summary, 1, 1)
        else:
            chunks = chapter_text_chunks(
                chapter,
                self._settings.chapter_chunk_chars,
                self._settings.chapter_source_chars,
            )
            if not chunks:
                raise MemoryRefreshError(f"chapter {chapter_id} has no text to summarize")
            summary = record.summary if record else ""
            for index, chunk in enumerate(chunks, start=1):
                prompt = chapter_merge_prompt(
                    chapter, summary, chunk, budget, step=(index, len(chunks))
                )
                summary = await self._generate("chapter_memory", prompt, budget)
                if on_progress is not None:
                    on_progress(summary, index, len(chunks))

        latest = self._repo.get_chapter(chapter_id)
        if latest is None:
            logger.warning("chapter %s was deleted during refresh; memory not stored", chapter_id)
            return summary
        if not self._is_current(key):
            return summary
        self._repo.put_chapter_memory(
            chapter_id,
            RollingChapterMemory(summary=summary, source_fingerprint=chapter_fingerprint(latest)),
        )
        logger.info("chapter memory stored chapter=%s len=%d", chapter_id, len(summary))
        return summary

    # ------------------------------------------------------------------
    # Workshop
    # ------------------------------------------------------------------

    async def refresh_workshop_memory(self, session_id: str, force: bool = False) -> str:
        """Fold new chat messages into the session memory.

        Below `min_delta_messages` new messages this is a no-op returning
        the current summary, unless `force` is set.
        """
        session = self._repo.get_session(session_id)
        if session is None:
            raise EntityNotFound(session_id)
        delta = self.workshop_pending_delta(session_id)
        if delta == 0 or (delta < self._settings.min_delta_messages and not force):
            logger.debug("workshop %s memory up to date (pending=%d)", session_id, delta)
            return self.rolling_workshop_summary(session_id)
        return await self._run(("workshop", session_id), self._refresh_workshop(session_id))

    async def _refresh_workshop(self, session_id: str) -> str:
        key: tuple[MemoryKind, str] = ("workshop", session_id)
        session = self._repo.get_session(session_id)
        if session is None:
            raise EntityNotFound(session_id)
        record = self._repo.workshop_memory(session_id)
        messages = non_empty_messages(session)
        watermark = min(record.summarized_message_count, len(messages)) if record else 0
        window = messages[watermark:][-self._settings.delta_window:]
        budget = self._settings.workshop_summary_chars
        prompt = workshop_merge_prompt(
            session.name,
            record.summary if record else "",
            window,
            self._settings.workshop_source_chars,
            budget,
        )
        summary = await self._generate("workshop_memory", prompt, budget)

        latest = self._repo.get_session(session_id)
        if latest is None:
            logger.warning("workshop %s was deleted during refresh; memory not stored", session_id)
            return summary
        if not self._is_current(key):
            return summary
        covered = min(len(messages), non_empty_message_count(latest))
        self._repo.put_workshop_memory(
            session_id,
            RollingWorkshopMemory(summary=summary, summarized_message_count=covered),
        )
        logger.info("workshop memory stored session=%s covered=%d", session_id, covered)
        return summary
