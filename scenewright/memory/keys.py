"""Staleness keys for rolling memory.

A memory record is only used while its stored key equals the key computed
from the entity's current state:

  scene     — FNV-1a hash of the scene text
  chapter   — fingerprint over (scene id, scene hash) pairs in chapter order,
              so edits, reorders, inserts and deletes all change it
  workshop  — watermark: how many non-empty messages the summary already covers.
              Workshop memory is never stale, only behind.

FNV-1a is used purely for change detection. It is not cryptographic and
must not be used for integrity or security checks.
"""

from __future__ import annotations

from scenewright.models import (
    Chapter,
    RollingChapterMemory,
    RollingSceneMemory,
    RollingWorkshopMemory,
    Scene,
    WorkshopMessage,
    WorkshopSession,
)

_FNV_OFFSET = 0xCBF29CE484222325
_FNV_PRIME = 0x100000001B3
_MASK_64 = 0xFFFFFFFFFFFFFFFF


def fnv1a_64(text: str) -> str:
    """64-bit FNV-1a over the UTF-8 bytes, as 16 hex digits."""
    value = _FNV_OFFSET
    for byte in text.encode("utf-8"):
        value ^= byte
        value = (value * _FNV_PRIME) & _MASK_64
    return f"{value:016x}"


def scene_content_key(scene: Scene) -> str:
    return fnv1a_64(scene.content)


def chapter_fingerprint(chapter: Chapter) -> str:
    pairs = "\n".join(f"{s.id}:{scene_content_key(s)}" for s in chapter.scenes)
    return fnv1a_64(pairs)


def non_empty_messages(session: WorkshopSession) -> list[WorkshopMessage]:
    return [m for m in session.messages if m.content.strip()]


def non_empty_message_count(session: WorkshopSession) -> int:
    return len(non_empty_messages(session))


# ── validity checks (pure) ──────────────────────────────────


def is_scene_memory_valid(scene: Scene, record: RollingSceneMemory | None) -> bool:
    return record is not None and record.source_content_hash == scene_content_key(scene)


def is_chapter_memory_valid(chapter: Chapter, record: RollingChapterMemory | None) -> bool:
    return record is not None and record.source_fingerprint == chapter_fingerprint(chapter)


def pending_delta(session: WorkshopSession, record: RollingWorkshopMemory | None) -> int:
    """Non-empty messages not yet folded into the summary.

    A watermark above the current count (messages were deleted) is read as
    the current count, so new messages start counting at once.
    """
    count = non_empty_message_count(session)
    watermark = record.summarized_message_count if record else 0
    return count - min(watermark, count)


def should_refresh_workshop(
    session: WorkshopSession,
    record: RollingWorkshopMemory | None,
    min_delta_messages: int,
) -> bool:
    return pending_delta(session, record) >= min_delta_messages
