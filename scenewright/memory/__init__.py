"""Rolling memory: incrementally maintained summaries of scenes, chapters and chats.

Three record flavours differ only in their staleness key:
  scene     — content hash of the scene text
  chapter   — fingerprint over (scene id, content hash) pairs in chapter order
  workshop  — watermark of non-empty messages already folded in

Refresh protocol (one LLM call per step):
  1. Build a fixed system instruction and a user message embedding the existing
     summary and the new source excerpt, both capped to their budgets.
  2. Call the LLM; normalise the reply (trim, collapse blank runs, truncate).
  3. Recompute the staleness key from current state and replace the record whole.

Chapters without complete scene summaries are folded from raw scene text in
scene-ordered chunks, one call per chunk.
"""

from .cache import (  # noqa: F401
    MemoryRefreshError,
    RefreshCancelled,
    RollingMemoryCache,
)
from .keys import (  # noqa: F401
    chapter_fingerprint,
    fnv1a_64,
    is_chapter_memory_valid,
    is_scene_memory_valid,
    pending_delta,
    scene_content_key,
    should_refresh_workshop,
)
from .merge import MEMORY_SYSTEM_PROMPT, normalize_summary  # noqa: F401
