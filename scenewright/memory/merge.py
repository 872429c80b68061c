"""Merge-protocol prompts and text shaping for rolling memory.

One refresh step turns (existing summary, new source excerpt) into an
updated summary with a single LLM call. Inputs are capped before the call
and the output is normalised after it.
"""

from __future__ import annotations

import re

from scenewright.models import Chapter, Scene, WorkshopMessage

MEMORY_SYSTEM_PROMPT = (
    "You maintain a rolling memory for a fiction writing project. "
    "Keep it concise, high-signal and non-repeating: who, where, what changed, "
    "open threads, and facts that must stay consistent. "
    "Merge the new material into the existing memory rather than appending a recap. "
    "Never invent facts that are not in the provided text. "
    "Return only the updated memory as plain prose or short bullet points."
)

_EXCESS_NEWLINES = re.compile(r"\n{3,}")


def cap_head(text: str, max_chars: int) -> str:
    """Keep the first max_chars characters."""
    return text if len(text) <= max_chars else text[:max_chars]


def cap_tail(text: str, max_chars: int) -> str:
    """Keep the last max_chars characters (most recent material)."""
    if max_chars <= 0:
        return ""
    return text if len(text) <= max_chars else text[-max_chars:]


def normalize_summary(text: str, max_chars: int) -> str:
    """Trim, collapse 3+ newlines to 2, hard-truncate to the output budget."""
    text = _EXCESS_NEWLINES.sub("\n\n", text.strip())
    return cap_head(text, max_chars).rstrip()


def _merge_prompt(subject: str, existing: str, source_label: str, source: str, budget: int) -> str:
    existing_block = existing.strip() or "(none yet)"
    return (
        f"Update the rolling memory for {subject}.\n\n"
        f"EXISTING MEMORY:\n{existing_block}\n\n"
        f"{source_label}:\n{source.strip()}\n\n"
        f"Return the updated memory in at most {budget} characters."
    )


def scene_merge_prompt(scene: Scene, existing: str, source_chars: int, summary_chars: int) -> str:
    return _merge_prompt(
        f'the scene "{scene.title}"',
        cap_head(existing, summary_chars),
        "CURRENT SCENE TEXT",
        cap_tail(scene.content, source_chars),
        summary_chars,
    )


def chapter_merge_prompt(
    chapter: Chapter,
    existing: str,
    source: str,
    summary_chars: int,
    step: tuple[int, int] | None = None,
) -> str:
    """Prompt for one chapter step; `step` is (index, total) when folding chunks."""
    label = "SCENE SUMMARIES"
    if step is not None:
        label = f"SCENE TEXT (PART {step[0]} OF {step[1]})"
    return _merge_prompt(
        f'the chapter "{chapter.title}"',
        cap_head(existing, summary_chars),
        label,
        source,
        summary_chars,
    )


def workshop_merge_prompt(
    session_name: str,
    existing: str,
    messages: list[WorkshopMessage],
    source_chars: int,
    summary_chars: int,
) -> str:
    transcript = "\n\n".join(f"{_role_label(m.role)}: {m.content.strip()}" for m in messages)
    return _merge_prompt(
        f'the workshop chat "{session_name}"',
        cap_head(existing, summary_chars),
        "NEW MESSAGES",
        cap_tail(transcript, source_chars),
        summary_chars,
    )


def _role_label(role: str) -> str:
    return "User" if role == "user" else "Assistant"


# ── chapter sources ─────────────────────────────────────────


def chapter_summary_source(
    chapter: Chapter,
    summaries: dict[str, str],
    max_chars: int,
) -> str:
    """Join per-scene summaries in chapter order, capped at max_chars."""
    parts = [f"[{scene.title}]\n{summaries[scene.id].strip()}" for scene in chapter.scenes]
    return cap_head("\n\n".join(parts), max_chars)


def _chunk_header(title: str, chunk_chars: int) -> str:
    """Scene title header using at most half the chunk budget; "" when nothing fits."""
    header = f"[{title}]\n"
    limit = chunk_chars // 2
    if len(header) <= limit:
        return header
    room = limit - 3
    if room <= 0:
        return ""
    return f"[{title[:room]}]\n"


def chapter_text_chunks(chapter: Chapter, chunk_chars: int, total_chars: int) -> list[str]:
    """Split raw scene text into scene-ordered chunks.

    Each chunk holds text from one scene only and is at most chunk_chars
    long; the chunks together stay within total_chars. Long scene titles
    are shortened so at least half of every chunk is scene text.
    """
    chunks: list[str] = []
    remaining = total_chars
    for scene in chapter.scenes:
        text = scene.content.strip()
        if not text:
            continue
        header = _chunk_header(scene.title, chunk_chars)
        body_chars = max(1, chunk_chars - len(header))
        for start in range(0, len(text), body_chars):
            if remaining <= 0:
                return chunks
            chunk = cap_head(header + text[start:start + body_chars], remaining)
            chunks.append(chunk)
            remaining -= len(chunk)
    return chunks
