"""Mention parsing and resolution.

Free text (a beat or a workshop message) can pull entities into context
with inline mentions:

  @Mira  @[Old Mill]   → "tag" tokens, matched against compendium titles and tags
  #finale  #[The Duel]  → "scene" tokens, matched against scene titles

Bare mentions are letter/digit/underscore/hyphen runs that start the text
or follow whitespace, so `word@ignored` and `text#ignored` do not count.
Every surface form normalizes to the same key: trimmed, whitespace runs
collapsed to one space, lower-cased. Matching is exact after
normalization; an unmatched key contributes nothing.
"""

from __future__ import annotations

import re
from typing import Literal

from pydantic import BaseModel, ConfigDict, Field

from scenewright.models import CompendiumEntry, Scene
from scenewright.repository import ProjectRepository

MentionTrigger = Literal["@", "#"]

_BRACKET_TAG = re.compile(r"@\[([^\]]+)\]")
_BRACKET_SCENE = re.compile(r"#\[([^\]]+)\]")
_BARE_TAG = re.compile(r"(?<!\S)@([\w\-]+)")
_BARE_SCENE = re.compile(r"(?<!\S)#([\w\-]+)")
_WHITESPACE = re.compile(r"\s+")


class MentionTokens(BaseModel):
    tags: set[str] = Field(default_factory=set)
    scenes: set[str] = Field(default_factory=set)

    @property
    def is_empty(self) -> bool:
        return not self.tags and not self.scenes


class MentionMatches(BaseModel):
    """Entities pulled in by mentions, in project traversal order."""

    compendium: list[CompendiumEntry] = Field(default_factory=list)
    scenes: list[Scene] = Field(default_factory=list)


class MentionQuery(BaseModel):
    """The mention being typed at the caret, for autocomplete."""

    model_config = ConfigDict(frozen=True)

    trigger: MentionTrigger
    query: str
    start: int
    end: int


def normalize(raw: str) -> str:
    """Trim, collapse whitespace, lower-case: "  Alpha   BETA " → "alpha beta"."""
    return _WHITESPACE.sub(" ", raw.strip()).lower()


def extract_tokens(text: str) -> MentionTokens:
    """Collect normalized tag and scene keys from free text. No lookups."""
    tokens = MentionTokens()
    for pattern, target in (
        (_BRACKET_TAG, tokens.tags),
        (_BRACKET_SCENE, tokens.scenes),
        (_BARE_TAG, tokens.tags),
        (_BARE_SCENE, tokens.scenes),
    ):
        for match in pattern.finditer(text):
            key = normalize(match.group(1))
            if key:
                target.add(key)
    return tokens


def resolve_mentions(repository: ProjectRepository, tokens: MentionTokens) -> MentionMatches:
    """Match tokens against the whole project.

    A compendium entry matches a tag key when its normalized title or any
    normalized tag equals the key. A scene matches a scene key by
    normalized title. Order follows the project, not the text.
    """
    matches = MentionMatches()
    if tokens.is_empty:
        return matches

    if tokens.tags:
        for entry in repository.compendium():
            keys = {normalize(entry.title)}
            keys.update(normalize(tag) for tag in entry.tags)
            if keys & tokens.tags:
                matches.compendium.append(entry)

    if tokens.scenes:
        for _, scene in repository.iter_scenes():
            if normalize(scene.title) in tokens.scenes:
                matches.scenes.append(scene)

    return matches


def mentioned_entities(repository: ProjectRepository, text: str | None) -> MentionMatches:
    """extract_tokens + resolve_mentions; empty for missing text."""
    if not text:
        return MentionMatches()
    return resolve_mentions(repository, extract_tokens(text))


# ── Autocomplete helpers ────────────────────────────────────


def active_query(text: str, caret: int) -> MentionQuery | None:
    """Return the mention token ending at `caret`, if one is being typed.

    An unclosed bracket (`#[Final Sho`) is still active; a closed one is not.
    """
    if caret <= 0 or caret > len(text):
        return None

    before = text[:caret]
    bracket = before.rfind("[")
    if bracket > 0 and before[bracket - 1] in "@#":
        inside = before[bracket + 1:]
        if "]" not in inside and "\n" not in inside:
            return MentionQuery(
                trigger=before[bracket - 1], query=inside.strip(), start=bracket - 1, end=caret
            )

    start = caret
    while start > 0 and not text[start - 1].isspace():
        start -= 1

    token = text[start:caret]
    if not token or token[0] not in "@#":
        return None

    query = token[1:]
    if query.startswith("["):
        query = query[1:]
    if "]" in query:
        return None

    return MentionQuery(trigger=token[0], query=query.strip(), start=start, end=caret)


def replace_token(text: str, start: int, end: int, replacement: str) -> str | None:
    """Splice `replacement` over text[start:end]; None when the span is out of range."""
    if start < 0 or end < start or end > len(text):
        return None
    return text[:start] + replacement + text[end:]
