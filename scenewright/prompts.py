"""Prompt template rendering.

Template language:

  {{name}}                      variable from the variable table
  {{fn(key=value, key2=value)}} built-in function call
  {name}                        legacy variable token (bare identifier only)

Built-in functions:

  scene_tail(chars=N)                  last N chars of the full scene text (default 4500)
  chat_history(turns=N)                last N conversation turns (default 8)
  context(max_chars=N)                 rolling memory + context sections, first N chars
  context_compendium(max_chars=N)      compendium lines (alias: context_entries)
  context_scene_summaries(max_chars=N)
  context_chapter_summaries(max_chars=N)
  rolling_summary(max_chars=N)         rolling memory block on its own

Rendering never raises. Unknown variables and functions render as "" and
add a warning; a bad numeric argument falls back to the function default
and adds a warning. A legacy `{name}` whose name is unknown is left in
place untouched, so braces in ordinary text pass through. Tokens are
replaced in a single left-to-right pass; substituted values are never
re-scanned.
"""

from __future__ import annotations

import re
from collections.abc import Callable, Iterable, Mapping
from dataclasses import dataclass, field
from enum import Enum

from scenewright.models import ChatTurn, RenderResult, SceneContextSections

_TOKEN = re.compile(r"\{\{\s*([^{}]+?)\s*\}\}|\{([A-Za-z_][A-Za-z0-9_]*)\}")
_IDENTIFIER = re.compile(r"[A-Za-z_][A-Za-z0-9_]*")
_CALL = re.compile(r"([A-Za-z_][A-Za-z0-9_]*)\s*\((.*)\)", re.DOTALL)

SCENE_TAIL_DEFAULT_CHARS = 4500
CHAT_HISTORY_DEFAULT_TURNS = 8


class TemplateFunction(str, Enum):
    SCENE_TAIL = "scene_tail"
    CHAT_HISTORY = "chat_history"
    CONTEXT = "context"
    CONTEXT_COMPENDIUM = "context_compendium"
    CONTEXT_SCENE_SUMMARIES = "context_scene_summaries"
    CONTEXT_CHAPTER_SUMMARIES = "context_chapter_summaries"
    ROLLING_SUMMARY = "rolling_summary"

    @classmethod
    def parse(cls, name: str) -> TemplateFunction | None:
        name = _FUNCTION_ALIASES.get(name, name)
        try:
            return cls(name)
        except ValueError:
            return None


_FUNCTION_ALIASES = {"context_entries": "context_compendium"}

# Functions that return a truncated section, keyed to the variable they read.
_SECTION_FUNCTIONS: dict[TemplateFunction, str] = {
    TemplateFunction.CONTEXT: "context",
    TemplateFunction.CONTEXT_COMPENDIUM: "context_compendium",
    TemplateFunction.CONTEXT_SCENE_SUMMARIES: "context_scene_summaries",
    TemplateFunction.CONTEXT_CHAPTER_SUMMARIES: "context_chapter_summaries",
    TemplateFunction.ROLLING_SUMMARY: "context_rolling",
}


def format_conversation(turns: Iterable[ChatTurn]) -> str:
    return "\n\n".join(f"{t.role_label}: {t.content}" for t in turns)


def merge_context(sections: SceneContextSections, rolling_first: bool = True) -> str:
    """The `context` value: rolling memory and combined sections, joined by a newline."""
    parts = [sections.rolling_text, sections.combined]
    if not rolling_first:
        parts.reverse()
    return "\n".join(p for p in parts if p)


def parse_arguments(body: str) -> dict[str, str]:
    """`chars = 5, mode='x'` → {"chars": "5", "mode": "x"}. Malformed pairs are skipped."""
    parsed: dict[str, str] = {}
    for raw_pair in body.split(","):
        key, sep, value = raw_pair.partition("=")
        key = key.strip()
        if not sep or not key:
            continue
        value = value.strip()
        if len(value) >= 2 and value[0] == value[-1] and value[0] in "\"'":
            value = value[1:-1]
        parsed[key] = value
    return parsed


@dataclass
class _Render:
    """Per-call evaluation state."""

    variables: dict[str, str]
    turns: list[ChatTurn]
    warnings: list[str] = field(default_factory=list)

    def warn(self, message: str) -> None:
        if message not in self.warnings:
            self.warnings.append(message)

    def count_arg(self, fn: TemplateFunction, args: dict[str, str], name: str, default: int | None) -> int | None:
        raw = args.get(name)
        if raw is None or not (raw.isascii() and raw.isdigit()):
            self.warn(f"invalid argument for {fn.value}, using default")
            return default
        return int(raw)

    # ── evaluation ──

    def token(self, match: re.Match) -> str:
        legacy = match.group(2)
        if legacy is not None:
            if legacy in self.variables:
                return self.variables[legacy]
            return match.group(0)

        expression = match.group(1).strip()
        if not expression:
            self.warn("empty template token")
            return ""

        call = _CALL.fullmatch(expression)
        if call is not None:
            return self.call(call.group(1), parse_arguments(call.group(2)))

        if _IDENTIFIER.fullmatch(expression) and expression in self.variables:
            return self.variables[expression]
        self.warn(f"unknown variable: {expression}")
        return ""

    def call(self, name: str, args: dict[str, str]) -> str:
        fn = TemplateFunction.parse(name)
        if fn is None:
            self.warn(f"unknown function: {name}")
            return ""
        return _DISPATCH[fn](self, fn, args)

    def scene_tail(self, fn: TemplateFunction, args: dict[str, str]) -> str:
        chars = self.count_arg(fn, args, "chars", SCENE_TAIL_DEFAULT_CHARS)
        source = self.variables.get("scene_full") or self.variables.get("scene", "")
        if not chars:
            return ""
        return source[-chars:]

    def chat_history(self, fn: TemplateFunction, args: dict[str, str]) -> str:
        turns = self.count_arg(fn, args, "turns", CHAT_HISTORY_DEFAULT_TURNS)
        if not turns:
            return ""
        if self.turns:
            return format_conversation(self.turns[-turns:])
        return self.variables.get("conversation", "")

    def section(self, fn: TemplateFunction, args: dict[str, str]) -> str:
        text = self.variables.get(_SECTION_FUNCTIONS[fn], "")
        max_chars = self.count_arg(fn, args, "max_chars", None)
        if max_chars is None:
            return text
        return text[:max_chars]


_DISPATCH: dict[TemplateFunction, Callable[[_Render, TemplateFunction, dict[str, str]], str]] = {
    TemplateFunction.SCENE_TAIL: _Render.scene_tail,
    TemplateFunction.CHAT_HISTORY: _Render.chat_history,
    **{fn: _Render.section for fn in _SECTION_FUNCTIONS},
}


def resolve_variables(
    variables: Mapping[str, object],
    sections: SceneContextSections | None = None,
    scene_full_text: str = "",
    conversation_turns: Iterable[ChatTurn] = (),
    rolling_first: bool = True,
) -> tuple[dict[str, str], list[ChatTurn]]:
    """Build the lookup table: caller variables win over derived ones."""
    sections = sections or SceneContextSections()
    turns = list(conversation_turns)
    resolved = {
        "context": merge_context(sections, rolling_first),
        "context_compendium": sections.compendium_text,
        "context_scene_summaries": sections.scene_summaries_text,
        "context_chapter_summaries": sections.chapter_summaries_text,
        "context_rolling": sections.rolling_text,
        "conversation": format_conversation(turns),
        "scene_full": scene_full_text,
    }
    resolved.update({str(k): "" if v is None else str(v) for k, v in variables.items()})
    return resolved, turns


def render_prompt(
    template: str,
    fallback_template: str | None = None,
    variables: Mapping[str, object] | None = None,
    sections: SceneContextSections | None = None,
    scene_full_text: str = "",
    conversation_turns: Iterable[ChatTurn] = (),
    rolling_first: bool = True,
) -> RenderResult:
    """Render a template. Deterministic, pure, never raises.

    A blank template is replaced by `fallback_template` before evaluation.
    """
    if not template.strip():
        template = fallback_template or ""

    table, turns = resolve_variables(
        variables or {}, sections, scene_full_text, conversation_turns, rolling_first
    )
    state = _Render(variables=table, turns=turns)
    text = _TOKEN.sub(state.token, template)
    return RenderResult(text=text, warnings=state.warnings)


def build_prompt_variables(
    *,
    project_title: str = "",
    chapter_title: str = "",
    scene_title: str = "",
    scene_excerpt: str = "",
    beat: str = "",
    selection: str = "",
    chat_name: str = "",
    extras: Mapping[str, object] | None = None,
) -> dict[str, str]:
    """Assemble the standard variable table.

    `scene` is the (possibly pre-truncated) excerpt; scene_tail() reads the
    full text passed separately to render_prompt().
    """
    variables: dict[str, str] = {
        "beat": beat,
        "selection": selection,
        "scene": scene_excerpt,
        "scene_title": scene_title,
        "chapter_title": chapter_title,
        "project_title": project_title,
        "chat_name": chat_name,
    }
    if extras:
        variables.update({str(k): "" if v is None else str(v) for k, v in extras.items()})
    return variables
