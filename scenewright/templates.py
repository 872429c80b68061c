"""Built-in prompt templates.

Used when the user has not authored their own, and as the fallback passed
to render_prompt() when a user template is blank.
"""

from scenewright.models import PromptTemplate

PROSE_TEMPLATE = PromptTemplate(
    id="builtin-prose",
    category="prose",
    title="Cinematic Prose",
    user_template="""Continue this scene from the provided beat.

PROJECT:
{{project_title}}

CHAPTER:
{{chapter_title}}

SCENE:
{{scene_title}}

BEAT:
{{beat}}

CURRENT SCENE (RECENT EXCERPT):
{{scene_tail(chars=4500)}}

CONTEXT:
{{context}}

Requirements:
- Continue only the immediate next passage.
- Preserve POV, tense, and voice consistency.
- Avoid tidy scene conclusions unless explicitly requested.

Return only the generated prose passage.""",
    system_template=(
        "You are an expert fiction writing assistant. Preserve continuity, character voice, "
        "and factual consistency. Show, do not tell. Return prose only."
    ),
)

REWRITE_TEMPLATE = PromptTemplate(
    id="builtin-rewrite",
    category="rewrite",
    title="Rewrite",
    user_template="""Rewrite the selected passage while preserving its intent and continuity.

CHAPTER:
{{chapter_title}}

SCENE:
{{scene_title}}

SELECTED PASSAGE:
{{selection}}

CURRENT SCENE (RECENT EXCERPT):
{{scene_tail(chars=4500)}}

CONTEXT:
{{context}}

Return only the rewritten passage.""",
    system_template=(
        "You are a fiction editing assistant. Preserve intent and continuity while "
        "improving readability and style."
    ),
)

EXPAND_TEMPLATE = PromptTemplate(
    id="builtin-expand",
    category="expand",
    title="Expand",
    user_template="""Expand the selected passage with richer detail while staying consistent with the scene.

SELECTED PASSAGE:
{{selection}}

CURRENT SCENE (RECENT EXCERPT):
{{scene_tail(chars=4500)}}

CONTEXT:
{{context}}

Return only the expanded passage.""",
    system_template="You add sensory detail and texture without changing narrative intent.",
)

SHORTEN_TEMPLATE = PromptTemplate(
    id="builtin-shorten",
    category="shorten",
    title="Shorten",
    user_template="""Shorten the selected passage while preserving key meaning and tone.

SELECTED PASSAGE:
{{selection}}

CONTEXT:
{{context(max_chars=4000)}}

Return only the shortened passage.""",
    system_template="You compress prose without losing essential meaning or continuity.",
)

SUMMARY_TEMPLATE = PromptTemplate(
    id="builtin-summary",
    category="summary",
    title="Summary",
    user_template="""Create a concise narrative summary from the source material.

CHAPTER:
{{chapter_title}}

SCENE:
{{scene_title}}

SOURCE MATERIAL:
{{scene_tail(chars=12000)}}

SUPPORTING CONTEXT:
{{context}}

Do not invent facts that are not present in the source or context.
Return only the summary text.""",
    system_template=(
        "You summarize fiction drafts accurately and concisely. Avoid hallucinations "
        "and return plain summary prose only."
    ),
)

WORKSHOP_TEMPLATE = PromptTemplate(
    id="builtin-workshop",
    category="workshop",
    title="Story Workshop",
    user_template="""Work with me on this story problem.

CHAT:
{{chat_name}}

CONTEXT:
{{context}}

CURRENT SCENE:
{{scene_tail(chars=2400)}}

CONVERSATION:
{{chat_history(turns=14)}}""",
    system_template=(
        "You are an experienced writing coach helping the user improve scenes, pacing, "
        "structure, and character work. Be practical and specific."
    ),
)

BUILTIN_TEMPLATES: list[PromptTemplate] = [
    PROSE_TEMPLATE,
    REWRITE_TEMPLATE,
    EXPAND_TEMPLATE,
    SHORTEN_TEMPLATE,
    SUMMARY_TEMPLATE,
    WORKSHOP_TEMPLATE,
]


def get_builtin(template_id: str) -> PromptTemplate | None:
    for template in BUILTIN_TEMPLATES:
        if template.id == template_id:
            return template
    return None
