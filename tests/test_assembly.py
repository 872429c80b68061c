"""Tests for prompt assembly: sections + rolling memory + variables → rendered prompt."""

from scenewright.assembly import PromptAssembler
from scenewright.config import AppConfig
from scenewright.memory import RollingMemoryCache
from scenewright.memory.keys import chapter_fingerprint, scene_content_key
from scenewright.models import (
    Chapter,
    CompendiumCategory,
    CompendiumEntry,
    ContextKind,
    Project,
    RollingChapterMemory,
    RollingSceneMemory,
    RollingWorkshopMemory,
    Scene,
)
from scenewright.repository import ProjectRepository
from scenewright.templates import PROSE_TEMPLATE


def _assembler(repo, stub_llm, config=None):
    return PromptAssembler(repo, RollingMemoryCache(repo, stub_llm({})), config)


def test_end_to_end_beat_and_selected_context(stub_llm):
    project = Project(
        title="Demo",
        compendium=[CompendiumEntry(id="mira", category=CompendiumCategory.CHARACTERS,
                                    title="Mira", tags=["hero"])],
        chapters=[Chapter(id="c", title="One", scenes=[
            Scene(id="s", title="Opening", content="Mira drew her sword."),
        ])],
    )
    repo = ProjectRepository(project)
    assembler = _assembler(repo, stub_llm)
    assembler.selection.toggle("s", ContextKind.COMPENDIUM, "mira")

    result = assembler.render_scene_prompt(
        "s", "Beat: {{beat}}\nContext:\n{{context}}", beat="Mira fights."
    )
    assert result.text == "Beat: Mira fights.\nContext:\n- [Character] Mira [tags: hero]: "
    assert result.warnings == []


def test_beat_mentions_pull_in_entries(repo, stub_llm):
    assembler = _assembler(repo, stub_llm)
    result = assembler.render_scene_prompt("s2", "{{context_compendium}}", beat="Go to the @ruin")
    assert result.text.startswith("- [Location] Old Mill [tags: Mill, ruin]")


def test_scene_variables(repo, stub_llm):
    assembler = _assembler(repo, stub_llm)
    result = assembler.render_scene_prompt(
        "s1",
        "{{project_title}}|{{chapter_title}}|{{scene_title}}|{{scene}}|{{selection}}|{{tone}}",
        selection="drew",
        extras={"tone": "grim"},
    )
    assert result.text == "The Long Road|Chapter One|Departure|Mira drew her sword.|drew|grim"


def test_blank_template_falls_back_to_prose(repo, stub_llm):
    assembler = _assembler(repo, stub_llm)
    result = assembler.render_scene_prompt("s1", "  ", beat="Mira runs.")
    assert result.text.startswith("Continue this scene from the provided beat.")
    assert "Mira runs." in result.text
    assert result.warnings == []


def test_every_builtin_prose_token_resolves(repo, stub_llm):
    assembler = _assembler(repo, stub_llm)
    result = assembler.render_scene_prompt("s1", PROSE_TEMPLATE.user_template)
    assert "{{" not in result.text
    assert result.warnings == []


def test_rolling_memory_only_when_valid(repo, project, stub_llm):
    scene = repo.get_scene("s1")
    chapter = repo.get_chapter("ch1")
    repo.put_scene_memory("s1", RollingSceneMemory(
        summary="Mira left.", source_content_hash=scene_content_key(scene)))
    repo.put_chapter_memory("ch1", RollingChapterMemory(
        summary="Chapter so far.", source_fingerprint=chapter_fingerprint(chapter)))
    assembler = _assembler(repo, stub_llm)

    assert assembler.rolling_text(scene_id="s1") == (
        "- [Chapter Memory] Chapter One: Chapter so far.\n"
        "- [Scene Memory] Departure: Mira left."
    )

    repo.update_scene_content("s1", "Mira sheathed her sword.")
    assert assembler.rolling_text(scene_id="s1") == ""


def test_rolling_memory_prepended_to_context(repo, stub_llm):
    scene = repo.get_scene("s1")
    repo.put_scene_memory("s1", RollingSceneMemory(
        summary="Mira left.", source_content_hash=scene_content_key(scene)))
    assembler = _assembler(repo, stub_llm)
    assembler.selection.toggle("s1", ContextKind.COMPENDIUM, "lantern")

    result = assembler.render_scene_prompt("s1", "{{context}}")
    assert result.text == "- [Scene Memory] Departure: Mira left.\n- [Item] Silver Lantern: "


def test_rolling_memory_after_sections_when_configured(repo, stub_llm):
    scene = repo.get_scene("s1")
    repo.put_scene_memory("s1", RollingSceneMemory(
        summary="Mira left.", source_content_hash=scene_content_key(scene)))
    assembler = _assembler(repo, stub_llm, AppConfig(rolling_memory_first=False))
    assembler.selection.toggle("s1", ContextKind.COMPENDIUM, "lantern")

    result = assembler.render_scene_prompt("s1", "{{context}}")
    assert result.text == "- [Item] Silver Lantern: \n- [Scene Memory] Departure: Mira left."


def test_workshop_prompt_history_and_chat_memory(repo, stub_llm):
    repo.put_workshop_memory("w1", RollingWorkshopMemory(
        summary="Betrayal planned.", summarized_message_count=2))
    assembler = _assembler(repo, stub_llm)

    result = assembler.render_workshop_prompt(
        "w1",
        "{{chat_name}}\n{{context}}\n{{chat_history(turns=2)}}",
        pending_input="What about @Mira?",
    )
    assert result.text == (
        "Plot Help\n"
        "- [Chat Memory] Plot Help: Betrayal planned.\n"
        "- [Character] Mira [tags: hero]: A reluctant swordswoman.\n"
        "Assistant: Perhaps the miller.\n\n"
        "User: What about @Mira?"
    )


def test_workshop_prompt_with_scene_context(repo, stub_llm):
    assembler = _assembler(repo, stub_llm)
    assembler.selection.toggle("s1", ContextKind.CHAPTER_SUMMARY, "ch1")

    result = assembler.render_workshop_prompt(
        "w1", "{{scene_title}}|{{scene_tail(chars=6)}}|{{context}}", scene_id="s1"
    )
    assert result.text == "Departure|sword.|- [Chapter Summary] Chapter One: Mira leaves home."


def test_workshop_prompt_without_compendium_context(repo, stub_llm):
    assembler = _assembler(repo, stub_llm)
    result = assembler.render_workshop_prompt(
        "w1", "[{{context}}]", pending_input="@Mira", use_compendium_context=False
    )
    assert result.text == "[]"
