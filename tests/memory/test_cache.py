"""Tests for RollingMemoryCache: staleness reads, refresh, latest-wins
cancellation, failure handling and mid-flight deletion.

LLM calls are replaced by the StubLLM from conftest; `gates` hold a call
open so a second refresh can be started while the first is in flight.
"""

import asyncio

import pytest

from scenewright.config import MemorySettings
from scenewright.memory import MemoryRefreshError, RefreshCancelled, RollingMemoryCache
from scenewright.memory.keys import fnv1a_64
from scenewright.models import WorkshopMessage
from scenewright.repository import EntityNotFound


async def _until_called(llm, n: int = 1) -> None:
    while len(llm.calls) < n:
        await asyncio.sleep(0)


# ---------------------------------------------------------------------------
# Scene memory
# ---------------------------------------------------------------------------

async def test_scene_refresh_stores_record(repo, stub_llm):
    llm = stub_llm({"scene_memory": ["  Mira leaves.\n\n\n\nShe is armed.  "]})
    cache = RollingMemoryCache(repo, llm)

    summary = await cache.refresh_scene_memory("s1")

    assert summary == "Mira leaves.\n\nShe is armed."
    assert cache.rolling_scene_summary("s1") == summary
    record = repo.scene_memory("s1")
    assert record.source_content_hash == fnv1a_64("Mira drew her sword.")
    llm.assert_exhausted()


async def test_scene_prompt_includes_existing_summary(repo, stub_llm):
    llm = stub_llm({"scene_memory": ["first", "second"]})
    cache = RollingMemoryCache(repo, llm)

    await cache.refresh_scene_memory("s1")
    await cache.refresh_scene_memory("s1")

    stage, system, prompt = llm.calls[1]
    assert stage == "scene_memory"
    assert "rolling memory" in system
    assert "EXISTING MEMORY:\nfirst" in prompt
    assert "CURRENT SCENE TEXT:\nMira drew her sword." in prompt


async def test_staleness_after_content_change(repo, stub_llm):
    repo.update_scene_content("s1", "A")
    llm = stub_llm({"scene_memory": ["about A", "about B"]})
    cache = RollingMemoryCache(repo, llm)

    await cache.refresh_scene_memory("s1")
    assert cache.rolling_scene_summary("s1") == "about A"

    repo.update_scene_content("s1", "B")
    assert cache.rolling_scene_summary("s1") == ""

    await cache.refresh_scene_memory("s1")
    assert cache.rolling_scene_summary("s1") == "about B"
    assert repo.scene_memory("s1").source_content_hash == fnv1a_64("B")


async def test_commit_uses_content_at_commit_time(repo, stub_llm):
    gate = asyncio.Event()
    llm = stub_llm({"scene_memory": ["summary"]}, gates={1: gate})
    cache = RollingMemoryCache(repo, llm)

    task = asyncio.create_task(cache.refresh_scene_memory("s1"))
    await _until_called(llm)
    repo.update_scene_content("s1", "Edited while generating.")
    gate.set()
    await task

    assert repo.scene_memory("s1").source_content_hash == fnv1a_64("Edited while generating.")


async def test_unknown_scene_raises(repo, stub_llm):
    cache = RollingMemoryCache(repo, stub_llm({}))
    with pytest.raises(EntityNotFound):
        await cache.refresh_scene_memory("ghost")
    assert cache.rolling_scene_summary("ghost") == ""


async def test_failure_leaves_record_unchanged(repo, stub_llm):
    llm = stub_llm({"scene_memory": ["good", RuntimeError("backend down")]})
    cache = RollingMemoryCache(repo, llm)
    await cache.refresh_scene_memory("s1")
    before = repo.scene_memory("s1")

    with pytest.raises(MemoryRefreshError, match="backend down"):
        await cache.refresh_scene_memory("s1")

    assert repo.scene_memory("s1") is before
    assert not cache.in_flight("scene", "s1")


async def test_empty_reply_is_a_failure(repo, stub_llm):
    cache = RollingMemoryCache(repo, stub_llm({"scene_memory": ["  \n "]}))
    with pytest.raises(MemoryRefreshError, match="empty summary"):
        await cache.refresh_scene_memory("s1")
    assert repo.scene_memory("s1") is None


async def test_summary_truncated_to_budget(repo, stub_llm):
    settings = MemorySettings(scene_summary_chars=5)
    cache = RollingMemoryCache(repo, stub_llm({"scene_memory": ["abcdefghij"]}), settings)
    assert await cache.refresh_scene_memory("s1") == "abcde"


# ---------------------------------------------------------------------------
# Latest-wins cancellation
# ---------------------------------------------------------------------------

async def test_second_refresh_supersedes_first(repo, stub_llm):
    gate = asyncio.Event()
    llm = stub_llm({"scene_memory": ["from first", "from second"]}, gates={1: gate})
    cache = RollingMemoryCache(repo, llm)

    first = asyncio.create_task(cache.refresh_scene_memory("s1"))
    await _until_called(llm)
    assert cache.in_flight("scene", "s1")

    second = await cache.refresh_scene_memory("s1")
    gate.set()

    with pytest.raises(RefreshCancelled):
        await first
    assert second == "from second"
    assert repo.scene_memory("s1").summary == "from second"
    assert not cache.in_flight("scene", "s1")


async def test_failed_second_refresh_keeps_prior_record(repo, stub_llm):
    gate = asyncio.Event()
    llm = stub_llm(
        {"scene_memory": ["prior", "from first", RuntimeError("boom")]},
        gates={2: gate},
    )
    cache = RollingMemoryCache(repo, llm)
    await cache.refresh_scene_memory("s1")

    first = asyncio.create_task(cache.refresh_scene_memory("s1"))
    await _until_called(llm, 2)
    with pytest.raises(MemoryRefreshError):
        await cache.refresh_scene_memory("s1")
    gate.set()

    with pytest.raises(RefreshCancelled):
        await first
    assert repo.scene_memory("s1").summary == "prior"


async def test_cancel_in_flight(repo, stub_llm):
    gate = asyncio.Event()
    llm = stub_llm({"scene_memory": ["never stored"]}, gates={1: gate})
    cache = RollingMemoryCache(repo, llm)

    task = asyncio.create_task(cache.refresh_scene_memory("s1"))
    await _until_called(llm)
    assert cache.cancel("scene", "s1") is True

    with pytest.raises(RefreshCancelled):
        await task
    assert repo.scene_memory("s1") is None
    assert cache.cancel("scene", "s1") is False


async def test_refreshes_for_different_entities_run_independently(repo, stub_llm):
    gate = asyncio.Event()
    llm = stub_llm({"scene_memory": ["one", "three"]}, gates={1: gate})
    cache = RollingMemoryCache(repo, llm)

    first = asyncio.create_task(cache.refresh_scene_memory("s1"))
    await _until_called(llm)
    assert await cache.refresh_scene_memory("s3") == "three"
    gate.set()

    assert await first == "one"
    assert repo.scene_memory("s1").summary == "one"


async def test_caller_cancellation_propagates(repo, stub_llm):
    gate = asyncio.Event()
    llm = stub_llm({"scene_memory": ["x"]}, gates={1: gate})
    cache = RollingMemoryCache(repo, llm)

    task = asyncio.create_task(cache.refresh_scene_memory("s1"))
    await _until_called(llm)
    task.cancel()

    with pytest.raises(asyncio.CancelledError):
        await task
    assert repo.scene_memory("s1") is None


async def test_scene_deleted_mid_flight_is_not_stored(repo, stub_llm):
    gate = asyncio.Event()
    llm = stub_llm({"scene_memory": ["orphan"]}, gates={1: gate})
    cache = RollingMemoryCache(repo, llm)

    task = asyncio.create_task(cache.refresh_scene_memory("s1"))
    await _until_called(llm)
    repo.delete_scene("s1")
    gate.set()

    assert await task == "orphan"
    assert repo.scene_memory("s1") is None


# ---------------------------------------------------------------------------
# Chapter memory
# ---------------------------------------------------------------------------

async def test_chapter_from_scene_summaries(repo, stub_llm):
    llm = stub_llm({"chapter_memory": ["Night falls."]})
    cache = RollingMemoryCache(repo, llm)
    progress = []

    summary = await cache.refresh_chapter_memory("ch2", on_progress=lambda *a: progress.append(a))

    assert summary == "Night falls."
    assert progress == [("Night falls.", 1, 1)]
    assert "SCENE SUMMARIES:\n[Night Watch]\nMira keeps watch." in llm.calls[0][2]
    assert cache.rolling_chapter_summary("ch2") == "Night falls."


async def test_chapter_folds_chunks_when_summaries_missing(repo, stub_llm):
    llm = stub_llm({"chapter_memory": ["after part one", "after part two"]})
    cache = RollingMemoryCache(repo, llm)
    progress = []

    summary = await cache.refresh_chapter_memory("ch1", on_progress=lambda *a: progress.append(a))

    assert summary == "after part two"
    assert progress == [("after part one", 1, 2), ("after part two", 2, 2)]
    second_prompt = llm.calls[1][2]
    assert "EXISTING MEMORY:\nafter part one" in second_prompt
    assert "SCENE TEXT (PART 2 OF 2):\n[The Duel]\nSteel rang in the square." in second_prompt
    llm.assert_exhausted()


async def test_chapter_uses_valid_scene_memory_as_summary(repo, stub_llm):
    llm = stub_llm({"scene_memory": ["The duel is fought."], "chapter_memory": ["Whole chapter."]})
    cache = RollingMemoryCache(repo, llm)

    await cache.refresh_scene_memory("s2")
    await cache.refresh_chapter_memory("ch1")

    prompt = llm.calls[1][2]
    assert "SCENE SUMMARIES:" in prompt
    assert "[The Duel]\nThe duel is fought." in prompt


async def test_chapter_stale_after_scene_edit(repo, stub_llm):
    cache = RollingMemoryCache(repo, stub_llm({"chapter_memory": ["Night falls."]}))
    await cache.refresh_chapter_memory("ch2")

    repo.update_scene_content("s3", "Something new.")
    assert cache.rolling_chapter_summary("ch2") == ""


async def test_chapter_without_text_fails(repo, project, stub_llm):
    project.chapters[1].scenes[0].summary = ""
    cache = RollingMemoryCache(repo, stub_llm({}))
    with pytest.raises(MemoryRefreshError, match="no text"):
        await cache.refresh_chapter_memory("ch2")


async def test_unknown_chapter_raises(repo, stub_llm):
    cache = RollingMemoryCache(repo, stub_llm({}))
    with pytest.raises(EntityNotFound):
        await cache.refresh_chapter_memory("nope")


# ---------------------------------------------------------------------------
# Workshop memory
# ---------------------------------------------------------------------------

def _add_messages(repo, n: int) -> None:
    for i in range(n):
        repo.append_workshop_message("w1", WorkshopMessage(role="user", content=f"idea {i}"))


async def test_workshop_threshold(repo, stub_llm):
    llm = stub_llm({"workshop_memory": ["Chat so far."]})
    cache = RollingMemoryCache(repo, llm)

    _add_messages(repo, 1)  # 3 non-empty messages pending
    assert not cache.should_refresh_workshop("w1")
    assert await cache.refresh_workshop_memory("w1") == ""
    assert llm.calls == []

    _add_messages(repo, 1)  # 4 pending
    assert cache.should_refresh_workshop("w1")
    assert await cache.refresh_workshop_memory("w1") == "Chat so far."

    record = repo.workshop_memory("w1")
    assert record.summarized_message_count == 4
    assert cache.workshop_pending_delta("w1") == 0
    llm.assert_exhausted()


async def test_workshop_force_below_threshold(repo, stub_llm):
    llm = stub_llm({"workshop_memory": ["Forced."]})
    cache = RollingMemoryCache(repo, llm)

    assert await cache.refresh_workshop_memory("w1", force=True) == "Forced."
    prompt = llm.calls[0][2]
    assert "NEW MESSAGES:\nUser: Who betrays Mira?\n\nAssistant: Perhaps the miller." in prompt
    assert repo.workshop_memory("w1").summarized_message_count == 2


async def test_workshop_force_with_nothing_pending_is_noop(repo, stub_llm):
    llm = stub_llm({"workshop_memory": ["Forced."]})
    cache = RollingMemoryCache(repo, llm)
    await cache.refresh_workshop_memory("w1", force=True)

    assert await cache.refresh_workshop_memory("w1", force=True) == "Forced."
    assert len(llm.calls) == 1


async def test_workshop_only_new_messages_sent(repo, stub_llm):
    llm = stub_llm({"workshop_memory": ["First.", "Second."]})
    cache = RollingMemoryCache(repo, llm)
    await cache.refresh_workshop_memory("w1", force=True)

    _add_messages(repo, 4)
    await cache.refresh_workshop_memory("w1")

    prompt = llm.calls[1][2]
    assert "EXISTING MEMORY:\nFirst." in prompt
    assert "Who betrays Mira?" not in prompt
    assert "User: idea 0" in prompt and "User: idea 3" in prompt
    assert repo.workshop_memory("w1").summarized_message_count == 6


async def test_deleted_message_lowers_watermark(repo, stub_llm):
    llm = stub_llm({"workshop_memory": ["Both ideas."]})
    cache = RollingMemoryCache(repo, llm)
    await cache.refresh_workshop_memory("w1", force=True)

    assert repo.delete_workshop_message("w1", "m2") is True
    record = repo.workshop_memory("w1")
    assert record.summarized_message_count == 1
    assert record.summary == "Both ideas."

    # new messages count straight away instead of waiting to pass the old watermark
    _add_messages(repo, 3)
    assert cache.workshop_pending_delta("w1") == 3
    _add_messages(repo, 1)
    assert cache.should_refresh_workshop("w1")

    assert repo.delete_workshop_message("w1", "ghost") is False


async def test_workshop_window_limits_messages(repo, stub_llm):
    llm = stub_llm({"workshop_memory": ["Windowed."]})
    cache = RollingMemoryCache(repo, llm, MemorySettings(delta_window=2))
    _add_messages(repo, 4)

    await cache.refresh_workshop_memory("w1")

    prompt = llm.calls[0][2]
    assert "idea 1" not in prompt
    assert "User: idea 2\n\nUser: idea 3" in prompt
    assert repo.workshop_memory("w1").summarized_message_count == 6


async def test_messages_added_mid_flight_stay_pending(repo, stub_llm):
    gate = asyncio.Event()
    llm = stub_llm({"workshop_memory": ["Summary."]}, gates={1: gate})
    cache = RollingMemoryCache(repo, llm)
    _add_messages(repo, 2)

    task = asyncio.create_task(cache.refresh_workshop_memory("w1"))
    await _until_called(llm)
    _add_messages(repo, 1)
    gate.set()
    await task

    assert repo.workshop_memory("w1").summarized_message_count == 4
    assert cache.workshop_pending_delta("w1") == 1


async def test_cleared_session_drops_memory(repo, stub_llm):
    cache = RollingMemoryCache(repo, stub_llm({"workshop_memory": ["Summary."]}))
    await cache.refresh_workshop_memory("w1", force=True)

    repo.clear_workshop_messages("w1")
    assert cache.rolling_workshop_summary("w1") == ""
    assert cache.workshop_pending_delta("w1") == 0


async def test_unknown_session_raises(repo, stub_llm):
    cache = RollingMemoryCache(repo, stub_llm({}))
    with pytest.raises(EntityNotFound):
        await cache.refresh_workshop_memory("nope")
    assert cache.workshop_pending_delta("nope") == 0


async def test_cancel_all(repo, stub_llm):
    gate = asyncio.Event()
    llm = stub_llm({"scene_memory": ["a"], "chapter_memory": ["b"]}, gates={1: gate, 2: gate})
    cache = RollingMemoryCache(repo, llm)

    scene_task = asyncio.create_task(cache.refresh_scene_memory("s1"))
    chapter_task = asyncio.create_task(cache.refresh_chapter_memory("ch2"))
    await _until_called(llm, 2)
    cache.cancel_all()

    with pytest.raises(RefreshCancelled):
        await scene_task
    with pytest.raises(RefreshCancelled):
        await chapter_task
    assert repo.scene_memory("s1") is None
    assert repo.chapter_memory("ch2") is None
