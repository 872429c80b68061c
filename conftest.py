import asyncio

import pytest

from scenewright.models import (
    Chapter,
    CompendiumCategory,
    CompendiumEntry,
    Project,
    Scene,
    WorkshopMessage,
    WorkshopSession,
)
from scenewright.repository import ProjectRepository
from scenewright.storage import Storage


class StubLLM:
    """Deterministic LLM stand-in for tests.

    Provide a dict mapping stage name → list of responses (in call order).
    A response that is an Exception instance is raised instead of returned.
    Raises if a stage is called more times than responses were provided.

    `gates` maps a 1-based call number to an asyncio.Event; that call waits
    for the event before answering, which lets tests hold a refresh in flight.
    """

    def __init__(self, responses: dict[str, list], gates: dict[int, asyncio.Event] | None = None) -> None:
        self._queues: dict[str, list] = {k: list(v) for k, v in responses.items()}
        self._gates = gates or {}
        self.calls: list[tuple[str, str, str]] = []

    async def __call__(self, stage: str, system: str, prompt: str) -> str:
        self.calls.append((stage, system, prompt))
        gate = self._gates.get(len(self.calls))
        queue = self._queues.get(stage)
        if not queue:
            raise AssertionError(
                f"StubLLM: unexpected call to stage={stage!r} "
                f"(no responses queued). calls so far: {len(self.calls)}"
            )
        response = queue.pop(0)
        if gate is not None:
            await gate.wait()
        if isinstance(response, Exception):
            raise response
        return response

    def assert_exhausted(self) -> None:
        """Assert every queued response was consumed — catches missing LLM calls."""
        leftover = {k: v for k, v in self._queues.items() if v}
        if leftover:
            raise AssertionError(f"StubLLM: unused responses remain: {leftover}")


def make_project() -> Project:
    """Small fixed project with stable ids used across the test suite."""
    return Project(
        id="proj",
        title="The Long Road",
        compendium=[
            CompendiumEntry(
                id="mira", category=CompendiumCategory.CHARACTERS,
                title="Mira", body="A reluctant swordswoman.", tags=["hero"],
            ),
            CompendiumEntry(
                id="old-mill", category=CompendiumCategory.LOCATIONS,
                title="Old Mill", body="  A ruined mill by the river.  ", tags=["Mill", "ruin"],
            ),
            CompendiumEntry(
                id="lantern", category=CompendiumCategory.ITEMS,
                title="Silver Lantern",
            ),
        ],
        chapters=[
            Chapter(
                id="ch1", title="Chapter One", summary="Mira leaves home.",
                scenes=[
                    Scene(id="s1", title="Departure", content="Mira drew her sword.",
                          summary="Mira leaves the village."),
                    Scene(id="s2", title="The Duel", content="Steel rang in the square."),
                ],
            ),
            Chapter(
                id="ch2", title="Chapter Two",
                scenes=[
                    Scene(id="s3", title="Night Watch", content="", summary="Mira keeps watch."),
                ],
            ),
        ],
        workshop_sessions=[
            WorkshopSession(
                id="w1", name="Plot Help",
                messages=[
                    WorkshopMessage(id="m1", role="user", content="Who betrays Mira?"),
                    WorkshopMessage(id="m2", role="assistant", content="Perhaps the miller."),
                    WorkshopMessage(id="m3", role="user", content="   "),
                ],
            ),
        ],
    )


@pytest.fixture
def project() -> Project:
    return make_project()


@pytest.fixture
def repo(project: Project) -> ProjectRepository:
    return ProjectRepository(project)


@pytest.fixture
def storage(tmp_path) -> Storage:
    return Storage(tmp_path / "data-tests")


@pytest.fixture
def stub_llm():
    """Factory: stub_llm({"scene_memory": ["..."]}) → StubLLM."""
    return StubLLM
