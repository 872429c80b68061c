"""Per-project workspaces shared across requests.

A workspace keeps one repository, memory cache and assembler alive per
project slug, so in-flight memory refreshes survive between requests and a
new refresh can supersede an older one.
"""

from dataclasses import dataclass

from fastapi import HTTPException, Request

from scenewright.assembly import PromptAssembler
from scenewright.memory import RollingMemoryCache
from scenewright.repository import ProjectRepository


@dataclass
class Workspace:
    repository: ProjectRepository
    cache: RollingMemoryCache
    assembler: PromptAssembler


async def get_workspace(slug: str, request: Request) -> Workspace:
    # no await between lookup and insert
    state = request.app.state
    workspace = state.workspaces.get(slug)
    if workspace is not None:
        return workspace

    repository = state.storage.open_repository(slug)
    if repository is None:
        raise HTTPException(404, "Project not found")
    cache = RollingMemoryCache(repository, state.llm, state.config.memory)
    workspace = Workspace(
        repository=repository,
        cache=cache,
        assembler=PromptAssembler(repository, cache, state.config),
    )
    workspace.assembler.selection.sanitize()
    state.workspaces[slug] = workspace
    return workspace
