"""JSON file storage.

Each project is stored as one flat JSON file under a configurable base
directory. There is no database or ORM; reads and writes go through plain
helper methods that load and dump JSON via pydantic.

Directory layout:

    {base}/
      config.json            ← app config (see scenewright.config)
      projects/
        {slug}.json          ← Project aggregate: chapters, scenes, compendium,
                               workshop sessions, context selections, rolling memory

Slug rules: title → Unicode normalize → strip non-ASCII → lowercase →
replace non-alnum runs with hyphen → strip leading/trailing hyphens.
"""

from __future__ import annotations

import re
import unicodedata
from pathlib import Path

from scenewright.models import Project
from scenewright.repository import ProjectRepository


def slugify(title: str) -> str:
    """Convert a title to a filesystem-safe slug.

    "The Last Lighthouse" → "the-last-lighthouse"
    """
    text = unicodedata.normalize("NFKD", title)
    text = text.encode("ascii", "ignore").decode("ascii")
    text = text.lower()
    text = re.sub(r"['\"]", "", text)  # strip apostrophes/quotes before hyphenation
    text = re.sub(r"[^a-z0-9]+", "-", text)
    text = text.strip("-")
    return text or "untitled"


class Storage:
    def __init__(self, base_path: Path) -> None:
        self._base = base_path
        self._projects_root = base_path / "projects"
        self._projects_root.mkdir(parents=True, exist_ok=True)

    @property
    def base_path(self) -> Path:
        return self._base

    # ------------------------------------------------------------------
    # Internal path helpers
    # ------------------------------------------------------------------

    def _project_file(self, slug: str) -> Path:
        return self._projects_root / f"{slug}.json"

    # ------------------------------------------------------------------
    # Projects
    # ------------------------------------------------------------------

    def create_project(self, title: str) -> tuple[str, Project]:
        slug = slugify(title)
        if self._project_file(slug).exists():
            raise FileExistsError(f"Project '{title}' already exists (slug: {slug})")
        project = Project(title=title)
        self.save_project(slug, project)
        return slug, project

    def get_project(self, slug: str) -> Project | None:
        path = self._project_file(slug)
        if not path.is_file():
            return None
        return Project.model_validate_json(path.read_text())

    def save_project(self, slug: str, project: Project) -> None:
        # atomic replace: readers see the old file or the new one
        path = self._project_file(slug)
        tmp = path.with_suffix(".json.tmp")
        tmp.write_text(project.model_dump_json(indent=2))
        tmp.replace(path)

    def list_projects(self) -> list[str]:
        return sorted(p.stem for p in self._projects_root.glob("*.json"))

    def delete_project(self, slug: str) -> bool:
        path = self._project_file(slug)
        if not path.is_file():
            return False
        path.unlink()
        return True

    def open_repository(self, slug: str) -> ProjectRepository | None:
        """Load a project and wrap it in a repository that saves on every write."""
        project = self.get_project(slug)
        if project is None:
            return None
        return ProjectRepository(project, on_change=lambda p: self.save_project(slug, p))
