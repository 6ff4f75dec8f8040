"""
Repository session: the per-repository identity every operation runs against.
"""

from dataclasses import dataclass
from typing import List, Optional, Tuple

from src.exceptions.platform_exceptions import RepositoryNotFoundException
from src.models.schemas.platform import Pr
from src.services.bitbucket_server.api_client import API_PATH


def parse_repository(repository: str) -> Tuple[str, str]:
    """
    Split a `project/slug` identifier.

    The project key is upper-cased; Bitbucket treats project keys
    case-insensitively but always reports them upper-case.

    Raises:
        RepositoryNotFoundException: If the identifier is not `project/slug`
    """
    parts = (repository or "").split("/")
    if len(parts) != 2 or not all(part.strip() for part in parts):
        raise RepositoryNotFoundException(f"repository-not-found: invalid identifier {repository!r}")
    project_key, slug = parts
    return project_key.strip().upper(), slug.strip()


@dataclass
class RepositorySession:
    """State established by init_repo and consumed by every repository operation."""

    endpoint: str
    project_key: str
    slug: str
    repository_id: Optional[int] = None
    default_branch: str = ""
    base_branch: str = ""
    local_dir: str = ""
    clone_url: Optional[str] = None
    pr_list: Optional[List[Pr]] = None

    @property
    def repository(self) -> str:
        return f"{self.project_key}/{self.slug}"

    def repo_path(self, *parts: object) -> str:
        """Build a REST path under this repository, e.g. repo_path("pull-requests", 5)."""
        path = f"{API_PATH}/projects/{self.project_key}/repos/{self.slug}"
        for part in parts:
            path += f"/{part}"
        return path

    def invalidate_pr_list(self) -> None:
        self.pr_list = None
