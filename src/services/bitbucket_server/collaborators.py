"""
Contracts for the collaborators the platform adapter delegates to.

Local git mechanics and credential lookup live outside this package; callers
inject implementations of these protocols.
"""

from typing import Optional, Protocol

from src.core.config import PlatformSettings
from src.models.schemas.platform import HostRule


class GitCollaborator(Protocol):
    """Local working-copy operations."""

    async def init_repo(self, local_dir: str, url: str) -> None: ...

    async def set_base_branch(self, branch_name: str) -> None: ...

    async def branch_exists(self, branch_name: str) -> bool: ...

    async def get_branch_commit(self, branch_name: str) -> Optional[str]: ...

    async def delete_branch(self, branch_name: str) -> None: ...


class HostRules(Protocol):
    """Credential lookup by endpoint."""

    def find(self, endpoint: str) -> Optional[HostRule]: ...


class SettingsHostRules:
    """Resolves credentials from the BBS_USERNAME / BBS_PASSWORD settings."""

    def __init__(self, settings: PlatformSettings):
        self.settings = settings

    def find(self, endpoint: str) -> Optional[HostRule]:
        if not self.settings.username and not self.settings.password:
            return None
        return HostRule(username=self.settings.username, password=self.settings.password)
