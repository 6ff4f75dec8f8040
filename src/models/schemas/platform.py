"""
Platform-level schemas returned to the automation agent.

These are independent of the Bitbucket wire format; see
`src.models.schemas.bitbucket` for the payloads they are mapped from.
"""

from enum import Enum
from typing import List, Optional

from pydantic import BaseModel, Field


# =============================================================================
# ENUMS
# =============================================================================

class PrState(str, Enum):
    """Pull request lifecycle states."""
    OPEN = "open"
    DECLINED = "declined"
    MERGED = "merged"


class BranchStatus(str, Enum):
    """
    Three-state status of a branch's build checks.

    - SUCCESS: every reported check passed
    - PENDING: checks are running, or none were reported yet
    - FAILURE: at least one check failed
    """
    SUCCESS = "success"
    PENDING = "pending"
    FAILURE = "failure"


# =============================================================================
# IDENTITY AND CREDENTIALS
# =============================================================================

class GitAuthor(BaseModel):
    """Git identity the automation commits as."""
    name: Optional[str] = None
    email: str


class HostRule(BaseModel):
    """Credentials resolved for an endpoint."""
    username: Optional[str] = None
    password: Optional[str] = None


# =============================================================================
# RESULTS
# =============================================================================

class PlatformResult(BaseModel):
    endpoint: str


class RepoResult(BaseModel):
    default_branch: str
    is_fork: bool = False


class Pr(BaseModel):
    """Snapshot of a pull request, valid only for the request that read it."""
    number: int = Field(..., description="Pull request id")
    display_number: str
    version: int = Field(0, description="Optimistic-concurrency version", ge=0)
    title: str = ""
    body: str = ""
    state: PrState = PrState.OPEN
    branch_name: str = ""
    target_branch: str = ""
    sha: str = ""
    target_sha: str = ""
    reviewers: List[str] = Field(default_factory=list)
    is_conflicted: bool = False
    can_rebase: bool = False
    created_at: Optional[int] = None

    @property
    def is_open(self) -> bool:
        return self.state == PrState.OPEN
