"""
Pydantic schemas for Bitbucket Server REST payloads.

Only the fields the platform adapter reads are declared; everything else the
server returns is ignored. Aliases carry the server's camelCase names.
"""

from typing import Any, Dict, List, Optional

from pydantic import BaseModel, ConfigDict, Field


class BitbucketModel(BaseModel):
    """Base for wire models: accept camelCase aliases, ignore unknown keys."""
    model_config = ConfigDict(populate_by_name=True, extra="ignore")


# =============================================================================
# PAGING
# =============================================================================

class BbsPage(BitbucketModel):
    """Envelope of every paged Bitbucket Server listing."""
    is_last_page: bool = Field(default=True, alias="isLastPage")
    next_page_start: Optional[int] = Field(default=None, alias="nextPageStart")
    values: List[Dict[str, Any]] = Field(default_factory=list)


# =============================================================================
# REPOSITORIES
# =============================================================================

class BbsProject(BitbucketModel):
    key: str


class BbsRepository(BitbucketModel):
    id: int
    slug: str
    project: BbsProject
    links: Dict[str, Any] = Field(default_factory=dict)
    origin: Optional[Dict[str, Any]] = None

    def http_clone_url(self) -> Optional[str]:
        """Return the http(s) clone link, if the server advertises one."""
        for link in self.links.get("clone", []):
            if link.get("name") == "http":
                return link.get("href")
        return None


class BbsBrowsePage(BitbucketModel):
    """Paged file content as returned by the browse endpoint."""
    is_last_page: bool = Field(default=True, alias="isLastPage")
    lines: List[Any] = Field(default_factory=list)

    def joined_text(self) -> str:
        # Lines arrive as plain strings or as {"text": ...} objects depending on server version
        return "\n".join(
            line.get("text", "") if isinstance(line, dict) else str(line)
            for line in self.lines
        )


# =============================================================================
# PULL REQUESTS
# =============================================================================

class BbsRef(BitbucketModel):
    id: str = ""
    display_id: str = Field(default="", alias="displayId")
    latest_commit: str = Field(default="", alias="latestCommit")


class BbsUser(BitbucketModel):
    name: str
    email_address: Optional[str] = Field(default=None, alias="emailAddress")
    display_name: Optional[str] = Field(default=None, alias="displayName")


class BbsParticipant(BitbucketModel):
    user: BbsUser
    role: Optional[str] = None
    approved: bool = False
    status: Optional[str] = None


class BbsPullRequest(BitbucketModel):
    id: Optional[int] = None
    version: int = 0
    title: str = ""
    description: Optional[str] = None
    state: str = "OPEN"
    from_ref: BbsRef = Field(default_factory=BbsRef, alias="fromRef")
    to_ref: BbsRef = Field(default_factory=BbsRef, alias="toRef")
    reviewers: List[BbsParticipant] = Field(default_factory=list)
    created_date: Optional[int] = Field(default=None, alias="createdDate")


class BbsMergeStatus(BitbucketModel):
    conflicted: bool = False
    can_merge: Optional[bool] = Field(default=None, alias="canMerge")


class BbsCommitAuthor(BitbucketModel):
    name: Optional[str] = None
    email_address: Optional[str] = Field(default=None, alias="emailAddress")


class BbsCommit(BitbucketModel):
    id: Optional[str] = None
    author: Optional[BbsCommitAuthor] = None


class BbsCommitPage(BitbucketModel):
    total_count: int = Field(default=0, alias="totalCount")
    values: List[BbsCommit] = Field(default_factory=list)


# =============================================================================
# COMMENTS AND ACTIVITIES
# =============================================================================

class BbsComment(BitbucketModel):
    id: int
    version: int = 0
    text: str = ""


class BbsActivity(BitbucketModel):
    action: str
    comment_action: Optional[str] = Field(default=None, alias="commentAction")
    comment: Optional[BbsComment] = None

    @property
    def is_added_comment(self) -> bool:
        return (
            self.action == "COMMENTED"
            and self.comment_action == "ADDED"
            and self.comment is not None
        )


# =============================================================================
# BUILD STATUS
# =============================================================================

class BbsBuildStats(BitbucketModel):
    successful: int = 0
    in_progress: int = Field(default=0, alias="inProgress")
    failed: int = 0


class BbsBuildCheck(BitbucketModel):
    key: Optional[str] = None
    state: Optional[str] = None
    url: Optional[str] = None
    name: Optional[str] = None
    description: Optional[str] = None
