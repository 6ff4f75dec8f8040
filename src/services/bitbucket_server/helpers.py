"""
Mapping helpers between Bitbucket Server payloads and platform records.
"""

import re
from typing import Optional

from src.models.schemas.bitbucket import BbsPullRequest
from src.models.schemas.platform import BranchStatus, Pr, PrState

BRANCH_REF_PREFIX = "refs/heads/"

TOPIC_PATTERN = re.compile(r"^### (.+)$")
HTML_COMMENT_PATTERN = re.compile(r"<!--.*?-->", re.DOTALL)
REBASE_CHECK_PATTERN = re.compile(r"\n---\n\n.*?<!-- rebase-check -->.*?\n")

PR_STATE_MAPPING = {
    "OPEN": PrState.OPEN,
    "DECLINED": PrState.DECLINED,
    "MERGED": PrState.MERGED,
}

CHECK_STATE_TO_STATUS = {
    "SUCCESSFUL": BranchStatus.SUCCESS,
    "INPROGRESS": BranchStatus.PENDING,
    "FAILED": BranchStatus.FAILURE,
}

STATUS_TO_CHECK_STATE = {status: state for state, status in CHECK_STATE_TO_STATUS.items()}


def branch_ref(branch_name: str) -> str:
    if branch_name.startswith(BRANCH_REF_PREFIX):
        return branch_name
    return f"{BRANCH_REF_PREFIX}{branch_name}"


def normalize_branch_name(ref: Optional[str]) -> str:
    """Strip refs/heads/ so ids and display ids compare equal."""
    if not ref:
        return ""
    if ref.startswith(BRANCH_REF_PREFIX):
        return ref[len(BRANCH_REF_PREFIX):]
    return ref


def pr_info(pr: BbsPullRequest, number: Optional[int] = None) -> Pr:
    """Map a wire pull request to a platform record. Missing refs map to empty strings."""
    pr_number = pr.id if pr.id is not None else number
    return Pr(
        number=pr_number,
        display_number=f"Pull Request #{pr_number}",
        version=pr.version,
        title=pr.title,
        body=pr.description or "",
        state=PR_STATE_MAPPING.get(pr.state.upper(), PrState.OPEN),
        branch_name=normalize_branch_name(pr.from_ref.display_id or pr.from_ref.id),
        target_branch=normalize_branch_name(pr.to_ref.display_id or pr.to_ref.id),
        sha=pr.from_ref.latest_commit,
        target_sha=pr.to_ref.latest_commit,
        reviewers=[reviewer.user.name for reviewer in pr.reviewers],
        created_at=pr.created_date,
    )


def matches_state(pr: Pr, state: str) -> bool:
    """
    State filter used by find_pr.

    - "all": any PR
    - "open": open PRs only
    - "closed" / "!open": declined or merged PRs
    - any PrState value: that exact state
    """
    if state == "all":
        return True
    if state in ("closed", "!open"):
        return not pr.is_open
    return pr.state.value == state


def comment_topic(text: str) -> Optional[str]:
    """Return the `### <topic>` heading on the first line of a comment, if any."""
    first_line = text.split("\n", 1)[0].rstrip("\r")
    match = TOPIC_PATTERN.match(first_line)
    return match.group(1) if match else None


def render_comment(topic: Optional[str], content: str) -> str:
    if topic:
        return f"### {topic}\n\n{content}"
    return content


def sanitize_pr_body(body: str, max_length: int) -> str:
    """
    Make a Markdown PR body render on Bitbucket Server.

    Bitbucket does not render <details>/<summary> or HTML comments, and has
    no rebase checkbox, so those parts are rewritten or dropped.
    """
    text = body.replace(
        "you tick the rebase/retry checkbox",
        'rename PR to start with "rebase!"',
    )
    text = re.sub(r"</?summary>", "**", text)
    text = re.sub(r"</?details>", "", text)
    text = REBASE_CHECK_PATTERN.sub("", text, count=1)
    text = HTML_COMMENT_PATTERN.sub("", text)
    text = text.replace("](../pull/", "](../../pull-requests/")
    if len(text) > max_length:
        text = text[:max_length]
    return text
