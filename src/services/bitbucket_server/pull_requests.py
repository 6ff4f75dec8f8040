"""
Pull request operations against a versioned Bitbucket Server resource.

Every mutation re-reads the pull request first so the write carries the
version the server currently holds; a stale version comes back as 409.
"""

from typing import Any, Dict, List, Optional

import httpx

from src.exceptions.platform_exceptions import RepositoryChangedException, RepositoryNotFoundException
from src.models.schemas.bitbucket import BbsCommitPage, BbsMergeStatus, BbsPullRequest
from src.models.schemas.platform import GitAuthor, Pr, PrState
from src.services.bitbucket_server.api_client import DEFAULT_REVIEWERS_PATH, BitbucketApiClient
from src.services.bitbucket_server.helpers import branch_ref, matches_state, normalize_branch_name, pr_info
from src.services.bitbucket_server.session import RepositorySession
from src.utils.logging import get_logger

logger = get_logger(__name__)

EMPTY_PULL_REQUEST_EXCEPTION = "com.atlassian.bitbucket.pull.EmptyPullRequestException"


def is_valid_pr_number(number: Any) -> bool:
    return isinstance(number, int) and not isinstance(number, bool) and number > 0


def reviewer_payload(names: List[str]) -> List[Dict[str, Any]]:
    return [{"user": {"name": name}} for name in names]


class PullRequestService:
    """
    Reads and mutates pull requests of the session's repository.

    Usage:
        prs = PullRequestService(api, session, git_author=GitAuthor(email="bot@example.com"))
        pr = await prs.find_pr("feature/x", state="open")
        await prs.add_reviewers(pr.number, ["jane"])
    """

    def __init__(
        self,
        api: BitbucketApiClient,
        session: RepositorySession,
        git_author: Optional[GitAuthor] = None,
    ):
        self.api = api
        self.session = session
        self.git_author = git_author

    # ============================================================================
    # READS
    # ============================================================================

    async def get_pr_list(self) -> List[Pr]:
        """Return the automation's PRs, fetching them once per session."""
        if self.session.pr_list is None:
            params = {
                "state": "ALL",
                "role.1": "AUTHOR",
                "username.1": self.api.username,
            }
            prs = []
            try:
                async for value in self.api.paginate(self.session.repo_path("pull-requests"), params):
                    prs.append(pr_info(BbsPullRequest.model_validate(value)))
            except httpx.HTTPStatusError as e:
                raise self.api.handle_http_error(e, f"list PRs for {self.session.repository}")

            self.session.pr_list = prs
            logger.info(f"Retrieved {len(prs)} PRs for {self.session.repository}")
        return self.session.pr_list

    async def find_pr(
        self,
        branch_name: str,
        pr_title: Optional[str] = None,
        state: str = "all",
    ) -> Optional[Pr]:
        """
        Find the first PR from `branch_name`, optionally filtered by title and state.

        Returns:
            The matching PR, or None when there is none
        """
        logger.debug(f"find_pr({branch_name}, {pr_title}, {state})")
        source_branch = normalize_branch_name(branch_name)
        for pr in await self.get_pr_list():
            if pr.branch_name != source_branch:
                continue
            if pr_title is not None and pr.title != pr_title:
                continue
            if not matches_state(pr, state):
                continue
            logger.debug(f"Found PR #{pr.number} for branch {branch_name}")
            return pr
        return None

    async def get_branch_pr(self, branch_name: str) -> Optional[Pr]:
        """Return the open PR for a branch with conflict and rebase details, if any."""
        existing = await self.find_pr(branch_name, state=PrState.OPEN.value)
        if existing is None:
            return None
        return await self.get_pr(existing.number)

    async def get_pr(self, number: Any, git_author: Optional[GitAuthor] = None) -> Optional[Pr]:
        """
        Get a pull request with its conflict flag and rebase eligibility.

        Args:
            number: Pull request id
            git_author: Identity the automation commits as; defaults to the service's

        Returns:
            The PR, or None when `number` is missing or invalid

        Raises:
            RepositoryNotFoundException: If the PR doesn't exist
        """
        if not is_valid_pr_number(number):
            logger.debug(f"get_pr called without a valid PR number: {number!r}")
            return None

        try:
            data = await self.api.get_json(self.session.repo_path("pull-requests", number))
        except httpx.HTTPStatusError as e:
            if e.response.status_code == httpx.codes.NOT_FOUND:
                raise RepositoryNotFoundException(f"repository-not-found: PR #{number}")
            raise self.api.handle_http_error(e, f"get PR #{number}")

        pr = pr_info(BbsPullRequest.model_validate(data or {}), number)

        if pr.is_open:
            pr.is_conflicted = await self._fetch_conflicted(number)
            pr.can_rebase = await self._fetch_can_rebase(number, git_author or self.git_author)

        return pr

    async def _fetch_conflicted(self, number: int) -> bool:
        try:
            data = await self.api.get_json(self.session.repo_path("pull-requests", number, "merge"))
        except httpx.HTTPStatusError as e:
            raise self.api.handle_http_error(e, f"get merge status of PR #{number}")
        return BbsMergeStatus.model_validate(data or {}).conflicted

    async def _fetch_can_rebase(self, number: int, git_author: Optional[GitAuthor]) -> bool:
        """Only a PR holding exactly one commit authored by the automation may be rebased."""
        try:
            data = await self.api.get_json(
                self.session.repo_path("pull-requests", number, "commits"),
                params={"withCounts": "true"},
            )
        except httpx.HTTPStatusError as e:
            raise self.api.handle_http_error(e, f"get commits of PR #{number}")

        commits = BbsCommitPage.model_validate(data or {})
        if commits.total_count != 1 or not commits.values or git_author is None:
            return False
        author = commits.values[0].author
        return author is not None and author.email_address == git_author.email

    async def _get_pr_for_mutation(self, number: Any) -> Pr:
        if not is_valid_pr_number(number):
            raise RepositoryNotFoundException(f"repository-not-found: invalid PR number {number!r}")
        return await self.get_pr(number)

    # ============================================================================
    # MUTATIONS
    # ============================================================================

    async def create_pr(
        self,
        branch_name: str,
        pr_title: str,
        pr_body: str,
        use_default_branch: bool = False,
        target_branch: Optional[str] = None,
    ) -> Pr:
        """
        Open a pull request with the repository's default reviewers attached.

        Args:
            branch_name: Source branch
            pr_title: Title
            pr_body: Description
            use_default_branch: Target the repository default branch
            target_branch: Explicit target; falls back to the session base branch

        Returns:
            The created PR

        Raises:
            RepositoryChangedException: If the branch has nothing to merge or a PR already exists
        """
        if use_default_branch:
            base = self.session.default_branch
        else:
            base = target_branch or self.session.base_branch or self.session.default_branch

        reviewers = await self._get_default_reviewers(branch_name, base)

        payload = {
            "title": pr_title,
            "description": pr_body,
            "fromRef": {"id": branch_ref(branch_name)},
            "toRef": {"id": branch_ref(base)},
            "reviewers": reviewer_payload(reviewers),
        }

        logger.info(f"Creating PR from {branch_name} into {base} in {self.session.repository}")

        try:
            data = await self.api.post_json(self.session.repo_path("pull-requests"), payload)
        except httpx.HTTPStatusError as e:
            if self._is_empty_pull_request(e):
                logger.warning(f"Branch {branch_name} has no changes against {base}")
                raise RepositoryChangedException()
            raise self.api.handle_http_error(e, f"create PR for {branch_name}")

        pr = pr_info(BbsPullRequest.model_validate(data or {}))
        if self.session.pr_list is not None:
            self.session.pr_list.append(pr)

        logger.info(f"Successfully created PR #{pr.number} for {branch_name}")
        return pr

    async def _get_default_reviewers(self, branch_name: str, target_branch: str) -> List[str]:
        repository_id = self.session.repository_id
        path = (
            f"{DEFAULT_REVIEWERS_PATH}/projects/{self.session.project_key}"
            f"/repos/{self.session.slug}/reviewers"
        )
        params = {
            "sourceRefId": branch_ref(branch_name),
            "targetRefId": branch_ref(target_branch),
            "sourceRepoId": repository_id,
            "targetRepoId": repository_id,
        }
        try:
            data = await self.api.get_json(path, params=params)
        except httpx.HTTPStatusError as e:
            raise self.api.handle_http_error(e, f"get default reviewers for {branch_name}")
        return [user["name"] for user in data or [] if user.get("name")]

    @staticmethod
    def _is_empty_pull_request(error: httpx.HTTPStatusError) -> bool:
        try:
            errors = error.response.json().get("errors") or []
        except ValueError:
            return False
        return any(err.get("exceptionName") == EMPTY_PULL_REQUEST_EXCEPTION for err in errors)

    async def update_pr(self, number: Any, title: str, body: Optional[str] = None) -> None:
        """
        Replace a PR's title and description.

        Existing reviewers are re-sent because the PUT replaces the whole resource.

        Raises:
            RepositoryNotFoundException: If the PR doesn't exist
            RepositoryChangedException: If the PR changed since it was read
            UnexpectedStatusException: For other API errors
        """
        pr = await self._get_pr_for_mutation(number)

        payload = {
            "title": title,
            "description": body if body is not None else pr.body,
            "version": pr.version,
            "reviewers": reviewer_payload(pr.reviewers),
        }

        try:
            await self.api.put_json(self.session.repo_path("pull-requests", number), payload)
        except httpx.HTTPStatusError as e:
            raise self.api.handle_http_error(e, f"update PR #{number}")

        self._update_cached_pr(number, title=title, body=payload["description"])
        logger.info(f"Updated PR #{number}")

    async def add_reviewers(self, number: Any, reviewers: List[str]) -> None:
        """
        Add reviewers to a PR, keeping the ones it already has.

        Raises:
            RepositoryNotFoundException: If the PR doesn't exist
            RepositoryChangedException: If the PR changed since it was read
            UnexpectedStatusException: For other API errors
        """
        logger.debug(f"Adding reviewers {reviewers} to PR #{number}")
        pr = await self._get_pr_for_mutation(number)

        names = list(dict.fromkeys([*pr.reviewers, *reviewers]))
        payload = {
            "title": pr.title,
            "version": pr.version,
            "reviewers": reviewer_payload(names),
        }

        try:
            await self.api.put_json(self.session.repo_path("pull-requests", number), payload)
        except httpx.HTTPStatusError as e:
            raise self.api.handle_http_error(e, f"add reviewers to PR #{number}")

        self._update_cached_pr(number, reviewers=names)
        logger.info(f"PR #{number} reviewers are now {names}")

    async def merge_pr(self, number: Any, branch_name: Optional[str] = None) -> bool:
        """
        Merge a PR.

        Returns:
            True when merged, False when the server refused because of conflicts

        Raises:
            RepositoryNotFoundException: If the PR doesn't exist
            UnexpectedStatusException: For other API errors
        """
        logger.debug(f"merge_pr({number}, {branch_name})")
        pr = await self._get_pr_for_mutation(number)

        try:
            await self.api.post_json(
                self.session.repo_path("pull-requests", number, "merge"),
                params={"version": pr.version},
            )
        except httpx.HTTPStatusError as e:
            if e.response.status_code == httpx.codes.CONFLICT:
                logger.warning(f"Failed to merge PR #{number}: conflicted")
                return False
            raise self.api.handle_http_error(e, f"merge PR #{number}")

        self._update_cached_pr(number, state=PrState.MERGED)
        logger.info(f"PR #{number} merged")
        return True

    async def decline_pr(self, number: Any) -> None:
        """
        Decline (close without merging) a PR.

        Raises:
            RepositoryNotFoundException: If the PR doesn't exist
            RepositoryChangedException: If the PR changed since it was read
        """
        pr = await self._get_pr_for_mutation(number)

        try:
            await self.api.post_json(
                self.session.repo_path("pull-requests", number, "decline"),
                params={"version": pr.version},
            )
        except httpx.HTTPStatusError as e:
            raise self.api.handle_http_error(e, f"decline PR #{number}")

        self._update_cached_pr(number, state=PrState.DECLINED)
        logger.info(f"PR #{number} declined")

    def _update_cached_pr(self, number: int, **changes: Any) -> None:
        if self.session.pr_list is None:
            return
        self.session.pr_list = [
            pr.model_copy(update=changes) if pr.number == number else pr
            for pr in self.session.pr_list
        ]
