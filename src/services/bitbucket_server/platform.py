"""
Bitbucket Server Platform

Facade the automation agent talks to. It owns the API client and the
repository session and delegates pull request, comment and build status
work to the dedicated services.
"""

import json
from typing import Any, List, Optional

import httpx

from src.core.config import PlatformSettings, platform_settings
from src.exceptions.platform_exceptions import (
    PlatformConfigException,
    RepositoryDisabledException,
    RepositoryNotFoundException,
    SessionNotInitializedException,
)
from src.models.schemas.bitbucket import BbsBrowsePage, BbsRef, BbsRepository
from src.models.schemas.platform import BranchStatus, GitAuthor, PlatformResult, Pr, PrState, RepoResult
from src.services.bitbucket_server.api_client import API_PATH, BitbucketApiClient
from src.services.bitbucket_server.branch_status import BranchStatusService
from src.services.bitbucket_server.collaborators import GitCollaborator, HostRules, SettingsHostRules
from src.services.bitbucket_server.comments import CommentReconciler
from src.services.bitbucket_server.helpers import sanitize_pr_body
from src.services.bitbucket_server.pull_requests import PullRequestService
from src.services.bitbucket_server.session import RepositorySession, parse_repository
from src.utils.logging import get_logger

logger = get_logger(__name__)

FAST_FORWARD_STRATEGIES = {"ff-only", "rebase-ff-only", "squash-ff-only"}


class BitbucketServerPlatform:
    """
    Platform adapter for Bitbucket Server.

    Usage:
        platform = BitbucketServerPlatform(git=git)
        await platform.init_platform("https://bitbucket.example.com/", "bot", "secret")
        await platform.init_repo("prj/app", local_dir="/tmp/app")
        pr = await platform.create_pr("renovate/lodash", "Update lodash", "...")
        await platform.ensure_comment(pr.number, "Release notes", "...")
        await platform.aclose()
    """

    def __init__(
        self,
        settings: Optional[PlatformSettings] = None,
        host_rules: Optional[HostRules] = None,
        git: Optional[GitCollaborator] = None,
        git_author: Optional[GitAuthor] = None,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ):
        self.settings = settings or platform_settings
        self.host_rules = host_rules or SettingsHostRules(self.settings)
        self.git = git
        self.git_author = git_author or self._settings_git_author()
        self._transport = transport

        self._api: Optional[BitbucketApiClient] = None
        self._password: Optional[str] = None
        self._session: Optional[RepositorySession] = None
        self._prs: Optional[PullRequestService] = None
        self._comments: Optional[CommentReconciler] = None
        self._statuses: Optional[BranchStatusService] = None

    def _settings_git_author(self) -> Optional[GitAuthor]:
        if not self.settings.git_author_email:
            return None
        return GitAuthor(name=self.settings.git_author_name, email=self.settings.git_author_email)

    async def __aenter__(self) -> "BitbucketServerPlatform":
        return self

    async def __aexit__(self, exc_type, exc, tb) -> None:
        await self.aclose()

    async def aclose(self) -> None:
        if self._api is not None:
            await self._api.aclose()
            self._api = None

    # ============================================================================
    # SESSION ACCESS
    # ============================================================================

    @property
    def api(self) -> BitbucketApiClient:
        if self._api is None:
            raise SessionNotInitializedException()
        return self._api

    @property
    def session(self) -> RepositorySession:
        if self._session is None:
            raise SessionNotInitializedException()
        return self._session

    @property
    def prs(self) -> PullRequestService:
        if self._prs is None:
            raise SessionNotInitializedException()
        return self._prs

    @property
    def comments(self) -> CommentReconciler:
        if self._comments is None:
            raise SessionNotInitializedException()
        return self._comments

    @property
    def statuses(self) -> BranchStatusService:
        if self._statuses is None:
            if self._session is not None:
                raise PlatformConfigException("Build status needs a git collaborator to resolve branch commits")
            raise SessionNotInitializedException()
        return self._statuses

    # ============================================================================
    # PLATFORM
    # ============================================================================

    async def init_platform(
        self,
        endpoint: Optional[str] = None,
        username: Optional[str] = None,
        password: Optional[str] = None,
    ) -> PlatformResult:
        """
        Connect to a Bitbucket Server instance.

        Credentials not passed in are looked up through the host rules.

        Raises:
            PlatformConfigException: If the endpoint or either credential is missing
        """
        endpoint = endpoint or self.settings.endpoint
        if not endpoint:
            raise PlatformConfigException("Init: You must configure a Bitbucket Server endpoint")

        if not (username and password):
            rule = self.host_rules.find(endpoint)
            if rule is not None:
                username = username or rule.username
                password = password or rule.password
        if not (username and password):
            raise PlatformConfigException("Init: You must configure a Bitbucket Server username/password")

        await self.aclose()
        self._api = BitbucketApiClient(
            endpoint,
            username,
            password,
            api_config=self.settings.api,
            transport=self._transport,
        )
        self._password = password
        self._session = None
        self._prs = None
        self._comments = None
        self._statuses = None
        logger.info(f"Initialized Bitbucket Server platform at {self._api.endpoint}")
        return PlatformResult(endpoint=self._api.endpoint)

    async def get_repos(self) -> List[str]:
        """List every `project/slug` the automation can write to, lower-cased."""
        logger.debug("Autodiscovering Bitbucket Server repositories")
        repos = []
        try:
            async for value in self.api.paginate(
                f"{API_PATH}/repos",
                {"permission": "REPO_WRITE", "state": "AVAILABLE"},
            ):
                repo = BbsRepository.model_validate(value)
                repos.append(f"{repo.project.key}/{repo.slug}".lower())
        except httpx.HTTPStatusError as e:
            raise self.api.handle_http_error(e, "list repositories")
        logger.info(f"Discovered {len(repos)} repositories")
        return repos

    # ============================================================================
    # REPOSITORY SESSION
    # ============================================================================

    async def init_repo(
        self,
        repository: str,
        local_dir: str = "",
        optimize_for_disabled: bool = False,
    ) -> RepoResult:
        """
        Open a session on `project/slug`.

        Args:
            repository: Repository identifier, `project/slug`
            local_dir: Working copy directory handed to the git collaborator
            optimize_for_disabled: Probe the repository config file first and bail
                out early when it disables automation

        Returns:
            The default branch and whether the repository is a fork

        Raises:
            RepositoryNotFoundException: If the identifier is malformed or the repository doesn't exist
            RepositoryDisabledException: If the config file sets `"enabled": false`
        """
        logger.debug(f"init_repo({repository})")
        project_key, slug = parse_repository(repository)
        session = RepositorySession(
            endpoint=self.api.endpoint,
            project_key=project_key,
            slug=slug,
            local_dir=local_dir,
        )

        if optimize_for_disabled and await self._is_disabled(session):
            raise RepositoryDisabledException(session.repository)

        try:
            repo = BbsRepository.model_validate(await self.api.get_json(session.repo_path()))
        except httpx.HTTPStatusError as e:
            if e.response.status_code == httpx.codes.NOT_FOUND:
                raise RepositoryNotFoundException(f"repository-not-found: {session.repository}")
            raise self.api.handle_http_error(e, f"get repository {session.repository}")

        try:
            default_ref = BbsRef.model_validate(
                await self.api.get_json(session.repo_path("branches", "default"))
            )
        except httpx.HTTPStatusError as e:
            raise self.api.handle_http_error(e, f"get default branch of {session.repository}")

        session.repository_id = repo.id
        session.default_branch = default_ref.display_id
        session.base_branch = default_ref.display_id
        session.clone_url = self._clone_url(repo, session)
        logger.debug(f"Clone URL for {session.repository}: {session.clone_url}")

        if self.git is not None:
            await self.git.init_repo(local_dir=local_dir, url=session.clone_url)

        self._session = session
        self._prs = PullRequestService(self.api, session, git_author=self.git_author)
        self._comments = CommentReconciler(self.api, session)
        self._statuses = BranchStatusService(self.api, session, self.git) if self.git is not None else None

        logger.info(f"Initialized repository {session.repository} (default branch {session.default_branch})")
        return RepoResult(default_branch=session.default_branch, is_fork=repo.origin is not None)

    async def _is_disabled(self, session: RepositorySession) -> bool:
        config = self.settings.api
        try:
            data = await self.api.get_json(
                session.repo_path("browse", config.config_file_name),
                params={"limit": config.config_file_line_limit},
            )
        except httpx.HTTPStatusError as e:
            if e.response.status_code == httpx.codes.NOT_FOUND:
                return False
            raise self.api.handle_http_error(e, f"read {config.config_file_name}")

        page = BbsBrowsePage.model_validate(data or {})
        if not page.is_last_page:
            logger.debug(f"{config.config_file_name} in {session.repository} is truncated")
            return False

        try:
            repo_config = json.loads(page.joined_text())
        except ValueError:
            logger.debug(f"{config.config_file_name} in {session.repository} is not valid JSON")
            return False

        return isinstance(repo_config, dict) and repo_config.get("enabled") is False

    def _clone_url(self, repo: BbsRepository, session: RepositorySession) -> str:
        href = repo.http_clone_url()
        if href is None:
            logger.debug(f"No http clone link for {session.repository}, using the scm path")
            href = f"{session.endpoint}scm/{session.project_key.lower()}/{session.slug}.git"
        return str(httpx.URL(href).copy_with(username=self.api.username, password=self._password))

    async def set_base_branch(self, branch_name: Optional[str] = None) -> None:
        """Point new PRs at `branch_name`, or back at the default branch."""
        session = self.session
        session.base_branch = branch_name or session.default_branch
        if self.git is not None:
            await self.git.set_base_branch(session.base_branch)
        session.invalidate_pr_list()
        logger.debug(f"Base branch of {session.repository} set to {session.base_branch}")

    async def get_repo_force_rebase(self) -> bool:
        """True when the repository's default merge strategy only allows fast-forward merges."""
        try:
            data = await self.api.get_json(self.session.repo_path("settings", "pull-requests"))
        except httpx.HTTPStatusError as e:
            raise self.api.handle_http_error(e, f"get PR settings of {self.session.repository}")

        strategy = ((data or {}).get("mergeConfig") or {}).get("defaultStrategy") or {}
        return strategy.get("id") in FAST_FORWARD_STRATEGIES

    # ============================================================================
    # PULL REQUESTS
    # ============================================================================

    async def get_pr_list(self) -> List[Pr]:
        return await self.prs.get_pr_list()

    async def find_pr(self, branch_name: str, pr_title: Optional[str] = None, state: str = "all") -> Optional[Pr]:
        return await self.prs.find_pr(branch_name, pr_title=pr_title, state=state)

    async def get_branch_pr(self, branch_name: str) -> Optional[Pr]:
        return await self.prs.get_branch_pr(branch_name)

    async def get_pr(self, number: Any, git_author: Optional[GitAuthor] = None) -> Optional[Pr]:
        return await self.prs.get_pr(number, git_author=git_author)

    async def create_pr(
        self,
        branch_name: str,
        pr_title: str,
        pr_body: str,
        use_default_branch: bool = False,
        target_branch: Optional[str] = None,
    ) -> Pr:
        return await self.prs.create_pr(
            branch_name,
            pr_title,
            self.get_pr_body(pr_body),
            use_default_branch=use_default_branch,
            target_branch=target_branch,
        )

    async def update_pr(self, number: Any, title: str, body: Optional[str] = None) -> None:
        await self.prs.update_pr(number, title, self.get_pr_body(body) if body is not None else None)

    async def add_reviewers(self, number: Any, reviewers: List[str]) -> None:
        await self.prs.add_reviewers(number, reviewers)

    async def merge_pr(self, number: Any, branch_name: Optional[str] = None) -> bool:
        return await self.prs.merge_pr(number, branch_name)

    async def decline_pr(self, number: Any) -> None:
        await self.prs.decline_pr(number)

    async def delete_branch(self, branch_name: str, close_pr: bool = False) -> None:
        """
        Delete a branch, declining its open PR first when `close_pr` is set.

        Raises:
            RepositoryChangedException: If the PR changed while declining it
        """
        if close_pr:
            pr = await self.prs.find_pr(branch_name, state=PrState.OPEN.value)
            if pr is not None:
                await self.prs.decline_pr(pr.number)
        if self.git is not None:
            await self.git.delete_branch(branch_name)
        self.session.invalidate_pr_list()

    def get_pr_body(self, body: str) -> str:
        return sanitize_pr_body(body, self.settings.api.max_body_length)

    async def add_assignees(self, number: Any, assignees: List[str]) -> None:
        # Bitbucket Server has no assignees; reviewers are the closest concept
        logger.debug(f"add_assignees({number}, {assignees}) is not supported")

    async def delete_label(self, number: Any, label: str) -> None:
        logger.debug(f"delete_label({number}, {label}) is not supported")

    async def get_vulnerability_alerts(self) -> List[Any]:
        logger.debug("get_vulnerability_alerts() is not supported")
        return []

    # ============================================================================
    # COMMENTS
    # ============================================================================

    async def ensure_comment(self, number: int, topic: Optional[str], content: str) -> bool:
        return await self.comments.ensure_comment(number, topic, content)

    async def ensure_comment_removal(
        self,
        number: int,
        topic: Optional[str] = None,
        content: Optional[str] = None,
    ) -> None:
        await self.comments.ensure_comment_removal(number, topic=topic, content=content)

    # ============================================================================
    # BUILD STATUS
    # ============================================================================

    async def get_branch_status(
        self,
        branch_name: str,
        required_status_checks: Optional[List[str]] = None,
    ) -> BranchStatus:
        return await self.statuses.get_branch_status(branch_name, required_status_checks)

    async def get_branch_status_check(self, branch_name: str, context: str) -> Optional[BranchStatus]:
        return await self.statuses.get_branch_status_check(branch_name, context)

    async def set_branch_status(
        self,
        branch_name: str,
        context: str,
        description: Optional[str],
        state: BranchStatus,
        url: Optional[str] = None,
    ) -> None:
        await self.statuses.set_branch_status(branch_name, context, description, state, url=url)
