"""
Branch build status: aggregation of build checks reported against a
branch's head commit, per-check lookup and idempotent publishing.
"""

from typing import List, Optional

import httpx

from src.exceptions.platform_exceptions import RepositoryChangedException, TransportFailureException
from src.models.schemas.bitbucket import BbsBuildCheck, BbsBuildStats
from src.models.schemas.platform import BranchStatus
from src.services.bitbucket_server.api_client import BUILD_STATUS_PATH, BitbucketApiClient
from src.services.bitbucket_server.collaborators import GitCollaborator
from src.services.bitbucket_server.helpers import CHECK_STATE_TO_STATUS, STATUS_TO_CHECK_STATE
from src.services.bitbucket_server.session import RepositorySession
from src.utils.logging import get_logger

logger = get_logger(__name__)


def aggregate_build_stats(stats: BbsBuildStats) -> BranchStatus:
    """
    Collapse build stats into one status.

    Evaluated in order: any failure wins, then anything in progress, then
    "no checks at all" counts as pending; only then is the branch successful.
    """
    if stats.failed > 0:
        return BranchStatus.FAILURE
    if stats.in_progress > 0:
        return BranchStatus.PENDING
    if stats.successful == 0:
        return BranchStatus.PENDING
    return BranchStatus.SUCCESS


class BranchStatusService:
    """
    Reads and publishes build statuses for branches of the session's repository.

    The branch's commit comes from the local working copy, so a status is
    only ever reported for a branch the automation actually has.
    """

    def __init__(
        self,
        api: BitbucketApiClient,
        session: RepositorySession,
        git: GitCollaborator,
    ):
        self.api = api
        self.session = session
        self.git = git

    async def _branch_commit(self, branch_name: str) -> str:
        if not await self.git.branch_exists(branch_name):
            logger.warning(f"Branch {branch_name} no longer exists")
            raise RepositoryChangedException()
        commit = await self.git.get_branch_commit(branch_name)
        if not commit:
            raise RepositoryChangedException()
        return commit

    async def get_branch_status(
        self,
        branch_name: str,
        required_status_checks: Optional[List[str]] = None,
    ) -> BranchStatus:
        """
        Aggregate status of every build check on the branch's commit.

        A failure to read the stats is reported as FAILURE so a broken
        status endpoint never reads as "nothing blocking".

        Raises:
            RepositoryChangedException: If the branch no longer exists locally
        """
        logger.debug(f"get_branch_status({branch_name}, {required_status_checks})")
        commit = await self._branch_commit(branch_name)

        try:
            data = await self.api.get_json(f"{BUILD_STATUS_PATH}/commits/stats/{commit}")
        except (httpx.HTTPStatusError, TransportFailureException) as e:
            logger.warning(f"Failed to get branch status for {branch_name}: {e}")
            return BranchStatus.FAILURE

        stats = BbsBuildStats.model_validate(data or {})
        status = aggregate_build_stats(stats)
        logger.debug(
            f"Branch {branch_name} status {status.value} "
            f"(successful={stats.successful}, in_progress={stats.in_progress}, failed={stats.failed})"
        )
        return status

    async def _get_build_checks(self, commit: str) -> List[BbsBuildCheck]:
        checks = []
        async for value in self.api.paginate(f"{BUILD_STATUS_PATH}/commits/{commit}"):
            checks.append(BbsBuildCheck.model_validate(value))
        return checks

    async def get_branch_status_check(self, branch_name: str, context: str) -> Optional[BranchStatus]:
        """
        Status of the single check named `context`.

        Returns:
            The mapped status, or None when the check is absent, its state is
            unknown, or the checks could not be read
        """
        commit = await self._branch_commit(branch_name)
        return await self._get_check_status(commit, branch_name, context)

    async def _get_check_status(self, commit: str, branch_name: str, context: str) -> Optional[BranchStatus]:
        try:
            checks = await self._get_build_checks(commit)
        except (httpx.HTTPStatusError, TransportFailureException) as e:
            logger.debug(f"Failed to get branch status check {context} for {branch_name}: {e}")
            return None

        for check in checks:
            if check.key == context:
                return CHECK_STATE_TO_STATUS.get(check.state)
        return None

    async def set_branch_status(
        self,
        branch_name: str,
        context: str,
        description: Optional[str],
        state: BranchStatus,
        url: Optional[str] = None,
    ) -> None:
        """
        Publish a build check for the branch's commit unless it already reports `state`.

        Publishing failures are logged and swallowed.
        """
        logger.debug(f"set_branch_status({branch_name}, {context}, {state.value})")
        commit = await self._branch_commit(branch_name)
        existing = await self._get_check_status(commit, branch_name, context)
        if existing == state:
            logger.debug(f"Status check {context} for {branch_name} is already {state.value}")
            return

        logger.info(f"Setting status check {context} for {branch_name} to {state.value}")
        payload = {
            "key": context,
            "description": description,
            "url": url or self.api.endpoint,
            "state": STATUS_TO_CHECK_STATE[state],
        }

        try:
            await self.api.post_json(f"{BUILD_STATUS_PATH}/commits/{commit}", payload)
        except (httpx.HTTPStatusError, TransportFailureException) as e:
            logger.warning(f"Failed to set branch status {context} for {branch_name}: {e}")
            return
