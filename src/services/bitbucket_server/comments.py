"""
Comment Reconciler

Keeps at most one automation comment per topic on a pull request. Comments
are located by scanning the PR's activity log, then created, updated or
deleted so the PR ends up in the requested state.
"""

from typing import Optional

import httpx

from src.exceptions.platform_exceptions import TransportFailureException
from src.models.schemas.bitbucket import BbsActivity, BbsComment
from src.services.bitbucket_server.api_client import BitbucketApiClient
from src.services.bitbucket_server.helpers import comment_topic, render_comment
from src.services.bitbucket_server.session import RepositorySession
from src.utils.logging import get_logger

logger = get_logger(__name__)


class CommentReconciler:
    """
    Idempotent comment management for one repository.

    Usage:
        comments = CommentReconciler(api, session)
        await comments.ensure_comment(5, topic="Build report", content="All green")
        await comments.ensure_comment_removal(5, topic="Build report")
    """

    def __init__(self, api: BitbucketApiClient, session: RepositorySession):
        self.api = api
        self.session = session

    async def ensure_comment(self, number: int, topic: Optional[str], content: str) -> bool:
        """
        Make sure the PR carries a comment with this topic and content.

        Args:
            number: Pull request id
            topic: Heading the comment is addressed by; None to address by content
            content: Comment body below the heading

        Returns:
            True once the comment exists as requested, False if the server
            could not be reached

        Raises:
            RepositoryNotFoundException: If the PR or comment doesn't exist
            RepositoryChangedException: If the comment changed while updating it
            UnexpectedStatusException: For other API errors
        """
        topic = topic or None
        body = render_comment(topic, content)
        try:
            existing = await self._find_comment(number, topic=topic, content=body)

            if existing is None:
                await self._add_comment(number, body)
                logger.info(f"Comment added to PR #{number} (topic={topic})")
            elif existing.text == body:
                logger.debug(f"Comment {existing.id} on PR #{number} is already up to date")
            else:
                await self._edit_comment(number, existing.id, body)
                logger.info(f"Comment {existing.id} updated on PR #{number} (topic={topic})")
        except TransportFailureException as e:
            logger.warning(f"Error ensuring comment on PR #{number}: {e}")
            return False
        return True

    async def ensure_comment_removal(
        self,
        number: int,
        topic: Optional[str] = None,
        content: Optional[str] = None,
    ) -> None:
        """
        Delete the comment addressed by topic (or by exact content), if present.

        Network failures are logged and swallowed.

        Raises:
            RepositoryNotFoundException: If the PR doesn't exist
            RepositoryChangedException: If the comment changed while deleting it
            UnexpectedStatusException: For other API errors
        """
        logger.debug(f"ensure_comment_removal(number={number}, topic={topic})")
        topic = topic or None
        try:
            existing = await self._find_comment(number, topic=topic, content=content)
            if existing is None:
                logger.debug(f"No comment to remove on PR #{number}")
                return
            await self._delete_comment(number, existing.id)
        except TransportFailureException as e:
            logger.warning(f"Error ensuring comment removal on PR #{number}: {e}")
            return
        logger.info(f"Comment {existing.id} removed from PR #{number}")

    async def _find_comment(
        self,
        number: int,
        topic: Optional[str],
        content: Optional[str],
    ) -> Optional[BbsComment]:
        """First added comment in activity-log order matching the topic, else the content."""
        if topic is None and content is None:
            return None

        try:
            async for value in self.api.paginate(
                self.session.repo_path("pull-requests", number, "activities")
            ):
                activity = BbsActivity.model_validate(value)
                if not activity.is_added_comment:
                    continue
                comment = activity.comment
                if topic is not None:
                    if comment_topic(comment.text) == topic:
                        return comment
                elif comment.text == content:
                    return comment
        except httpx.HTTPStatusError as e:
            raise self.api.handle_http_error(e, f"list activities of PR #{number}")
        return None

    async def _comment_version(self, number: int, comment_id: int) -> int:
        try:
            data = await self.api.get_json(
                self.session.repo_path("pull-requests", number, "comments", comment_id)
            )
        except httpx.HTTPStatusError as e:
            raise self.api.handle_http_error(e, f"get comment {comment_id}")
        return (data or {}).get("version", 0)

    async def _add_comment(self, number: int, text: str) -> None:
        try:
            await self.api.post_json(
                self.session.repo_path("pull-requests", number, "comments"),
                {"text": text},
            )
        except httpx.HTTPStatusError as e:
            raise self.api.handle_http_error(e, f"add comment to PR #{number}")

    async def _edit_comment(self, number: int, comment_id: int, text: str) -> None:
        version = await self._comment_version(number, comment_id)
        try:
            await self.api.put_json(
                self.session.repo_path("pull-requests", number, "comments", comment_id),
                {"text": text, "version": version},
            )
        except httpx.HTTPStatusError as e:
            raise self.api.handle_http_error(e, f"edit comment {comment_id}")

    async def _delete_comment(self, number: int, comment_id: int) -> None:
        version = await self._comment_version(number, comment_id)
        try:
            await self.api.delete(
                self.session.repo_path("pull-requests", number, "comments", comment_id),
                params={"version": version},
            )
        except httpx.HTTPStatusError as e:
            raise self.api.handle_http_error(e, f"delete comment {comment_id}")
