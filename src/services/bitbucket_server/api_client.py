"""
Bitbucket Server REST API Client

Thin async client over the Bitbucket Server REST API with basic
authentication, typed transport errors and cursor-based pagination.
"""

from typing import Any, AsyncIterator, Dict, Optional

import httpx

from src.core.config import BitbucketAPIConfig, platform_settings
from src.exceptions.platform_exceptions import (
    RepositoryChangedException,
    RepositoryNotFoundException,
    TransportFailureException,
    UnexpectedStatusException,
)
from src.models.schemas.bitbucket import BbsPage
from src.utils.exception import AppException
from src.utils.logging import get_logger

logger = get_logger(__name__)

API_PATH = "rest/api/1.0"
BUILD_STATUS_PATH = "rest/build-status/1.0"
DEFAULT_REVIEWERS_PATH = "rest/default-reviewers/1.0"


def normalize_endpoint(endpoint: str) -> str:
    """Ensure the endpoint ends with exactly one slash so relative paths join under it."""
    return endpoint.rstrip("/") + "/"


class BitbucketApiClient:
    """
    Async client for the Bitbucket Server REST API.

    Features:
    - Basic authentication on every request
    - Endpoints with a path prefix (https://host/vcs/) are honoured
    - Network failures surface as TransportFailureException
    - Non-2xx responses surface as httpx.HTTPStatusError for the caller to translate
    - Paged listings exposed as an async generator

    Usage:
        async with BitbucketApiClient(endpoint, "user", "secret") as api:
            repo = await api.get_json("rest/api/1.0/projects/PRJ/repos/app")
    """

    def __init__(
        self,
        endpoint: str,
        username: str,
        password: str,
        api_config: Optional[BitbucketAPIConfig] = None,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ):
        self.endpoint = normalize_endpoint(endpoint)
        self.username = username
        self.config = api_config or platform_settings.api
        self._client = httpx.AsyncClient(
            base_url=self.endpoint,
            auth=httpx.BasicAuth(username, password),
            headers={
                "Accept": "application/json",
                "User-Agent": self.config.user_agent,
                "X-Atlassian-Token": "no-check",
            },
            timeout=httpx.Timeout(self.config.request_timeout),
            transport=transport,
        )

    async def __aenter__(self) -> "BitbucketApiClient":
        return self

    async def __aexit__(self, exc_type, exc, tb) -> None:
        await self.aclose()

    async def aclose(self) -> None:
        await self._client.aclose()

    async def request(
        self,
        method: str,
        path: str,
        params: Optional[Dict[str, Any]] = None,
        json_data: Optional[Any] = None,
    ) -> httpx.Response:
        """
        Make an authenticated API request.

        Args:
            method: HTTP method (GET, POST, etc.)
            path: Path relative to the endpoint (e.g. "rest/api/1.0/repos")
            params: Query parameters
            json_data: JSON request body

        Returns:
            The successful (2xx) response

        Raises:
            TransportFailureException: For DNS, timeout and connection errors
            httpx.HTTPStatusError: For non-2xx responses
        """
        logger.debug(f"{method} {path} params={params}")
        try:
            response = await self._client.request(
                method=method,
                url=path,
                params=params,
                json=json_data,
            )
        except httpx.RequestError as e:
            raise TransportFailureException(f"{method} {path}", e)

        response.raise_for_status()
        return response

    async def get_json(self, path: str, params: Optional[Dict[str, Any]] = None) -> Any:
        response = await self.request("GET", path, params=params)
        if not response.content:
            return None
        return response.json()

    async def post_json(
        self,
        path: str,
        json_data: Optional[Any] = None,
        params: Optional[Dict[str, Any]] = None,
    ) -> Any:
        response = await self.request("POST", path, params=params, json_data=json_data)
        if not response.content:
            return None
        return response.json()

    async def put_json(self, path: str, json_data: Any) -> Any:
        response = await self.request("PUT", path, json_data=json_data)
        if not response.content:
            return None
        return response.json()

    async def delete(self, path: str, params: Optional[Dict[str, Any]] = None) -> None:
        await self.request("DELETE", path, params=params)

    async def paginate(
        self,
        path: str,
        params: Optional[Dict[str, Any]] = None,
    ) -> AsyncIterator[Dict[str, Any]]:
        """
        Yield every value of a paged listing.

        Follows `nextPageStart` until the server reports `isLastPage`.
        The cursor is opaque; it is only ever echoed back as `start`.
        """
        query = dict(params or {})
        query["limit"] = self.config.page_size
        start: Optional[int] = None

        for _ in range(self.config.max_pages):
            if start is not None:
                query["start"] = start

            data = await self.get_json(path, params=query)
            page = BbsPage.model_validate(data or {})
            for value in page.values:
                yield value

            if page.is_last_page or page.next_page_start is None:
                return
            start = page.next_page_start

        logger.warning(f"Reached pagination limit of {self.config.max_pages} pages for {path}")

    def handle_http_error(self, error: httpx.HTTPStatusError, operation: str) -> AppException:
        """
        Convert HTTP status error to the platform taxonomy.

        Args:
            error: HTTP status error from httpx
            operation: Description of the operation that failed

        Returns:
            Exception to raise: not-found for 404, repository-changed for 409,
            unexpected-status otherwise
        """
        status_code = error.response.status_code

        if status_code == httpx.codes.NOT_FOUND:
            return RepositoryNotFoundException()
        if status_code == httpx.codes.CONFLICT:
            return RepositoryChangedException()
        return UnexpectedStatusException(
            status_code=status_code,
            operation=operation,
            response_text=error.response.text,
        )

