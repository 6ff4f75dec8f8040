import httpx
import pytest
import pytest_asyncio
from unittest.mock import AsyncMock

from bbs_payloads import BRANCH_SHA, BOT_EMAIL, BitbucketRouter
from src.core.config import BitbucketAPIConfig, PlatformSettings
from src.models.schemas.platform import GitAuthor
from src.services.bitbucket_server.api_client import BitbucketApiClient
from src.services.bitbucket_server.session import RepositorySession

ENDPOINTS = ["https://stash.example.com/", "https://stash.example.com/vcs/"]


@pytest.fixture(params=ENDPOINTS, ids=["root", "path-prefix"])
def endpoint(request):
    return request.param


@pytest.fixture
def router(endpoint):
    return BitbucketRouter(endpoint)


@pytest.fixture
def api_config():
    return BitbucketAPIConfig(page_size=100, max_pages=10)


@pytest.fixture
def settings(endpoint, api_config):
    return PlatformSettings(endpoint=endpoint, username="abc", password="123", api=api_config)


@pytest.fixture
def git_author():
    return GitAuthor(name="Renovate Bot", email=BOT_EMAIL)


@pytest.fixture
def git():
    git = AsyncMock()
    git.branch_exists.return_value = True
    git.get_branch_commit.return_value = BRANCH_SHA
    return git


@pytest_asyncio.fixture
async def api(endpoint, router, api_config):
    client = BitbucketApiClient(
        endpoint,
        "abc",
        "123",
        api_config=api_config,
        transport=httpx.MockTransport(router),
    )
    yield client
    await client.aclose()


@pytest.fixture
def session(api):
    return RepositorySession(
        endpoint=api.endpoint,
        project_key="SOME",
        slug="repo",
        repository_id=5,
        default_branch="master",
        base_branch="master",
    )
