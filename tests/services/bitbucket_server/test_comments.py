"""
Tests for the Comment Reconciler.
"""

import httpx
import pytest

from bbs_payloads import comment_activity, page, repo_path, request_json
from src.exceptions.platform_exceptions import RepositoryChangedException, RepositoryNotFoundException
from src.services.bitbucket_server.comments import CommentReconciler

ACTIVITIES = repo_path("pull-requests", 5, "activities")
COMMENTS = repo_path("pull-requests", 5, "comments")


@pytest.fixture
def comments(api, session):
    return CommentReconciler(api, session)


def add_activities(router):
    router.add(
        "GET",
        ACTIVITIES,
        json_data=page(
            [
                {"action": "APPROVED"},
                comment_activity(21, "### some-subject\n\nblablabla"),
                {"action": "COMMENTED", "commentAction": "EDITED", "comment": {"id": 99, "text": "### some-subject\n\nold"}},
            ],
            next_page_start=3,
        ),
    )
    router.add(
        "GET",
        ACTIVITIES,
        json_data=page([
            comment_activity(22, "!merge"),
            comment_activity(23, "### some-subject\n\nsecond copy"),
        ]),
    )


@pytest.mark.asyncio
async def test_ensure_comment_adds_when_missing(comments, router):
    add_activities(router)
    router.add("POST", COMMENTS, status_code=201, json_data={"id": 30, "version": 0})

    assert await comments.ensure_comment(5, "topic", "content") is True

    [post_request] = router.calls("POST", COMMENTS)
    assert request_json(post_request) == {"text": "### topic\n\ncontent"}
    assert len(router.calls("GET", ACTIVITIES)) == 2


@pytest.mark.asyncio
async def test_ensure_comment_without_topic_adds_plain_content(comments, router):
    add_activities(router)
    router.add("POST", COMMENTS, status_code=201, json_data={"id": 30, "version": 0})

    assert await comments.ensure_comment(5, None, "some content") is True

    [post_request] = router.calls("POST", COMMENTS)
    assert request_json(post_request) == {"text": "some content"}


@pytest.mark.asyncio
async def test_ensure_comment_updates_first_topic_match(comments, router):
    add_activities(router)
    router.add("GET", repo_path("pull-requests", 5, "comments", 21), json_data={"id": 21, "version": 3, "text": "x"})
    router.add("PUT", repo_path("pull-requests", 5, "comments", 21), json_data={"id": 21, "version": 4})

    assert await comments.ensure_comment(5, "some-subject", "some\ncontent") is True

    [put_request] = router.calls("PUT", repo_path("pull-requests", 5, "comments", 21))
    assert request_json(put_request) == {"text": "### some-subject\n\nsome\ncontent", "version": 3}
    assert router.calls("POST", COMMENTS) == []
    assert router.calls("PUT", repo_path("pull-requests", 5, "comments", 23)) == []


@pytest.mark.asyncio
async def test_ensure_comment_skips_identical_comment(comments, router):
    add_activities(router)

    assert await comments.ensure_comment(5, "some-subject", "blablabla") is True

    assert [request.method for request in router.requests] == ["GET"]


@pytest.mark.asyncio
async def test_ensure_comment_skips_identical_content_without_topic(comments, router):
    add_activities(router)

    assert await comments.ensure_comment(5, None, "!merge") is True

    assert router.calls("POST", COMMENTS) == []


@pytest.mark.asyncio
async def test_ensure_comment_transport_failure_returns_false(comments, router):
    def refuse(request):
        raise httpx.ConnectTimeout("timed out", request=request)

    router.add_handler("GET", ACTIVITIES, refuse)

    assert await comments.ensure_comment(5, "topic", "content") is False


@pytest.mark.asyncio
async def test_ensure_comment_http_errors_propagate(comments, router):
    router.add("GET", ACTIVITIES, status_code=404, json_data={"errors": []})

    with pytest.raises(RepositoryNotFoundException):
        await comments.ensure_comment(5, "topic", "content")


@pytest.mark.asyncio
async def test_ensure_comment_edit_conflict(comments, router):
    add_activities(router)
    router.add("GET", repo_path("pull-requests", 5, "comments", 21), json_data={"id": 21, "version": 3})
    router.add("PUT", repo_path("pull-requests", 5, "comments", 21), status_code=409, json_data={"errors": []})

    with pytest.raises(RepositoryChangedException):
        await comments.ensure_comment(5, "some-subject", "new")


@pytest.mark.asyncio
async def test_ensure_comment_removal_by_topic(comments, router):
    add_activities(router)
    router.add("GET", repo_path("pull-requests", 5, "comments", 21), json_data={"id": 21, "version": 2})
    router.add("DELETE", repo_path("pull-requests", 5, "comments", 21), status_code=204)

    await comments.ensure_comment_removal(5, topic="some-subject")

    [delete_request] = router.calls("DELETE", repo_path("pull-requests", 5, "comments", 21))
    assert delete_request.url.params["version"] == "2"


@pytest.mark.asyncio
async def test_ensure_comment_removal_by_content(comments, router):
    add_activities(router)
    router.add("GET", repo_path("pull-requests", 5, "comments", 22), json_data={"id": 22, "version": 0})
    router.add("DELETE", repo_path("pull-requests", 5, "comments", 22), status_code=204)

    await comments.ensure_comment_removal(5, content="!merge")

    [delete_request] = router.calls("DELETE", repo_path("pull-requests", 5, "comments", 22))
    assert delete_request.url.params["version"] == "0"


@pytest.mark.asyncio
async def test_ensure_comment_removal_nothing_to_remove(comments, router):
    add_activities(router)

    await comments.ensure_comment_removal(5, topic="missing")

    assert all(request.method == "GET" for request in router.requests)


@pytest.mark.asyncio
async def test_ensure_comment_removal_without_topic_or_content(comments, router):
    await comments.ensure_comment_removal(5)

    assert router.requests == []


@pytest.mark.asyncio
async def test_ensure_comment_empty_topic_matches_by_content(comments, router):
    router.add("GET", ACTIVITIES, json_data=page([comment_activity(21, "content")]))

    assert await comments.ensure_comment(5, "", "content") is True
    assert await comments.ensure_comment(5, "", "content") is True

    assert router.calls("POST", COMMENTS) == []


@pytest.mark.asyncio
async def test_ensure_comment_removal_transport_failure_is_logged(comments, router):
    def reset(request):
        raise httpx.ConnectError("connection reset", request=request)

    router.add_handler("GET", ACTIVITIES, reset)

    await comments.ensure_comment_removal(5, topic="some-subject")

    assert router.calls("DELETE", repo_path("pull-requests", 5, "comments", 21)) == []


@pytest.mark.asyncio
async def test_ensure_comment_removal_delete_transport_failure_is_logged(comments, router):
    def reset(request):
        raise httpx.ConnectError("connection reset", request=request)

    add_activities(router)
    router.add("GET", repo_path("pull-requests", 5, "comments", 21), json_data={"id": 21, "version": 2})
    router.add_handler("DELETE", repo_path("pull-requests", 5, "comments", 21), reset)

    await comments.ensure_comment_removal(5, topic="some-subject")

    assert len(router.calls("DELETE", repo_path("pull-requests", 5, "comments", 21))) == 1


@pytest.mark.asyncio
async def test_ensure_comment_removal_http_errors_still_propagate(comments, router):
    router.add("GET", ACTIVITIES, status_code=404, json_data={"errors": []})

    with pytest.raises(RepositoryNotFoundException):
        await comments.ensure_comment_removal(5, topic="some-subject")
