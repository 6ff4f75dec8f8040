"""
Tests for payload mapping helpers, repository identifiers and settings.
"""

import pytest
from pydantic import ValidationError

from bbs_payloads import pr_payload
from src.core.config import PlatformSettings
from src.exceptions.platform_exceptions import RepositoryNotFoundException
from src.models.schemas.bitbucket import BbsPullRequest
from src.models.schemas.platform import PrState
from src.services.bitbucket_server.collaborators import SettingsHostRules
from src.services.bitbucket_server.helpers import (
    branch_ref,
    comment_topic,
    normalize_branch_name,
    pr_info,
    render_comment,
)
from src.services.bitbucket_server.session import RepositorySession, parse_repository


@pytest.mark.parametrize(
    "repository, expected",
    [
        ("SOME/repo", ("SOME", "repo")),
        ("some/Repo", ("SOME", "Repo")),
    ],
)
def test_parse_repository(repository, expected):
    assert parse_repository(repository) == expected


@pytest.mark.parametrize("repository", ["repo", "/repo", "some/", "a/b/c", "", None])
def test_parse_repository_rejects_malformed(repository):
    with pytest.raises(RepositoryNotFoundException):
        parse_repository(repository)


def test_repo_path():
    session = RepositorySession(endpoint="https://stash.example.com/", project_key="SOME", slug="repo")

    assert session.repo_path("pull-requests", 5, "merge") == "rest/api/1.0/projects/SOME/repos/repo/pull-requests/5/merge"
    assert session.repository == "SOME/repo"


def test_branch_names():
    assert branch_ref("feature/x") == "refs/heads/feature/x"
    assert branch_ref("refs/heads/feature/x") == "refs/heads/feature/x"
    assert normalize_branch_name("refs/heads/feature/x") == "feature/x"
    assert normalize_branch_name(None) == ""


@pytest.mark.parametrize(
    "text, expected",
    [
        ("### some-subject\n\nblablabla", "some-subject"),
        ("### some-subject\r\n\r\nblablabla", "some-subject"),
        ("### only heading", "only heading"),
        ("#### deeper\n\ntext", None),
        ("plain text\n### late heading", None),
        ("", None),
    ],
)
def test_comment_topic(text, expected):
    assert comment_topic(text) == expected


def test_render_comment_round_trips_topic():
    body = render_comment("Release notes", "content")

    assert body == "### Release notes\n\ncontent"
    assert comment_topic(body) == "Release notes"
    assert render_comment(None, "content") == "content"


def test_pr_info_maps_wire_pull_request():
    pr = pr_info(BbsPullRequest.model_validate(pr_payload(7, version=2, state="DECLINED", reviewers=["jane"])))

    assert pr.number == 7
    assert pr.version == 2
    assert pr.state == PrState.DECLINED
    assert pr.is_open is False
    assert pr.reviewers == ["jane"]
    assert pr.created_at == 1547853840016


def test_pr_info_uses_requested_number_when_id_missing():
    pr = pr_info(BbsPullRequest.model_validate({"version": 1}), 9)

    assert pr.number == 9
    assert pr.branch_name == ""


def test_settings_reject_non_http_endpoint():
    with pytest.raises(ValidationError):
        PlatformSettings(endpoint="ftp://stash.example.com/")


def test_settings_host_rules():
    rules = SettingsHostRules(PlatformSettings(username="abc", password="123"))

    rule = rules.find("https://stash.example.com/")

    assert (rule.username, rule.password) == ("abc", "123")
    assert SettingsHostRules(PlatformSettings(username=None, password=None)).find("https://x/") is None
