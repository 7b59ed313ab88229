"""Tests for PullRequestExporter."""

from __future__ import annotations

import json
from unittest.mock import MagicMock

import pytest

from bbsexport_core.bitbucket.connection import ApiError
from bbsexport_core.bitbucket.resources import PullRequest, Repository
from bbsexport_core.dispatch import Dispatcher
from bbsexport_core.exporters.pull_request import PullRequestExporter
from bbsexport_store.archive import ArchiveBuilder

PR_URL = "https://bbs.example.com/projects/PRJ/repos/api/pull-requests/3"


def _comment(comment_id, author, created, text="hm", replies=()):
    return {"id": comment_id, "author": author, "text": text, "createdDate": created, "comments": list(replies)}


def _diff_activity(activity_id, author, created, line=4):
    return {
        "id": activity_id,
        "action": "COMMENTED",
        "commentAction": "ADDED",
        "createdDate": created,
        "user": author,
        "comment": _comment(activity_id * 10, author, created),
        "commentAnchor": {"path": "src/app.py", "line": line, "lineType": "ADDED", "toHash": "c1"},
    }


def _read(archive, model_name, plural):
    archive.writer_for(model_name).close()
    with open(archive.staging_dir / f"{plural}_000001.json") as f:
        return json.load(f)


@pytest.fixture
def archive(tmp_path):
    return ArchiveBuilder(staging_dir=tmp_path / "staging")


@pytest.fixture
def dispatcher(archive):
    return Dispatcher(archive)


@pytest.fixture
def people(user_factory):
    return {slug: user_factory(slug) for slug in ("alice", "bob", "carol")}


@pytest.fixture
def activities(people):
    alice, bob, carol = people["alice"], people["bob"], people["carol"]
    return [
        {
            "id": 1,
            "action": "COMMENTED",
            "commentAction": "ADDED",
            "createdDate": 1100,
            "user": bob,
            "comment": _comment(10, bob, 1100, text="Looks good", replies=[_comment(11, alice, 1150, text="Thanks")]),
        },
        _diff_activity(2, bob, 1300),
        _diff_activity(3, bob, 1200),
        _diff_activity(4, carol, 6000, line=None),
        {"id": 5, "action": "APPROVED", "createdDate": 7000, "user": bob},
        {"id": 6, "action": "MERGED", "createdDate": 8000, "user": alice},
        {"id": 7, "action": "RESCOPED", "createdDate": 7500, "user": alice},
    ]


@pytest.fixture
def pull_request_resource(repository, activities, pull_request_factory):
    data = pull_request_factory(description="plain")
    del data["repository"], data["owner"]

    repository_resource = MagicMock(spec=Repository)
    repository_resource.repository.return_value = repository

    resource = MagicMock(spec=PullRequest)
    resource.repository_resource = repository_resource
    resource.pull_request.return_value = data
    resource.activities.return_value = activities
    resource.commits.return_value = [
        {"id": "c1", "authorTimestamp": 1000},
        {"id": "c2", "authorTimestamp": 5000},
    ]
    return resource


@pytest.fixture
def exporter(dispatcher, pull_request_resource, repository, project):
    return PullRequestExporter(dispatcher, pull_request_resource, repository=repository, project=project)


class TestPullRequestExporter:
    def test_record_counts(self, exporter, archive):
        assert exporter.export() is True

        counts = archive.record_counts()
        assert counts["pull_request"] == 1
        assert counts["issue_comment"] == 2
        assert counts["pull_request_review"] == 3
        assert counts["pull_request_review_comment"] == 3
        assert counts["issue_event"] == 1
        assert counts["user"] == 3

    def test_export_order(self, exporter, dispatcher, mocker):
        spy = mocker.spy(dispatcher, "dispatch")

        exporter.export()

        order = [c.args[0] for c in spy.call_args_list if c.args[0] != "user"]
        assert order == [
            "pull_request",
            "issue_comment",
            "issue_comment",
            "pull_request_review",
            "pull_request_review",
            "pull_request_review_comment",
            "pull_request_review_comment",
            "pull_request_review_comment",
            "pull_request_review",
            "issue_event",
        ]

    def test_diff_comments_grouped_into_reviews(self, exporter, archive):
        exporter.export()

        reviews = _read(archive, "pull_request_review", "pull_request_reviews")
        assert [r["url"] for r in reviews] == [f"{PR_URL}#bob-c1", f"{PR_URL}#carol-c2", f"{PR_URL}#5"]
        assert [r["head_sha"] for r in reviews] == ["c1", "c2", "c2"]
        assert [r["state"] for r in reviews] == [1, 1, 40]
        # The earliest comment of bob's group represents the review.
        assert reviews[0]["created_at"] == "1970-01-01T00:00:01Z"

    def test_review_comments_point_at_their_review(self, exporter, archive):
        exporter.export()

        comments = _read(archive, "pull_request_review_comment", "pull_request_review_comments")
        assert [c["pull_request_review"] for c in comments] == [
            f"{PR_URL}#bob-c1",
            f"{PR_URL}#bob-c1",
            f"{PR_URL}#carol-c2",
        ]
        assert [c["line"] for c in comments] == [4, 4, None]

    def test_issue_event(self, exporter, archive):
        exporter.export()

        (event,) = _read(archive, "issue_event", "issue_events")
        assert event["event"] == "merged"
        assert event["url"] == f"{PR_URL}#event-6"

    def test_pull_request_carries_repository_and_owner(self, exporter, archive):
        exporter.export()

        (record,) = _read(archive, "pull_request", "pull_requests")
        assert record["repository"] == "https://bbs.example.com/projects/PRJ/repos/api"
        assert record["base"]["user"] == "https://bbs.example.com/projects/PRJ"

    def test_malformed_activity_isolates_pull_request(self, exporter, activities, archive):
        del activities[1]["createdDate"]

        assert exporter.export() is False
        assert archive.record_counts()["pull_request"] == 1

    def test_diff_comment_without_author_keeps_pull_request(self, exporter, activities, archive, dispatcher):
        del activities[2]["comment"]["author"]

        assert exporter.export() is True

        reviews = _read(archive, "pull_request_review", "pull_request_reviews")
        assert f"{PR_URL}#bob-c1" in [r["url"] for r in reviews]
        assert archive.record_counts()["pull_request_review_comment"] == 2
        assert [f.model_name for f in dispatcher.failures()] == ["pull_request_review_comment"]

    def test_api_errors_propagate(self, exporter, pull_request_resource):
        pull_request_resource.activities.side_effect = ApiError("500", status=500, url="u")

        with pytest.raises(ApiError):
            exporter.export()

    def test_created_date(self, exporter):
        assert exporter.created_date == 1500000000000
        assert exporter.url == PR_URL
