"""Tests for the Bitbucket Server resource paths."""

from __future__ import annotations

from unittest.mock import MagicMock

import pytest

from bbsexport_core.bitbucket.connection import ApiError, Connection
from bbsexport_core.bitbucket.resources import BitbucketServer


@pytest.fixture
def connection():
    connection = MagicMock(spec=Connection)
    connection.user = "basic-user"
    return connection


@pytest.fixture
def server(connection):
    return BitbucketServer(connection)


class TestBitbucketServer:
    def test_authenticated_username_from_header(self, server, connection):
        connection.head.return_value = MagicMock(headers={"X-AUSERNAME": "alice"})

        assert server.authenticated_username() == "alice"
        assert server.authenticated_username() == "alice"
        connection.head.assert_called_once_with("application-properties")

    def test_authenticated_username_falls_back_to_user(self, server, connection):
        connection.head.return_value = MagicMock(headers={})
        assert server.authenticated_username() == "basic-user"

    def test_user(self, server, connection):
        connection.head.return_value = MagicMock(headers={"X-AUSERNAME": "alice"})
        connection.get.return_value = {"slug": "alice"}

        assert server.user() == {"slug": "alice"}
        connection.get.assert_called_once_with("users", "alice")

    def test_group_members(self, server, connection):
        server.group_members("Developers")
        connection.get.assert_called_once_with(
            "admin", "groups", "more-members", query={"context": "Developers"}, auto_paginate=True
        )


class TestRepository:
    def test_paths(self, server, connection):
        repository = server.repository("PRJ", "api")

        repository.tags()
        connection.get.assert_called_with("projects", "PRJ", "repos", "api", "tags", query=None, auto_paginate=True)
        assert repository.project_and_repo == "PRJ/api"

    def test_repository_cached(self, server, connection):
        connection.get.return_value = {"slug": "api"}
        repository = server.repository("PRJ", "api")

        assert repository.repository() is repository.repository()
        assert connection.get.call_count == 1

    def test_pull_requests_oldest_first(self, server, connection):
        server.repository("PRJ", "api").pull_requests()
        connection.get.assert_called_with(
            "projects", "PRJ", "repos", "api", "pull-requests",
            query={"state": "ALL", "order": "OLDEST"},
            auto_paginate=True,
        )

    def test_access_keys_plugin_missing(self, server, connection):
        connection.get_all.side_effect = ApiError("404", status=404, url="u")
        assert server.repository("PRJ", "api").access_keys() == []
        connection.get_all.assert_called_once_with(
            "rest", "keys", "1.0", "projects", "PRJ", "repos", "api", "ssh", api_v1=False
        )

    def test_access_keys_other_errors_propagate(self, server, connection):
        connection.get_all.side_effect = ApiError("403", status=403, url="u")
        with pytest.raises(ApiError):
            server.repository("PRJ", "api").access_keys()

    def test_empty_repository_has_no_commits(self, server, connection):
        connection.get.side_effect = ApiError("404", status=404, url="u")
        assert server.repository("PRJ", "api").commits() == []

    def test_branch_permissions(self, server, connection):
        connection.get_all.return_value = [{"type": "read-only", "groups": ["devs"]}]

        assert server.repository("PRJ", "api").branch_permissions() == [{"type": "read-only", "groups": ["devs"]}]
        connection.get_all.assert_called_once_with(
            "rest", "branch-permissions", "2.0", "projects", "PRJ", "repos", "api", "restrictions", api_v1=False
        )

    def test_branch_permissions_plugin_missing(self, server, connection):
        connection.get_all.side_effect = ApiError("404", status=404, url="u")
        assert server.repository("PRJ", "api").branch_permissions() == []

    def test_commits_until(self, server, connection):
        server.repository("PRJ", "api").commits(until_id="abc")
        connection.get.assert_called_once_with(
            "projects", "PRJ", "repos", "api", "commits", query={"until": "abc"}, auto_paginate=True
        )

    def test_file_diff_with_comments(self, server, connection):
        server.repository("PRJ", "api").diff("abc", path="docs/README.md", since="p1")
        connection.get.assert_called_once_with(
            "projects", "PRJ", "repos", "api", "commits", "abc", "diff", "docs", "README.md",
            query={"since": "p1", "withComments": "true"},
        )

    def test_attachment(self, server, connection):
        connection.get_raw.return_value = (b"data", "image/png")
        assert server.repository("PRJ", "api").attachment("12") == (b"data", "image/png")
        connection.get_raw.assert_called_once_with("projects", "PRJ", "repos", "api", "attachments", "12", api_v1=False)

    def test_user_project(self, server):
        assert server.project("~alice").is_user_project()
        assert not server.project("PRJ").is_user_project()


class TestPullRequest:
    def test_prefetched_data_not_refetched(self, server, connection):
        pull_request = server.repository("PRJ", "api").pull_request(3, data={"id": 3})

        assert pull_request.pull_request() == {"id": 3}
        connection.get.assert_not_called()

    def test_activities_cached(self, server, connection):
        connection.get.return_value = [{"id": 1}]
        pull_request = server.repository("PRJ", "api").pull_request(3)

        pull_request.activities()
        pull_request.activities()

        connection.get.assert_called_once_with(
            "projects", "PRJ", "repos", "api", "pull-requests", 3, "activities", query=None, auto_paginate=True
        )

    def test_deleted_branch_has_no_commits(self, server, connection):
        connection.get.side_effect = ApiError("404", status=404, url="u")
        assert server.repository("PRJ", "api").pull_request(3).commits() == []
