"""Bitbucket Server resources: server, project, repository and pull request.

Each resource knows its REST path and fetches raw JSON through a shared
Connection. Nothing is transformed here.
"""

from __future__ import annotations

import logging

from bbsexport_core.bitbucket.connection import ApiError, Connection

logger = logging.getLogger(__name__)


class Resource:
    path: tuple = ()

    def __init__(self, connection: Connection):
        self.connection = connection

    def _get(self, *segments, query: dict | None = None, **kwargs):
        return self.connection.get(*self.path, *segments, query=query, **kwargs)

    def _get_all(self, *segments, query: dict | None = None):
        return self._get(*segments, query=query, auto_paginate=True)


class BitbucketServer(Resource):
    """Entry point for a Bitbucket Server instance."""

    def __init__(self, connection: Connection):
        super().__init__(connection)
        self._username: str | None = None

    def project(self, key: str) -> Project:
        return Project(self.connection, key)

    def repository(self, project_key: str, slug: str) -> Repository:
        return self.project(project_key).repository(slug)

    def authenticated_username(self) -> str | None:
        """Slug of the user the connection authenticates as.

        Bitbucket Server echoes it in the ``X-AUSERNAME`` header; fall back to
        the configured basic-auth user.
        """
        if self._username is None:
            response = self.connection.head("application-properties")
            self._username = response.headers.get("X-AUSERNAME") or self.connection.user
        return self._username

    def user(self) -> dict | None:
        username = self.authenticated_username()
        if not username:
            return None
        return self.connection.get("users", username)

    def groups(self) -> list[dict]:
        return self.connection.get("admin", "groups", auto_paginate=True)

    def group_members(self, group_name: str) -> list[dict]:
        return self.connection.get(
            "admin", "groups", "more-members", query={"context": group_name}, auto_paginate=True
        )


class Project(Resource):
    def __init__(self, connection: Connection, key: str):
        super().__init__(connection)
        self.key = key
        self.path = ("projects", key)

    def repository(self, slug: str) -> Repository:
        return Repository(self.connection, self, slug)

    def members(self) -> list[dict]:
        return self._get_all("permissions", "users")

    def is_user_project(self) -> bool:
        return self.key.startswith("~")


class Repository(Resource):
    def __init__(self, connection: Connection, project: Project, slug: str):
        super().__init__(connection)
        self.project_resource = project
        self.slug = slug
        self.path = (*project.path, "repos", slug)
        self._repository: dict | None = None

    @property
    def project_and_repo(self) -> str:
        return f"{self.project_resource.key}/{self.slug}"

    def repository(self) -> dict:
        if self._repository is None:
            self._repository = self._get()
        return self._repository

    def team_members(self) -> list[dict]:
        return self._get_all("permissions", "users")

    def group_access(self) -> list[dict]:
        return self._get_all("permissions", "groups")

    def access_keys(self) -> list[dict]:
        """SSH access keys, served by the bundled ssh plugin's own REST API."""
        try:
            return self.connection.get_all("rest", "keys", "1.0", *self.path, "ssh", api_v1=False)
        except ApiError as e:
            if e.status != 404:
                raise
            logger.debug("SSH access keys plugin not available for %s", self.project_and_repo)
            return []

    def tags(self) -> list[dict]:
        return self._get_all("tags")

    def branches(self) -> list[dict]:
        return self._get_all("branches")

    def branch_permissions(self) -> list[dict]:
        """Branch restrictions, served by the branch permissions plugin's REST API."""
        try:
            return self.connection.get_all(
                "rest", "branch-permissions", "2.0", *self.path, "restrictions", api_v1=False
            )
        except ApiError as e:
            if e.status != 404:
                raise
            logger.debug("Branch permissions plugin not available for %s", self.project_and_repo)
            return []

    def commit(self, commit_id: str) -> dict:
        return self._get("commits", commit_id)

    def diff(self, commit_id: str, path: str | None = None, since: str | None = None) -> dict:
        """Diff of a commit against ``since`` (its first parent by default), with comments."""
        segments = path.split("/") if path else ()
        return self._get("commits", commit_id, "diff", *segments, query={"since": since, "withComments": "true"})

    def commits(self, until_id: str | None = None) -> list[dict]:
        try:
            return self._get_all("commits", query={"until": until_id})
        except ApiError as e:
            # Empty repositories 404 on the commits endpoint.
            if e.status != 404:
                raise
            return []

    def pull_requests(self, state: str = "ALL") -> list[dict]:
        return self._get_all("pull-requests", query={"state": state, "order": "OLDEST"})

    def pull_request(self, pull_request_id: int, data: dict | None = None) -> PullRequest:
        return PullRequest(self.connection, self, pull_request_id, data=data)

    def attachment(self, attachment_id: str) -> tuple[bytes, str | None]:
        """Download an attachment; served outside the versioned REST API."""
        return self.connection.get_raw(*self.path, "attachments", attachment_id, api_v1=False)


class PullRequest(Resource):
    def __init__(self, connection: Connection, repository: Repository, pull_request_id: int, data: dict | None = None):
        super().__init__(connection)
        self.repository_resource = repository
        self.id = pull_request_id
        self.path = (*repository.path, "pull-requests", pull_request_id)
        self._pull_request: dict | None = data
        self._activities: list[dict] | None = None
        self._commits: list[dict] | None = None

    def pull_request(self) -> dict:
        if self._pull_request is None:
            self._pull_request = self._get()
        return self._pull_request

    def activities(self) -> list[dict]:
        if self._activities is None:
            self._activities = self._get_all("activities")
        return self._activities

    def commits(self) -> list[dict]:
        if self._commits is None:
            try:
                self._commits = self._get_all("commits")
            except ApiError as e:
                # Pull requests whose source branch was deleted 404 here.
                if e.status != 404:
                    raise
                self._commits = []
        return self._commits
