"""Export of one repository: its project, people, git data, tags and pull requests."""

from __future__ import annotations

import logging

from rich.console import Console

from bbsexport_core.bitbucket.resources import BitbucketServer, Repository
from bbsexport_core.dispatch import Dispatcher
from bbsexport_core.exporters.commit_comments import CommitCommentExporter
from bbsexport_core.exporters.pull_request import PullRequestExporter

console = Console()
logger = logging.getLogger(__name__)


def http_clone_url(repository: dict) -> str | None:
    for link in repository.get("links", {}).get("clone", []):
        if link.get("name") == "http":
            return link["href"]
    return None


class RepositoryExporter:
    """Drives the export of a single repository through the dispatcher.

    ``models`` selects the optional parts of the export; see OPTIONAL_MODELS.
    """

    def __init__(
        self,
        dispatcher: Dispatcher,
        server: BitbucketServer,
        resource: Repository,
        models: tuple[str, ...] | list[str] = (),
        clone: bool = True,
    ):
        unknown = set(models) - set(self.OPTIONAL_MODELS)
        if unknown:
            raise ValueError(f"Unknown optional models: {', '.join(sorted(unknown))}")

        self.dispatcher = dispatcher
        self.archiver = dispatcher.archiver
        self.server = server
        self.resource = resource
        self.models = [m for m in self.OPTIONAL_MODELS if m in models]
        self.clone = clone
        self.pull_requests: list[PullRequestExporter] = []
        self._project: dict | None = None
        self._group_names: dict[str, str] = {}

    @property
    def repository(self) -> dict:
        return self.resource.repository()

    @property
    def repository_url(self) -> str:
        return self.dispatcher.url_service.url_for_model(self.repository, type="repository")

    def export(self) -> None:
        console.print(f"Exporting repository [bold]{self.resource.project_and_repo}[/bold]...")

        user = self.server.user()
        if user:
            self.dispatcher.serialize("user", user)

        repository = self.repository
        repository["owner"] = self.project
        repository["collaborators"] = self.export_collaborators()
        repository["access_keys"] = self.resource.access_keys()

        if self.clone:
            self.clone_repository()

        self.export_tags()
        self.dispatcher.serialize("repository", repository)

        for model in self.models:
            self.OPTIONAL_MODELS[model](self)

        if self.pull_requests:
            console.print("Exporting pull requests...")
        for exporter in sorted(self.pull_requests, key=lambda e: e.created_date):
            exporter.export()

    # ------------------------------------------------------------------
    # Project and people
    # ------------------------------------------------------------------

    @property
    def project(self) -> dict:
        if self._project is None:
            self._project = self.export_project()
        return self._project

    def export_project(self) -> dict:
        """Serialize the owning project as an organization, or its owner for ~user projects."""
        project_resource = self.resource.project_resource
        project = self.repository["project"]

        if project_resource.is_user_project():
            if project.get("owner"):
                self.dispatcher.serialize("user", project["owner"])
            return project

        project = {**project, "members": project_resource.members()}
        self.dispatcher.serialize("organization", project)
        for member in project["members"]:
            self.dispatcher.serialize("user", member["user"])
        return project

    def export_collaborators(self) -> list[dict]:
        collaborators = self.resource.team_members()
        for collaborator in collaborators:
            self.dispatcher.serialize("user", collaborator["user"])
        return collaborators

    # ------------------------------------------------------------------
    # Git data
    # ------------------------------------------------------------------

    def clone_repository(self) -> None:
        url = http_clone_url(self.repository)
        if url is None:
            logger.warning("%s has no http clone link, skipping git data", self.resource.project_and_repo)
            return
        console.print("Cloning repository...")
        self.archiver.clone_repo(self.repository, url, auth_header=self.server.connection.auth_header())

    def export_tags(self) -> None:
        tags = self.resource.tags()
        if tags:
            console.print("Exporting tags...")
        user = self.server.user()
        for tag in tags:
            release = {
                **tag,
                "repository": self.repository,
                "user": user,
                "commit": self.resource.commit(tag["latestCommit"]),
            }
            self.dispatcher.dispatch("release", release)

    # ------------------------------------------------------------------
    # Optional models
    # ------------------------------------------------------------------

    def export_teams(self) -> None:
        """Serialize repository group permissions and branch restriction groups as teams."""
        console.print("Exporting teams...")
        # Group permissions come back lower-cased; the group list has the real case.
        self._group_names = {g["name"].lower(): g["name"] for g in self.server.groups()}
        self.export_group_access_teams()
        self.export_branch_permission_teams()

    def export_group_access_teams(self) -> None:
        for access in self.resource.group_access():
            group_name = self._group_name(access["group"]["name"])
            self._dispatch_team(
                group_name,
                self._export_group_members(group_name),
                permission=access.get("permission"),
                repositories=[self.repository_url],
            )

    def export_branch_permission_teams(self) -> None:
        for restriction in self.resource.branch_permissions():
            for name in restriction.get("groups", []):
                group_name = self._group_name(name)
                self._dispatch_team(group_name, self._export_group_members(group_name))

    def _group_name(self, name: str) -> str:
        return self._group_names.get(name.lower(), name)

    def _export_group_members(self, group_name: str) -> list[str]:
        members = []
        for member in self.server.group_members(group_name):
            self.dispatcher.serialize("user", member)
            members.append(self.dispatcher.url_service.url_for_model(member, type="user"))
        return members

    def _dispatch_team(
        self, name: str, members: list[str], permission: str | None = None, repositories: list[str] | None = None
    ) -> None:
        self.dispatcher.dispatch(
            "team",
            {
                "name": name,
                "project": self.repository["project"],
                "permission": permission,
                "members": members,
                "repositories": repositories or [],
            },
        )

    def export_commit_comments(self) -> None:
        console.print("Exporting commit comments...")
        CommitCommentExporter(self.dispatcher, self.resource, self.repository).export()

    def prepare_pull_requests(self) -> None:
        """Queue pull requests for export once the repository itself is written."""
        console.print("Preparing pull requests...")
        for data in self.resource.pull_requests():
            pull_request = self.resource.pull_request(data["id"], data=data)
            if not pull_request.commits():
                logger.warning(
                    "pull_request %s was skipped because the PR has no diff",
                    self.dispatcher.url_service.url_for_model(data),
                )
                continue
            self.pull_requests.append(
                PullRequestExporter(self.dispatcher, pull_request, repository=self.repository, project=self.project)
            )

    OPTIONAL_MODELS = {
        "teams": export_teams,
        "commit_comments": export_commit_comments,
        "pull_requests": prepare_pull_requests,
    }
