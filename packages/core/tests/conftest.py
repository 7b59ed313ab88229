"""Bitbucket Server shaped fixtures shared by the core tests."""

from __future__ import annotations

import pytest

BBS = "https://bbs.example.com"


def _links(href: str) -> dict:
    return {"self": [{"href": href}]}


def make_user(slug: str = "alice", **overrides) -> dict:
    user = {
        "name": slug,
        "id": 1,
        "slug": slug,
        "displayName": slug.title(),
        "emailAddress": f"{slug}@example.com",
        "type": "NORMAL",
        "links": _links(f"{BBS}/users/{slug}"),
    }
    user.update(overrides)
    return user


def make_project(key: str = "PRJ", **overrides) -> dict:
    project = {
        "key": key,
        "id": 1,
        "name": "Project",
        "description": "The project",
        "public": False,
        "type": "NORMAL",
        "links": _links(f"{BBS}/projects/{key}"),
    }
    project.update(overrides)
    return project


def make_repository(slug: str = "api", project: dict | None = None) -> dict:
    project = project or make_project()
    return {
        "slug": slug,
        "id": 5,
        "name": slug,
        "project": project,
        "public": False,
        "links": {
            "clone": [
                {"href": f"ssh://git@bbs.example.com:7999/{project['key'].lower()}/{slug}.git", "name": "ssh"},
                {"href": f"{BBS}/scm/{project['key'].lower()}/{slug}.git", "name": "http"},
            ],
            "self": [{"href": f"{BBS}/projects/{project['key']}/repos/{slug}/browse"}],
        },
    }


def make_pull_request(pr_id: int = 3, author: dict | None = None, **overrides) -> dict:
    pull_request = {
        "id": pr_id,
        "title": "Add feature",
        "description": "Does things",
        "state": "OPEN",
        "createdDate": 1500000000000,
        "updatedDate": 1500000100000,
        "fromRef": {"displayId": "feature", "latestCommit": "f" * 40},
        "toRef": {"displayId": "master", "latestCommit": "a" * 40},
        "author": {"user": author or make_user("alice"), "role": "AUTHOR"},
        "links": _links(f"{BBS}/projects/PRJ/repos/api/pull-requests/{pr_id}"),
    }
    pull_request.update(overrides)
    return pull_request


@pytest.fixture
def user():
    return make_user("alice")


@pytest.fixture
def project():
    return make_project()


@pytest.fixture
def repository(project):
    return make_repository(project=project)


@pytest.fixture
def pull_request(repository, project):
    return {**make_pull_request(), "repository": repository, "owner": project}


@pytest.fixture
def user_factory():
    return make_user


@pytest.fixture
def pull_request_factory(repository, project):
    def factory(pr_id: int = 3, **overrides) -> dict:
        return {**make_pull_request(pr_id, **overrides), "repository": repository, "owner": project}

    return factory
