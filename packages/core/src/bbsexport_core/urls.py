"""Canonical URLs for exported models.

Every archived record is identified by a Bitbucket Server style URL. The
same URL is the dedup key used by the dispatcher, so url_for_model() must be
deterministic for a given (model, type) pair.
"""

from __future__ import annotations

from urllib.parse import quote, quote_plus, urlencode, urlsplit, urlunsplit

from bbsexport_core.correlation import activity_author_slug


def _self_href(model: dict) -> str:
    return model["links"]["self"][0]["href"]


def _with(url: str, *, path: str | None = None, query: dict | None = None, fragment: str | None = None) -> str:
    parts = urlsplit(url)
    return urlunsplit(
        (
            parts.scheme,
            parts.netloc,
            parts.path if path is None else path,
            parts.query if query is None else urlencode(query),
            parts.fragment if fragment is None else fragment,
        )
    )


def _join(*segments: str) -> str:
    return "/".join(s.strip("/") for s in segments if s)


class ModelUrlService:
    """Maps a raw Bitbucket Server model and a model type to its canonical URL."""

    def url_for_model(self, model: dict, type: str | None = None) -> str:
        handler = self._HANDLERS.get(type)
        if handler is None:
            return _self_href(model)
        return handler(self, model)

    def _repository_url(self, model: dict) -> str:
        href = _self_href(model)
        return href[: -len("/browse")] if href.endswith("/browse") else href

    def _user_url(self, model: dict) -> str:
        if "links" in model:
            return _self_href(model)
        # Users referenced only by slug (e.g. group members without links).
        repository_url = self._repository_url(model["repository"])
        return _with(repository_url, path="/" + _join("users", model["user"]["slug"]), query={}, fragment="")

    def _nested_user_url(self, model: dict) -> str:
        return _self_href(model["user"])

    def _team_url(self, model: dict) -> str:
        project_url = _self_href(model["project"])
        return _with(
            project_url,
            path="/admin/groups/view",
            query={"name": model["name"]},
            fragment=quote(model["project"]["key"]),
        )

    def _release_url(self, model: dict) -> str:
        repository_url = self._repository_url(model["repository"])
        return f"{repository_url}?at=refs/tags/{quote_plus(model['displayId'])}"

    def _attachment_url(self, model: dict) -> str:
        if model.get("url"):
            return model["url"]
        repository_url = self._repository_url(model["repository"])
        parts = urlsplit(repository_url)
        return _with(repository_url, path="/" + _join(parts.path, "attachments", model["path"]))

    def _issue_comment_url(self, model: dict) -> str:
        pull_request_url = _self_href(model["pull_request"])
        comment = model["pull_request_comment"]
        parts = urlsplit(pull_request_url)
        return _with(
            pull_request_url,
            path="/" + _join(parts.path, "overview"),
            query={"commentId": comment["id"]},
        )

    def _review_comment_url(self, model: dict) -> str:
        pull_request_url = _self_href(model["pull_request"])
        comment = model["comment"]
        parts = urlsplit(pull_request_url)
        return _with(
            pull_request_url,
            path="/" + _join(parts.path, "overview"),
            query={"commentId": comment["id"]},
            fragment=f"r{comment['id']}",
        )

    def _review_url(self, model: dict) -> str:
        pull_request_url = _self_href(model["pull_request"])
        activity = model["activity"]
        if activity.get("action") == "COMMENTED":
            fragment = review_group_fragment(activity_author_slug(activity), model.get("commit_id"))
        else:
            fragment = str(activity["id"])
        return _with(pull_request_url, fragment=fragment)

    def _issue_event_url(self, model: dict) -> str:
        pull_request_url = _self_href(model["pull_request"])
        return _with(pull_request_url, fragment=f"event-{model['activity']['id']}")

    def _commit_comment_url(self, model: dict) -> str:
        repository_url = self._repository_url(model["repository"])
        comment_id = model["comment"]["id"]
        parts = urlsplit(repository_url)
        return _with(
            repository_url,
            path="/" + _join(parts.path, "commits", model["commit_id"]),
            query={"commentId": comment_id},
            fragment=f"commitcomment-{comment_id}",
        )

    _HANDLERS = {
        "repository": _repository_url,
        "user": _user_url,
        "author": _nested_user_url,
        "member": _nested_user_url,
        "team": _team_url,
        "release": _release_url,
        "attachment": _attachment_url,
        "issue_comment": _issue_comment_url,
        "pull_request_review_comment": _review_comment_url,
        "pull_request_review": _review_url,
        "issue_event": _issue_event_url,
        "commit_comment": _commit_comment_url,
    }


def review_group_fragment(author_slug: str, commit_id: str | None) -> str:
    """URL fragment identifying a review synthesized from grouped diff comments."""
    return f"{author_slug}-{commit_id}"


def url_templates() -> dict:
    """URL templates the importer uses to resolve the canonical URLs above."""
    base = "{scheme}://{host}"
    project = base + "/projects/{organization}"
    repository = project + "/repos/{repository}"
    pull_request = repository + "/pull-requests/{number}"
    return {
        "user": base + "/users/{user}",
        "organization": project,
        "team": base + "/admin/groups/view?name={team}#{organization}",
        "repository": repository,
        "release": repository + "?at=refs/tags/{release}",
        "pull_request": pull_request,
        "pull_request_review": pull_request + "#{review}",
        "pull_request_review_comment": pull_request + "/overview?commentId={pull_request_review_comment}#r{pull_request_review_comment}",
        "issue_comment": {"pull_request": pull_request + "/overview?commentId={issue_comment}"},
        "issue_event": {"pull_request": pull_request + "#event-{event}"},
        "attachment": repository + "/attachments/{attachment}",
        "commit_comment": repository + "/commits/{commit}?commentId={commit_comment}#commitcomment-{commit_comment}",
    }
