"""Comments left on commits outside of any pull request.

Bitbucket Server only hands commit comments out inside diffs. Commits that
carry a ``commentCount`` property are found by walking the history of every
branch head, then each file of each such commit is diffed with comments.
"""

from __future__ import annotations

import logging

from bbsexport_core.bitbucket.connection import BitbucketServerError
from bbsexport_core.bitbucket.resources import Repository
from bbsexport_core.dispatch import Dispatcher
from bbsexport_core.exporters.attachments import AttachmentExporter

logger = logging.getLogger(__name__)


def diff_item_path(diff_item: dict) -> str | None:
    """Path of a file in a diff; deleted files only have a source."""
    side = diff_item.get("destination") or diff_item.get("source") or {}
    return side.get("toString")


def line_anchor(diff_item: dict, comment_id: int) -> tuple[int | None, str | None]:
    """(line, line type) of the diff line a comment is attached to."""
    for hunk in diff_item.get("hunks", []):
        for segment in hunk.get("segments", []):
            for line in segment.get("lines", []):
                if comment_id in line.get("commentIds", []):
                    if segment.get("type") == "REMOVED":
                        return line.get("source"), segment.get("type")
                    return line.get("destination"), segment.get("type")
    return None, None


class CommitCommentExporter:
    def __init__(self, dispatcher: Dispatcher, resource: Repository, repository: dict):
        self.dispatcher = dispatcher
        self.resource = resource
        self.repository = repository

    def branch_heads(self) -> list[str]:
        heads = []
        for branch in self.resource.branches():
            if branch["latestCommit"] not in heads:
                heads.append(branch["latestCommit"])
        return heads

    def commits_with_comments(self) -> list[dict]:
        """Commented commits reachable from any branch, each listed once."""
        found: dict[str, dict] = {}
        for head in self.branch_heads():
            for commit in self.resource.commits(until_id=head):
                if "commentCount" in (commit.get("properties") or {}):
                    found.setdefault(commit["id"], commit)
        return list(found.values())

    def export(self) -> None:
        for commit in self.commits_with_comments():
            try:
                self.export_commit(commit)
            except BitbucketServerError:
                raise
            except (KeyError, TypeError, ValueError) as e:
                logger.exception("Error while exporting comments on commit %s: %s", commit.get("id"), e)

    def export_commit(self, commit: dict) -> None:
        parents = commit.get("parents") or []
        since = parents[0]["id"] if parents else None
        commit_id = commit["id"]

        # The commit-wide diff lists files only; comments need a per-file diff.
        for diff_item in self.resource.diff(commit_id, since=since).get("diffs", []):
            path = diff_item_path(diff_item)
            if path is None:
                continue
            file_diff = self.resource.diff(commit_id, path=path, since=since)
            for item in file_diff.get("diffs", []):
                self.export_diff_item(item, commit_id)

    def export_diff_item(self, diff_item: dict, commit_id: str) -> None:
        path = diff_item_path(diff_item)
        for comment in diff_item.get("lineComments", []):
            line, line_type = line_anchor(diff_item, comment["id"])
            self.export_comment(comment, commit_id, path, line, line_type)
        for comment in diff_item.get("fileComments", []):
            self.export_comment(comment, commit_id, path, None, None)

    def export_comment(
        self, comment: dict, commit_id: str, path: str | None, line: int | None, line_type: str | None
    ) -> None:
        """Export one comment and, recursively, its replies at the same anchor."""
        if comment.get("author"):
            self.dispatcher.serialize("user", comment["author"])

        model = {
            "repository": self.repository,
            "commit_id": commit_id,
            "comment": comment,
            "path": path,
            "line": line,
            "line_type": line_type,
        }
        url = self.dispatcher.url_service.url_for_model(model, type="commit_comment")
        comment["text"] = AttachmentExporter(
            self.dispatcher,
            self.resource,
            parent_type="commit_comment",
            parent_url=url,
            user=comment.get("author"),
            body=comment.get("text"),
            created_date=comment.get("createdDate"),
        ).export()
        self.dispatcher.dispatch("commit_comment", model)

        for reply in comment.get("comments", []):
            self.export_comment(reply, commit_id, path, line, line_type)
