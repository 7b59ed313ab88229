"""Export of one pull request and everything hanging off it."""

from __future__ import annotations

import logging

from bbsexport_core.bitbucket.connection import BitbucketServerError
from bbsexport_core.bitbucket.resources import PullRequest
from bbsexport_core.correlation import (
    CommitTimeline,
    ReviewGroup,
    diff_comment_activities,
    group_diff_comment_activities,
    is_comment,
    is_issue_event,
    is_review,
    review_group_for,
)
from bbsexport_core.dispatch import Dispatcher
from bbsexport_core.exporters.attachments import AttachmentExporter

logger = logging.getLogger(__name__)


class PullRequestExporter:
    """Serializes a pull request, its comments, reviews, review comments and events.

    Order matters for the importer: the pull request first, then general
    comments, then synthesized review groups before the review comments that
    point at them, then explicit approvals, then issue events.
    """

    def __init__(self, dispatcher: Dispatcher, resource: PullRequest, repository: dict, project: dict):
        self.dispatcher = dispatcher
        self.resource = resource
        self.pull_request = {
            **resource.pull_request(),
            "repository": repository,
            "owner": project,
        }
        self._timeline: CommitTimeline | None = None

    @property
    def created_date(self) -> int:
        return self.pull_request.get("createdDate", 0)

    @property
    def url(self) -> str:
        return self.dispatcher.url_service.url_for_model(self.pull_request)

    @property
    def timeline(self) -> CommitTimeline:
        if self._timeline is None:
            self._timeline = CommitTimeline(self.resource.commits())
        return self._timeline

    def export(self) -> bool:
        """Export the pull request; a malformed one is logged and skipped."""
        try:
            self._export()
        except BitbucketServerError:
            raise
        except (KeyError, TypeError, ValueError) as e:
            logger.exception("Error while exporting pull request %s: %s", self.pull_request.get("id"), e)
            return False
        return True

    def _export(self) -> None:
        author = (self.pull_request.get("author") or {}).get("user")
        if author:
            self.dispatcher.serialize("user", author)

        self.pull_request["description"] = self._export_attachments(
            "pull_request", self.url, author, self.pull_request.get("description"), self.created_date
        )
        self.dispatcher.serialize("pull_request", self.pull_request)

        activities = self.resource.activities()

        for activity in activities:
            if is_comment(activity):
                self.export_comment(activity["comment"])

        groups = group_diff_comment_activities(activities, self.timeline)
        for group in groups:
            self.export_review(group.activity, group.commit_id)

        for activity in diff_comment_activities(activities):
            self.export_review_comment(activity, review_group_for(activity, groups))

        for activity in activities:
            if is_review(activity):
                self.export_review(activity, self.timeline.commit_at(activity["createdDate"]))

        for activity in activities:
            if is_issue_event(activity):
                self.export_issue_event(activity)

    def _export_attachments(self, parent_type, parent_url, user, body, created_date) -> str:
        return AttachmentExporter(
            self.dispatcher,
            self.resource.repository_resource,
            parent_type=parent_type,
            parent_url=parent_url,
            user=user,
            body=body,
            created_date=created_date,
        ).export()

    def export_comment(self, comment: dict) -> None:
        """Export a general comment and, recursively, its replies."""
        if comment.get("author"):
            self.dispatcher.serialize("user", comment["author"])

        model = {"pull_request": self.pull_request, "pull_request_comment": comment}
        url = self.dispatcher.url_service.url_for_model(model, type="issue_comment")
        comment["text"] = self._export_attachments(
            "issue_comment", url, comment.get("author"), comment.get("text"), comment.get("createdDate")
        )
        self.dispatcher.dispatch("issue_comment", model)

        for reply in comment.get("comments", []):
            self.export_comment(reply)

    def review_model(self, activity: dict, commit_id: str | None) -> dict:
        return {"pull_request": self.pull_request, "activity": activity, "commit_id": commit_id}

    def export_review(self, activity: dict, commit_id: str | None) -> None:
        if activity.get("user"):
            self.dispatcher.serialize("user", activity["user"])
        self.dispatcher.dispatch("pull_request_review", self.review_model(activity, commit_id))

    def export_review_comment(self, activity: dict, group: ReviewGroup | None, comment: dict | None = None) -> None:
        """Export a diff or file comment, and its replies, under its group's review."""
        comment = comment or activity["comment"]
        commit_id = group.commit_id if group else None
        review_url = None
        if group is not None:
            review_url = self.dispatcher.url_service.url_for_model(
                self.review_model(group.activity, group.commit_id), type="pull_request_review"
            )

        if comment.get("author"):
            self.dispatcher.serialize("user", comment["author"])

        self.dispatcher.dispatch(
            "pull_request_review_comment",
            {
                "pull_request": self.pull_request,
                "activity": activity,
                "comment": comment,
                "commit_id": commit_id,
                "review_url": review_url,
            },
        )

        for reply in comment.get("comments", []):
            self.export_review_comment(activity, group, comment=reply)

    def export_issue_event(self, activity: dict) -> None:
        if activity.get("user"):
            self.dispatcher.serialize("user", activity["user"])
        self.dispatcher.dispatch("issue_event", {"pull_request": self.pull_request, "activity": activity})
