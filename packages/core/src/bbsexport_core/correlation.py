"""Correlating pull request activity with the commits it was made against.

Bitbucket Server activities carry a timestamp but no commit. The importer
needs a commit id for every review, so two things happen here:

1. CommitTimeline answers "which commit was HEAD at time T": the newest
   commit whose author timestamp is not after T.
2. Diff and file comments are grouped by (author slug, resolved commit);
   each group becomes one synthesized review whose representative activity
   is the group's earliest one.

Approvals and unapprovals are not grouped. Each resolves its own commit.
"""

from __future__ import annotations

from dataclasses import dataclass, field

REVIEW_STATES = {
    "COMMENTED": 1,
    "UNAPPROVED": 30,
    "APPROVED": 40,
}

ISSUE_EVENTS = {
    "DECLINED": "closed",
    "REOPENED": "reopened",
    "MERGED": "merged",
}


def _added_comment(activity: dict) -> bool:
    return activity.get("action") == "COMMENTED" and activity.get("commentAction") == "ADDED"


def is_comment(activity: dict) -> bool:
    """A general pull request comment, not attached to a file or line."""
    return _added_comment(activity) and not activity.get("commentAnchor")


def is_diff_comment(activity: dict) -> bool:
    anchor = activity.get("commentAnchor")
    return _added_comment(activity) and bool(anchor) and anchor.get("line") is not None


def is_file_comment(activity: dict) -> bool:
    anchor = activity.get("commentAnchor")
    return _added_comment(activity) and bool(anchor) and anchor.get("line") is None


def is_review(activity: dict) -> bool:
    return activity.get("action") in ("APPROVED", "UNAPPROVED")


def is_issue_event(activity: dict) -> bool:
    return activity.get("action") in ISSUE_EVENTS


def review_state(activity: dict) -> int:
    return REVIEW_STATES[activity["action"]]


def activity_author_slug(activity: dict) -> str | None:
    comment = activity.get("comment")
    if comment and comment.get("author"):
        return comment["author"].get("slug")
    return (activity.get("user") or {}).get("slug")


class CommitTimeline:
    """A pull request's commits ordered newest first by author timestamp."""

    def __init__(self, commits: list[dict]):
        self._entries: list[tuple[int, str]] = sorted(
            ((c["authorTimestamp"], c["id"]) for c in commits),
            reverse=True,
        )

    def __len__(self) -> int:
        return len(self._entries)

    def __iter__(self):
        return iter(self._entries)

    def commit_at(self, timestamp: int) -> str | None:
        """Return the id of the commit current at ``timestamp``, or None.

        None means the activity predates every known commit, which happens
        after force-pushes rewrite a pull request's history.
        """
        for commit_timestamp, commit_id in self._entries:
            if timestamp >= commit_timestamp:
                return commit_id
        return None


@dataclass(frozen=True)
class ReviewGroup:
    """Diff comments by one author against one commit, reviewed together."""

    author_slug: str | None
    commit_id: str | None
    activity: dict
    activities: tuple[dict, ...] = field(default_factory=tuple)


def diff_comment_activities(activities: list[dict]) -> list[dict]:
    return [a for a in activities if is_diff_comment(a) or is_file_comment(a)]


def group_diff_comment_activities(activities: list[dict], timeline: CommitTimeline) -> list[ReviewGroup]:
    """Group diff and file comments by (author slug, commit current at creation).

    Groups are returned in the order their first member appears. The
    representative is the member with the smallest ``createdDate``; on a tie
    the earlier one in ``activities`` wins.
    """
    groups: dict[tuple[str | None, str | None], list[dict]] = {}
    for activity in diff_comment_activities(activities):
        key = (activity_author_slug(activity), timeline.commit_at(activity["createdDate"]))
        groups.setdefault(key, []).append(activity)

    return [
        ReviewGroup(
            author_slug=author_slug,
            commit_id=commit_id,
            activity=min(members, key=lambda a: a["createdDate"]),
            activities=tuple(members),
        )
        for (author_slug, commit_id), members in groups.items()
    ]


def review_group_for(activity: dict, groups: list[ReviewGroup]) -> ReviewGroup | None:
    """Find the group a diff comment activity was placed in."""
    for group in groups:
        if any(member is activity for member in group.activities):
            return group
    return None
