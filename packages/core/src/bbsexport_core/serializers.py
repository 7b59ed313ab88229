"""Per-type serializers: raw Bitbucket Server JSON in, archive record out.

Each serializer declares the attributes that must be present before a record
can be written. serialize() raises ValidationError listing every missing
attribute; the dispatcher turns that into a failed result for the record.
"""

from __future__ import annotations

import base64
import hashlib
from datetime import datetime, timezone

from bbsexport_core.correlation import ISSUE_EVENTS, review_state
from bbsexport_core.urls import ModelUrlService


class ValidationError(ValueError):
    def __init__(self, model_name: str, missing: list[str]):
        self.model_name = model_name
        self.missing = missing
        super().__init__(f"{model_name} is missing {', '.join(missing)}")


def format_timestamp(millis: int | None) -> str | None:
    """Bitbucket Server millisecond epoch → ISO-8601 UTC."""
    if millis is None:
        return None
    return datetime.fromtimestamp(millis / 1000, tz=timezone.utc).strftime("%Y-%m-%dT%H:%M:%SZ")


def now_timestamp() -> str:
    return datetime.now(timezone.utc).strftime("%Y-%m-%dT%H:%M:%SZ")


def ssh_fingerprint(public_key: str) -> str | None:
    """MD5 fingerprint ("aa:bb:...") of an OpenSSH public key line."""
    parts = public_key.split()
    if len(parts) < 2:
        return None
    try:
        blob = base64.b64decode(parts[1], validate=True)
    except ValueError:
        return None
    digest = hashlib.md5(blob).hexdigest()
    return ":".join(digest[i : i + 2] for i in range(0, len(digest), 2))


class BaseSerializer:
    model_name: str = ""
    required: tuple[str, ...] = ()

    def __init__(self, url_service: ModelUrlService | None = None):
        self.url_service = url_service or ModelUrlService()
        self.model: dict = {}

    def serialize(self, model: dict) -> dict:
        self.model = model
        self.validate()
        return self.to_record()

    def validate(self) -> None:
        missing = []
        for attribute in self.required:
            try:
                value = getattr(self, attribute)
            except (KeyError, TypeError, IndexError):
                value = None
            if value is None or value == "":
                missing.append(attribute)
        if missing:
            raise ValidationError(self.model_name, missing)

    def url_for(self, model: dict, type: str | None = None) -> str:
        return self.url_service.url_for_model(model, type=type)

    def to_record(self) -> dict:
        raise NotImplementedError


class UserSerializer(BaseSerializer):
    model_name = "user"
    required = ("slug",)

    @property
    def slug(self):
        return self.model["slug"]

    def to_record(self) -> dict:
        email = self.model.get("emailAddress")
        return {
            "type": "user",
            "url": self.url_for(self.model, type="user"),
            "login": self.slug,
            "name": self.model.get("displayName"),
            "company": None,
            "website": None,
            "location": None,
            "emails": [{"address": email, "primary": True}] if email else [],
            "created_at": now_timestamp(),
        }


class OrganizationSerializer(BaseSerializer):
    model_name = "organization"
    required = ("key", "name")

    @property
    def key(self):
        return self.model["key"]

    @property
    def name(self):
        return self.model["name"]

    def _member(self, member: dict) -> dict:
        role = "admin" if member.get("permission") == "PROJECT_ADMIN" else "direct_member"
        return {"user": self.url_for(member, type="member"), "role": role, "state": "active"}

    def to_record(self) -> dict:
        return {
            "type": "organization",
            "url": self.url_for(self.model),
            "login": self.key,
            "name": self.name,
            "description": self.model.get("description"),
            "website": None,
            "location": None,
            "email": None,
            "members": [self._member(m) for m in self.model.get("members", [])],
            "created_at": now_timestamp(),
        }


class TeamSerializer(BaseSerializer):
    model_name = "team"
    required = ("project", "name", "members", "repositories")

    PERMISSION_MAP = {
        "PROJECT_READ": "pull",
        "PROJECT_WRITE": "push",
        "PROJECT_ADMIN": "admin",
        "REPO_READ": "pull",
        "REPO_WRITE": "push",
        "REPO_ADMIN": "admin",
    }

    @property
    def project(self):
        return self.model["project"]

    @property
    def name(self):
        return self.model["name"]

    @property
    def members(self):
        return self.model["members"]

    @property
    def repositories(self):
        return self.model["repositories"]

    def to_record(self) -> dict:
        access = self.PERMISSION_MAP.get(self.model.get("permission"), "pull")
        return {
            "type": "team",
            "url": self.url_for(self.model, type="team"),
            "organization": self.url_for(self.project),
            "name": self.name,
            "permissions": [{"repository": r, "access": access} for r in self.repositories],
            "members": [{"user": m, "role": "member"} for m in self.members],
            "created_at": now_timestamp(),
        }


class RepositorySerializer(BaseSerializer):
    model_name = "repository"
    required = ("name", "project", "collaborators")

    @property
    def name(self):
        return self.model["slug"]

    @property
    def project(self):
        return self.model["project"]

    @property
    def collaborators(self):
        return self.model["collaborators"]

    def _public_key(self, access_key: dict) -> dict:
        key = access_key["key"]
        return {
            "title": key.get("label"),
            "key": key.get("text"),
            "read_only": access_key.get("permission") == "REPO_READ",
            "fingerprint": ssh_fingerprint(key.get("text", "")),
            "created_at": now_timestamp(),
        }

    def _collaborator(self, member: dict) -> dict:
        permission = TeamSerializer.PERMISSION_MAP.get(member.get("permission"), "pull")
        return {"user": self.url_for(member, type="member"), "permission": permission}

    def to_record(self) -> dict:
        private = not (self.project.get("public") or self.model.get("public"))
        return {
            "type": "repository",
            "url": self.url_for(self.model, type="repository"),
            "owner": self.url_for(self.model["owner"]) if self.model.get("owner") else None,
            "name": self.name,
            "description": self.model.get("description"),
            "private": private,
            "has_issues": False,
            "has_wiki": False,
            "has_downloads": False,
            "labels": [],
            "collaborators": [self._collaborator(c) for c in self.collaborators],
            "created_at": now_timestamp(),
            "git_url": f"tarball://root/repositories/{self.project['key']}/{self.name}.git",
            "default_branch": self.model.get("default_branch", "master"),
            "public_keys": [self._public_key(k) for k in self.model.get("access_keys", [])],
        }


class ReleaseSerializer(BaseSerializer):
    model_name = "release"
    required = ("display_id", "repository", "user", "author_timestamp")

    @property
    def display_id(self):
        return self.model["displayId"]

    @property
    def repository(self):
        return self.model["repository"]

    @property
    def user(self):
        return self.model["user"]

    @property
    def author_timestamp(self):
        return self.model["commit"]["authorTimestamp"]

    def to_record(self) -> dict:
        published = format_timestamp(self.author_timestamp)
        return {
            "type": "release",
            "url": self.url_for(self.model, type="release"),
            "repository": self.url_for(self.repository, type="repository"),
            "user": self.url_for(self.user, type="user"),
            "name": self.display_id,
            "tag_name": self.display_id,
            "body": "",
            "state": "published",
            "pending_tag": self.display_id,
            "prerelease": False,
            "target_commitish": self.model.get("latestCommit", "master"),
            "release_assets": [],
            "published_at": published,
            "created_at": published,
        }


class PullRequestSerializer(BaseSerializer):
    model_name = "pull_request"
    required = (
        "author",
        "created_date",
        "updated_date",
        "state",
        "repository",
        "owner",
        "to_ref_display_id",
        "to_ref_latest_commit",
        "from_ref_display_id",
        "from_ref_latest_commit",
    )

    @property
    def author(self):
        return self.model["author"]

    @property
    def created_date(self):
        return self.model["createdDate"]

    @property
    def updated_date(self):
        return self.model["updatedDate"]

    @property
    def state(self):
        return self.model["state"]

    @property
    def repository(self):
        return self.model["repository"]

    @property
    def owner(self):
        return self.model["owner"]

    @property
    def to_ref_display_id(self):
        return self.model["toRef"]["displayId"]

    @property
    def to_ref_latest_commit(self):
        return self.model["toRef"]["latestCommit"]

    @property
    def from_ref_display_id(self):
        return self.model["fromRef"]["displayId"]

    @property
    def from_ref_latest_commit(self):
        return self.model["fromRef"]["latestCommit"]

    def _ref(self, ref: str, sha: str) -> dict:
        return {
            "ref": ref,
            "sha": sha,
            "user": self.url_for(self.owner),
            "repo": self.url_for(self.repository, type="repository"),
        }

    def to_record(self) -> dict:
        updated = format_timestamp(self.updated_date)
        closed = self.state in ("MERGED", "DECLINED")
        return {
            "type": "pull_request",
            "url": self.url_for(self.model),
            "user": self.url_for(self.author, type="author"),
            "repository": self.url_for(self.repository, type="repository"),
            "title": self.model.get("title") or "",
            "body": self.model.get("description") or "",
            "base": self._ref(self.to_ref_display_id, self.to_ref_latest_commit),
            "head": self._ref(self.from_ref_display_id, self.from_ref_latest_commit),
            "labels": [],
            "merged_at": updated if self.state == "MERGED" else None,
            "closed_at": updated if closed else None,
            "created_at": format_timestamp(self.created_date),
        }


class IssueCommentSerializer(BaseSerializer):
    model_name = "issue_comment"
    required = ("pull_request", "author", "text", "created_date")

    @property
    def pull_request(self):
        return self.model["pull_request"]

    @property
    def comment(self) -> dict:
        return self.model["pull_request_comment"]

    @property
    def author(self):
        return self.comment["author"]

    @property
    def text(self):
        return self.comment["text"]

    @property
    def created_date(self):
        return self.comment["createdDate"]

    def to_record(self) -> dict:
        return {
            "type": "issue_comment",
            "url": self.url_for(self.model, type="issue_comment"),
            "pull_request": self.url_for(self.pull_request),
            "user": self.url_for(self.author, type="user"),
            "body": self.text,
            "formatter": "markdown",
            "created_at": format_timestamp(self.created_date),
        }


class PullRequestReviewSerializer(BaseSerializer):
    model_name = "pull_request_review"
    required = ("pull_request", "user", "created_date", "action")

    @property
    def pull_request(self):
        return self.model["pull_request"]

    @property
    def activity(self) -> dict:
        return self.model["activity"]

    @property
    def user(self):
        return self.activity["user"]

    @property
    def created_date(self):
        return self.activity["createdDate"]

    @property
    def action(self):
        return self.activity["action"]

    def to_record(self) -> dict:
        return {
            "type": "pull_request_review",
            "url": self.url_for(self.model, type="pull_request_review"),
            "pull_request": self.url_for(self.pull_request),
            "user": self.url_for(self.user, type="user"),
            "body": "",
            "head_sha": self.model.get("commit_id"),
            "formatter": "markdown",
            "state": review_state(self.activity),
            "created_at": format_timestamp(self.created_date),
        }


class PullRequestReviewCommentSerializer(BaseSerializer):
    model_name = "pull_request_review_comment"
    required = ("pull_request", "review_url", "author", "text", "path", "created_date")

    @property
    def pull_request(self):
        return self.model["pull_request"]

    @property
    def comment(self) -> dict:
        return self.model["comment"]

    @property
    def anchor(self) -> dict:
        return self.model["activity"]["commentAnchor"]

    @property
    def review_url(self):
        return self.model["review_url"]

    @property
    def author(self):
        return self.comment["author"]

    @property
    def text(self):
        return self.comment["text"]

    @property
    def path(self):
        return self.anchor["path"]

    @property
    def created_date(self):
        return self.comment["createdDate"]

    def to_record(self) -> dict:
        return {
            "type": "pull_request_review_comment",
            "url": self.url_for(self.model, type="pull_request_review_comment"),
            "pull_request": self.url_for(self.pull_request),
            "pull_request_review": self.review_url,
            "user": self.url_for(self.author, type="user"),
            "body": self.text,
            "formatter": "markdown",
            "path": self.path,
            "line": self.anchor.get("line"),
            "line_type": self.anchor.get("lineType"),
            "commit_id": self.model.get("commit_id"),
            "original_commit_id": self.anchor.get("toHash"),
            "created_at": format_timestamp(self.created_date),
        }


class CommitCommentSerializer(BaseSerializer):
    model_name = "commit_comment"
    required = ("repository", "commit_id", "author", "text", "created_date")

    @property
    def repository(self):
        return self.model["repository"]

    @property
    def commit_id(self):
        return self.model["commit_id"]

    @property
    def comment(self) -> dict:
        return self.model["comment"]

    @property
    def author(self):
        return self.comment["author"]

    @property
    def text(self):
        return self.comment["text"]

    @property
    def created_date(self):
        return self.comment["createdDate"]

    def to_record(self) -> dict:
        return {
            "type": "commit_comment",
            "url": self.url_for(self.model, type="commit_comment"),
            "repository": self.url_for(self.repository, type="repository"),
            "user": self.url_for(self.author, type="user"),
            "body": self.text,
            "formatter": "markdown",
            "path": self.model.get("path"),
            "line": self.model.get("line"),
            "line_type": self.model.get("line_type"),
            "commit_id": self.commit_id,
            "created_at": format_timestamp(self.created_date),
        }


class IssueEventSerializer(BaseSerializer):
    model_name = "issue_event"
    required = ("pull_request", "actor", "event", "created_date")

    @property
    def pull_request(self):
        return self.model["pull_request"]

    @property
    def activity(self) -> dict:
        return self.model["activity"]

    @property
    def actor(self):
        return self.activity["user"]

    @property
    def event(self):
        return ISSUE_EVENTS.get(self.activity["action"])

    @property
    def created_date(self):
        return self.activity["createdDate"]

    def to_record(self) -> dict:
        return {
            "type": "issue_event",
            "url": self.url_for(self.model, type="issue_event"),
            "pull_request": self.url_for(self.pull_request),
            "actor": self.url_for(self.actor, type="user"),
            "event": self.event,
            "created_at": format_timestamp(self.created_date),
        }


class AttachmentSerializer(BaseSerializer):
    model_name = "attachment"
    required = ("parent_type", "parent_url", "user", "asset_name", "asset_url")

    @property
    def parent_type(self):
        return self.model["parent_type"]

    @property
    def parent_url(self):
        return self.model["parent_url"]

    @property
    def user(self):
        return self.model["user"]

    @property
    def asset_name(self):
        return self.model["asset_name"]

    @property
    def asset_url(self):
        return self.model["asset_url"]

    def to_record(self) -> dict:
        return {
            "type": "attachment",
            "url": self.url_for(self.model, type="attachment"),
            self.parent_type: self.parent_url,
            "user": self.url_for(self.user, type="user"),
            "asset_name": self.asset_name,
            "asset_content_type": self.model.get("asset_content_type"),
            "asset_url": self.asset_url,
            "created_at": format_timestamp(self.model.get("created_date")),
        }


SERIALIZERS: dict[str, type[BaseSerializer]] = {
    "user": UserSerializer,
    "organization": OrganizationSerializer,
    "team": TeamSerializer,
    "repository": RepositorySerializer,
    "release": ReleaseSerializer,
    "pull_request": PullRequestSerializer,
    "issue_comment": IssueCommentSerializer,
    "pull_request_review": PullRequestReviewSerializer,
    "pull_request_review_comment": PullRequestReviewCommentSerializer,
    "issue_event": IssueEventSerializer,
    "commit_comment": CommitCommentSerializer,
    "attachment": AttachmentSerializer,
}
