"""Inline attachments in pull request and comment bodies.

Bitbucket Server stores uploads per repository and links them from markdown
as ``attachment:{repository id}/{attachment id}%2F{file name}``. Each link is
downloaded into the archive's ``attachments/`` directory, serialized as an
``attachment`` record, and rewritten in the body to its absolute URL.
"""

from __future__ import annotations

import hashlib
import logging
import posixpath
import re
from dataclasses import dataclass
from urllib.parse import unquote

from bbsexport_core.bitbucket.connection import ApiError
from bbsexport_core.bitbucket.resources import Repository
from bbsexport_core.dispatch import Dispatcher

logger = logging.getLogger(__name__)

ATTACHMENT_LINK_RE = re.compile(r"attachment:(?P<repository_id>\d+)/(?P<path>[^)\s'\"]+)")


@dataclass(frozen=True)
class Attachment:
    link: str
    path: str  # "{attachment id}/{file name}"
    url: str

    @property
    def attachment_id(self) -> str:
        return self.path.split("/", 1)[0]

    @property
    def name(self) -> str:
        return posixpath.basename(self.path)

    @property
    def archive_name(self) -> str:
        extension = posixpath.splitext(self.name)[1]
        return hashlib.md5(self.url.encode()).hexdigest() + extension

    @property
    def asset_url(self) -> str:
        return f"tarball://root/attachments/{self.archive_name}"


class AttachmentExporter:
    def __init__(
        self,
        dispatcher: Dispatcher,
        repository: Repository,
        parent_type: str,
        parent_url: str,
        user: dict | None,
        body: str | None,
        created_date: int | None,
    ):
        self.dispatcher = dispatcher
        self.repository = repository
        self.parent_type = parent_type
        self.parent_url = parent_url
        self.user = user
        self.body = body or ""
        self.created_date = created_date

    def attachments(self) -> list[Attachment]:
        repository_url = self.dispatcher.url_service.url_for_model(
            self.repository.repository(), type="repository"
        )
        found: dict[str, Attachment] = {}
        for match in ATTACHMENT_LINK_RE.finditer(self.body):
            path = unquote(match.group("path"))
            found.setdefault(
                match.group(0),
                Attachment(link=match.group(0), path=path, url=f"{repository_url}/attachments/{path}"),
            )
        return list(found.values())

    def export(self) -> str:
        """Archive every attachment linked from the body and return the rewritten body."""
        body = self.body
        for attachment in self.attachments():
            if self._archive(attachment):
                body = body.replace(attachment.link, attachment.url)
        return body

    def _archive(self, attachment: Attachment) -> bool:
        if self.dispatcher.archiver.is_seen("attachment", attachment.url):
            return True
        try:
            data, content_type = self.repository.attachment(attachment.attachment_id)
        except ApiError as e:
            if e.status != 404:
                raise
            logger.warning("Attachment %s no longer exists, leaving link as is", attachment.url)
            return False

        result = self.dispatcher.dispatch(
            "attachment",
            {
                "parent_type": self.parent_type,
                "parent_url": self.parent_url,
                "user": self.user,
                "created_date": self.created_date,
                "url": attachment.url,
                "asset_url": attachment.asset_url,
                "asset_name": attachment.name,
                "asset_content_type": content_type,
            },
        )
        if not result.serialized:
            return False
        self.dispatcher.archiver.save_attachment(data, attachment.archive_name)
        return True
