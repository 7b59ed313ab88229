"""HTTP access to the Bitbucket Server REST API.

Connection wraps a ``requests.Session`` with authentication, urllib3 retries
for idempotent calls, optional on-disk response caching, and error messages
that name the failing URL. The session is built lazily so a Connection can be
constructed before credentials are known; the first request raises
MissingCredentialsError if neither a token nor a user and password is set.
"""

from __future__ import annotations

import base64
import logging
import shutil
import tempfile
from typing import Any, Callable
from urllib.parse import quote, urlencode, urlsplit

import requests
from requests.adapters import HTTPAdapter
from urllib3.exceptions import NewConnectionError
from urllib3.exceptions import TimeoutError as Urllib3TimeoutError
from urllib3.util.retry import Retry

logger = logging.getLogger(__name__)

PAGE_LIMIT = 250
API_PREFIX = ("rest", "api", "1.0")

AroundRequest = Callable[[str, str, Callable[[], requests.Response]], requests.Response]


class BitbucketServerError(Exception):
    """Base class for errors raised by the Bitbucket Server client."""


class InvalidBaseUrl(BitbucketServerError, ValueError):
    def __init__(self, base_url: str):
        super().__init__(f"{base_url} is not a valid URL!")
        self.base_url = base_url


class MissingCredentialsError(BitbucketServerError):
    def __init__(self):
        super().__init__(
            "Must define `BITBUCKET_SERVER_API_TOKEN` or `BITBUCKET_SERVER_API_USERNAME` "
            "AND `BITBUCKET_SERVER_API_PASSWORD`"
        )


class RequestTimeoutError(BitbucketServerError):
    def __init__(self, message: str, *, url: str):
        super().__init__(message)
        self.url = url


class ApiError(BitbucketServerError):
    """A 4xx or 5xx response, with any messages from the ``errors`` array."""

    def __init__(self, message: str, *, status: int, url: str, errors: list[str] | None = None):
        super().__init__(message)
        self.status = status
        self.url = url
        self.errors = errors or []


def pass_through(method: str, url: str, perform: Callable[[], requests.Response]) -> requests.Response:
    """Default around_request hook: just make the request."""
    return perform()


def _is_timeout(exc: requests.RequestException) -> bool:
    if isinstance(exc, requests.exceptions.Timeout):
        return True
    # Exhausted read retries surface as ConnectionError(MaxRetryError(reason=ReadTimeoutError)).
    reason = getattr(exc.args[0], "reason", None) if exc.args else None
    return isinstance(reason, Urllib3TimeoutError) and not isinstance(reason, NewConnectionError)


def _error_messages(response: requests.Response) -> list[str]:
    try:
        body = response.json()
    except ValueError:
        return []
    if not isinstance(body, dict) or not isinstance(body.get("errors"), list):
        return []
    return [str(e.get("message", "")) for e in body["errors"] if isinstance(e, dict)]


class Connection:
    """Authenticated, paginating accessor for ``{base_url}/rest/api/1.0``."""

    def __init__(
        self,
        base_url: str,
        user: str | None = None,
        password: str | None = None,
        token: str | None = None,
        read_timeout: float | None = None,
        open_timeout: float | None = None,
        retries: int | None = None,
        ssl_verify: bool = True,
        around_request: AroundRequest | None = None,
        http_cache: bool = False,
        session_factory: Callable[[], requests.Session] = requests.Session,
    ):
        self.base_url = base_url.rstrip("/") if base_url else base_url
        self.user = user
        self.password = password
        self.token = token
        self.read_timeout = read_timeout
        self.open_timeout = open_timeout
        self.retries = retries
        self.ssl_verify = ssl_verify
        self.around_request = around_request or pass_through
        self.http_cache = http_cache

        self._session_factory = session_factory
        self._session: requests.Session | None = None
        self._cache_dir: str | None = None

        self._validate_base_url()

    def __repr__(self) -> str:
        password = "*******" if self.password else None
        token = "*******" if self.token else None
        return (
            f"Connection(base_url={self.base_url!r}, user={self.user!r}, "
            f"password={password!r}, token={token!r}, retries={self.retries!r})"
        )

    def _validate_base_url(self) -> None:
        parts = urlsplit(self.base_url or "")
        if parts.scheme not in ("http", "https") or not parts.netloc:
            raise InvalidBaseUrl(self.base_url)

    # ------------------------------------------------------------------
    # Authentication
    # ------------------------------------------------------------------

    def token_authenticated(self) -> bool:
        return bool(self.token)

    def basic_authenticated(self) -> bool:
        return bool(self.user and self.password)

    def auth_header(self) -> str:
        """The Authorization header value; bearer tokens win over basic auth."""
        if self.token_authenticated():
            return f"Bearer {self.token}"
        if self.basic_authenticated():
            credentials = base64.b64encode(f"{self.user}:{self.password}".encode()).decode()
            return f"Basic {credentials}"
        raise MissingCredentialsError()

    # ------------------------------------------------------------------
    # Session
    # ------------------------------------------------------------------

    @property
    def session(self) -> requests.Session:
        if self._session is None:
            self._session = self._build_session()
        return self._session

    def _build_session(self) -> requests.Session:
        auth_header = self.auth_header()

        session = self._session_factory()
        session.headers["Authorization"] = auth_header
        session.headers["Accept"] = "application/json"
        session.verify = self.ssl_verify

        adapter = self._build_adapter()
        session.mount("https://", adapter)
        session.mount("http://", adapter)
        return session

    def _build_adapter(self) -> HTTPAdapter:
        max_retries = Retry(0, read=False)
        if self.retries:
            max_retries = Retry(
                total=self.retries,
                connect=self.retries,
                read=self.retries,
                status=0,
                backoff_factor=0.5,
                allowed_methods=frozenset({"GET", "HEAD"}),
                raise_on_status=False,
            )

        if not self.http_cache:
            return HTTPAdapter(max_retries=max_retries)

        from cachecontrol import CacheControlAdapter
        from cachecontrol.caches.file_cache import FileCache

        from bbsexport_core.bitbucket.cache_headers import ForceCacheHeaders

        self._cache_dir = tempfile.mkdtemp(prefix="bbsexport_http_cache")
        logger.debug("Caching HTTP responses in %s", self._cache_dir)
        return CacheControlAdapter(
            cache=FileCache(self._cache_dir),
            heuristic=ForceCacheHeaders(),
            max_retries=max_retries,
        )

    def _timeout(self) -> tuple[float | None, float | None] | None:
        if self.open_timeout is None and self.read_timeout is None:
            return None
        return (self.open_timeout, self.read_timeout)

    def close(self) -> None:
        """Close the HTTP session and remove the response cache, if any."""
        if self._session is not None:
            self._session.close()
            self._session = None
        if self._cache_dir:
            shutil.rmtree(self._cache_dir, ignore_errors=True)
            self._cache_dir = None

    # ------------------------------------------------------------------
    # Requests
    # ------------------------------------------------------------------

    def encode_url(self, path=(), query: dict | None = None, api_v1: bool = True) -> str:
        segments = [quote(str(p), safe="") for p in _flatten(path)]
        if api_v1:
            segments = [*API_PREFIX, *segments]
        url = "/".join([self.base_url, *segments])

        if query:
            params = {k: v for k, v in query.items() if v is not None}
            if params:
                url = f"{url}?{urlencode(params)}"
        return url

    def request(self, method: str, url: str) -> requests.Response:
        """Issue one request through the around_request hook, classifying failures."""

        def perform() -> requests.Response:
            response = self.session.request(method, url, timeout=self._timeout())
            response.raise_for_status()
            return response

        try:
            return self.around_request(method, url, perform)
        except requests.exceptions.SSLError:
            raise
        except requests.exceptions.HTTPError as e:
            raise self._api_error(e.response, method, url) from e
        except (requests.exceptions.Timeout, requests.exceptions.ConnectionError) as e:
            if _is_timeout(e):
                raise RequestTimeoutError(self._timeout_message(method, url), url=url) from e
            raise

    def _api_error(self, response: requests.Response, method: str, url: str) -> ApiError:
        status = response.status_code if response is not None else 0
        message = f"{status} on {method} to {url}"
        errors = _error_messages(response) if response is not None else []
        if errors:
            message += ": " + " ".join(errors)
        return ApiError(message, status=status, url=url, errors=errors)

    def _timeout_message(self, method: str, url: str) -> str:
        if self.retries:
            return f"Timed out {self.retries} times during {method}s to {url}"
        return f"Timed out during {method} to {url}"

    def get_one(self, *path, query: dict | None = None, api_v1: bool = True) -> Any:
        """GET a single record or an un-paginated collection."""
        url = self.encode_url(path, query=query, api_v1=api_v1)
        response = self.request("GET", url)
        if not response.content:
            return None
        return response.json()

    def get_all(self, *path, query: dict | None = None, api_v1: bool = True) -> list:
        """GET every page of a paginated collection, concatenating ``values`` in order."""
        page_query: dict = {**(query or {}), "limit": PAGE_LIMIT}
        values: list = []

        while True:
            url = self.encode_url(path, query=page_query, api_v1=api_v1)
            body = self.request("GET", url).json()
            values.extend(body.get("values", []))

            if body.get("isLastPage", True):
                break
            next_start = body.get("nextPageStart")
            if next_start is None:
                logger.warning("Page from %s is not the last page but has no nextPageStart", url)
                break
            page_query["start"] = next_start

        return values

    def get(self, *path, auto_paginate: bool = False, query: dict | None = None, api_v1: bool = True) -> Any:
        if auto_paginate:
            return self.get_all(*path, query=query, api_v1=api_v1)
        return self.get_one(*path, query=query, api_v1=api_v1)

    def head(self, *path, query: dict | None = None, api_v1: bool = True) -> requests.Response:
        url = self.encode_url(path, query=query, api_v1=api_v1)
        return self.request("HEAD", url)

    def get_raw(self, *path, query: dict | None = None, api_v1: bool = False) -> tuple[bytes, str | None]:
        """GET binary content, returning the body and its content type."""
        url = self.encode_url(path, query=query, api_v1=api_v1)
        response = self.request("GET", url)
        return response.content, response.headers.get("Content-Type")


def _flatten(path) -> list:
    if isinstance(path, (str, int)):
        return [path]
    flat: list = []
    for p in path:
        flat.extend(_flatten(p))
    return flat
