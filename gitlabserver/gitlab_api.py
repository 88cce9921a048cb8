"""
GitLab API client with concurrent and cursor pagination.

"The API is just a door. Your token is the key. Don't lose it." — schema.cx
"""

import threading
from dataclasses import dataclass
from datetime import datetime
from typing import Any, Callable, Iterable, TypeVar
from urllib.parse import quote

import requests

from . import __version__
from .hierarchy import parent_group, top_level_groups
from .models import (
    AccessLevel,
    Commit,
    Config,
    Group,
    Member,
    Project,
    ResourceKind,
    User,
    Webhook,
)
from .pagination import FetchResult, PageDescriptor, fetch_all_concurrent, fetch_all_sequential
from .rich_utils import console, print_warning
from .validation import validate_hook_url, validate_namespace_path, validate_project_path

T = TypeVar("T")


class GitLabAPIError(Exception):
    """GitLab API error."""

    def __init__(self, message: str, status_code: int | None = None) -> None:
        super().__init__(message)
        self.status_code = status_code


class RateLimitError(GitLabAPIError):
    """Rate limit exceeded error."""

    pass


class CountUnavailableError(GitLabAPIError):
    """The X-Total header was missing or not a number."""

    pass


class UnexpectedStatusError(GitLabAPIError):
    """A request succeeded at the HTTP level but returned an unexpected status."""

    def __init__(self, status_code: int, expected: Iterable[int] = (200,)) -> None:
        expected_str = ", ".join(str(code) for code in expected)
        super().__init__(
            f"status code {status_code} not expected, expecting {expected_str}",
            status_code=status_code,
        )


class EmptyRepositoryError(GitLabAPIError):
    """The repository has no commits."""

    pass


@dataclass
class PageResponse:
    """One page of a collection plus the pagination headers that came with it."""

    items: list[dict[str, Any]]
    page: int
    next_page: int  # 0 when there are no more pages
    total: int | None = None


def _header_int(response: requests.Response, name: str) -> int | None:
    """Read an integer pagination header; None when absent, empty or garbled."""
    value = response.headers.get(name)
    if not value:
        return None
    try:
        return int(value)
    except ValueError:
        return None


def _encode_params(params: dict[str, Any]) -> dict[str, Any]:
    """GitLab expects lowercase booleans in query strings."""
    return {
        key: (str(value).lower() if isinstance(value, bool) else value)
        for key, value in params.items()
        if value is not None
    }


def _encode_id(id_or_path: int | str) -> str:
    """Numeric ids pass through, full paths are URL-encoded ('a/b' -> 'a%2Fb')."""
    return quote(str(id_or_path), safe="")


class GitLabAPIClient:
    """
    GitLab REST API v4 client.

    "They track everything. Might as well use their API." — schema.cx

    The client is always passed explicitly; nothing in this package keeps a
    module-level instance. Share one client (and its HTTP session) across
    threads.
    """

    def __init__(self, config: Config, session: requests.Session | None = None) -> None:
        """Initialize the GitLab API client."""
        self.config = config
        self.session = session or requests.Session()

        headers = {
            "Accept": "application/json",
            "User-Agent": f"gitlabserver/{__version__}",
        }
        if config.token:
            headers["PRIVATE-TOKEN"] = config.token

        self.session.headers.update(headers)
        self.session.verify = config.verify_ssl

    def __enter__(self) -> "GitLabAPIClient":
        """Context manager entry."""
        return self

    def __exit__(self, exc_type, exc_val, exc_tb) -> None:
        """Context manager exit - close session."""
        self.close()

    def close(self) -> None:
        """Close the HTTP session and release resources."""
        if self.session:
            self.session.close()

    def _make_request(
        self,
        method: str,
        endpoint: str,
        params: dict[str, Any] | None = None,
        json: dict[str, Any] | None = None,
    ) -> requests.Response:
        """
        Make an API request and map HTTP failures onto GitLabAPIError.

        No retries happen here; retry policy belongs to the caller.
        """
        url = f"{self.config.api_url}/{endpoint.lstrip('/')}"

        try:
            response = self.session.request(
                method,
                url,
                params=_encode_params(params or {}),
                json=json,
                timeout=self.config.page_timeout,
            )
            response.raise_for_status()
            return response
        except requests.exceptions.HTTPError as e:
            status = e.response.status_code
            if status == 404:
                raise GitLabAPIError(f"Not found: {endpoint}", status_code=status) from e
            elif status == 401:
                raise GitLabAPIError(
                    "Authentication failed. Check your GITLAB_TOKEN.", status_code=status
                ) from e
            elif status == 403:
                raise GitLabAPIError(f"Access forbidden: {endpoint}", status_code=status) from e
            elif status == 429:
                reset_timestamp = e.response.headers.get("RateLimit-Reset", "")
                try:
                    reset_str = datetime.fromtimestamp(int(reset_timestamp)).strftime("%H:%M:%S")
                except (ValueError, OSError):
                    reset_str = "unknown"
                raise RateLimitError(
                    f"GitLab API rate limit exceeded (resets at {reset_str})", status_code=status
                ) from e
            else:
                raise GitLabAPIError(f"GitLab API error: {e}", status_code=status) from e
        except requests.exceptions.RequestException as e:
            raise GitLabAPIError(f"Network error: {e}") from e

    # ------------------------------------------------------------------
    # Collection primitives
    # ------------------------------------------------------------------

    def count_of(self, kind: ResourceKind, filters: dict[str, Any] | None = None) -> int:
        """
        Total number of items in a collection, read from the X-Total header.

        Raises:
            CountUnavailableError: If the header is missing or not numeric
        """
        params = {**(filters or {}), "per_page": 1}
        response = self._make_request("GET", kind.value, params=params)

        raw = response.headers.get("X-Total")
        if raw is None or raw == "":
            # GitLab drops X-Total for collections above 10,000 items
            raise CountUnavailableError(f"X-Total header missing when counting {kind.value}")
        try:
            return int(raw)
        except ValueError:
            raise CountUnavailableError(
                f"X-Total header is not a number when counting {kind.value}: {raw!r}"
            ) from None

    def list_page(
        self,
        kind: ResourceKind,
        page: int,
        per_page: int | None = None,
        filters: dict[str, Any] | None = None,
    ) -> PageResponse:
        """Fetch a single page of a collection."""
        params = {
            **(filters or {}),
            "page": page,
            "per_page": per_page or self.config.per_page,
        }
        response = self._make_request("GET", kind.value, params=params)

        data = response.json()
        if not isinstance(data, list):
            raise GitLabAPIError(f"Expected a list from {kind.value}, got {type(data).__name__}")

        return PageResponse(
            items=data,
            page=page,
            next_page=_header_int(response, "X-Next-Page") or 0,
            total=_header_int(response, "X-Total"),
        )

    def get_single(self, kind: ResourceKind, id_or_path: int | str) -> dict[str, Any] | None:
        """
        Fetch one item by numeric id or full path.

        Returns:
            The raw item, or None if it does not exist
        """
        try:
            response = self._make_request("GET", f"{kind.value}/{_encode_id(id_or_path)}")
        except GitLabAPIError as e:
            if e.status_code == 404:
                return None
            raise
        return response.json()

    def fetch_all(
        self,
        kind: ResourceKind,
        parse: Callable[[dict[str, Any]], T],
        filters: dict[str, Any] | None = None,
        cancel_event: threading.Event | None = None,
    ) -> FetchResult[T]:
        """
        Fetch a whole collection: count it, plan the pages, fetch them in parallel.

        Raises:
            CountUnavailableError: If the collection size cannot be determined
        """
        total = self.count_of(kind, filters)
        drift_lock = threading.Lock()
        drifted: list[int] = []

        def fetch_page(descriptor: PageDescriptor) -> list[T]:
            page = self.list_page(kind, descriptor.page, descriptor.per_page, filters)
            if page.total is not None and page.total != total:
                with drift_lock:
                    drifted.append(page.total)
                    first = len(drifted) == 1
                if first:
                    print_warning(
                        f"{kind.value} changed size during the fetch "
                        f"({total} counted, {page.total} now); items may be missing or repeated"
                    )
            return [parse(item) for item in page.items]

        return fetch_all_concurrent(
            total,
            self.config.per_page,
            fetch_page,
            max_workers=self.config.max_workers,
            page_timeout=self.config.page_timeout,
            cancel_event=cancel_event,
            label=kind.value,
        )

    # ------------------------------------------------------------------
    # Counts
    # ------------------------------------------------------------------

    def project_count(self) -> int:
        """Total number of projects visible to the token."""
        return self.count_of(ResourceKind.PROJECTS)

    def group_count(self) -> int:
        """Total number of groups visible to the token."""
        return self.count_of(ResourceKind.GROUPS)

    def user_count(self) -> int:
        """Total number of users visible to the token."""
        return self.count_of(ResourceKind.USERS)

    # ------------------------------------------------------------------
    # Listings
    # ------------------------------------------------------------------

    def _project_filters(self, filters: dict[str, Any] | None) -> dict[str, Any]:
        params: dict[str, Any] = {}
        if not self.config.include_archived:
            params["archived"] = False
        params.update(filters or {})
        return params

    def get_projects(
        self,
        filters: dict[str, Any] | None = None,
        cancel_event: threading.Event | None = None,
    ) -> FetchResult[Project]:
        """
        Fetch every project on the instance, pages in parallel.

        Archived projects are skipped unless the config includes them. The
        same filters are used for the count and for the pages, so the plan
        matches what the listing returns.
        """
        console.print(f"\n[cyan]🔍 Fetching projects from {self.config.host}[/cyan]")
        return self.fetch_all(
            ResourceKind.PROJECTS,
            Project.from_api,
            filters=self._project_filters(filters),
            cancel_event=cancel_event,
        )

    def get_users(
        self,
        filters: dict[str, Any] | None = None,
        cancel_event: threading.Event | None = None,
    ) -> FetchResult[User]:
        """Fetch every user on the instance, pages in parallel."""
        console.print(f"\n[cyan]👥 Fetching users from {self.config.host}[/cyan]")
        return self.fetch_all(
            ResourceKind.USERS, User.from_api, filters=filters, cancel_event=cancel_event
        )

    def get_groups(self, top_level_only: bool = True) -> list[Group]:
        """
        Fetch groups by following X-Next-Page, one page at a time.

        Older GitLab releases ignore top_level_only, so subgroups are also
        filtered out locally.
        """
        console.print(f"\n[cyan]🏢 Fetching groups from {self.config.host}[/cyan]")
        filters = {"top_level_only": True} if top_level_only else {}

        def fetch_page(descriptor: PageDescriptor) -> tuple[list[Group], int]:
            page = self.list_page(ResourceKind.GROUPS, descriptor.page, descriptor.per_page, filters)
            return [Group.from_api(item) for item in page.items], page.next_page

        groups = fetch_all_sequential(fetch_page, per_page=self.config.per_page, label="groups")

        if top_level_only:
            groups = [group for group in groups if group.is_top_level]
        return groups

    def list_projects(
        self,
        page: int = 1,
        per_page: int | None = None,
        search: str | None = None,
    ) -> list[Project]:
        """Fetch a single page of projects."""
        filters = self._project_filters({"search": search} if search else None)
        response = self.list_page(ResourceKind.PROJECTS, page, per_page, filters)
        return [Project.from_api(item) for item in response.items]

    # ------------------------------------------------------------------
    # Existence checks
    # ------------------------------------------------------------------

    def project_exists(self, name_or_path: str) -> bool:
        """
        Check whether a project exists.

        A full path ('group/project') is looked up directly. A bare name is
        searched for, and every candidate is compared, case-insensitively,
        against both the project name and its path.
        """
        if "/" in name_or_path:
            path = validate_project_path(name_or_path)
            return self.get_single(ResourceKind.PROJECTS, path) is not None

        wanted = name_or_path.strip().lower()
        filters = self._project_filters({"search": wanted, "simple": True})

        def fetch_page(descriptor: PageDescriptor) -> tuple[list[Project], int]:
            page = self.list_page(ResourceKind.PROJECTS, descriptor.page, descriptor.per_page, filters)
            return [Project.from_api(item) for item in page.items], page.next_page

        candidates = fetch_all_sequential(
            fetch_page, per_page=self.config.per_page, label="candidates"
        )
        return any(
            candidate.name.lower() == wanted or candidate.path.lower() == wanted
            for candidate in candidates
        )

    def group_exists(self, path: str) -> bool:
        """Check whether a group exists, by full path or numeric id."""
        if not str(path).isdigit():
            path = validate_namespace_path(path)
        return self.get_single(ResourceKind.GROUPS, path) is not None

    # ------------------------------------------------------------------
    # Repository
    # ------------------------------------------------------------------

    def get_latest_commit(self, project: Project | int | str) -> str:
        """
        Return the hash of the latest commit on the project's default branch.

        Raises:
            UnexpectedStatusError: If the commits endpoint answers with a non-200 status
            EmptyRepositoryError: If the repository has no commits
        """
        project_id = project.id if isinstance(project, Project) else project
        response = self._make_request(
            "GET",
            f"projects/{_encode_id(project_id)}/repository/commits",
            params={"per_page": 1},
        )

        if response.status_code != 200:
            raise UnexpectedStatusError(response.status_code)

        commits = response.json()
        if not commits:
            raise EmptyRepositoryError(f"Project {project_id} has no commits")

        return Commit.from_api(commits[0]).id

    # ------------------------------------------------------------------
    # Mutations
    # ------------------------------------------------------------------

    def add_member(
        self,
        kind: ResourceKind,
        target: int | str,
        user_id: int,
        access_level: AccessLevel,
        expires_at: str | None = None,
    ) -> Member:
        """
        Add a user to a project or group.

        Args:
            kind: ResourceKind.PROJECTS or ResourceKind.GROUPS
            target: Project/group id or full path
            user_id: Id of the user to add
            access_level: Membership level to grant
            expires_at: Optional expiry date (YYYY-MM-DD)
        """
        if kind not in (ResourceKind.PROJECTS, ResourceKind.GROUPS):
            raise ValueError(f"Members can only be added to projects or groups, not {kind.value}")

        payload: dict[str, Any] = {"user_id": user_id, "access_level": int(access_level)}
        if expires_at:
            payload["expires_at"] = expires_at

        response = self._make_request(
            "POST", f"{kind.value}/{_encode_id(target)}/members", json=payload
        )
        if response.status_code not in (200, 201):
            raise UnexpectedStatusError(response.status_code, expected=(200, 201))

        return Member.from_api(response.json())

    def add_webhook(
        self,
        project: Project | int | str,
        url: str,
        *,
        push_events: bool = True,
        merge_requests_events: bool = False,
        tag_push_events: bool = False,
        token: str | None = None,
        enable_ssl_verification: bool = True,
    ) -> Webhook:
        """
        Register a webhook on a project.

        "Hooks are just callbacks that learned HTTP." — schema.cx
        """
        project_id = project.id if isinstance(project, Project) else project
        payload: dict[str, Any] = {
            "url": validate_hook_url(url),
            "push_events": push_events,
            "merge_requests_events": merge_requests_events,
            "tag_push_events": tag_push_events,
            "enable_ssl_verification": enable_ssl_verification,
        }
        if token:
            payload["token"] = token

        response = self._make_request("POST", f"projects/{_encode_id(project_id)}/hooks", json=payload)
        if response.status_code not in (200, 201):
            raise UnexpectedStatusError(response.status_code, expected=(200, 201))

        return Webhook.from_api(response.json())

    # ------------------------------------------------------------------
    # Hierarchy
    # ------------------------------------------------------------------

    def top_level_groups(self, groups: Iterable[Group | str]) -> list[str]:
        """Top-level group names of the given groups, relative to this instance's host."""
        return top_level_groups(groups, self.config.host)

    def parent_group(self, project: Project | str) -> str:
        """Top-level group of a project, taken from its web URL."""
        return parent_group(project, self.config.host)
