"""
Data models for gitlabserver.

"Every project lives somewhere. The model just remembers where." — schema.cx
"""

from dataclasses import dataclass
from enum import Enum, IntEnum
from typing import Any
from urllib.parse import urlparse


class ResourceKind(str, Enum):
    """Top-level GitLab collections the client can enumerate."""

    PROJECTS = "projects"
    GROUPS = "groups"
    USERS = "users"


class AccessLevel(IntEnum):
    """GitLab membership access levels."""

    NO_ACCESS = 0
    MINIMAL = 5
    GUEST = 10
    REPORTER = 20
    DEVELOPER = 30
    MAINTAINER = 40
    OWNER = 50


@dataclass
class Project:
    """
    Represents a GitLab project.

    "A project is just a repo that found a namespace." — schema.cx
    """

    id: int
    name: str
    path_with_namespace: str
    web_url: str
    path: str = ""
    default_branch: str | None = None
    archived: bool = False
    visibility: str = "private"
    namespace_full_path: str = ""
    http_url_to_repo: str = ""
    ssh_url_to_repo: str = ""

    @classmethod
    def from_api(cls, data: dict[str, Any]) -> "Project":
        """Create a project from an API payload."""
        namespace = data.get("namespace") or {}
        return cls(
            id=data["id"],
            name=data.get("name", ""),
            path_with_namespace=data.get("path_with_namespace", ""),
            path=data.get("path", ""),
            web_url=data.get("web_url", ""),
            default_branch=data.get("default_branch"),
            archived=data.get("archived", False),
            visibility=data.get("visibility", "private"),
            namespace_full_path=namespace.get("full_path", ""),
            http_url_to_repo=data.get("http_url_to_repo", ""),
            ssh_url_to_repo=data.get("ssh_url_to_repo", ""),
        )


@dataclass
class Group:
    """Represents a GitLab group (or subgroup)."""

    id: int
    name: str
    full_path: str
    web_url: str = ""
    parent_id: int | None = None
    visibility: str = "private"

    @property
    def is_top_level(self) -> bool:
        """Top-level groups have no parent."""
        return self.parent_id is None

    @classmethod
    def from_api(cls, data: dict[str, Any]) -> "Group":
        """Create a group from an API payload."""
        return cls(
            id=data["id"],
            name=data.get("name", ""),
            full_path=data.get("full_path", ""),
            web_url=data.get("web_url", ""),
            parent_id=data.get("parent_id"),
            visibility=data.get("visibility", "private"),
        )


@dataclass
class User:
    """Represents a GitLab user account."""

    id: int
    username: str
    name: str = ""
    state: str = "active"
    web_url: str = ""
    bot: bool = False

    @classmethod
    def from_api(cls, data: dict[str, Any]) -> "User":
        """Create a user from an API payload."""
        return cls(
            id=data["id"],
            username=data.get("username", ""),
            name=data.get("name", ""),
            state=data.get("state", "active"),
            web_url=data.get("web_url", ""),
            bot=data.get("bot", False),
        )


@dataclass
class Member:
    """A user's membership in a project or group."""

    id: int
    username: str
    access_level: AccessLevel
    expires_at: str | None = None

    @classmethod
    def from_api(cls, data: dict[str, Any]) -> "Member":
        """Create a member from an API payload."""
        return cls(
            id=data["id"],
            username=data.get("username", ""),
            access_level=AccessLevel(data.get("access_level", 0)),
            expires_at=data.get("expires_at"),
        )


@dataclass
class Webhook:
    """
    A project webhook registration.

    "Hooks are just callbacks that learned HTTP." — schema.cx
    """

    id: int
    url: str
    project_id: int | None = None
    push_events: bool = True
    merge_requests_events: bool = False
    tag_push_events: bool = False
    enable_ssl_verification: bool = True
    created_at: str | None = None

    @classmethod
    def from_api(cls, data: dict[str, Any]) -> "Webhook":
        """Create a webhook from an API payload."""
        return cls(
            id=data["id"],
            url=data.get("url", ""),
            project_id=data.get("project_id"),
            push_events=data.get("push_events", True),
            merge_requests_events=data.get("merge_requests_events", False),
            tag_push_events=data.get("tag_push_events", False),
            enable_ssl_verification=data.get("enable_ssl_verification", True),
            created_at=data.get("created_at"),
        )


@dataclass
class Commit:
    """A single commit as returned by the repository commits endpoint."""

    id: str
    short_id: str = ""
    title: str = ""
    author_name: str = ""
    created_at: str | None = None

    @classmethod
    def from_api(cls, data: dict[str, Any]) -> "Commit":
        """Create a commit from an API payload."""
        return cls(
            id=data["id"],
            short_id=data.get("short_id", ""),
            title=data.get("title", ""),
            author_name=data.get("author_name", ""),
            created_at=data.get("created_at"),
        )


@dataclass
class Config:
    """
    Connection settings for a GitLab instance.

    "Configuration is just organized paranoia." — schema.cx
    """

    # Instance base URL, e.g. https://gitlab.example.com
    url: str

    # Authentication
    token: str | None = None

    # Pagination and concurrency
    per_page: int = 100  # GitLab maximum
    max_workers: int = 8
    page_timeout: float = 30.0

    # Filtering options
    include_archived: bool = False

    verify_ssl: bool = True

    def __post_init__(self) -> None:
        """Validate and normalize configuration."""
        self.url = self.url.strip().rstrip("/")
        if "://" not in self.url:
            self.url = f"https://{self.url}"
        if self.per_page <= 0:
            raise ValueError("per_page must be greater than zero")
        if self.max_workers <= 0:
            raise ValueError("max_workers must be greater than zero")

    @property
    def host(self) -> str:
        """Host segment of the instance URL (used for hierarchy paths)."""
        return urlparse(self.url).netloc

    @property
    def api_url(self) -> str:
        """Base URL of the v4 REST API."""
        return f"{self.url}/api/v4"
