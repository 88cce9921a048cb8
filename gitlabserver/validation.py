"""
Input validation utilities for gitlabserver.

"Trust, but verify. Especially user input." — schema.cx
"""

import re
from urllib.parse import urlparse

from .models import AccessLevel

# GitLab path segments: alphanumerics, '_', '-', '.'; may not start with '-' or '.'
_PATH_SEGMENT = re.compile(r"^[a-zA-Z0-9_][a-zA-Z0-9_.-]*$")

MAX_PER_PAGE = 100


class ValidationError(Exception):
    """Raised when input validation fails."""

    pass


def validate_namespace_path(path: str, min_segments: int = 1) -> str:
    """
    Validate a group or project full path such as 'group/subgroup/project'.

    Args:
        path: Full path, slash separated
        min_segments: Minimum number of segments (2 for projects)

    Returns:
        The path with surrounding slashes and whitespace removed

    Raises:
        ValidationError: If the path is empty, too short or has invalid segments
    """
    if not path or not isinstance(path, str):
        raise ValidationError("Path must be a non-empty string")

    cleaned = path.strip().strip("/")
    segments = cleaned.split("/")

    if len(segments) < min_segments:
        raise ValidationError(
            f"Path '{path}' needs at least {min_segments} segment(s), e.g. 'group/project'"
        )

    for segment in segments:
        if segment in ("", ".", ".."):
            raise ValidationError(f"Empty or relative segment in path '{path}'")
        if not _PATH_SEGMENT.match(segment):
            raise ValidationError(
                f"Invalid path segment '{segment}'. "
                "Only alphanumeric characters, '.', '-', and '_' are allowed."
            )
        if segment.endswith((".git", ".atom")):
            raise ValidationError(f"Path segment '{segment}' cannot end in .git or .atom")

    return cleaned


def validate_project_path(path: str) -> str:
    """Validate a project path ('namespace/project', namespaces may nest)."""
    return validate_namespace_path(path, min_segments=2)


def validate_gitlab_token(token: str | None) -> str | None:
    """
    Validate a GitLab access token.

    Returns:
        The token if valid, None if token is None or empty

    Raises:
        ValidationError: If token format is invalid

    Note:
        Personal access tokens usually start with 'glpat-', but project,
        group and legacy tokens do not, so the prefix is not enforced.
    """
    if token is None or token == "":
        return None

    if not isinstance(token, str):
        raise ValidationError("Token must be a string")

    if len(token) < 10:
        raise ValidationError("Token is too short to be valid")

    if len(token) > 255:
        raise ValidationError("Token is too long")

    if any(c in token for c in [" ", "\n", "\r", "\t"]):
        raise ValidationError("Token contains invalid whitespace characters")

    return token


def validate_access_level(level: int | str) -> AccessLevel:
    """
    Parse an access level given as a number or a name ('developer').

    Raises:
        ValidationError: If the level is unknown
    """
    if isinstance(level, str) and not level.strip().isdigit():
        try:
            return AccessLevel[level.strip().upper()]
        except KeyError:
            allowed = ", ".join(member.name.lower() for member in AccessLevel)
            raise ValidationError(f"Unknown access level '{level}'. Allowed: {allowed}") from None

    try:
        return AccessLevel(int(level))
    except ValueError:
        allowed = ", ".join(str(member.value) for member in AccessLevel)
        raise ValidationError(f"Unknown access level {level}. Allowed: {allowed}") from None


def validate_hook_url(url: str) -> str:
    """
    Validate a webhook target URL.

    Raises:
        ValidationError: If the URL is not an absolute http(s) URL
    """
    if not url or not isinstance(url, str):
        raise ValidationError("Webhook URL must be a non-empty string")

    parsed = urlparse(url.strip())
    if parsed.scheme not in ("http", "https"):
        raise ValidationError(f"Webhook URL must use http or https (got '{parsed.scheme}')")
    if not parsed.netloc:
        raise ValidationError(f"Webhook URL '{url}' has no host")

    return url.strip()


def validate_per_page(per_page: int) -> int:
    """
    Validate a page size against GitLab's 1-100 range.

    Raises:
        ValidationError: If out of range
    """
    if not 1 <= per_page <= MAX_PER_PAGE:
        raise ValidationError(f"per_page must be between 1 and {MAX_PER_PAGE} (got {per_page})")
    return per_page
