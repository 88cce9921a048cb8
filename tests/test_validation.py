"""
Tests for input validation utilities.

"Tests are just paranoia with a good reason." — schema.cx
"""

import pytest

from gitlabserver.models import AccessLevel
from gitlabserver.validation import (
    ValidationError,
    validate_access_level,
    validate_gitlab_token,
    validate_hook_url,
    validate_namespace_path,
    validate_per_page,
    validate_project_path,
)


# =============================================================================
# Path Validation Tests
# =============================================================================


def test_validate_namespace_path_valid():
    """Test validation of valid group and project paths."""
    assert validate_namespace_path("group") == "group"
    assert validate_namespace_path("group/sub/project") == "group/sub/project"
    assert validate_namespace_path("/my-org/my.repo/") == "my-org/my.repo"
    assert validate_project_path("user_name/repo_v1.2-beta") == "user_name/repo_v1.2-beta"


def test_validate_project_path_needs_namespace():
    """Test projects need at least a namespace and a name."""
    with pytest.raises(ValidationError, match="at least 2 segment"):
        validate_project_path("lonely")


def test_validate_namespace_path_invalid():
    """Test rejection of empty, relative and malformed segments."""
    with pytest.raises(ValidationError, match="non-empty"):
        validate_namespace_path("")

    with pytest.raises(ValidationError, match="relative"):
        validate_namespace_path("group//project")

    with pytest.raises(ValidationError, match="relative"):
        validate_namespace_path("group/../project")

    with pytest.raises(ValidationError, match="Invalid path segment"):
        validate_namespace_path("my group/project")

    with pytest.raises(ValidationError, match="Invalid path segment"):
        validate_namespace_path("group/-project")

    with pytest.raises(ValidationError, match=".git"):
        validate_namespace_path("group/project.git")


# =============================================================================
# Token Validation Tests
# =============================================================================


def test_validate_gitlab_token():
    """Test token validation."""
    assert validate_gitlab_token(None) is None
    assert validate_gitlab_token("") is None
    assert validate_gitlab_token("glpat-abcdefghijklmnop") == "glpat-abcdefghijklmnop"

    with pytest.raises(ValidationError, match="too short"):
        validate_gitlab_token("short")

    with pytest.raises(ValidationError, match="whitespace"):
        validate_gitlab_token("glpat-abc def ghi")


# =============================================================================
# Access Level Tests
# =============================================================================


def test_validate_access_level_by_name_and_number():
    """Test access levels parse from names and numbers."""
    assert validate_access_level("developer") is AccessLevel.DEVELOPER
    assert validate_access_level("Maintainer") is AccessLevel.MAINTAINER
    assert validate_access_level("40") is AccessLevel.MAINTAINER
    assert validate_access_level(10) is AccessLevel.GUEST


def test_validate_access_level_unknown():
    """Test unknown access levels are rejected."""
    with pytest.raises(ValidationError, match="Unknown access level"):
        validate_access_level("admin")

    with pytest.raises(ValidationError, match="Unknown access level"):
        validate_access_level(35)


# =============================================================================
# Webhook URL and Page Size Tests
# =============================================================================


def test_validate_hook_url():
    """Test webhook URLs must be absolute http(s) URLs."""
    assert validate_hook_url(" https://ci.example.com/hook ") == "https://ci.example.com/hook"
    assert validate_hook_url("http://10.0.0.1:8080/x") == "http://10.0.0.1:8080/x"

    with pytest.raises(ValidationError, match="http or https"):
        validate_hook_url("ftp://example.com")

    with pytest.raises(ValidationError, match="no host"):
        validate_hook_url("https://")

    with pytest.raises(ValidationError, match="non-empty"):
        validate_hook_url("")


def test_validate_per_page():
    """Test page sizes must fall within GitLab's limits."""
    assert validate_per_page(1) == 1
    assert validate_per_page(100) == 100

    with pytest.raises(ValidationError):
        validate_per_page(0)

    with pytest.raises(ValidationError):
        validate_per_page(101)
