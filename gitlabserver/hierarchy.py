"""
Group and project hierarchy derived from GitLab paths and URLs.

"Everybody belongs to a group. Even the repos." — schema.cx
"""

from typing import Iterable

from .models import Group, Project


class MalformedURLError(ValueError):
    """A path or URL has fewer segments than the hierarchy lookup needs."""

    pass


def _after_host(value: str, host: str) -> str | None:
    """Return what follows a leading host segment, or None if there is none."""
    if not host:
        return value
    _, scheme_sep, remainder = value.partition("://")
    if not scheme_sep:
        remainder = value
    if remainder == host or remainder.startswith((f"{host}/", f"{host}:")):
        return remainder[len(host):]
    return None


def top_level_groups(groups: Iterable[Group | str], host: str) -> list[str]:
    """
    Names of the top-level groups in a list of groups, without repetitions.

    Each group's full path is stripped of a leading host segment (with or
    without a scheme) and the first remaining component is kept. Order follows
    first appearance.

    Example:
        >>> top_level_groups(["host/A/x", "host/A/y", "host/B/z"], "host")
        ['A', 'B']
    """
    seen: dict[str, None] = {}

    for group in groups:
        full_path = group.full_path if isinstance(group, Group) else group
        rest = _after_host(full_path, host)
        if rest is None:
            # Plain GitLab full paths ("A/x") carry no host at all
            rest = full_path
        top = rest.strip("/").split("/")[0]
        if top:
            seen.setdefault(top, None)

    return list(seen)


def parent_group(project: Project | str, host: str) -> str:
    """
    Top-level group a project lives under, taken from its web URL.

    "https://host/GroupA/project1" with host "host" gives "GroupA".

    Raises:
        MalformedURLError: If the URL is not on the host or lacks a group/project pair
    """
    web_url = project.web_url if isinstance(project, Project) else project
    rest = _after_host(web_url, host)
    if rest is None:
        raise MalformedURLError(f"URL '{web_url}' does not start with host '{host}'")

    segments = rest.split("/")
    # segments[0] is whatever sat between the host and the first slash (a port, or "")
    if len(segments) < 3 or not segments[1] or not segments[2]:
        raise MalformedURLError(
            f"URL '{web_url}' needs a group and a project segment after '{host}'"
        )
    return segments[1]
