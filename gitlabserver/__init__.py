"""
gitlabserver - Enumerate and manage a GitLab instance, every page at once.

"In a world of endless pagination, be the one who fetches in parallel." — schema.cx
"""

__version__ = "0.1.0"
__license__ = "MIT"

from .models import Config, Group, Project, ResourceKind, User
from .pagination import FetchResult, fetch_all_concurrent, fetch_all_sequential, plan_pages

__all__ = [
    "Config",
    "FetchResult",
    "Group",
    "Project",
    "ResourceKind",
    "User",
    "fetch_all_concurrent",
    "fetch_all_sequential",
    "plan_pages",
    "__version__",
]
