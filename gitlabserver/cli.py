"""
gitlabserver CLI interface.

"The command line is where the real work happens. Everything else is just theater." — schema.cx
"""

import json
import threading
from dataclasses import asdict

import typer
from dotenv import load_dotenv

from .config import ConfigManager, ServerProfile
from .gitlab_api import GitLabAPIClient, GitLabAPIError
from .hierarchy import MalformedURLError
from .models import Config, ResourceKind
from .pagination import FetchResult, PageFetchError
from .rich_utils import (
    console,
    create_data_table,
    format_count,
    format_path,
    print_error,
    print_info,
    print_panel,
    print_success,
    print_warning,
)
from .validation import (
    ValidationError,
    validate_access_level,
    validate_gitlab_token,
    validate_per_page,
)

# Load environment variables from .env file if it exists
load_dotenv()

app = typer.Typer(
    name="gitlabserver",
    help="🦊 gitlabserver - Enumerate and manage a GitLab instance.",
    add_completion=False,
)
profile_app = typer.Typer(help="Manage saved connection profiles.")
app.add_typer(profile_app, name="profile")

EXIT_FAILURE = 1
EXIT_PARTIAL = 2

# Connection options shared by every command that talks to GitLab
URL_OPTION = typer.Option(None, "--url", "-u", envvar="GITLAB_URL", help="GitLab instance URL")
TOKEN_OPTION = typer.Option(
    None, "--token", "-t", envvar="GITLAB_TOKEN", help="Access token (or set GITLAB_TOKEN)"
)
PROFILE_OPTION = typer.Option(None, "--profile", "-p", help="Saved connection profile to use")
WORKERS_OPTION = typer.Option(None, "--workers", "-w", help="Maximum pages fetched in parallel")
PER_PAGE_OPTION = typer.Option(None, "--per-page", help="Items per page (1-100)")
TIMEOUT_OPTION = typer.Option(None, "--timeout", help="Per-page timeout in seconds")


def build_config(
    url: str | None,
    token: str | None,
    profile: str | None,
    workers: int | None = None,
    per_page: int | None = None,
    timeout: float | None = None,
    include_archived: bool | None = None,
    manager: ConfigManager | None = None,
) -> Config:
    """
    Merge a saved profile with command-line overrides.

    Command-line values win over the profile; the profile wins over defaults.

    Raises:
        ValidationError: If no URL is available or a value is out of range
    """
    config: Config | None = None

    if profile:
        saved = (manager or ConfigManager()).load_profile(profile)
        if saved is None:
            raise ValidationError(f"Profile '{profile}' not found")
        config = saved.to_config()

    if url:
        config = Config(
            url=url,
            per_page=config.per_page if config else 100,
            max_workers=config.max_workers if config else 8,
            page_timeout=config.page_timeout if config else 30.0,
            include_archived=config.include_archived if config else False,
            verify_ssl=config.verify_ssl if config else True,
        )

    if config is None:
        raise ValidationError("No GitLab URL given. Use --url, GITLAB_URL or --profile.")

    config.token = validate_gitlab_token(token)
    if workers is not None:
        if workers <= 0:
            raise ValidationError("--workers must be greater than zero")
        config.max_workers = workers
    if per_page is not None:
        config.per_page = validate_per_page(per_page)
    if timeout is not None:
        if timeout <= 0:
            raise ValidationError("--timeout must be greater than zero")
        config.page_timeout = timeout
    if include_archived is not None:
        config.include_archived = include_archived

    return config


def report_partial(result: FetchResult, strict: bool) -> None:
    """Print one warning per failed page; exit non-zero in strict mode."""
    if result.ok:
        return

    for error in result.errors:
        print_warning(f"Page {error.page} missing: {error.cause}", prefix="⚠️")
    print_warning(
        f"Result is partial: {len(result.errors)} page(s) failed, {len(result)} items kept",
        prefix="⚠️",
    )
    if strict:
        raise typer.Exit(EXIT_PARTIAL)


def fail(message: str) -> None:
    """Print an error and exit with the failure code."""
    print_error(message)
    raise typer.Exit(EXIT_FAILURE)


def start_deadline(seconds: float | None) -> tuple[threading.Event | None, threading.Timer | None]:
    """Create a cancel event that fires after the given number of seconds."""
    if seconds is None:
        return None, None
    cancel_event = threading.Event()
    timer = threading.Timer(seconds, cancel_event.set)
    timer.daemon = True
    timer.start()
    return cancel_event, timer


def version_callback(value: bool) -> None:
    """Print version and exit."""
    if value:
        from . import __version__

        console.print(f"gitlabserver version {__version__}")
        raise typer.Exit()


@app.callback()
def main(
    version: bool | None = typer.Option(
        None,
        "--version",
        "-v",
        callback=version_callback,
        is_eager=True,
        help="Show version and exit.",
    ),
) -> None:
    """
    🦊 gitlabserver - Enumerate and manage a GitLab instance.

    "Every group has a parent. Every page has a number." — schema.cx
    """
    pass


@app.command()
def count(
    kind: ResourceKind | None = typer.Argument(None, help="Collection to count (default: all)"),
    url: str | None = URL_OPTION,
    token: str | None = TOKEN_OPTION,
    profile: str | None = PROFILE_OPTION,
) -> None:
    """Show how many projects, groups and users the instance holds."""
    try:
        config = build_config(url, token, profile)
        kinds = [kind] if kind else list(ResourceKind)

        with GitLabAPIClient(config) as client:
            table = create_data_table(title=f"📊 {config.host}")
            table.add_column("Collection")
            table.add_column("Total", justify="right")
            for item_kind in kinds:
                table.add_row(item_kind.value, str(client.count_of(item_kind)))
        console.print(table)
    except (GitLabAPIError, ValidationError) as e:
        fail(str(e))


@app.command()
def projects(
    url: str | None = URL_OPTION,
    token: str | None = TOKEN_OPTION,
    profile: str | None = PROFILE_OPTION,
    workers: int | None = WORKERS_OPTION,
    per_page: int | None = PER_PAGE_OPTION,
    timeout: float | None = TIMEOUT_OPTION,
    include_archived: bool | None = typer.Option(
        None,
        "--include-archived/--exclude-archived",
        help="Include archived projects",
    ),
    deadline: float | None = typer.Option(
        None,
        "--deadline",
        help="Abort the whole fetch after this many seconds",
    ),
    strict: bool = typer.Option(
        False,
        "--strict",
        help="Exit with code 2 if any page failed",
    ),
    as_json: bool = typer.Option(False, "--json", help="Print projects as JSON"),
) -> None:
    """
    List every project, fetching pages in parallel.

    "Pagination is just recursion with extra steps." — schema.cx
    """
    try:
        config = build_config(url, token, profile, workers, per_page, timeout, include_archived)
        cancel_event, timer = start_deadline(deadline)

        try:
            with GitLabAPIClient(config) as client:
                result = client.get_projects(cancel_event=cancel_event)
                rows = []
                for project in result.sorted_by(lambda p: p.id):
                    try:
                        parent = client.parent_group(project)
                    except MalformedURLError:
                        parent = ""
                    rows.append((project, parent))
        finally:
            if timer is not None:
                timer.cancel()

        if as_json:
            console.print_json(
                json.dumps([{**asdict(project), "parent_group": parent} for project, parent in rows])
            )
        else:
            table = create_data_table(title=f"📦 Projects on {config.host}")
            table.add_column("ID", justify="right")
            table.add_column("Path")
            table.add_column("Parent group")
            table.add_column("Visibility")
            for project, parent in rows:
                table.add_row(str(project.id), project.path_with_namespace, parent, project.visibility)
            console.print(table)
            console.print(format_count(len(rows), "projects"))

        report_partial(result, strict)
    except (GitLabAPIError, ValidationError) as e:
        fail(str(e))
    except KeyboardInterrupt:
        console.print("\n[yellow]Operation cancelled by user[/yellow]")
        raise typer.Exit(EXIT_FAILURE)


@app.command()
def users(
    url: str | None = URL_OPTION,
    token: str | None = TOKEN_OPTION,
    profile: str | None = PROFILE_OPTION,
    workers: int | None = WORKERS_OPTION,
    per_page: int | None = PER_PAGE_OPTION,
    timeout: float | None = TIMEOUT_OPTION,
    strict: bool = typer.Option(False, "--strict", help="Exit with code 2 if any page failed"),
) -> None:
    """List every user, fetching pages in parallel."""
    try:
        config = build_config(url, token, profile, workers, per_page, timeout)
        with GitLabAPIClient(config) as client:
            result = client.get_users()

        table = create_data_table(title=f"👥 Users on {config.host}")
        table.add_column("ID", justify="right")
        table.add_column("Username")
        table.add_column("Name")
        table.add_column("State")
        for user in result.sorted_by(lambda u: u.id):
            table.add_row(str(user.id), user.username, user.name, user.state)
        console.print(table)

        report_partial(result, strict)
    except (GitLabAPIError, ValidationError) as e:
        fail(str(e))


@app.command()
def groups(
    url: str | None = URL_OPTION,
    token: str | None = TOKEN_OPTION,
    profile: str | None = PROFILE_OPTION,
    per_page: int | None = PER_PAGE_OPTION,
    all_groups: bool = typer.Option(False, "--all", help="Include subgroups"),
) -> None:
    """List groups, one page at a time."""
    try:
        config = build_config(url, token, profile, per_page=per_page)
        with GitLabAPIClient(config) as client:
            found = client.get_groups(top_level_only=not all_groups)

        table = create_data_table(title=f"🏢 Groups on {config.host}")
        table.add_column("ID", justify="right")
        table.add_column("Full path")
        table.add_column("Visibility")
        for group in found:
            table.add_row(str(group.id), group.full_path, group.visibility)
        console.print(table)
    except PageFetchError as e:
        fail(f"Group listing stopped at page {e.page}: {e.cause}")
    except (GitLabAPIError, ValidationError) as e:
        fail(str(e))


@app.command("top-groups")
def top_groups(
    url: str | None = URL_OPTION,
    token: str | None = TOKEN_OPTION,
    profile: str | None = PROFILE_OPTION,
) -> None:
    """Show the distinct top-level groups, derived from every group's full path."""
    try:
        config = build_config(url, token, profile)
        with GitLabAPIClient(config) as client:
            names = client.top_level_groups(client.get_groups(top_level_only=False))

        for name in names:
            console.print(f"  • {format_path(name)}")
        console.print(format_count(len(names), "top-level groups"))
    except PageFetchError as e:
        fail(f"Group listing stopped at page {e.page}: {e.cause}")
    except (GitLabAPIError, ValidationError) as e:
        fail(str(e))


@app.command()
def exists(
    target: str = typer.Argument(..., help="Project name/path, or group path with --group"),
    group: bool = typer.Option(False, "--group", "-g", help="Check a group instead of a project"),
    url: str | None = URL_OPTION,
    token: str | None = TOKEN_OPTION,
    profile: str | None = PROFILE_OPTION,
) -> None:
    """Check whether a project or group exists (exit code 1 if not)."""
    try:
        config = build_config(url, token, profile)
        with GitLabAPIClient(config) as client:
            found = client.group_exists(target) if group else client.project_exists(target)
    except PageFetchError as e:
        fail(f"Search stopped at page {e.page}: {e.cause}")
    except (GitLabAPIError, ValidationError) as e:
        fail(str(e))

    what = "Group" if group else "Project"
    if found:
        print_success(f"{what} {format_path(target)} exists")
    else:
        print_info(f"{what} {target} not found")
        raise typer.Exit(EXIT_FAILURE)


@app.command("latest-commit")
def latest_commit(
    project: str = typer.Argument(..., help="Project id or full path"),
    url: str | None = URL_OPTION,
    token: str | None = TOKEN_OPTION,
    profile: str | None = PROFILE_OPTION,
) -> None:
    """Print the hash of a project's latest commit."""
    try:
        config = build_config(url, token, profile)
        with GitLabAPIClient(config) as client:
            sha = client.get_latest_commit(project)
        console.print(sha)
    except (GitLabAPIError, ValidationError) as e:
        fail(str(e))


@app.command("add-member")
def add_member(
    target: str = typer.Argument(..., help="Project (or group with --group) id or full path"),
    user_id: int = typer.Argument(..., help="Id of the user to add"),
    level: str = typer.Option("developer", "--level", "-l", help="Access level name or number"),
    group: bool = typer.Option(False, "--group", "-g", help="Add to a group instead of a project"),
    expires_at: str | None = typer.Option(None, "--expires-at", help="Expiry date (YYYY-MM-DD)"),
    url: str | None = URL_OPTION,
    token: str | None = TOKEN_OPTION,
    profile: str | None = PROFILE_OPTION,
) -> None:
    """Add a user to a project or group."""
    try:
        config = build_config(url, token, profile)
        access_level = validate_access_level(level)
        kind = ResourceKind.GROUPS if group else ResourceKind.PROJECTS
        with GitLabAPIClient(config) as client:
            member = client.add_member(kind, target, user_id, access_level, expires_at=expires_at)
        print_success(
            f"Added {member.username or member.id} to {format_path(target)} "
            f"as {member.access_level.name.lower()}"
        )
    except (GitLabAPIError, ValidationError) as e:
        fail(str(e))


@app.command("add-hook")
def add_hook(
    project: str = typer.Argument(..., help="Project id or full path"),
    hook_url: str = typer.Argument(..., help="URL GitLab should call"),
    merge_requests: bool = typer.Option(False, "--merge-requests", help="Trigger on merge requests"),
    tags: bool = typer.Option(False, "--tags", help="Trigger on tag pushes"),
    no_push: bool = typer.Option(False, "--no-push", help="Do not trigger on pushes"),
    secret: str | None = typer.Option(None, "--secret", help="Secret token sent with each call"),
    insecure: bool = typer.Option(False, "--insecure", help="Skip SSL verification of the hook URL"),
    url: str | None = URL_OPTION,
    token: str | None = TOKEN_OPTION,
    profile: str | None = PROFILE_OPTION,
) -> None:
    """Register a webhook on a project."""
    try:
        config = build_config(url, token, profile)
        with GitLabAPIClient(config) as client:
            hook = client.add_webhook(
                project,
                hook_url,
                push_events=not no_push,
                merge_requests_events=merge_requests,
                tag_push_events=tags,
                token=secret,
                enable_ssl_verification=not insecure,
            )
        print_success(f"Webhook {hook.id} registered on {format_path(project)} -> {hook.url}")
    except (GitLabAPIError, ValidationError) as e:
        fail(str(e))


@profile_app.command("save")
def profile_save(
    name: str = typer.Argument(..., help="Profile name"),
    url: str = typer.Option(..., "--url", "-u", help="GitLab instance URL"),
    per_page: int = typer.Option(100, "--per-page", help="Items per page (1-100)"),
    workers: int = typer.Option(8, "--workers", "-w", help="Maximum pages fetched in parallel"),
    timeout: float = typer.Option(30.0, "--timeout", help="Per-page timeout in seconds"),
    include_archived: bool = typer.Option(False, "--include-archived", help="Include archived projects"),
    insecure: bool = typer.Option(False, "--insecure", help="Do not verify TLS certificates"),
    description: str = typer.Option("", "--description", help="Free-form description"),
) -> None:
    """Save a connection profile (tokens are never stored)."""
    try:
        profile = ServerProfile(
            name=name,
            url=url,
            per_page=validate_per_page(per_page),
            max_workers=workers,
            page_timeout=timeout,
            include_archived=include_archived,
            verify_ssl=not insecure,
            description=description,
        )
        # Fail early on values Config would reject
        profile.to_config()
    except (ValidationError, ValueError) as e:
        fail(str(e))

    manager = ConfigManager()
    manager.save_profile(profile)
    print_success(f"Profile '{name}' saved to {manager.get_profile_path()}")


@profile_app.command("list")
def profile_list() -> None:
    """List saved connection profiles."""
    saved = ConfigManager().list_profiles()
    if not saved:
        print_info("No saved profiles")
        return

    table = create_data_table(title="🔖 Profiles")
    table.add_column("Name")
    table.add_column("URL")
    table.add_column("Workers", justify="right")
    table.add_column("Description")
    for profile in saved:
        table.add_row(profile.name, profile.url, str(profile.max_workers), profile.description)
    console.print(table)


@profile_app.command("show")
def profile_show(name: str = typer.Argument(..., help="Profile name")) -> None:
    """Show one saved profile."""
    profile = ConfigManager().load_profile(name)
    if profile is None:
        fail(f"Profile '{name}' not found")
    body = "\n".join(f"[bold]{key}[/bold]: {value}" for key, value in profile.to_dict().items())
    print_panel(body, title=f"Profile {name}")


@profile_app.command("delete")
def profile_delete(name: str = typer.Argument(..., help="Profile name")) -> None:
    """Delete a saved profile."""
    if not ConfigManager().delete_profile(name):
        fail(f"Profile '{name}' not found")
    print_success(f"Profile '{name}' deleted")


if __name__ == "__main__":
    app()
