"""CLI entry point for worktree-hub."""

import asyncio
from pathlib import Path
from typing import Any, Coroutine, Optional, TypeVar

import click
from rich.console import Console
from rich.table import Table

from worktree_hub.config import Config, load_config
from worktree_hub.core.git import GitError
from worktree_hub.core.open_service import OpenError, OpenService, PlatformOpener
from worktree_hub.core.presets import PresetError
from worktree_hub.core.process import ProcessError
from worktree_hub.core.repository_manager import RepositoryManager, RepositoryNotFoundError
from worktree_hub.core.setup_runner import parse_commands
from worktree_hub.core.store import JsonConfigStore
from worktree_hub.core.templates import unknown_placeholders
from worktree_hub.logging_config import setup_logging
from worktree_hub.models.preset import CommandKind, OpenCommand, OpenPreset
from worktree_hub.models.repository import Repository
from worktree_hub.models.setup_run import OutputStream, SetupOutputLine, SetupState
from worktree_hub.models.worktree import RemoteBranchStatus, RemoteStatusKind, Worktree

console = Console()

T = TypeVar("T")

HANDLED_ERRORS = (GitError, ProcessError, OpenError, PresetError, RepositoryNotFoundError)


class CliContext:
    """State shared by all commands of one invocation."""

    def __init__(self, config: Config, opener: Optional[PlatformOpener] = None):
        self.config = config
        self.opener = opener
        self._manager: Optional[RepositoryManager] = None

    @property
    def manager(self) -> RepositoryManager:
        if self._manager is None:
            store = JsonConfigStore(self.config.store.resolved_path)
            self._manager = RepositoryManager(store, self.config)
        return self._manager

    @property
    def open_service(self) -> OpenService:
        return OpenService(self.manager.executor, self.config.shell, self.opener)


pass_context = click.make_pass_decorator(CliContext)


def run(coro: Coroutine[Any, Any, T]) -> T:
    """Run a coroutine, turning expected failures into a ClickException."""
    try:
        return asyncio.run(coro)
    except HANDLED_ERRORS as e:
        raise click.ClickException(str(e)) from e


def get_repository(ctx: CliContext, identifier: str) -> Repository:
    try:
        return ctx.manager.find_repository(identifier)
    except RepositoryNotFoundError as e:
        raise click.ClickException(str(e)) from e


def load_repository(ctx: CliContext, identifier: str) -> Repository:
    """Find a repository and read its current worktrees."""
    repo = get_repository(ctx, identifier)
    with console.status(f"[bold blue]Reading worktrees of '{repo.name}'..."):
        return run(ctx.manager.refresh_repository(repo.id))


def find_worktree(repo: Repository, identifier: str) -> Worktree:
    worktree = repo.find_worktree(identifier)
    if worktree is None:
        raise click.ClickException(f"No worktree '{identifier}' in '{repo.name}'")
    return worktree


def format_remote_status(status: RemoteBranchStatus) -> str:
    text = status.display_text
    if status.kind == RemoteStatusKind.TRACKING:
        color = "green" if status.ahead == 0 and status.behind == 0 else "yellow"
        return f"[{color}]{text}[/{color}]"
    if status.kind == RemoteStatusKind.REMOTE_DELETED:
        return f"[red]{text}[/red]"
    return f"[dim]{text}[/dim]"


def format_flags(worktree: Worktree) -> str:
    flags = []
    if worktree.is_main:
        flags.append("[blue]main[/blue]")
    if worktree.is_locked:
        flags.append("[yellow]locked[/yellow]")
    if worktree.is_prunable:
        flags.append("[red]prunable[/red]")
    if worktree.is_detached:
        flags.append("[yellow]detached[/yellow]")
    return " ".join(flags)


def print_setup_line(line: SetupOutputLine) -> None:
    if line.stream == OutputStream.COMMAND:
        console.print(line.text, style="bold cyan", highlight=False, markup=False)
    elif line.stream == OutputStream.STDERR:
        console.print(line.text, style="red", highlight=False, markup=False)
    else:
        console.print(line.text, highlight=False, markup=False)


@click.group()
@click.version_option(package_name="worktree-hub")
@click.option(
    "--config",
    "config_path",
    type=click.Path(dir_okay=False),
    help="Path to a configuration file.",
)
@click.option("-v", "--verbose", is_flag=True, help="Show informational log messages.")
@click.option("--debug", is_flag=True, help="Show debug log messages.")
@click.pass_context
def main(ctx: click.Context, config_path: Optional[str], verbose: bool, debug: bool) -> None:
    """worktree-hub - manage git worktrees across repositories.

    Keep several repositories in one place, create and remove worktrees,
    open them with presets and run setup scripts after creation.
    """
    config = load_config(config_path)
    setup_logging(
        verbose=verbose,
        debug=debug,
        log_file=config.logging.log_file,
        default_level=config.logging.level,
    )
    if ctx.obj is None:
        ctx.obj = CliContext(config)


# Repositories


@main.group("repo")
def repo_group() -> None:
    """Manage the list of repositories."""


@repo_group.command("add")
@click.argument("path", type=click.Path(exists=True, file_okay=False, path_type=Path), default=".")
@click.option("-n", "--name", help="Display name (defaults to the folder name).")
@pass_context
def repo_add(ctx: CliContext, path: Path, name: Optional[str]) -> None:
    """Add the git repository containing PATH.

    Example:
        wth repo add ~/src/my-project
        wth repo add . --name api
    """
    with console.status("[bold blue]Adding repository..."):
        repo = run(ctx.manager.add_repository(path, name=name))

    if repo is None:
        console.print("[yellow]Repository is already managed.[/yellow]")
        return

    console.print(f"[bold green]Added repository:[/bold green] {repo.name}")
    console.print(f"[bold]Path:[/bold]      {repo.path}")
    console.print(f"[bold]Worktrees:[/bold] {repo.worktree_count}")


@repo_group.command("list")
@pass_context
def repo_list(ctx: CliContext) -> None:
    """List managed repositories with worktree counts."""
    if not ctx.manager.repositories:
        console.print("[yellow]No repositories added yet.[/yellow]")
        console.print("[dim]Add one with: wth repo add <path>[/dim]")
        return

    with console.status("[bold blue]Refreshing repositories..."):
        repositories = run(ctx.manager.refresh_all())
    refreshed = {repo.id for repo in repositories}

    table = Table(title="Repositories", show_header=True, header_style="bold cyan")
    table.add_column("Name", style="bold")
    table.add_column("Path")
    table.add_column("Worktrees", justify="right")
    table.add_column("Stale", justify="right")
    table.add_column("Prunable", justify="right")

    for repo in ctx.manager.repositories:
        if repo.id not in refreshed:
            table.add_row(repo.name, str(repo.path), "[red]error[/red]", "", "")
            continue
        table.add_row(
            repo.name,
            str(repo.path),
            str(repo.worktree_count),
            f"[red]{repo.stale_worktree_count}[/red]" if repo.has_stale_worktrees else "0",
            f"[yellow]{repo.prunable_worktree_count}[/yellow]" if repo.has_prunable_worktrees else "0",
        )

    console.print()
    console.print(table)
    console.print()


@repo_group.command("remove")
@click.argument("repository")
@click.option("-y", "--yes", is_flag=True, help="Skip confirmation prompt.")
@pass_context
def repo_remove(ctx: CliContext, repository: str, yes: bool) -> None:
    """Stop managing REPOSITORY. Files on disk are left alone."""
    repo = get_repository(ctx, repository)

    if not yes and not click.confirm(f"Remove '{repo.name}' and its presets and setup script?"):
        console.print("[yellow]Aborted.[/yellow]")
        return

    run(ctx.manager.remove_repository(repo.id))
    console.print(f"[bold green]Removed repository:[/bold green] {repo.name}")


@repo_group.command("refresh")
@click.argument("repository", required=False)
@pass_context
def repo_refresh(ctx: CliContext, repository: Optional[str]) -> None:
    """Re-read worktrees of REPOSITORY, or of every repository."""
    if repository:
        repo = load_repository(ctx, repository)
        console.print(f"[green]Refreshed[/green] {repo.name}: {repo.worktree_count} worktrees")
        return

    with console.status("[bold blue]Refreshing repositories..."):
        repositories = run(ctx.manager.refresh_all())
    for repo in repositories:
        console.print(f"[green]Refreshed[/green] {repo.name}: {repo.worktree_count} worktrees")

    failed = len(ctx.manager.repositories) - len(repositories)
    if failed:
        console.print(f"[yellow]{failed} repositories could not be refreshed[/yellow]")


# Worktrees


@main.group("worktree")
def worktree_group() -> None:
    """Create, list and delete worktrees."""


@worktree_group.command("list")
@click.argument("repository")
@pass_context
def worktree_list(ctx: CliContext, repository: str) -> None:
    """List worktrees of REPOSITORY with their remote status."""
    repo = load_repository(ctx, repository)

    table = Table(title=f"Worktrees of {repo.name}", show_header=True, header_style="bold cyan")
    table.add_column("Name", style="bold")
    table.add_column("Branch", style="green")
    table.add_column("Commit", style="dim")
    table.add_column("Remote")
    table.add_column("Status", justify="center")
    table.add_column("Path")

    for wt in repo.worktrees:
        table.add_row(
            wt.folder_name,
            wt.branch,
            wt.short_commit_hash,
            format_remote_status(wt.remote_branch_status),
            format_flags(wt),
            wt.short_path,
        )

    console.print()
    console.print(table)
    if repo.has_stale_worktrees:
        console.print(
            f"[red]{repo.stale_worktree_count} worktrees track deleted remote branches[/red]"
        )
    if repo.has_prunable_worktrees:
        console.print(f"[dim]Prune missing worktrees with: wth worktree prune {repo.name}[/dim]")
    console.print()


@worktree_group.command("create")
@click.argument("repository")
@click.argument("branch")
@click.option(
    "-p",
    "--path",
    type=click.Path(path_type=Path),
    help="Custom path for the worktree.",
)
@click.option("-b", "--base", help="Start point when a new branch is created.")
@click.option(
    "--setup/--no-setup",
    default=None,
    help="Run the repository's setup script (default: from configuration).",
)
@pass_context
def worktree_create(
    ctx: CliContext,
    repository: str,
    branch: str,
    path: Optional[Path],
    base: Optional[str],
    setup: Optional[bool],
) -> None:
    """Create a worktree for BRANCH in REPOSITORY.

    BRANCH may also be a pasted git command such as
    "git checkout -b feature/x". The branch is created when it does not
    exist locally or on a remote.

    Example:
        wth worktree create api feature/login
        wth worktree create api "git switch -c bugfix/ABC-12" --no-setup
    """
    repo = get_repository(ctx, repository)

    console.print(f"[bold blue]Creating worktree for '{branch}'...[/bold blue]")
    result = run(
        ctx.manager.create_worktree(
            repo.id,
            branch,
            path=path,
            run_setup=setup,
            base=base,
            on_line=print_setup_line,
        )
    )

    worktree = result.worktree
    console.print()
    console.print("[bold green]Worktree created successfully!")
    console.print(f"[bold]Branch:[/bold]  {worktree.branch}" + (" (new)" if result.created_branch else ""))
    console.print(f"[bold]Path:[/bold]    {worktree.short_path}")
    console.print(f"[bold]Commit:[/bold]  {worktree.short_commit_hash}")

    status = result.setup_status
    if status is not None:
        if status.state == SetupState.FAILED:
            console.print(f"[red]{status.describe()}[/red]")
            console.print(f"[dim]Retry with: wth setup run {repo.name} {worktree.folder_name}[/dim]")
        else:
            console.print(f"[green]{status.describe()}[/green]")

    console.print()
    console.print(f"[dim]cd {worktree.path}[/dim]")


@worktree_group.command("delete")
@click.argument("repository")
@click.argument("identifier")
@click.option("-f", "--force", is_flag=True, help="Delete even with local changes or a lock.")
@click.option("-y", "--yes", is_flag=True, help="Skip confirmation prompt.")
@pass_context
def worktree_delete(ctx: CliContext, repository: str, identifier: str, force: bool, yes: bool) -> None:
    """Delete a worktree by name, branch, or path.

    IDENTIFIER can be:
    - The worktree directory name
    - The branch name
    - The full path to the worktree
    """
    repo = load_repository(ctx, repository)
    worktree = find_worktree(repo, identifier)

    if not worktree.can_delete and not (worktree.is_locked and force):
        reason = "is the main worktree" if worktree.is_main else "is locked (use --force)"
        raise click.ClickException(f"'{worktree.folder_name}' {reason}")

    if not yes:
        console.print()
        console.print("[bold]About to delete worktree:[/bold]")
        console.print(f"  Branch: {worktree.branch}")
        console.print(f"  Path:   {worktree.path}")
        console.print()
        if not click.confirm("Are you sure you want to delete this worktree?"):
            console.print("[yellow]Aborted.[/yellow]")
            return

    with console.status(f"[bold red]Deleting worktree '{identifier}'..."):
        deleted = run(ctx.manager.delete_worktree(repo.id, str(worktree.path), force=force))

    console.print(f"[bold green]Worktree deleted:[/bold green] {deleted.path}")


@worktree_group.command("prune")
@click.argument("repository")
@pass_context
def worktree_prune(ctx: CliContext, repository: str) -> None:
    """Remove records of worktrees whose directories no longer exist."""
    repo = load_repository(ctx, repository)

    with console.status("[bold blue]Pruning worktrees..."):
        pruned = run(ctx.manager.prune_worktrees(repo.id))

    if not pruned:
        console.print("[green]Nothing to prune.[/green]")
        return
    for wt in pruned:
        console.print(f"[green]Pruned[/green] {wt.folder_name} ({wt.prunable_reason or 'missing'})")


@main.command("branches")
@click.argument("repository")
@click.option("-r", "--remote", is_flag=True, help="Include remote-tracking branches.")
@pass_context
def list_branches(ctx: CliContext, repository: str, remote: bool) -> None:
    """List branches of REPOSITORY."""
    repo = get_repository(ctx, repository)
    branches = run(ctx.manager.list_branches(repo.id, include_remote=remote))

    if not branches:
        console.print("[yellow]No branches found.[/yellow]")
        return

    for branch in branches:
        marker = "[green]*[/green] " if branch.is_head else "  "
        style = "dim" if branch.is_remote else "bold"
        console.print(f"{marker}[{style}]{branch.display_name}[/{style}]", highlight=False)


@main.command("fetch")
@click.argument("repository")
@pass_context
def fetch(ctx: CliContext, repository: str) -> None:
    """Fetch all remotes of REPOSITORY and update remote status."""
    repo = get_repository(ctx, repository)

    with console.status(f"[bold blue]Fetching '{repo.name}'..."):
        repo = run(ctx.manager.fetch(repo.id))

    console.print(f"[green]Fetched[/green] {repo.name}")
    if repo.has_stale_worktrees:
        console.print(
            f"[red]{repo.stale_worktree_count} worktrees track deleted remote branches[/red]"
        )


# Setup automation


@main.group("setup")
def setup_group() -> None:
    """Manage setup scripts run after creating a worktree."""


@setup_group.command("show")
@click.argument("repository")
@pass_context
def setup_show(ctx: CliContext, repository: str) -> None:
    """Show the setup script of REPOSITORY."""
    repo = get_repository(ctx, repository)
    script = ctx.manager.get_setup_script(repo.id)

    if not script:
        console.print("[yellow]No setup script configured.[/yellow]")
        return

    console.print(script, highlight=False, markup=False)
    console.print()
    console.print(f"[dim]{len(parse_commands(script))} commands[/dim]")


@setup_group.command("set")
@click.argument("repository")
@click.argument("script", required=False)
@click.option(
    "-f",
    "--file",
    "script_file",
    type=click.File("r"),
    help="Read the script from a file ('-' for stdin).",
)
@click.option("--clear", is_flag=True, help="Remove the setup script.")
@pass_context
def setup_set(
    ctx: CliContext,
    repository: str,
    script: Optional[str],
    script_file: Optional[Any],
    clear: bool,
) -> None:
    """Set the setup script of REPOSITORY.

    One command per line; blank lines and lines starting with # are
    ignored. Commands may use these placeholders:

    \b
    {{path}}        worktree path
    {{branch}}      branch name
    {{commitHash}}  HEAD commit
    {{repoName}}    repository name
    {{repoPath}}    repository path
    """
    repo = get_repository(ctx, repository)

    if clear:
        ctx.manager.set_setup_script(repo.id, None)
        console.print("[green]Setup script removed.[/green]")
        return

    if script_file is not None:
        script = script_file.read()
    if script is None:
        raise click.UsageError("Provide SCRIPT, --file or --clear")

    ctx.manager.set_setup_script(repo.id, script)
    console.print(f"[green]Setup script saved[/green] ({len(parse_commands(script))} commands)")


@setup_group.command("run")
@click.argument("repository")
@click.argument("worktree")
@pass_context
def setup_run(ctx: CliContext, repository: str, worktree: str) -> None:
    """Run the setup script of REPOSITORY in WORKTREE."""
    repo = load_repository(ctx, repository)
    target = find_worktree(repo, worktree)

    if not ctx.manager.get_setup_script(repo.id):
        raise click.ClickException(f"No setup script configured for '{repo.name}'")

    status = run(ctx.manager.run_setup_automation(repo.id, target, on_line=print_setup_line))

    console.print()
    if status.state == SetupState.FAILED:
        raise click.ClickException(status.describe())
    console.print(f"[bold green]{status.describe()}[/bold green]")


# Presets


@main.group("presets")
def presets_group() -> None:
    """Manage presets for opening worktrees."""


def resolve_preset(ctx: CliContext, identifier: str, repo: Optional[Repository] = None) -> OpenPreset:
    try:
        return ctx.manager.presets.find_preset(identifier, repo.id if repo else None)
    except PresetError as e:
        raise click.ClickException(str(e)) from e


@presets_group.command("list")
@click.option("-r", "--repo", "repository", help="Show the presets effective for a repository.")
@pass_context
def presets_list(ctx: CliContext, repository: Optional[str]) -> None:
    """List presets and whether they are enabled."""
    presets = ctx.manager.presets
    repo = get_repository(ctx, repository) if repository else None

    title = f"Presets for {repo.name}" if repo else "Presets"
    table = Table(title=title, show_header=True, header_style="bold cyan")
    table.add_column("Name", style="bold")
    table.add_column("Type")
    table.add_column("Command")
    table.add_column("Enabled", justify="center")
    if repo:
        table.add_column("Override", justify="center")
    table.add_column("Scope", style="dim")

    scoped = presets.repository_presets(repo.id) if repo else []
    scoped_ids = {p.id for p in scoped}
    for preset in presets.all_presets() + scoped:
        enabled = presets.is_enabled(preset.id, repo.id if repo else None)
        cells = [
            preset.name,
            preset.command.type_display_name,
            preset.command.display_description,
            "[green]yes[/green]" if enabled else "[dim]no[/dim]",
        ]
        repo_scoped = preset.id in scoped_ids
        if repo:
            override = None if repo_scoped else presets.override_state(preset.id, repo.id)
            cells.append({None: "", True: "[green]on[/green]", False: "[red]off[/red]"}[override])
        cells.append("repository" if repo_scoped else ("built-in" if preset.is_built_in else "custom"))
        table.add_row(*cells)

    console.print()
    console.print(table)
    console.print()


def _set_enabled(ctx: CliContext, identifier: str, enabled: bool) -> None:
    preset = resolve_preset(ctx, identifier)
    ctx.manager.presets.set_preset_enabled(preset.id, enabled)
    state = "[green]enabled[/green]" if enabled else "[yellow]disabled[/yellow]"
    console.print(f"{preset.name} {state}")


@presets_group.command("enable")
@click.argument("preset")
@pass_context
def presets_enable(ctx: CliContext, preset: str) -> None:
    """Enable PRESET for all repositories."""
    _set_enabled(ctx, preset, True)


@presets_group.command("disable")
@click.argument("preset")
@pass_context
def presets_disable(ctx: CliContext, preset: str) -> None:
    """Disable PRESET for all repositories."""
    _set_enabled(ctx, preset, False)


@presets_group.command("override")
@click.argument("repository")
@click.argument("preset")
@click.argument("state", type=click.Choice(["on", "off", "inherit"]))
@pass_context
def presets_override(ctx: CliContext, repository: str, preset: str, state: str) -> None:
    """Force PRESET on or off for REPOSITORY, or make it inherit again."""
    repo = get_repository(ctx, repository)
    target = resolve_preset(ctx, preset)
    enabled = {"on": True, "off": False, "inherit": None}[state]

    ctx.manager.presets.set_repository_override(repo.id, target.id, enabled)
    console.print(f"{target.name} in {repo.name}: [bold]{state}[/bold]")


@presets_group.command("reorder")
@click.argument("presets", nargs=-1, required=True)
@pass_context
def presets_reorder(ctx: CliContext, presets: tuple[str, ...]) -> None:
    """Put PRESETS first, in the given order.

    Example:
        wth presets reorder "VS Code" "File Manager"
    """
    manager = ctx.manager.presets
    chosen = [resolve_preset(ctx, identifier).id for identifier in presets]
    rest = [p.id for p in manager.all_presets() if p.id not in chosen]

    manager.update_sort_order(chosen + rest)
    console.print("[green]Preset order updated.[/green]")


@presets_group.command("add")
@click.argument("name")
@click.option(
    "-t",
    "--type",
    "kind",
    type=click.Choice([kind.value for kind in CommandKind]),
    default=CommandKind.SHELL_SCRIPT.value,
    help="What the preset does (default: shell_script).",
)
@click.option("-c", "--command", "value", required=True, help="Application, script or URL template.")
@click.option("-i", "--icon", default="app", help="Icon name.")
@click.option("-r", "--repo", "repository", help="Only add the preset to this repository.")
@pass_context
def presets_add(
    ctx: CliContext,
    name: str,
    kind: str,
    value: str,
    icon: str,
    repository: Optional[str],
) -> None:
    """Add a preset called NAME.

    Example:
        wth presets add Terminal -c 'open -a Terminal "{{path}}"'
        wth presets add GitHub -t url_template -c "https://github.com/org/{{repoName}}/tree/{{branch}}"
    """
    command = OpenCommand(kind=CommandKind(kind), value=value)
    unknown = unknown_placeholders(value)
    if unknown:
        console.print(f"[yellow]Unknown placeholders left as written: {', '.join(unknown)}[/yellow]")

    if repository:
        repo = get_repository(ctx, repository)
        preset = ctx.manager.presets.create_repository_preset(repo.id, name, command, icon=icon)
        console.print(f"[green]Added preset[/green] {preset.name} [dim]to {repo.name}[/dim]")
    else:
        preset = ctx.manager.presets.create_preset(name, command, icon=icon)
        console.print(f"[green]Added preset[/green] {preset.name}")


@presets_group.command("remove")
@click.argument("preset")
@click.option("-r", "--repo", "repository", help="Remove a preset that belongs to this repository.")
@pass_context
def presets_remove(ctx: CliContext, preset: str, repository: Optional[str]) -> None:
    """Remove a custom preset."""
    manager = ctx.manager.presets
    try:
        if repository:
            repo = get_repository(ctx, repository)
            target = next(
                (p for p in manager.repository_presets(repo.id)
                 if p.name.casefold() == preset.casefold() or str(p.id) == preset),
                None,
            )
            if target is None:
                raise click.ClickException(f"Preset '{preset}' not found in '{repo.name}'")
            manager.delete_repository_preset(repo.id, target.id)
        else:
            target = resolve_preset(ctx, preset)
            manager.delete_preset(target.id)
    except PresetError as e:
        raise click.ClickException(str(e)) from e

    console.print(f"[green]Removed preset[/green] {target.name}")


# Open


@main.command("open")
@click.argument("repository")
@click.argument("worktree")
@click.argument("preset", required=False)
@click.option("--reveal", is_flag=True, help="Show the worktree in the file manager instead.")
@pass_context
def open_worktree(
    ctx: CliContext,
    repository: str,
    worktree: str,
    preset: Optional[str],
    reveal: bool,
) -> None:
    """Open WORKTREE of REPOSITORY with PRESET.

    Without PRESET the first preset enabled for the repository is used.

    Example:
        wth open api feature-login "VS Code"
    """
    repo = load_repository(ctx, repository)
    target = find_worktree(repo, worktree)
    service = ctx.open_service

    if reveal:
        run(service.reveal(target.path))
        return

    if preset:
        chosen = resolve_preset(ctx, preset, repo)
    else:
        effective = ctx.manager.presets.effective_presets(repo.id)
        if not effective:
            raise click.ClickException(f"No presets are enabled for '{repo.name}'")
        chosen = effective[0]

    run(service.open(target, repo, chosen))
    console.print(f"[green]Opened[/green] {target.folder_name} with {chosen.name}")


if __name__ == "__main__":
    main()
