# /// script
# requires-python = ">=3.10"
# dependencies = [
#     "click>=8.2",
#     "gitpython",
#     "rich",
# ]
# ///
"""
Bring every git repository in a workspace directory up to date.

Each immediate subdirectory that is a git repository gets its `origin` URL
canonicalized, its local changes discarded and the latest changes pulled.
When a pull fails the operator can confirm a single destructive retry.
"""

from dataclasses import dataclass, field
from enum import Enum
from pathlib import Path
from typing import Callable, Optional, Protocol, Sequence

import click
import git
from rich.console import Console
from rich.markup import escape
from rich.panel import Panel
from rich.table import Table

from git_common import (
    GitOptions,
    get_subdirectories,
    is_excluded,
    is_git_repository,
    parse_exclusions,
)

GIT_EXECUTABLE = "git"
DEFAULT_REMOTE = "origin"
DEFAULT_HOST_PREFIXES = ("https://github.com/", "https://gitlab.com/")
CONFIRM_ANSWER = "y"
LAUNCH_FAILURE_STATUS = 127

UrlExtractor = Callable[[str, str], str]


@dataclass
class CommandResult:
    """Exit status and captured output of one external command."""

    exit_status: int
    stdout: str = ""
    stderr: str = ""

    @property
    def ok(self) -> bool:
        return self.exit_status == 0

    @property
    def message(self) -> str:
        return self.stderr.strip() or self.stdout.strip() or f"exit status {self.exit_status}"


class CommandRunner(Protocol):
    def run(self, directory: Path, command: str, arguments: Sequence[str]) -> CommandResult: ...


class GitCommandRunner:
    """
    Runs commands through GitPython.

    Parameters
    ----------
    timeout : float, optional
        Seconds after which a command is killed, by default None (no limit)
    """

    def __init__(self, timeout: Optional[float] = None):
        self.timeout = timeout

    def run(self, directory: Path, command: str, arguments: Sequence[str]) -> CommandResult:
        repo = git.Git(directory)
        try:
            status, stdout, stderr = repo.execute(
                [command, *arguments],
                with_extended_output=True,
                with_exceptions=False,
                kill_after_timeout=self.timeout,
            )
        except git.GitCommandNotFound as e:
            return CommandResult(LAUNCH_FAILURE_STATUS, "", str(e))
        return CommandResult(status, stdout, stderr)


class GitCommandFailed(Exception):
    """A git command exited with a non-zero status."""

    def __init__(self, path: Path, arguments: Sequence[str], result: CommandResult):
        self.path = path
        self.arguments = list(arguments)
        self.result = result
        super().__init__(f"git {' '.join(self.arguments)}: {result.message}")


class SyncOutcome(Enum):
    UPDATED = "updated"
    DECLINED = "declined"
    FAILED = "failed"
    RETRY_FAILED = "failed after retry"
    ERROR = "error"


@dataclass
class SyncOptions(GitOptions):
    """Options for synchronizing the repositories of a workspace."""

    error_console: Optional[Console] = None  # Console for error lines
    exclude: tuple[str, ...] = ()  # Directory names to skip
    exact_exclude: bool = False  # Match exclusions by whole name
    interactive: bool = True  # Ask before retrying a failed pull
    remote: str = DEFAULT_REMOTE
    reset_ref: Optional[str] = None  # Defaults to <remote>/HEAD
    host_prefixes: tuple[str, ...] = DEFAULT_HOST_PREFIXES
    prompt: Optional[Callable[[str], str]] = None  # Reads the operator's answer

    def __post_init__(self):
        if self.reset_ref is None:
            self.reset_ref = f"{self.remote}/HEAD"


@dataclass
class SyncReport:
    """Outcome of one run, in processing order."""

    outcomes: dict[Path, SyncOutcome] = field(default_factory=dict)
    not_updated: list[Path] = field(default_factory=list)
    excluded: list[Path] = field(default_factory=list)

    def count(self, outcome: SyncOutcome) -> int:
        return sum(1 for value in self.outcomes.values() if value is outcome)


def from_prefix(url: str, prefix: str) -> str:
    """Cut everything in front of the first occurrence of `prefix`."""
    return url[url.index(prefix) :]


def build_url_rules(prefixes: Sequence[str]) -> tuple[tuple[str, UrlExtractor], ...]:
    return tuple((prefix, from_prefix) for prefix in prefixes)


DEFAULT_URL_RULES = build_url_rules(DEFAULT_HOST_PREFIXES)


def canonicalize_url(url: str, rules: Sequence[tuple[str, UrlExtractor]] = DEFAULT_URL_RULES) -> str:
    """
    Reduce a remote URL to its host-relative form.

    The rules are checked in order and only the first prefix contained in
    the URL is applied.

    Parameters
    ----------
    url : str
        The remote URL as configured.
    rules : Sequence[tuple[str, UrlExtractor]]
        Ordered `(prefix, extractor)` pairs.

    Returns
    -------
    str
        The canonical URL, or `url` unchanged when no prefix matches.
    """
    for prefix, extract in rules:
        if prefix in url:
            return extract(url, prefix)
    return url


def _info(options: GitOptions, message: str) -> None:
    if options.console:
        options.console.print(message)


def _error(options: SyncOptions, message: str) -> None:
    console = options.error_console or options.console
    if console:
        console.print(f"[red]✗[/red] {message}")


def run_git(runner: CommandRunner, path: Path, arguments: Sequence[str], options: GitOptions) -> CommandResult:
    result = runner.run(path, GIT_EXECUTABLE, arguments)
    if options.verbose and options.console:
        options.console.print(f"[dim]Command: git {escape(' '.join(arguments))} (exit {result.exit_status})[/]")
        output = (result.stdout or result.stderr).strip()
        if output:
            options.console.print(f"[dim]Output: {escape(output)}[/]")
    return result


def _run_checked(runner: CommandRunner, path: Path, arguments: Sequence[str], options: GitOptions) -> CommandResult:
    result = run_git(runner, path, arguments, options)
    if not result.ok:
        raise GitCommandFailed(path, arguments, result)
    return result


def list_changed_files(runner: CommandRunner, path: Path, options: Optional[GitOptions] = None) -> list[str]:
    """
    List the files reported by `git status --porcelain`.

    The first token of a line is the status code, the second one the path.
    Lines with fewer tokens are ignored, and a failing status query yields
    an empty list.
    """
    result = run_git(runner, path, ["status", "--porcelain"], options or GitOptions())
    if not result.ok:
        return []

    changed_files = []
    for line in result.stdout.splitlines():
        parts = line.split()
        if len(parts) > 1:
            changed_files.append(parts[1])
    return changed_files


def read_remote_url(
    runner: CommandRunner, path: Path, remote: str = DEFAULT_REMOTE, options: Optional[GitOptions] = None
) -> str:
    result = _run_checked(runner, path, ["remote", "get-url", remote], options or GitOptions())
    return result.stdout.strip()


def set_remote_url(
    runner: CommandRunner, path: Path, url: str, remote: str = DEFAULT_REMOTE, options: Optional[GitOptions] = None
) -> None:
    _run_checked(runner, path, ["remote", "set-url", remote, url], options or GitOptions())


def force_synchronize(
    runner: CommandRunner, path: Path, reset_ref: str = f"{DEFAULT_REMOTE}/HEAD", options: Optional[GitOptions] = None
) -> CommandResult:
    """
    Discard all local state and pull.

    Reset and clean failures are not reported here; the pull decides the
    result.

    Returns
    -------
    CommandResult
        The result of `git pull`.
    """
    options = options or GitOptions()
    run_git(runner, path, ["reset", "--hard", reset_ref], options)
    run_git(runner, path, ["clean", "-fd"], options)
    return run_git(runner, path, ["pull"], options)


def ask_operator(options: SyncOptions, question: str) -> str:
    """Read one answer line; end of input counts as an empty answer."""
    if options.prompt is not None:
        return options.prompt(question)
    console = options.console or Console()
    try:
        return console.input(escape(question))
    except EOFError:
        return ""


def print_changed_files(path: Path, changed_files: list[str], options: GitOptions) -> None:
    if changed_files:
        _info(options, f"[yellow]⟳[/yellow] Changed files in repo [bold]{escape(str(path))}[/bold]:")
        for changed in changed_files:
            _info(options, f"   {escape(changed)}")
    else:
        _info(options, f"[blue]ℹ[/blue] No changes in repo [bold]{escape(str(path))}[/bold]")


def process_repository(path: Path, runner: CommandRunner, options: SyncOptions) -> SyncOutcome:
    """
    Synchronize a single repository with its remote.

    Parameters
    ----------
    path : Path
        The path to the git repository.
    runner : CommandRunner
        Executes the git commands.
    options : SyncOptions
        Options for the synchronization.

    Returns
    -------
    SyncOutcome
        What happened to the repository.
    """
    shown = escape(str(path))
    changed_files = list_changed_files(runner, path, options)
    print_changed_files(path, changed_files, options)

    try:
        remote_url = read_remote_url(runner, path, options.remote, options)
    except GitCommandFailed as e:
        _error(options, f"Error getting remote URL for repo {shown}: {escape(str(e))}")
        return SyncOutcome.ERROR

    corrected_url = canonicalize_url(remote_url, build_url_rules(options.host_prefixes))
    if corrected_url != remote_url:
        try:
            set_remote_url(runner, path, corrected_url, options.remote, options)
        except GitCommandFailed as e:
            _error(options, f"Error updating remote URL for repo {shown}: {escape(str(e))}")
            return SyncOutcome.ERROR
        _info(options, f"[yellow]⟳[/yellow] Updated remote URL for repo at [bold]{shown}[/bold]")

    result = force_synchronize(runner, path, options.reset_ref, options)
    if result.ok:
        _info(options, f"[green]✓[/green] Pulled [bold]{escape(path.name)}[/bold]")
        return SyncOutcome.UPDATED

    _error(options, f"Error updating repo {shown} due to local changes: {escape(result.message)}")
    if not options.interactive:
        return SyncOutcome.FAILED

    print_changed_files(path, changed_files, options)
    answer = ask_operator(
        options, f"Do you want to reset local changes and pull the latest updates for {path}? (y/n): "
    )
    if answer.strip() != CONFIRM_ANSWER:
        return SyncOutcome.DECLINED

    result = force_synchronize(runner, path, options.reset_ref, options)
    if result.ok:
        _info(options, f"[green]✓[/green] Pulled [bold]{escape(path.name)}[/bold]")
        return SyncOutcome.UPDATED

    _error(options, f"Error after reset and pull for repo {shown}: {escape(result.message)}")
    return SyncOutcome.RETRY_FAILED


def sync_repositories(root: Path, runner: CommandRunner, options: SyncOptions) -> SyncReport:
    """
    Synchronize every repository directly below `root`.

    Directories are handled one after another in listing order. Excluded
    names and directories without a `.git` entry are skipped without running
    any command.

    Raises
    ------
    OSError
        If `root` cannot be listed.
    """
    report = SyncReport()

    for path in get_subdirectories(root):
        if is_excluded(path.name, options.exclude, options.exact_exclude):
            if options.verbose:
                _info(options, f"[blue]ℹ[/blue] Skipping excluded directory [bold]{escape(path.name)}[/bold]")
            report.excluded.append(path)
            continue
        if not is_git_repository(path):
            continue

        if options.verbose:
            _info(options, f"[blue]ℹ[/blue] Processing repository: [bold]{escape(str(path))}[/bold]")
        outcome = process_repository(path, runner, options)
        report.outcomes[path] = outcome
        if outcome in (SyncOutcome.DECLINED, SyncOutcome.FAILED):
            report.not_updated.append(path)

    return report


def print_not_updated(report: SyncReport, console: Console) -> None:
    if not report.not_updated:
        return
    console.print("\nRepositories not updated due to local changes:")
    for path in report.not_updated:
        console.print(escape(str(path)))


def print_summary(report: SyncReport, console: Console) -> None:
    """
    Print a summary table of the synchronization.

    Parameters
    ----------
    report : SyncReport
        The result of the run.
    console : Console
        Rich console for formatted output.
    """
    table = Table(title="Summary")
    table.add_column("Status", style="bold")
    table.add_column("Count", justify="right")

    table.add_row("Updated", f"[green]{report.count(SyncOutcome.UPDATED)}[/green]")
    table.add_row("Declined", f"[yellow]{report.count(SyncOutcome.DECLINED)}[/yellow]")
    table.add_row("Failed", f"[red]{report.count(SyncOutcome.FAILED)}[/red]")
    table.add_row("Failed after retry", f"[red]{report.count(SyncOutcome.RETRY_FAILED)}[/red]")
    table.add_row("Errors", f"[red]{report.count(SyncOutcome.ERROR)}[/red]")
    table.add_row("Excluded", f"{len(report.excluded)}")
    table.add_row("Total", f"{len(report.outcomes)}")

    console.print(table)


@click.command()
@click.argument(
    "directory",
    type=click.Path(exists=True, file_okay=False, dir_okay=True, path_type=Path),
    required=False,
)
@click.option("--exclude", "-x", default="", help="Comma-separated directory names to skip")
@click.option("--exact-exclude", is_flag=True, help="Exclude only directories whose name matches exactly")
@click.option(
    "--interactive/--no-interactive",
    default=True,
    help="Ask before retrying a failed reset and pull",
)
@click.option(
    "--timeout",
    type=click.FloatRange(min=0, min_open=True),
    default=None,
    help="Kill git commands running longer than this many seconds",
)
@click.option("--remote", default=DEFAULT_REMOTE, show_default=True, help="Remote to canonicalize and reset to")
@click.option("--reset-ref", default=None, help="Reference for the hard reset [default: <remote>/HEAD]")
@click.option(
    "--host-prefix",
    "host_prefixes",
    multiple=True,
    help="Additional hosting prefix used to canonicalize remote URLs",
)
@click.option("--verbose", "-v", is_flag=True, help="Show detailed output")
def main(
    directory: Optional[Path],
    exclude: str,
    exact_exclude: bool,
    interactive: bool,
    timeout: Optional[float],
    remote: str,
    reset_ref: Optional[str],
    host_prefixes: tuple[str, ...],
    verbose: bool,
):
    """
    Reset and pull every git repository in DIRECTORY.

    If no directory is specified, the current working directory is used.
    Local changes and untracked files are discarded.
    """
    console = Console()
    error_console = Console(stderr=True)

    if directory is None:
        try:
            directory = Path.cwd()
        except OSError as e:
            error_console.print(f"[red]✗[/red] Error getting current directory: {escape(str(e))}")
            return

    console.print(
        Panel.fit(
            "[bold blue]Git Sync All[/bold blue]",
            subtitle=f"Directory: [cyan]{escape(str(directory))}[/cyan]",
        )
    )

    options = SyncOptions(
        console=console,
        verbose=verbose,
        error_console=error_console,
        exclude=parse_exclusions(exclude),
        exact_exclude=exact_exclude,
        interactive=interactive,
        remote=remote,
        reset_ref=reset_ref,
        host_prefixes=DEFAULT_HOST_PREFIXES + tuple(host_prefixes),
    )

    if verbose:
        console.print(f"[blue]ℹ[/blue] Interactive mode: [green]{interactive}[/green]")
        console.print(f"[blue]ℹ[/blue] Excluded names: [green]{escape(', '.join(options.exclude))}[/green]")

    try:
        report = sync_repositories(directory, GitCommandRunner(timeout=timeout), options)
    except OSError as e:
        error_console.print(f"[red]✗[/red] Error reading directory {escape(str(directory))}: {escape(str(e))}")
        return

    print_not_updated(report, console)
    print_summary(report, console)


if __name__ == "__main__":
    main()
