"""
Common Git functionalities for various scripts.

This module contains the option base class and the helpers used to find
repositories inside a workspace directory.
"""

from dataclasses import dataclass
from pathlib import Path
from typing import Iterable, List, Optional

from rich.console import Console

GIT_MARKER = ".git"


@dataclass
class GitOptions:
    """Base class for Git operation options."""

    console: Optional[Console] = None  # Console object for output
    verbose: bool = False  # Show verbose output


def is_git_repository(path: Path) -> bool:
    """
    Checks if a directory is a Git repository.

    The `.git` entry may be a directory or a file (worktrees, submodules).
    A path that cannot be inspected is not a repository.

    Args:
        path: Path to the directory to check

    Returns:
        True if the directory is a Git repository, otherwise False
    """
    try:
        return (path / GIT_MARKER).exists()
    except OSError:
        return False


def get_subdirectories(path: Path) -> List[Path]:
    """
    Returns all subdirectories of the specified path.

    The order is the order of the directory listing. Errors while reading
    `path` itself are raised to the caller.

    Args:
        path: Path where to search for subdirectories

    Returns:
        List of found subdirectories
    """
    return [item for item in path.iterdir() if item.is_dir()]


def parse_exclusions(raw: Optional[str]) -> tuple[str, ...]:
    """Split a comma-separated name list, ignoring blanks."""
    if not raw:
        return ()
    return tuple(token.strip() for token in raw.split(",") if token.strip())


def is_excluded(name: str, exclusions: Iterable[str], exact: bool = False) -> bool:
    """
    Checks if a directory name is excluded.

    Args:
        name: Base name of the directory
        exclusions: Excluded names
        exact: Match whole names only instead of substrings

    Returns:
        True if any exclusion matches the name
    """
    if exact:
        return name in set(exclusions)
    return any(token in name for token in exclusions)
