"""
Tests for git_common.py
"""

from dataclasses import fields
from pathlib import Path
from unittest import mock

import pytest

from git_common import GitOptions, get_subdirectories, is_excluded, is_git_repository, parse_exclusions


def test_is_git_repository_with_directory(tmp_path):
    """A `.git` directory marks a repository."""
    (tmp_path / ".git").mkdir()
    assert is_git_repository(tmp_path) is True


def test_is_git_repository_with_file(tmp_path):
    """A `.git` file (worktree, submodule) marks a repository."""
    (tmp_path / ".git").write_text("gitdir: ../main/.git/worktrees/feature", encoding="utf-8")
    assert is_git_repository(tmp_path) is True


def test_is_git_repository_without_marker(tmp_path):
    """A folder without `.git` is not a repository."""
    assert is_git_repository(tmp_path) is False


def test_is_git_repository_on_access_error(tmp_path):
    """An unreadable marker counts as no repository."""
    with mock.patch.object(Path, "exists", side_effect=PermissionError("denied")):
        assert is_git_repository(tmp_path) is False


def test_get_subdirectories_skips_files(tmp_path):
    """Only directories are listed."""
    (tmp_path / "one").mkdir()
    (tmp_path / "two").mkdir()
    (tmp_path / "file.txt").write_text("x", encoding="utf-8")

    assert sorted(path.name for path in get_subdirectories(tmp_path)) == ["one", "two"]


def test_get_subdirectories_missing_root(tmp_path):
    """A missing root raises OSError."""
    with pytest.raises(OSError):
        get_subdirectories(tmp_path / "missing")


@pytest.mark.parametrize(
    "raw, expected",
    [
        (None, ()),
        ("", ()),
        ("lib", ("lib",)),
        ("lib, vendor ,,", ("lib", "vendor")),
    ],
)
def test_parse_exclusions(raw, expected):
    """Comma-separated names are stripped and blanks dropped."""
    assert parse_exclusions(raw) == expected


def test_is_excluded_by_substring():
    """By default a token anywhere in the name excludes it."""
    assert is_excluded("library", ("lib",)) is True
    assert is_excluded("app", ("lib",)) is False
    assert is_excluded("app", ()) is False


def test_is_excluded_exact():
    """Exact matching needs the whole name."""
    assert is_excluded("library", ("lib",), exact=True) is False
    assert is_excluded("lib", ("lib",), exact=True) is True


def test_options_fields():
    """The options carry only the console and the verbose flag."""
    assert [field.name for field in fields(GitOptions)] == ["console", "verbose"]
    assert GitOptions(verbose=True) == GitOptions(verbose=True)
    with pytest.raises(TypeError):
        GitOptions(recursive=True)
