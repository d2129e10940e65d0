"""Fixtures for integration tests."""

import subprocess
import sys
import textwrap
from collections.abc import Sequence
from pathlib import Path
from typing import Protocol

import pytest

# Stand-in for the wrapped test tool: runs the test file with runpy and
# prints a bun-style summary. Understands --preload and --timeout.
DRIVER_SOURCE = textwrap.dedent(
    """
    import runpy
    import sys

    args = sys.argv[1:]
    if "--preload" in args:
        runpy.run_path(args[args.index("--preload") + 1])
    try:
        runpy.run_path(args[-1], run_name="__main__")
    except AssertionError as exc:
        print("0 pass")
        print("1 fail")
        print(f"AssertionError: {exc}", file=sys.stderr)
        sys.exit(1)
    print("1 pass")
    print("0 fail")
    """
)

PASSING_UNIT = "assert 1 == 1\n"
FAILING_UNIT = "assert 1 == 2, 'expected 1 to be 2'\n"


class CommitFn(Protocol):
    """Protocol for git commit function."""

    def __call__(self, message: str) -> str:
        """Create a commit and return its SHA."""


class WriteUnitFn(Protocol):
    """Protocol for test file creation function."""

    def __call__(self, name: str, source: str = PASSING_UNIT) -> str:
        """Write a test file and return its path relative to the workspace."""


@pytest.fixture
def workspace(tmp_path: Path) -> Path:
    """Create the working directory for a run."""
    root = tmp_path / "workspace"
    root.mkdir()
    return root


@pytest.fixture
def tool_command(tmp_path: Path) -> Sequence[str]:
    """Return a test tool command backed by the current interpreter."""
    driver = tmp_path / "driver.py"
    driver.write_text(DRIVER_SOURCE)
    return (sys.executable, str(driver))


@pytest.fixture
def write_unit(workspace: Path) -> WriteUnitFn:
    """Return a function to create test files in the workspace."""

    def _write(name: str, source: str = PASSING_UNIT) -> str:
        path = workspace / name
        path.parent.mkdir(parents=True, exist_ok=True)
        path.write_text(source)
        return name

    return _write


@pytest.fixture
def git_repo(workspace: Path) -> Path:
    """Initialize a git repository in the workspace."""
    subprocess.run(
        ["git", "init"],
        cwd=workspace,
        check=True,
        capture_output=True,
    )
    subprocess.run(
        ["git", "config", "user.email", "test@example.com"],
        cwd=workspace,
        check=True,
        capture_output=True,
    )
    subprocess.run(
        ["git", "config", "user.name", "Test"],
        cwd=workspace,
        check=True,
        capture_output=True,
    )
    return workspace


@pytest.fixture
def git_commit(git_repo: Path) -> CommitFn:
    """Return a function to create commits in the test repo."""

    def _commit(message: str) -> str:
        subprocess.run(
            ["git", "add", "-A"],
            cwd=git_repo,
            check=True,
            capture_output=True,
        )
        subprocess.run(
            ["git", "commit", "--allow-empty", "-m", message],
            cwd=git_repo,
            check=True,
            capture_output=True,
        )
        result = subprocess.run(
            ["git", "rev-parse", "HEAD"],
            cwd=git_repo,
            check=True,
            capture_output=True,
            text=True,
        )
        return result.stdout.strip()

    return _commit
