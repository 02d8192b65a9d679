"""
Pytest configuration and shared fixtures for worktree-hub tests.
"""

import subprocess
import tempfile
from pathlib import Path
from typing import Generator
from uuid import UUID

import pytest

from worktree_hub.config import Config, ShellConfig
from worktree_hub.core.store import MemoryConfigStore
from worktree_hub.models.repository import Repository
from worktree_hub.models.worktree import Worktree

GIT_ENV_CONFIG = [
    ("user.email", "test@example.com"),
    ("user.name", "Test User"),
    ("commit.gpgsign", "false"),
]


def git(cwd: Path, *args: str) -> str:
    """Run git in ``cwd`` for test setup and return stripped stdout."""
    result = subprocess.run(
        ["git", *args],
        cwd=cwd,
        capture_output=True,
        text=True,
        check=True,
    )
    return result.stdout.strip()


def init_repo(path: Path) -> Path:
    path.mkdir(parents=True, exist_ok=True)
    git(path, "init")
    git(path, "symbolic-ref", "HEAD", "refs/heads/main")
    for key, value in GIT_ENV_CONFIG:
        git(path, "config", key, value)
    return path


def commit_file(repo: Path, name: str, content: str, message: str) -> None:
    (repo / name).write_text(content)
    git(repo, "add", name)
    git(repo, "commit", "-m", message)


@pytest.fixture
def temp_directory() -> Generator[Path, None, None]:
    """Create a temporary directory for tests."""
    with tempfile.TemporaryDirectory() as temp_dir:
        yield Path(temp_dir).resolve()


@pytest.fixture
def git_repo(temp_directory: Path) -> Path:
    """Create a temporary git repository with one commit on main."""
    repo_path = init_repo(temp_directory / "test-repo")
    commit_file(repo_path, "README.md", "# Test Repository\n", "Initial commit")
    return repo_path


@pytest.fixture
def git_worktree(git_repo: Path, temp_directory: Path) -> Generator[Path, None, None]:
    """Create a worktree on a new branch ``test-branch``."""
    worktree_path = temp_directory / "test-worktree"
    git(git_repo, "worktree", "add", "-b", "test-branch", str(worktree_path))

    yield worktree_path

    subprocess.run(
        ["git", "worktree", "remove", "--force", str(worktree_path)],
        cwd=git_repo,
        capture_output=True,
    )


@pytest.fixture
def git_repo_with_remote(git_repo: Path, temp_directory: Path) -> Path:
    """git_repo with a bare ``origin`` remote that main tracks."""
    remote_path = temp_directory / "origin.git"
    git(temp_directory, "init", "--bare", str(remote_path))
    git(git_repo, "remote", "add", "origin", str(remote_path))
    git(git_repo, "push", "-u", "origin", "main")
    return git_repo


@pytest.fixture
def memory_store() -> MemoryConfigStore:
    return MemoryConfigStore()


@pytest.fixture
def shell_config() -> ShellConfig:
    """A plain POSIX shell so tests do not depend on login profiles."""
    return ShellConfig(executable="/bin/sh", login=False)


@pytest.fixture
def test_config(temp_directory: Path, shell_config: ShellConfig) -> Config:
    config = Config(shell=shell_config)
    config.store.path = str(temp_directory / "store.json")
    return config


@pytest.fixture
def sample_repository() -> Repository:
    return Repository(
        id=UUID("11111111-1111-1111-1111-111111111111"),
        name="my-app",
        path=Path("/Users/dev/src/my-app"),
    )


@pytest.fixture
def sample_worktree() -> Worktree:
    return Worktree(
        path=Path("/Users/dev/src/feature-login"),
        branch="feature/login",
        commit_hash="abc123def4567890abc123def4567890abc12345",
    )


@pytest.fixture
def run_git():
    """The ``git(cwd, *args)`` helper, for tests that shape a repository."""
    return git


@pytest.fixture
def make_commit():
    """The ``commit_file(repo, name, content, message)`` helper."""
    return commit_file
