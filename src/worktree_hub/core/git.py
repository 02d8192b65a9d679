"""Git worktree and branch operations.

Everything goes through the ``git`` binary (``git -C <repo> ...``) and its
porcelain output; nothing here reads the object database directly.
"""

import logging
from pathlib import Path
from typing import Any, Optional

from worktree_hub.core.process import (
    CommandFailedError,
    ProcessError,
    ProcessExecutor,
    ProcessResult,
    format_command,
)
from worktree_hub.models.worktree import (
    DETACHED_BRANCH_LABEL,
    Branch,
    RemoteBranchStatus,
    Worktree,
)

logger = logging.getLogger(__name__)

HEADS_PREFIX = "refs/heads/"


class GitError(Exception):
    """Base exception for git operations."""


class NotAGitRepositoryError(GitError):
    """Raised when the path is not a git repository."""

    def __init__(self, path: Path):
        self.path = path
        super().__init__(f"'{path.name}' is not a git repository")


class BranchAlreadyExistsError(GitError):
    """Raised when creating a branch that already exists."""

    def __init__(self, name: str):
        self.name = name
        super().__init__(f"Branch '{name}' already exists")


class BranchNotFoundError(GitError):
    """Raised when a branch or start point does not exist."""

    def __init__(self, name: str):
        self.name = name
        super().__init__(f"Branch '{name}' not found")


class InvalidBranchNameError(GitError):
    """Raised for names git would reject as a branch."""

    def __init__(self, name: str):
        self.name = name
        super().__init__(f"'{name}' is not a valid branch name")


class WorktreeAlreadyExistsError(GitError):
    """Raised when trying to create a worktree that already exists."""

    def __init__(self, path: Path, detail: str = ""):
        self.path = path
        message = f"Worktree already exists at '{path}'"
        super().__init__(f"{message}: {detail}" if detail else message)


class WorktreeNotFoundError(GitError):
    """Raised when a worktree cannot be found."""

    def __init__(self, path: Path | str):
        self.path = path
        super().__init__(f"Worktree not found at '{path}'")


class WorktreeLockedError(GitError):
    """Raised when removing a locked worktree without force."""

    def __init__(self, path: Path):
        self.path = path
        super().__init__(f"Worktree at '{path}' is locked")


class WorktreeDirtyError(GitError):
    """Raised when removing a worktree with local changes without force."""

    def __init__(self, path: Path):
        self.path = path
        super().__init__(f"Worktree at '{path}' contains modified or untracked files")


# Parsing


def _build_worktree(entry: dict[str, Any]) -> Worktree:
    return Worktree(
        path=Path(entry["path"]),
        branch=entry.get("branch", ""),
        commit_hash=entry.get("head", ""),
        is_main=entry.get("bare", False),
        is_locked="locked" in entry,
        lock_reason=entry.get("locked") or None,
        is_prunable="prunable" in entry,
        prunable_reason=entry.get("prunable") or None,
        is_detached=entry.get("detached", False),
    )


def parse_worktree_list(output: str) -> list[Worktree]:
    """
    Parse ``git worktree list --porcelain`` output.

    Records are blank-line separated; the last record is kept even without a
    trailing blank line. Only ``bare`` marks a record as main here; see
    GitService.list_worktrees() for the main-worktree invariant.

    Args:
        output: Raw porcelain text.

    Returns:
        Worktree records in listing order.
    """
    worktrees: list[Worktree] = []
    current: dict[str, Any] = {}

    def flush() -> None:
        if "path" in current:
            worktrees.append(_build_worktree(current))
        current.clear()

    for raw_line in output.splitlines():
        line = raw_line.rstrip("\r")

        if not line.strip():
            flush()
            continue

        key, _, value = line.partition(" ")

        if key == "worktree":
            current["path"] = value
        elif key == "HEAD":
            current["head"] = value
        elif key == "branch":
            current["branch"] = value[len(HEADS_PREFIX):] if value.startswith(HEADS_PREFIX) else value
        elif key == "bare":
            current["bare"] = True
        elif key == "detached":
            current["detached"] = True
            current["branch"] = DETACHED_BRANCH_LABEL
        elif key == "locked":
            current["locked"] = value
        elif key == "prunable":
            current["prunable"] = value

    flush()
    return worktrees


def parse_local_branches(output: str) -> list[Branch]:
    """Parse ``git branch --format=%(refname:short)%(HEAD)`` output."""
    branches = []
    for line in output.splitlines():
        line = line.rstrip()
        if not line:
            continue
        is_head = line.endswith("*")
        name = line[:-1].rstrip() if is_head else line
        branches.append(Branch(name=name, is_remote=False, is_head=is_head))
    return branches


def parse_remote_branches(output: str) -> list[Branch]:
    """Parse ``git branch -r --format=%(refname:lstrip=2)`` output, skipping HEAD aliases."""
    branches = []
    for line in output.splitlines():
        line = line.strip()
        if not line or "HEAD" in line or "/" not in line:
            continue
        remote_name = line.split("/", 1)[0]
        branches.append(Branch(name=line, is_remote=True, remote_name=remote_name))
    return branches


def parse_ahead_behind(output: str) -> Optional[tuple[int, int]]:
    """Parse ``rev-list --count --left-right`` output into (ahead, behind)."""
    parts = output.split()
    if len(parts) != 2:
        return None
    try:
        return int(parts[0]), int(parts[1])
    except ValueError:
        return None


# Service


class GitService:
    """Runs git commands against repositories identified by path."""

    def __init__(
        self,
        executor: Optional[ProcessExecutor] = None,
        git_executable: str = "git",
    ):
        self.executor = executor or ProcessExecutor()
        self.git_executable = git_executable

    def _args(self, repository: Path, args: list[str]) -> list[str]:
        return ["-C", str(repository), *args]

    async def _run(self, repository: Path, args: list[str]) -> ProcessResult:
        return await self.executor.run(self.git_executable, self._args(repository, args))

    async def _run_checked(self, repository: Path, args: list[str]) -> str:
        return await self.executor.run_checked(self.git_executable, self._args(repository, args))

    def _failure(self, args: list[str], result: ProcessResult) -> CommandFailedError:
        return CommandFailedError(
            format_command(self.git_executable, args), result.returncode, result.stderr
        )

    # Repository validation

    async def is_git_repository(self, path: Path) -> bool:
        """Check whether ``path`` is inside a git working tree or is a git dir."""
        if not path.is_dir():
            return False
        result = await self._run(path, ["rev-parse", "--git-dir"])
        return result.ok

    async def get_toplevel(self, path: Path) -> Path:
        """Return the root of the working tree containing ``path``."""
        output = await self._run_checked(path, ["rev-parse", "--show-toplevel"])
        return Path(output)

    # Worktrees

    async def list_worktrees(self, repository: Path) -> list[Worktree]:
        """
        List the repository's worktrees.

        Exactly one returned worktree has ``is_main`` set: git always lists
        the main worktree first, so it is marked when no ``bare`` record is.

        Raises:
            ProcessLaunchError: If git cannot be started.
            CommandFailedError: If git reports an error.
        """
        output = await self._run_checked(repository, ["worktree", "list", "--porcelain"])
        worktrees = parse_worktree_list(output)

        if worktrees and not any(wt.is_main for wt in worktrees):
            worktrees[0] = worktrees[0].model_copy(update={"is_main": True})

        logger.debug(f"Found {len(worktrees)} worktrees in {repository}")
        return worktrees

    async def add_worktree(
        self,
        repository: Path,
        branch: str,
        path: Path,
        create_branch: bool,
        base: Optional[str] = None,
    ) -> None:
        """
        Create a worktree at ``path``.

        Args:
            repository: Repository root.
            branch: Branch to check out, or to create when ``create_branch``.
            path: Directory for the new worktree.
            create_branch: Create ``branch`` (from ``base`` or HEAD).
            base: Start point for a created branch.

        Raises:
            BranchAlreadyExistsError, BranchNotFoundError,
            WorktreeAlreadyExistsError, CommandFailedError
        """
        args = ["worktree", "add"]
        if create_branch:
            args += ["-b", branch, str(path)]
            if base:
                args.append(base)
        else:
            args += [str(path), branch]

        result = await self._run(repository, args)
        if result.ok:
            logger.info(f"Created worktree for '{branch}' at {path}")
            return

        stderr = result.stderr
        lowered = stderr.lower()
        if "a branch named" in lowered and "already exists" in lowered:
            raise BranchAlreadyExistsError(branch)
        if "already exists" in lowered or "is a missing but" in lowered:
            raise WorktreeAlreadyExistsError(path, stderr)
        if "already checked out" in lowered or "already used by worktree" in lowered:
            raise WorktreeAlreadyExistsError(path, stderr)
        if "invalid reference" in lowered or "not a valid object name" in lowered:
            raise BranchNotFoundError(base if create_branch and base else branch)
        raise self._failure(args, result)

    async def remove_worktree(self, repository: Path, path: Path, force: bool = False) -> None:
        """
        Remove the worktree at ``path``.

        Raises:
            WorktreeLockedError, WorktreeDirtyError, WorktreeNotFoundError,
            CommandFailedError
        """
        args = ["worktree", "remove"]
        if force:
            # Given twice, --force also removes locked worktrees.
            args += ["--force", "--force"]
        args.append(str(path))

        result = await self._run(repository, args)
        if result.ok:
            logger.info(f"Removed worktree at {path}")
            return

        stderr = result.stderr
        if "locked" in stderr:
            raise WorktreeLockedError(path)
        if "modified or untracked files" in stderr:
            raise WorktreeDirtyError(path)
        if "is not a working tree" in stderr:
            raise WorktreeNotFoundError(path)
        raise self._failure(args, result)

    async def prune_worktrees(self, repository: Path) -> None:
        """Remove administrative data for worktrees whose directories are gone."""
        await self._run_checked(repository, ["worktree", "prune"])
        logger.info(f"Pruned worktrees in {repository}")

    # Branches

    async def list_branches(self, repository: Path, include_remote: bool = False) -> list[Branch]:
        """List local branches, followed by remote-tracking branches if requested."""
        local_output = await self._run_checked(
            repository, ["branch", "--list", "--format=%(refname:short)%(HEAD)"]
        )
        branches = parse_local_branches(local_output)

        if include_remote:
            remote_output = await self._run_checked(
                repository, ["branch", "-r", "--list", "--format=%(refname:lstrip=2)"]
            )
            branches.extend(parse_remote_branches(remote_output))

        return branches

    async def branch_exists(self, repository: Path, name: str) -> bool:
        result = await self._run(
            repository, ["show-ref", "--verify", "--quiet", f"{HEADS_PREFIX}{name}"]
        )
        return result.ok

    async def _query(self, repository: Path, args: list[str]) -> Optional[ProcessResult]:
        """Run a status query; a failure to launch git counts as a failed query."""
        try:
            return await self._run(repository, args)
        except ProcessError as e:
            logger.debug(f"Status query failed to run: {e}")
            return None

    async def get_remote_branch_status(self, repository: Path, branch: str) -> RemoteBranchStatus:
        """
        Work out how ``branch`` relates to its upstream.

        Three queries run in order; a failed upstream lookup gives
        ``no_upstream``, a missing remote ref gives ``remote_deleted`` and a
        failed or unparsable count gives ``unknown``. Never raises.
        """
        if not branch or branch == DETACHED_BRANCH_LABEL:
            return RemoteBranchStatus.no_upstream()

        # for-each-ref reports the configured upstream even after the remote
        # ref is gone, where ``<branch>@{upstream}`` would fail to resolve.
        upstream_result = await self._query(
            repository,
            ["for-each-ref", "--format=%(upstream:short)", f"{HEADS_PREFIX}{branch}"],
        )
        if upstream_result is None or not upstream_result.ok or not upstream_result.stdout:
            return RemoteBranchStatus.no_upstream()

        upstream = upstream_result.stdout

        exists_result = await self._query(
            repository, ["show-ref", "--verify", "--quiet", f"refs/remotes/{upstream}"]
        )
        if exists_result is None or not exists_result.ok:
            return RemoteBranchStatus.remote_deleted()

        count_result = await self._query(
            repository, ["rev-list", "--count", "--left-right", f"{branch}...{upstream}"]
        )
        if count_result is None or not count_result.ok:
            return RemoteBranchStatus.unknown()

        counts = parse_ahead_behind(count_result.stdout)
        if counts is None:
            return RemoteBranchStatus.unknown()

        ahead, behind = counts
        remote_name = upstream.split("/", 1)[0] or "origin"
        return RemoteBranchStatus.tracking(remote_name, ahead, behind)

    # Remotes

    async def fetch(self, repository: Path, prune: bool = True) -> None:
        """Fetch all remotes."""
        args = ["fetch", "--all"]
        if prune:
            args.append("--prune")
        await self._run_checked(repository, args)

    async def get_remote_url(self, repository: Path, remote: str = "origin") -> Optional[str]:
        result = await self._query(repository, ["remote", "get-url", remote])
        if result is None or not result.ok:
            return None
        return result.stdout or None


__all__ = [
    "BranchAlreadyExistsError",
    "BranchNotFoundError",
    "GitError",
    "GitService",
    "InvalidBranchNameError",
    "NotAGitRepositoryError",
    "WorktreeAlreadyExistsError",
    "WorktreeDirtyError",
    "WorktreeLockedError",
    "WorktreeNotFoundError",
    "parse_ahead_behind",
    "parse_local_branches",
    "parse_remote_branches",
    "parse_worktree_list",
]
