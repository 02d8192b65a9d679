"""Pydantic models for worktrees, branches and their remote tracking state."""

from enum import Enum
from pathlib import Path
from typing import Optional

from pydantic import BaseModel, ConfigDict, Field

from worktree_hub.models.setup_run import SetupStatus

DETACHED_BRANCH_LABEL = "(detached HEAD)"


class RemoteStatusKind(str, Enum):
    """Variants of a branch's relationship to its upstream."""

    TRACKING = "tracking"
    NO_UPSTREAM = "no_upstream"
    REMOTE_DELETED = "remote_deleted"
    UNKNOWN = "unknown"


class RemoteBranchStatus(BaseModel):
    """Tracking status of a local branch relative to its remote.

    Only ``tracking`` carries a remote name and ahead/behind counts. Use the
    constructors rather than building instances directly.
    """

    model_config = ConfigDict(frozen=True)

    kind: RemoteStatusKind
    remote_name: Optional[str] = None
    ahead: int = 0
    behind: int = 0

    @classmethod
    def tracking(cls, remote_name: str, ahead: int, behind: int) -> "RemoteBranchStatus":
        return cls(
            kind=RemoteStatusKind.TRACKING,
            remote_name=remote_name,
            ahead=ahead,
            behind=behind,
        )

    @classmethod
    def no_upstream(cls) -> "RemoteBranchStatus":
        return cls(kind=RemoteStatusKind.NO_UPSTREAM)

    @classmethod
    def remote_deleted(cls) -> "RemoteBranchStatus":
        return cls(kind=RemoteStatusKind.REMOTE_DELETED)

    @classmethod
    def unknown(cls) -> "RemoteBranchStatus":
        return cls(kind=RemoteStatusKind.UNKNOWN)

    @property
    def is_stale(self) -> bool:
        """A branch is stale once its upstream has been deleted on the remote."""
        return self.kind == RemoteStatusKind.REMOTE_DELETED

    @property
    def display_text(self) -> str:
        if self.kind == RemoteStatusKind.TRACKING:
            remote = self.remote_name
            if self.ahead == 0 and self.behind == 0:
                return f"Up to date with {remote}"
            if self.ahead > 0 and self.behind > 0:
                return f"{self.ahead} ahead, {self.behind} behind {remote}"
            if self.ahead > 0:
                return f"{self.ahead} ahead of {remote}"
            return f"{self.behind} behind {remote}"
        if self.kind == RemoteStatusKind.NO_UPSTREAM:
            return "No upstream branch"
        if self.kind == RemoteStatusKind.REMOTE_DELETED:
            return "Remote branch deleted"
        return "Unknown status"


class Worktree(BaseModel):
    """One git worktree as reported by ``git worktree list --porcelain``."""

    path: Path = Field(description="Absolute path to the worktree directory")
    branch: str = Field(default="", description="Checked out branch, or the detached label")
    commit_hash: str = Field(default="", description="Full SHA of HEAD")
    is_main: bool = Field(default=False, description="Whether this is the main worktree")
    is_locked: bool = Field(default=False)
    lock_reason: Optional[str] = Field(default=None)
    is_prunable: bool = Field(default=False)
    prunable_reason: Optional[str] = Field(default=None)
    is_detached: bool = Field(default=False)
    remote_branch_status: RemoteBranchStatus = Field(default_factory=RemoteBranchStatus.unknown)

    @property
    def folder_name(self) -> str:
        """Get the worktree directory name."""
        return self.path.name

    @property
    def short_commit_hash(self) -> str:
        return self.commit_hash[:7]

    @property
    def can_delete(self) -> bool:
        """The main worktree and locked worktrees cannot be removed."""
        return not self.is_main and not self.is_locked

    @property
    def short_path(self) -> str:
        """Get a shortened display path."""
        home = Path.home()
        if self.path.is_relative_to(home):
            return f"~/{self.path.relative_to(home)}"
        return str(self.path)


class Branch(BaseModel):
    """A local or remote-tracking branch."""

    model_config = ConfigDict(frozen=True)

    name: str
    is_remote: bool = False
    remote_name: Optional[str] = None
    is_head: bool = False

    @property
    def local_name(self) -> str:
        """Branch name without the ``<remote>/`` prefix."""
        if self.is_remote and self.remote_name:
            return self.name[len(self.remote_name) + 1:]
        return self.name

    @property
    def display_name(self) -> str:
        if self.is_remote:
            return f"[{self.remote_name or 'remote'}] {self.local_name}"
        return self.name


class WorktreeCreateResult(BaseModel):
    """Result of creating a new worktree."""

    worktree: Worktree
    created_branch: bool = Field(
        default=False, description="Whether a new branch was created"
    )
    setup_status: Optional[SetupStatus] = Field(
        default=None, description="Final setup automation status, if it ran"
    )
