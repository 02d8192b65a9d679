"""Pydantic models for managed repositories."""

from datetime import datetime
from pathlib import Path
from typing import Optional
from uuid import UUID, uuid4

from pydantic import BaseModel, Field

from worktree_hub.models.worktree import Worktree


class RepositoryRecord(BaseModel):
    """The persisted identity of a managed repository."""

    id: UUID = Field(default_factory=uuid4)
    name: str
    path: Path
    added_at: datetime = Field(default_factory=datetime.now)


class Repository(BaseModel):
    """A managed repository together with its most recent worktree listing.

    The worktree list is replaced as a whole on every refresh. Counts are
    derived from it and never stored.
    """

    id: UUID = Field(default_factory=uuid4)
    name: str
    path: Path
    worktrees: list[Worktree] = Field(default_factory=list)
    last_refreshed: Optional[datetime] = None

    @classmethod
    def from_record(cls, record: RepositoryRecord) -> "Repository":
        return cls(id=record.id, name=record.name, path=record.path)

    def to_record(self) -> RepositoryRecord:
        return RepositoryRecord(id=self.id, name=self.name, path=self.path)

    @property
    def worktree_count(self) -> int:
        return len(self.worktrees)

    @property
    def stale_worktree_count(self) -> int:
        """Number of worktrees whose upstream branch was deleted."""
        return sum(1 for wt in self.worktrees if wt.remote_branch_status.is_stale)

    @property
    def has_stale_worktrees(self) -> bool:
        return self.stale_worktree_count > 0

    @property
    def prunable_worktrees(self) -> list[Worktree]:
        return [wt for wt in self.worktrees if wt.is_prunable]

    @property
    def prunable_worktree_count(self) -> int:
        return len(self.prunable_worktrees)

    @property
    def has_prunable_worktrees(self) -> bool:
        return self.prunable_worktree_count > 0

    @property
    def main_worktree(self) -> Optional[Worktree]:
        return next((wt for wt in self.worktrees if wt.is_main), None)

    def find_worktree(self, identifier: str) -> Optional[Worktree]:
        """
        Find a worktree by folder name, branch, or path.

        Args:
            identifier: Worktree folder name, branch name, or path.

        Returns:
            The matching Worktree, or None.
        """
        for wt in self.worktrees:
            if identifier in (wt.folder_name, wt.branch, str(wt.path)):
                return wt

        candidate = Path(identifier).expanduser()
        if candidate.is_absolute():
            resolved = candidate.resolve()
            for wt in self.worktrees:
                if wt.path.resolve() == resolved:
                    return wt

        return None
