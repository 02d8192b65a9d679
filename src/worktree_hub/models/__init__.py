"""
Pydantic models for worktree-hub.

This package contains data models for:
- Worktrees, branches and remote tracking status
- Managed repositories
- Open presets and their app/repository configuration
- Setup automation runs
"""

from worktree_hub.models.preset import (
    BUILT_IN_CATALOG_VERSION,
    BUILT_IN_PRESET_IDS,
    BUILT_IN_PRESETS,
    CommandKind,
    OpenCommand,
    OpenPreset,
    PresetConfiguration,
    RepositoryPresetOverride,
)
from worktree_hub.models.repository import Repository, RepositoryRecord
from worktree_hub.models.setup_run import (
    OutputStream,
    SetupOutputLine,
    SetupState,
    SetupStatus,
)
from worktree_hub.models.worktree import (
    DETACHED_BRANCH_LABEL,
    Branch,
    RemoteBranchStatus,
    RemoteStatusKind,
    Worktree,
    WorktreeCreateResult,
)

__all__ = [
    "BUILT_IN_CATALOG_VERSION",
    "BUILT_IN_PRESET_IDS",
    "BUILT_IN_PRESETS",
    "CommandKind",
    "OpenCommand",
    "OpenPreset",
    "PresetConfiguration",
    "RepositoryPresetOverride",
    "Repository",
    "RepositoryRecord",
    "OutputStream",
    "SetupOutputLine",
    "SetupState",
    "SetupStatus",
    "DETACHED_BRANCH_LABEL",
    "Branch",
    "RemoteBranchStatus",
    "RemoteStatusKind",
    "Worktree",
    "WorktreeCreateResult",
]
