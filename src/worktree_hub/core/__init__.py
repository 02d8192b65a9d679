"""
Core modules for worktree-hub.

This package contains the core business logic for:
- Process execution with streamed output
- Git worktree and branch operations
- Template substitution
- Setup automation
- Open preset resolution and open actions
- Repository management and persistence
"""

from worktree_hub.core.git import GitError, GitService
from worktree_hub.core.open_service import (
    DefaultPlatformOpener,
    OpenError,
    OpenService,
    PlatformOpener,
)
from worktree_hub.core.presets import PresetManager
from worktree_hub.core.process import (
    CommandFailedError,
    ProcessError,
    ProcessExecutor,
    ProcessLaunchError,
    ProcessResult,
)
from worktree_hub.core.repository_manager import (
    RepositoryManager,
    RepositoryNotFoundError,
)
from worktree_hub.core.setup_runner import SetupAutomationRunner, parse_commands
from worktree_hub.core.store import ConfigStore, JsonConfigStore, MemoryConfigStore
from worktree_hub.core.templates import substitute

__all__ = [
    "GitError",
    "GitService",
    "DefaultPlatformOpener",
    "OpenError",
    "OpenService",
    "PlatformOpener",
    "PresetManager",
    "CommandFailedError",
    "ProcessError",
    "ProcessExecutor",
    "ProcessLaunchError",
    "ProcessResult",
    "RepositoryManager",
    "RepositoryNotFoundError",
    "SetupAutomationRunner",
    "parse_commands",
    "ConfigStore",
    "JsonConfigStore",
    "MemoryConfigStore",
    "substitute",
]
