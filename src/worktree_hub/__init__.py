"""
worktree-hub - manage git worktrees across repositories.

This package provides worktree listing and creation across several
repositories, "open" presets for worktrees, and setup automation that runs
after a worktree is created.
"""

__version__ = "0.1.0"

from worktree_hub.config import Config, load_config
from worktree_hub.core.repository_manager import RepositoryManager

__all__ = [
    "__version__",
    "Config",
    "RepositoryManager",
    "load_config",
]
