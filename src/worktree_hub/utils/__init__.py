"""Utility helpers for worktree-hub."""

from worktree_hub.utils.io import atomic_write_text, locked_file, read_json, write_json

__all__ = [
    "atomic_write_text",
    "locked_file",
    "read_json",
    "write_json",
]
