"""Placeholder substitution for preset commands and setup scripts.

Placeholders use double braces, e.g. ``code "{{path}}"``. Unrecognized
placeholders are left as written.
"""

import re
from enum import Enum

from worktree_hub.models.repository import Repository
from worktree_hub.models.worktree import Worktree

PLACEHOLDER_PATTERN = re.compile(r"\{\{(\w+)\}\}")


class Placeholder(str, Enum):
    """Placeholders understood by substitute()."""

    PATH = "path"
    BRANCH = "branch"
    COMMIT_HASH = "commitHash"
    REPO_NAME = "repoName"
    REPO_PATH = "repoPath"

    @property
    def token(self) -> str:
        return "{{" + self.value + "}}"

    @property
    def description(self) -> str:
        return {
            Placeholder.PATH: "Absolute path of the worktree",
            Placeholder.BRANCH: "Branch checked out in the worktree",
            Placeholder.COMMIT_HASH: "Full hash of the worktree's HEAD commit",
            Placeholder.REPO_NAME: "Display name of the repository",
            Placeholder.REPO_PATH: "Absolute path of the repository",
        }[self]


def placeholder_values(worktree: Worktree, repository: Repository) -> dict[str, str]:
    """Values for every placeholder, keyed by placeholder name."""
    return {
        Placeholder.PATH.value: str(worktree.path),
        Placeholder.BRANCH.value: worktree.branch,
        Placeholder.COMMIT_HASH.value: worktree.commit_hash,
        Placeholder.REPO_NAME.value: repository.name,
        Placeholder.REPO_PATH.value: str(repository.path),
    }


def substitute(template: str, worktree: Worktree, repository: Repository) -> str:
    """Replace known placeholders in ``template`` with the worktree's values."""
    values = placeholder_values(worktree, repository)

    def _replace(match: re.Match) -> str:
        return values.get(match.group(1), match.group(0))

    return PLACEHOLDER_PATTERN.sub(_replace, template)


def unknown_placeholders(template: str) -> list[str]:
    """Names of placeholders in ``template`` that substitute() will leave alone."""
    known = {p.value for p in Placeholder}
    return [name for name in PLACEHOLDER_PATTERN.findall(template) if name not in known]
