"""Branch name parsing, validation and folder-name sanitizing."""

import re

GIT_COMMAND_PREFIXES = (
    "git checkout -b ",
    "git checkout ",
    "git switch -c ",
    "git switch --create ",
    "git switch ",
    "git branch ",
    "git co -b ",
    "git co ",
)

_INVALID_FOLDER_CHARS = re.compile(r'[\\:*?"<>|#/]')
_INVALID_BRANCH_SUBSTRINGS = ("..", "//", "@{", "\\")
_INVALID_BRANCH_CHARS = re.compile(r"[\s~^:?*\[\x00-\x1f\x7f]")


def parse_branch_input(text: str) -> str:
    """
    Extract a branch name from user input.

    Accepts a plain name or a pasted git command, e.g.
    ``git switch -c bugfix/DEF-456`` gives ``bugfix/DEF-456`` and
    ``origin/feature/x`` gives ``feature/x``.
    """
    result = text.strip()

    lowered = result.lower()
    for prefix in GIT_COMMAND_PREFIXES:
        if lowered.startswith(prefix):
            result = result[len(prefix):]
            break

    if result.startswith("origin/"):
        result = result[len("origin/"):]

    words = result.split()
    return words[0] if words else ""


def sanitize_for_folder(branch: str) -> str:
    """
    Turn a branch name into a safe directory name.

    Examples:
        feature/ABC-123 -> feature-ABC-123
        bugfix/issue#456 -> bugfix-issue-456
    """
    result = _INVALID_FOLDER_CHARS.sub("-", branch)
    result = re.sub(r"-{2,}", "-", result)
    return result.strip("-.")


def is_valid_branch_name(name: str) -> bool:
    """Check a name against git's ref naming rules (the common subset)."""
    if not name:
        return False

    if any(part in name for part in _INVALID_BRANCH_SUBSTRINGS):
        return False

    if name.startswith(("/", ".")) or name.endswith(("/", ".", ".lock")):
        return False

    return _INVALID_BRANCH_CHARS.search(name) is None
