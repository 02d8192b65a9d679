"""
Opening worktrees with presets.

Shell script presets run through the process executor inside the worktree.
URL and application presets are handed to a PlatformOpener, which wraps
whatever the desktop provides (``open`` on macOS, ``xdg-open`` elsewhere).
"""

import logging
import os
import shutil
import sys
from pathlib import Path
from typing import Optional, Protocol
from urllib.parse import urlparse

from worktree_hub.config import ShellConfig
from worktree_hub.core.process import CommandFailedError, ProcessExecutor
from worktree_hub.core.templates import substitute
from worktree_hub.models.preset import CommandKind, OpenPreset
from worktree_hub.models.repository import Repository
from worktree_hub.models.worktree import Worktree

logger = logging.getLogger(__name__)


class OpenError(Exception):
    """Base exception for open actions."""


class InvalidURLError(OpenError):
    """Raised when a URL template does not produce a usable URL."""

    def __init__(self, url: str):
        self.url = url
        super().__init__(f"Invalid URL: '{url}'")


class ApplicationNotFoundError(OpenError):
    """Raised when an application preset names an application that is not installed."""

    def __init__(self, application: str):
        self.application = application
        super().__init__(f"Application not found: {application}")


class PlatformOpener(Protocol):
    """Desktop integration used for URL and application presets."""

    async def open_url(self, url: str) -> None: ...

    async def open_with_application(self, path: Path, application: str) -> None: ...


def validate_url(url: str) -> str:
    """
    Check that ``url`` has a scheme and a location.

    ``file:///tmp/x`` has no network location but a path, which counts.

    Raises:
        InvalidURLError: If the URL is not usable.
    """
    parsed = urlparse(url)
    if not parsed.scheme or not (parsed.netloc or parsed.path):
        raise InvalidURLError(url)
    return url


def _looks_like_bundle_identifier(reference: str) -> bool:
    return "." in reference and "/" not in reference and not reference.endswith(".app")


class DefaultPlatformOpener:
    """PlatformOpener using ``open`` on macOS and ``xdg-open`` on other systems."""

    def __init__(self, executor: Optional[ProcessExecutor] = None, platform: str = sys.platform):
        self.executor = executor or ProcessExecutor()
        self.platform = platform

    @property
    def is_macos(self) -> bool:
        return self.platform == "darwin"

    async def open_url(self, url: str) -> None:
        program = "open" if self.is_macos else "xdg-open"
        await self.executor.run_checked(program, [url])

    async def open_with_application(self, path: Path, application: str) -> None:
        """
        Open ``path`` with ``application``.

        On macOS the reference may be a bundle identifier (``com.microsoft.VSCode``)
        or an application name or ``.app`` path. Otherwise it must be an
        executable on PATH or an executable file.

        Raises:
            ApplicationNotFoundError: If the application cannot be found.
        """
        if self.is_macos and (
            _looks_like_bundle_identifier(application) or application.endswith(".app")
        ):
            flag = "-b" if _looks_like_bundle_identifier(application) else "-a"
            try:
                await self.executor.run_checked("open", [flag, application, str(path)])
            except CommandFailedError as e:
                if "unable to find application" in e.stderr.lower():
                    raise ApplicationNotFoundError(application) from e
                raise
            return

        program = shutil.which(application)
        if program is None:
            candidate = Path(application).expanduser()
            if candidate.is_file() and os.access(candidate, os.X_OK):
                program = str(candidate)
        if program is None:
            raise ApplicationNotFoundError(application)

        await self.executor.run_checked(program, [str(path)], cwd=path)


class OpenService:
    """Carries out open presets for worktrees."""

    def __init__(
        self,
        executor: Optional[ProcessExecutor] = None,
        shell: Optional[ShellConfig] = None,
        opener: Optional[PlatformOpener] = None,
    ):
        self.executor = executor or ProcessExecutor()
        self.shell = shell or ShellConfig()
        self.opener = opener or DefaultPlatformOpener(self.executor)

    async def open(self, worktree: Worktree, repository: Repository, preset: OpenPreset) -> None:
        """
        Open ``worktree`` with ``preset``.

        Raises:
            CommandFailedError: If a shell script preset exits non-zero.
            ProcessLaunchError: If the shell or opener cannot be started.
            InvalidURLError: If a URL template yields an invalid URL.
            ApplicationNotFoundError: If the preset's application is missing.
        """
        command = preset.command
        logger.info(f"Opening {worktree.path} with '{preset.name}'")

        if command.kind == CommandKind.SHELL_SCRIPT:
            script = substitute(command.value, worktree, repository)
            await self.executor.run_checked(
                self.shell.executable,
                self.shell.command_args(script, login=False),
                cwd=worktree.path,
            )
        elif command.kind == CommandKind.URL_TEMPLATE:
            url = validate_url(substitute(command.value, worktree, repository))
            await self.opener.open_url(url)
        else:
            await self.opener.open_with_application(worktree.path, command.value)

    async def reveal(self, path: Path) -> None:
        """Show ``path`` in the file manager."""
        await self.opener.open_url(Path(path).resolve().as_uri())


__all__ = [
    "ApplicationNotFoundError",
    "DefaultPlatformOpener",
    "InvalidURLError",
    "OpenError",
    "OpenService",
    "PlatformOpener",
    "validate_url",
]
