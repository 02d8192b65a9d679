"""
Setup automation for new worktrees.

A repository's setup script is a list of shell commands, one per line. The
runner executes them in order inside the worktree, streaming output as it
arrives, and stops at the first command that fails.
"""

import logging
from typing import Callable, Optional

from worktree_hub.config import ShellConfig
from worktree_hub.core.process import (
    OutputChunk,
    ProcessExecutor,
    ProcessLaunchError,
    StreamingProcess,
)
from worktree_hub.core.templates import substitute
from worktree_hub.models.repository import Repository
from worktree_hub.models.setup_run import OutputStream, SetupOutputLine, SetupStatus
from worktree_hub.models.worktree import Worktree

logger = logging.getLogger(__name__)

COMMENT_PREFIX = "#"

LineListener = Callable[[SetupOutputLine], None]


def parse_commands(script: str) -> list[str]:
    """
    Split a setup script into commands.

    Lines are trimmed; blank lines and ``#`` comments are dropped.

    Example:
        >>> parse_commands("npm install\\n\\n# comment\\nnpm run build")
        ['npm install', 'npm run build']
    """
    commands = []
    for line in script.splitlines():
        line = line.strip()
        if line and not line.startswith(COMMENT_PREFIX):
            commands.append(line)
    return commands


class SetupAutomationRunner:
    """
    Runs a setup script for one worktree and records its progress.

    ``status`` moves idle -> running -> completed or failed. cancel() returns
    a running runner to idle; reset() also clears the output. Output lines
    are appended in the order they arrive and passed to ``on_line`` if set.
    """

    def __init__(
        self,
        executor: Optional[ProcessExecutor] = None,
        shell: Optional[ShellConfig] = None,
        on_line: Optional[LineListener] = None,
    ):
        self.executor = executor or ProcessExecutor()
        self.shell = shell or ShellConfig()
        self.on_line = on_line
        self.status = SetupStatus.idle()
        self.output_lines: list[SetupOutputLine] = []
        self._current: Optional[StreamingProcess] = None
        self._partial: dict[OutputStream, str] = {}
        # Bumped by every run(), cancel() and reset(); a run whose generation
        # is no longer current stops touching state.
        self._generation = 0

    @property
    def is_running(self) -> bool:
        return self.status.is_running

    async def run(self, script: str, worktree: Worktree, repository: Repository) -> SetupStatus:
        """
        Run every command of ``script`` in ``worktree``.

        Args:
            script: Setup script; see parse_commands().
            worktree: Worktree to run in; also supplies template values.
            repository: Repository the worktree belongs to.

        Returns:
            The status once the run finished, failed or was cancelled.
        """
        if self._current is not None:
            self._current.cancel()

        self._generation += 1
        generation = self._generation

        self.output_lines = []
        commands = parse_commands(script)
        if not commands:
            self.status = SetupStatus.completed()
            return self.status

        total = len(commands)
        logger.info(f"Running {total} setup commands in {worktree.path}")

        for index, template in enumerate(commands):
            self.status = SetupStatus.running(index, total)
            command = substitute(template, worktree, repository)
            self._append(f"$ {command}", OutputStream.COMMAND)

            returncode = await self._execute(command, worktree, generation)
            if generation != self._generation:
                return self.status

            if returncode is None:
                self.status = SetupStatus.failed(index, f"Command failed: {command}")
                return self.status

            if returncode != 0:
                logger.warning(f"Setup command failed with exit code {returncode}: {command}")
                self.status = SetupStatus.failed(
                    index, f"Command failed: {command} (exit code {returncode})"
                )
                return self.status

        self.status = SetupStatus.completed()
        logger.info(f"Setup completed in {worktree.path}")
        return self.status

    async def _execute(self, command: str, worktree: Worktree, generation: int) -> Optional[int]:
        """Run one command; None when it could not be started."""
        try:
            handle = await self.executor.start_streaming(
                self.shell.executable,
                self.shell.command_args(command),
                cwd=worktree.path,
            )
        except ProcessLaunchError as e:
            if generation == self._generation:
                self._append(f"Failed to start command: {e.reason}", OutputStream.STDERR)
            return None

        if generation != self._generation:
            handle.cancel()
            await handle.drain(lambda chunk: None)
            return None

        self._current = handle
        self._partial = {}
        try:
            returncode = await handle.drain(lambda chunk: self._receive(chunk, generation))
        finally:
            if self._current is handle:
                self._current = None

        if generation == self._generation:
            self._flush_partial()
        return returncode

    def _receive(self, chunk: OutputChunk, generation: int) -> None:
        if generation != self._generation:
            return

        stream = OutputStream(chunk.stream.value)
        text = self._partial.pop(stream, "") + chunk.text
        *lines, rest = text.split("\n")
        if rest:
            self._partial[stream] = rest
        for line in lines:
            self._append(line, stream)

    def _flush_partial(self) -> None:
        for stream, text in list(self._partial.items()):
            self._append(text, stream)
        self._partial = {}

    def _append(self, text: str, stream: OutputStream) -> None:
        text = text.rstrip("\r")
        if not text.strip():
            return
        line = SetupOutputLine(text=text, stream=stream)
        self.output_lines.append(line)
        if self.on_line is not None:
            self.on_line(line)

    def cancel(self) -> None:
        """Stop a running run; its process group is terminated and status returns to idle."""
        if not self.status.is_running:
            return

        self._generation += 1
        if self._current is not None:
            self._current.cancel()
            self._current = None
        self._partial = {}
        self.status = SetupStatus.idle()
        logger.info("Setup automation cancelled")

    def reset(self) -> None:
        """Discard output and return to idle so the script can be run again."""
        self.cancel()
        self._generation += 1
        self.output_lines = []
        self._partial = {}
        self.status = SetupStatus.idle()


__all__ = [
    "LineListener",
    "SetupAutomationRunner",
    "parse_commands",
]
