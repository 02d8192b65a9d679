"""
External process execution for worktree-hub.

Two ways to run a program:

- ProcessExecutor.run() buffers stdout and stderr and returns a
  ProcessResult once the program exits. Both pipes are read while waiting
  for exit, so a child filling both pipe buffers cannot deadlock.
- ProcessExecutor.start_streaming() returns a StreamingProcess whose output
  arrives incrementally. Reader tasks push chunks onto a bounded queue and
  the owner applies them in its own task through drain(); readers never
  call back into the owner's state.

A streaming child runs in its own process group so cancel() can terminate
everything it started (``bash -c "npm install"`` spawns grandchildren).
"""

import asyncio
import codecs
import logging
import os
import shlex
import signal
from dataclasses import dataclass
from enum import Enum
from pathlib import Path
from typing import Callable, Mapping, Optional, Sequence

logger = logging.getLogger(__name__)

DEFAULT_QUEUE_SIZE = 256
READ_CHUNK_SIZE = 4096
# Seconds a cancelled process group gets between SIGTERM and SIGKILL.
KILL_GRACE_SECONDS = 3.0
# Seconds to wait for pipes to close after the child exited. Only matters
# when the child left a background process holding stdout/stderr open.
PIPE_CLOSE_GRACE_SECONDS = 2.0


class ProcessError(Exception):
    """Base exception for process execution."""


class ProcessLaunchError(ProcessError):
    """Raised when a program cannot be started (missing, not executable, bad cwd)."""

    def __init__(self, program: str, reason: str):
        self.program = program
        self.reason = reason
        super().__init__(f"Could not start '{program}': {reason}")


class CommandFailedError(ProcessError):
    """Raised when a program exits with a non-zero status."""

    def __init__(self, command: str, returncode: int, stderr: str):
        self.command = command
        self.returncode = returncode
        self.stderr = stderr
        message = f"Command '{command}' failed with exit code {returncode}"
        if stderr:
            message += f": {stderr}"
        super().__init__(message)


@dataclass(frozen=True)
class ProcessResult:
    """Outcome of a buffered process run. Output is whitespace-trimmed."""

    args: tuple[str, ...]
    returncode: int
    stdout: str
    stderr: str

    @property
    def ok(self) -> bool:
        return self.returncode == 0

    @property
    def combined_output(self) -> str:
        return "\n".join(part for part in (self.stdout, self.stderr) if part)


class StreamKind(str, Enum):
    """Which pipe a chunk of output came from."""

    STDOUT = "stdout"
    STDERR = "stderr"


@dataclass(frozen=True)
class OutputChunk:
    """A decoded fragment of output. Fragments do not respect line boundaries."""

    stream: StreamKind
    text: str


OutputSink = Callable[[OutputChunk], None]


def format_command(program: str, args: Sequence[str]) -> str:
    """Render an argument vector as a shell-quoted string for logs and errors."""
    return shlex.join([program, *args])


def _merged_environment(env: Optional[Mapping[str, str]]) -> Optional[dict[str, str]]:
    if env is None:
        return None
    merged = os.environ.copy()
    merged.update(env)
    return merged


async def _spawn(
    program: str,
    args: Sequence[str],
    cwd: Optional[str | Path],
    env: Optional[Mapping[str, str]],
    new_session: bool = False,
) -> asyncio.subprocess.Process:
    try:
        return await asyncio.create_subprocess_exec(
            program,
            *args,
            cwd=str(cwd) if cwd is not None else None,
            env=_merged_environment(env),
            stdin=asyncio.subprocess.DEVNULL,
            stdout=asyncio.subprocess.PIPE,
            stderr=asyncio.subprocess.PIPE,
            start_new_session=new_session,
        )
    except OSError as e:
        raise ProcessLaunchError(program, e.strerror or str(e)) from e


class StreamingProcess:
    """A running child process whose output is consumed incrementally.

    Create through ProcessExecutor.start_streaming(). Exactly one caller
    should drain() the handle; cancel() may be called from anywhere on the
    same event loop.
    """

    def __init__(
        self,
        process: asyncio.subprocess.Process,
        command: str,
        queue_size: int = DEFAULT_QUEUE_SIZE,
    ) -> None:
        self._process = process
        self.command = command
        self._cancelled = False
        self._queue: asyncio.Queue[Optional[OutputChunk]] = asyncio.Queue(maxsize=queue_size)
        self._readers = [
            asyncio.create_task(self._read(process.stdout, StreamKind.STDOUT)),
            asyncio.create_task(self._read(process.stderr, StreamKind.STDERR)),
        ]
        self._supervisor = asyncio.create_task(self._supervise())

    @property
    def pid(self) -> int:
        return self._process.pid

    @property
    def returncode(self) -> Optional[int]:
        return self._process.returncode

    @property
    def cancelled(self) -> bool:
        return self._cancelled

    async def _read(self, reader: asyncio.StreamReader, kind: StreamKind) -> None:
        decoder = codecs.getincrementaldecoder("utf-8")(errors="replace")
        while True:
            data = await reader.read(READ_CHUNK_SIZE)
            if not data:
                break
            text = decoder.decode(data)
            if text:
                await self._queue.put(OutputChunk(kind, text))

        tail = decoder.decode(b"", final=True)
        if tail:
            await self._queue.put(OutputChunk(kind, tail))

    async def _supervise(self) -> int:
        returncode = await self._process.wait()

        _, pending = await asyncio.wait(self._readers, timeout=PIPE_CLOSE_GRACE_SECONDS)
        if pending:
            logger.warning(
                f"Output of '{self.command}' is still held open by a background process; "
                "ignoring further output"
            )
            for task in pending:
                task.cancel()
            await asyncio.gather(*pending, return_exceptions=True)

        for task in self._readers:
            if not task.cancelled() and task.exception() is not None:
                logger.warning(f"Error reading output of '{self.command}': {task.exception()}")

        await self._queue.put(None)
        return returncode

    async def drain(self, sink: OutputSink) -> int:
        """
        Deliver output chunks to ``sink`` until the process has exited.

        Output produced right before exit is delivered before this returns.
        Once cancel() was called, remaining chunks are discarded.

        Args:
            sink: Called in the caller's task for every chunk, in arrival order.

        Returns:
            The process exit code (negative signal number when killed).
        """
        try:
            while True:
                chunk = await self._queue.get()
                if chunk is None:
                    break
                if not self._cancelled:
                    sink(chunk)
            returncode = await self._supervisor
        finally:
            if not self._supervisor.done():
                # drain() itself was cancelled; do not leave the child behind.
                if self._process.returncode is None:
                    self._signal_group(signal.SIGKILL)
                for task in (*self._readers, self._supervisor):
                    task.cancel()

        logger.debug(f"Exit code {returncode}: {self.command}")
        return returncode

    def cancel(self) -> None:
        """Terminate the child and its process group.

        The signal is sent before this returns. If the group ignores SIGTERM
        it is killed after KILL_GRACE_SECONDS. A pending drain() then reaps the
        process and closes its pipes.
        """
        if self._cancelled:
            return
        self._cancelled = True

        if self._process.returncode is not None:
            return

        logger.debug(f"Cancelling: {self.command}")
        self._signal_group(signal.SIGTERM)
        asyncio.get_running_loop().call_later(KILL_GRACE_SECONDS, self._kill_if_running)

    def _kill_if_running(self) -> None:
        if self._process.returncode is None:
            logger.warning(f"Process did not exit after SIGTERM, killing: {self.command}")
            self._signal_group(signal.SIGKILL)

    def _signal_group(self, sig: int) -> None:
        try:
            os.killpg(self._process.pid, sig)
        except ProcessLookupError:
            pass
        except PermissionError:
            self._process.send_signal(sig)


class ProcessExecutor:
    """Runs external programs asynchronously."""

    def __init__(self, queue_size: int = DEFAULT_QUEUE_SIZE) -> None:
        self.queue_size = queue_size

    async def run(
        self,
        program: str,
        args: Sequence[str] = (),
        cwd: Optional[str | Path] = None,
        env: Optional[Mapping[str, str]] = None,
    ) -> ProcessResult:
        """
        Run a program to completion and capture its output.

        Args:
            program: Executable name or path.
            args: Arguments passed to the program.
            cwd: Working directory. Defaults to the current directory.
            env: Variables merged over the inherited environment.

        Returns:
            ProcessResult with trimmed stdout/stderr.

        Raises:
            ProcessLaunchError: If the program cannot be started.
        """
        command = format_command(program, args)
        logger.debug(f"Running: {command}")

        process = await _spawn(program, args, cwd, env)
        try:
            stdout_bytes, stderr_bytes = await process.communicate()
        except asyncio.CancelledError:
            if process.returncode is None:
                process.kill()
            raise

        result = ProcessResult(
            args=(program, *args),
            returncode=process.returncode,
            stdout=stdout_bytes.decode("utf-8", errors="replace").strip(),
            stderr=stderr_bytes.decode("utf-8", errors="replace").strip(),
        )
        logger.debug(f"Exit code {result.returncode}: {command}")
        return result

    async def run_checked(
        self,
        program: str,
        args: Sequence[str] = (),
        cwd: Optional[str | Path] = None,
        env: Optional[Mapping[str, str]] = None,
    ) -> str:
        """Run a program and return its stdout.

        Raises:
            ProcessLaunchError: If the program cannot be started.
            CommandFailedError: If it exits with a non-zero status.
        """
        result = await self.run(program, args, cwd=cwd, env=env)
        if not result.ok:
            raise CommandFailedError(format_command(program, args), result.returncode, result.stderr)
        return result.stdout

    async def start_streaming(
        self,
        program: str,
        args: Sequence[str] = (),
        cwd: Optional[str | Path] = None,
        env: Optional[Mapping[str, str]] = None,
    ) -> StreamingProcess:
        """Start a program whose output is consumed through StreamingProcess.drain().

        Raises:
            ProcessLaunchError: If the program cannot be started.
        """
        command = format_command(program, args)
        logger.debug(f"Streaming: {command}")
        process = await _spawn(program, args, cwd, env, new_session=True)
        return StreamingProcess(process, command, queue_size=self.queue_size)

    async def run_streaming(
        self,
        program: str,
        args: Sequence[str],
        sink: OutputSink,
        cwd: Optional[str | Path] = None,
        env: Optional[Mapping[str, str]] = None,
    ) -> int:
        """Start a program, feed its output to ``sink`` and return the exit code."""
        handle = await self.start_streaming(program, args, cwd=cwd, env=env)
        return await handle.drain(sink)


__all__ = [
    "CommandFailedError",
    "OutputChunk",
    "OutputSink",
    "ProcessError",
    "ProcessExecutor",
    "ProcessLaunchError",
    "ProcessResult",
    "StreamKind",
    "StreamingProcess",
    "format_command",
]
