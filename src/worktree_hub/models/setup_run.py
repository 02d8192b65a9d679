"""Pydantic models for setup automation runs.

A run's state is ephemeral: it lives on the runner for as long as the
worktree's progress is shown and is never written to the store.
"""

from datetime import datetime
from enum import Enum
from typing import Optional

from pydantic import BaseModel, ConfigDict, Field


class OutputStream(str, Enum):
    """Origin of a setup output line."""

    STDOUT = "stdout"
    STDERR = "stderr"
    COMMAND = "command"


class SetupOutputLine(BaseModel):
    """A single line of output from a running setup automation."""

    model_config = ConfigDict(frozen=True)

    text: str
    stream: OutputStream
    timestamp: datetime = Field(default_factory=datetime.now)


class SetupState(str, Enum):
    """States of the setup automation state machine."""

    IDLE = "idle"
    RUNNING = "running"
    COMPLETED = "completed"
    FAILED = "failed"


class SetupStatus(BaseModel):
    """Status of a setup automation run.

    ``running`` carries the zero-based index of the current command and the
    command count; ``failed`` carries the index of the failing command and a
    message.
    """

    model_config = ConfigDict(frozen=True)

    state: SetupState = SetupState.IDLE
    command_index: Optional[int] = None
    total_commands: Optional[int] = None
    message: Optional[str] = None

    @classmethod
    def idle(cls) -> "SetupStatus":
        return cls(state=SetupState.IDLE)

    @classmethod
    def running(cls, command_index: int, total_commands: int) -> "SetupStatus":
        return cls(
            state=SetupState.RUNNING,
            command_index=command_index,
            total_commands=total_commands,
        )

    @classmethod
    def completed(cls) -> "SetupStatus":
        return cls(state=SetupState.COMPLETED)

    @classmethod
    def failed(cls, command_index: int, message: str) -> "SetupStatus":
        return cls(state=SetupState.FAILED, command_index=command_index, message=message)

    @property
    def is_running(self) -> bool:
        return self.state == SetupState.RUNNING

    @property
    def is_finished(self) -> bool:
        return self.state in (SetupState.COMPLETED, SetupState.FAILED)

    def describe(self) -> str:
        if self.state == SetupState.RUNNING:
            return f"Running command {self.command_index + 1} of {self.total_commands}"
        if self.state == SetupState.FAILED:
            return f"Failed at command {self.command_index + 1}: {self.message}"
        if self.state == SetupState.COMPLETED:
            return "Setup complete"
        return "Idle"
