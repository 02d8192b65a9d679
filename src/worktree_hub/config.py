"""
Configuration management for worktree-hub.

Loads configuration from .worktreehubrc files in the following priority:
1. Path specified via --config flag
2. .worktreehubrc in current directory
3. .worktreehubrc.toml in current directory
4. ~/.config/worktree-hub/config.toml
5. ~/.worktreehubrc
"""

import logging
import shutil
from pathlib import Path
from typing import Optional

import toml
from pydantic import BaseModel, Field, ValidationError, field_validator

logger = logging.getLogger(__name__)

DEFAULT_STORE_PATH = "~/.config/worktree-hub/store.json"


class GitConfig(BaseModel):
    """Configuration for invoking git."""

    executable: str = Field(
        default="git",
        description="git binary name or absolute path",
    )
    fetch_prune: bool = Field(
        default=True,
        description="Prune deleted remote branches when fetching",
    )

    def resolve_executable(self) -> str:
        """Return an absolute path to git when it can be found on PATH."""
        return shutil.which(self.executable) or self.executable


class ShellConfig(BaseModel):
    """Configuration for the shell used by setup commands and shell presets."""

    executable: str = Field(
        default="/bin/bash",
        description="Shell interpreter invoked with -c",
    )
    login: bool = Field(
        default=True,
        description="Run setup commands in a login shell so profile PATH entries apply",
    )

    def command_args(self, command: str, login: Optional[bool] = None) -> list[str]:
        """Build the shell argument list for ``command``."""
        use_login = self.login if login is None else login
        return (["-l"] if use_login else []) + ["-c", command]


class SetupConfig(BaseModel):
    """Configuration for setup automation."""

    run_on_create: bool = Field(
        default=True,
        description="Run the repository setup script after creating a worktree",
    )
    queue_size: int = Field(
        default=256,
        description="Maximum buffered output chunks between process readers and the runner",
    )

    @field_validator("queue_size")
    @classmethod
    def _positive_queue(cls, value: int) -> int:
        if value < 1:
            raise ValueError("queue_size must be at least 1")
        return value


class WorktreeConfig(BaseModel):
    """Configuration for worktree creation."""

    base_directory: str = Field(
        default="../",
        description="Directory for new worktrees, relative to the repository root",
    )


class StoreConfig(BaseModel):
    """Location of the persisted repositories, presets and setup scripts."""

    path: str = Field(default=DEFAULT_STORE_PATH)

    @property
    def resolved_path(self) -> Path:
        return Path(self.path).expanduser()


class LoggingConfig(BaseModel):
    """Logging configuration."""

    level: str = Field(default="WARNING")
    log_file: Optional[str] = Field(default=None)


class Config(BaseModel):
    """Main configuration model for worktree-hub."""

    git: GitConfig = Field(default_factory=GitConfig)
    shell: ShellConfig = Field(default_factory=ShellConfig)
    setup: SetupConfig = Field(default_factory=SetupConfig)
    worktree: WorktreeConfig = Field(default_factory=WorktreeConfig)
    store: StoreConfig = Field(default_factory=StoreConfig)
    logging: LoggingConfig = Field(default_factory=LoggingConfig)


def config_search_paths(config_path: Optional[str] = None) -> list[Path]:
    """Candidate configuration files, highest priority first."""
    paths = [
        Path(config_path) if config_path else None,
        Path.cwd() / ".worktreehubrc",
        Path.cwd() / ".worktreehubrc.toml",
        get_default_config_path(),
        Path.home() / ".worktreehubrc",
    ]
    return [p for p in paths if p is not None]


def load_config(config_path: Optional[str] = None) -> Config:
    """
    Load configuration from file or use defaults.

    Args:
        config_path: Optional explicit path to config file.

    Returns:
        Config instance with loaded or default values.
    """
    for path in config_search_paths(config_path):
        if not path.exists():
            continue
        try:
            data = toml.load(path)
            config = Config(**data)
        except (toml.TomlDecodeError, ValidationError, OSError) as e:
            logger.warning(f"Ignoring invalid config file {path}: {e}")
            continue
        logger.debug(f"Loaded configuration from {path}")
        return config

    return Config()


def save_config(config: Config, path: Path) -> None:
    """
    Save configuration to a TOML file.

    Args:
        config: Configuration to save.
        path: Path to save the config file.
    """
    path.parent.mkdir(parents=True, exist_ok=True)
    data = config.model_dump(exclude_none=True)
    with open(path, "w") as f:
        toml.dump(data, f)


def get_default_config_path() -> Path:
    """Get the default configuration file path."""
    return Path.home() / ".config" / "worktree-hub" / "config.toml"
