"""Pydantic models for "open" presets and their configuration layers.

A preset's effective enablement is resolved from three layers: the preset's
own ``default_enabled``, an app-level PresetConfiguration, and a
RepositoryPresetOverride. See worktree_hub.core.presets for the resolution.
"""

from enum import Enum
from typing import Optional
from uuid import UUID, uuid4

from pydantic import BaseModel, ConfigDict, Field

BUILT_IN_CATALOG_VERSION = 1


class CommandKind(str, Enum):
    """What an open preset does with a worktree."""

    APPLICATION = "application"
    SHELL_SCRIPT = "shell_script"
    URL_TEMPLATE = "url_template"


class OpenCommand(BaseModel):
    """The action behind a preset.

    ``value`` is an application reference (executable name, path, or macOS
    bundle identifier), the script text, or the URL template, depending on
    ``kind``. Scripts and URL templates may contain placeholders.
    """

    model_config = ConfigDict(frozen=True)

    kind: CommandKind
    value: str

    @classmethod
    def application(cls, reference: str) -> "OpenCommand":
        return cls(kind=CommandKind.APPLICATION, value=reference)

    @classmethod
    def shell_script(cls, script: str) -> "OpenCommand":
        return cls(kind=CommandKind.SHELL_SCRIPT, value=script)

    @classmethod
    def url_template(cls, template: str) -> "OpenCommand":
        return cls(kind=CommandKind.URL_TEMPLATE, value=template)

    @property
    def type_display_name(self) -> str:
        return {
            CommandKind.APPLICATION: "Application",
            CommandKind.SHELL_SCRIPT: "Shell Script",
            CommandKind.URL_TEMPLATE: "URL",
        }[self.kind]

    @property
    def display_description(self) -> str:
        if self.kind == CommandKind.APPLICATION:
            return f"Open with {self.value}"
        return self.value


class OpenPreset(BaseModel):
    """A named action for opening a worktree."""

    model_config = ConfigDict(frozen=True)

    id: UUID = Field(default_factory=uuid4)
    name: str
    icon: str = "app"
    command: OpenCommand
    is_built_in: bool = False
    sort_order: int = 0
    default_enabled: bool = Field(
        default=True,
        description="Enabled when no configuration says otherwise (meaningful for built-ins)",
    )


class PresetConfiguration(BaseModel):
    """App-level enablement and ordering for one preset."""

    preset_id: UUID
    is_enabled: bool = True
    sort_order: int = 0


class RepositoryPresetOverride(BaseModel):
    """Repository-level enablement override for one preset.

    ``is_enabled`` is None to inherit, True to force on, False to force off.
    The repository is referenced by id only.
    """

    repository_id: UUID
    preset_id: UUID
    is_enabled: Optional[bool] = None


FILE_MANAGER_PRESET = OpenPreset(
    id=UUID("00000000-0000-0000-0000-000000000001"),
    name="File Manager",
    icon="folder",
    command=OpenCommand.url_template("file://{{path}}"),
    is_built_in=True,
    sort_order=0,
)

VSCODE_PRESET = OpenPreset(
    id=UUID("00000000-0000-0000-0000-000000000002"),
    name="VS Code",
    icon="code",
    command=OpenCommand.shell_script('code "{{path}}"'),
    is_built_in=True,
    sort_order=1,
)

CURSOR_PRESET = OpenPreset(
    id=UUID("00000000-0000-0000-0000-000000000003"),
    name="Cursor",
    icon="code",
    command=OpenCommand.shell_script('cursor "{{path}}"'),
    is_built_in=True,
    sort_order=2,
    default_enabled=False,
)

SUBLIME_PRESET = OpenPreset(
    id=UUID("00000000-0000-0000-0000-000000000004"),
    name="Sublime Text",
    icon="doc",
    command=OpenCommand.application("subl"),
    is_built_in=True,
    sort_order=3,
    default_enabled=False,
)

ZED_PRESET = OpenPreset(
    id=UUID("00000000-0000-0000-0000-000000000005"),
    name="Zed",
    icon="bolt",
    command=OpenCommand.application("zed"),
    is_built_in=True,
    sort_order=4,
    default_enabled=False,
)

BUILT_IN_PRESETS: tuple[OpenPreset, ...] = (
    FILE_MANAGER_PRESET,
    VSCODE_PRESET,
    CURSOR_PRESET,
    SUBLIME_PRESET,
    ZED_PRESET,
)

BUILT_IN_PRESET_IDS: frozenset[UUID] = frozenset(p.id for p in BUILT_IN_PRESETS)
