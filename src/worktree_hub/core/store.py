"""
Persistence for repositories, presets and setup scripts.

The rest of the package talks to a ConfigStore: a small synchronous
key-value interface. MemoryConfigStore keeps everything in a pydantic
StoreData; JsonConfigStore does the same and writes the whole document back
to a JSON file after every change.
"""

import json
import logging
from datetime import datetime
from pathlib import Path
from typing import Optional, Protocol
from uuid import UUID

from pydantic import BaseModel, Field, ValidationError

from worktree_hub.models.preset import (
    BUILT_IN_CATALOG_VERSION,
    OpenPreset,
    PresetConfiguration,
    RepositoryPresetOverride,
)
from worktree_hub.models.repository import RepositoryRecord
from worktree_hub.utils.io import read_json, write_json

logger = logging.getLogger(__name__)

STORE_FORMAT_VERSION = "1"


class ConfigStore(Protocol):
    """Synchronous storage used by the preset manager and repository manager."""

    def get_setup_script(self, repository_id: UUID) -> Optional[str]: ...

    def set_setup_script(self, repository_id: UUID, script: Optional[str]) -> None: ...

    def get_overrides(self, repository_id: UUID) -> list[RepositoryPresetOverride]: ...

    def set_override(
        self, repository_id: UUID, preset_id: UUID, is_enabled: Optional[bool]
    ) -> None: ...

    def clear_overrides(
        self, repository_id: Optional[UUID] = None, preset_id: Optional[UUID] = None
    ) -> int: ...

    def get_app_configurations(self) -> dict[UUID, PresetConfiguration]: ...

    def set_app_configuration(self, configuration: PresetConfiguration) -> None: ...

    def remove_app_configuration(self, preset_id: UUID) -> None: ...

    def get_custom_presets(self) -> list[OpenPreset]: ...

    def set_custom_presets(self, presets: list[OpenPreset]) -> None: ...

    def get_repository_presets(self, repository_id: UUID) -> list[OpenPreset]: ...

    def set_repository_presets(self, repository_id: UUID, presets: list[OpenPreset]) -> None: ...

    def get_repositories(self) -> list[RepositoryRecord]: ...

    def add_repository(self, record: RepositoryRecord) -> None: ...

    def remove_repository(self, repository_id: UUID) -> None: ...


class StoreData(BaseModel):
    """Everything the store persists, as one document."""

    version: str = Field(default=STORE_FORMAT_VERSION, description="Storage format version")
    catalog_version: int = Field(default=BUILT_IN_CATALOG_VERSION)
    updated_at: datetime = Field(default_factory=datetime.now)
    repositories: list[RepositoryRecord] = Field(default_factory=list)
    setup_scripts: dict[UUID, str] = Field(default_factory=dict)
    app_configurations: dict[UUID, PresetConfiguration] = Field(default_factory=dict)
    custom_presets: list[OpenPreset] = Field(default_factory=list)
    repository_presets: dict[UUID, list[OpenPreset]] = Field(default_factory=dict)
    overrides: list[RepositoryPresetOverride] = Field(default_factory=list)


class MemoryConfigStore:
    """ConfigStore kept in memory. Values handed out are copies."""

    def __init__(self, data: Optional[StoreData] = None):
        self._data = data or StoreData()

    def _changed(self) -> None:
        self._data.updated_at = datetime.now()

    # Setup scripts

    def get_setup_script(self, repository_id: UUID) -> Optional[str]:
        return self._data.setup_scripts.get(repository_id)

    def set_setup_script(self, repository_id: UUID, script: Optional[str]) -> None:
        """Store the script; None or blank text removes it."""
        if script and script.strip():
            self._data.setup_scripts[repository_id] = script
        elif self._data.setup_scripts.pop(repository_id, None) is None:
            return
        self._changed()

    # Repository overrides

    def get_overrides(self, repository_id: UUID) -> list[RepositoryPresetOverride]:
        return [
            o.model_copy() for o in self._data.overrides if o.repository_id == repository_id
        ]

    def set_override(
        self, repository_id: UUID, preset_id: UUID, is_enabled: Optional[bool]
    ) -> None:
        """Set a repository override; None removes it so the preset inherits."""
        remaining = [
            o
            for o in self._data.overrides
            if not (o.repository_id == repository_id and o.preset_id == preset_id)
        ]
        if is_enabled is not None:
            remaining.append(
                RepositoryPresetOverride(
                    repository_id=repository_id, preset_id=preset_id, is_enabled=is_enabled
                )
            )
        self._data.overrides = remaining
        self._changed()

    def clear_overrides(
        self, repository_id: Optional[UUID] = None, preset_id: Optional[UUID] = None
    ) -> int:
        """
        Remove overrides matching every given criterion.

        Args:
            repository_id: Only overrides of this repository.
            preset_id: Only overrides of this preset.

        Returns:
            Number of overrides removed.
        """

        def matches(override: RepositoryPresetOverride) -> bool:
            if repository_id is not None and override.repository_id != repository_id:
                return False
            if preset_id is not None and override.preset_id != preset_id:
                return False
            return True

        before = len(self._data.overrides)
        self._data.overrides = [o for o in self._data.overrides if not matches(o)]
        removed = before - len(self._data.overrides)
        if removed:
            self._changed()
        return removed

    # App-level preset configuration

    def get_app_configurations(self) -> dict[UUID, PresetConfiguration]:
        return {k: v.model_copy() for k, v in self._data.app_configurations.items()}

    def set_app_configuration(self, configuration: PresetConfiguration) -> None:
        self._data.app_configurations[configuration.preset_id] = configuration.model_copy()
        self._changed()

    def remove_app_configuration(self, preset_id: UUID) -> None:
        if self._data.app_configurations.pop(preset_id, None) is not None:
            self._changed()

    # Presets

    def get_custom_presets(self) -> list[OpenPreset]:
        return [p.model_copy() for p in self._data.custom_presets]

    def set_custom_presets(self, presets: list[OpenPreset]) -> None:
        self._data.custom_presets = [p.model_copy() for p in presets]
        self._changed()

    def get_repository_presets(self, repository_id: UUID) -> list[OpenPreset]:
        return [p.model_copy() for p in self._data.repository_presets.get(repository_id, [])]

    def set_repository_presets(self, repository_id: UUID, presets: list[OpenPreset]) -> None:
        if presets:
            self._data.repository_presets[repository_id] = [p.model_copy() for p in presets]
        elif self._data.repository_presets.pop(repository_id, None) is None:
            return
        self._changed()

    # Repositories

    def get_repositories(self) -> list[RepositoryRecord]:
        return [r.model_copy() for r in self._data.repositories]

    def add_repository(self, record: RepositoryRecord) -> None:
        """Add or replace (by id) a repository record."""
        self._data.repositories = [r for r in self._data.repositories if r.id != record.id]
        self._data.repositories.append(record.model_copy())
        self._changed()

    def remove_repository(self, repository_id: UUID) -> None:
        before = len(self._data.repositories)
        self._data.repositories = [r for r in self._data.repositories if r.id != repository_id]
        if len(self._data.repositories) != before:
            self._changed()


class JsonConfigStore(MemoryConfigStore):
    """
    ConfigStore backed by a JSON file.

    The file is read once on construction and rewritten atomically (0o600)
    after every change. A file that cannot be parsed is moved aside to
    ``<name>.corrupt`` and the store starts empty.
    """

    def __init__(self, path: Path):
        self.path = Path(path).expanduser()
        super().__init__(self._load())

    def _load(self) -> StoreData:
        try:
            raw = read_json(self.path)
        except (OSError, json.JSONDecodeError, ValueError) as e:
            self._quarantine(e)
            return StoreData()

        if raw is None:
            return StoreData()

        try:
            data = StoreData.model_validate(raw)
        except ValidationError as e:
            self._quarantine(e)
            return StoreData()

        if data.catalog_version < BUILT_IN_CATALOG_VERSION:
            logger.info(
                f"Upgrading preset catalog from version {data.catalog_version} "
                f"to {BUILT_IN_CATALOG_VERSION}"
            )
            data.catalog_version = BUILT_IN_CATALOG_VERSION

        logger.debug(f"Loaded store from {self.path}")
        return data

    def _quarantine(self, error: Exception) -> None:
        backup = self.path.with_name(self.path.name + ".corrupt")
        logger.warning(f"Could not read store {self.path} ({error}); moving it to {backup}")
        try:
            self.path.replace(backup)
        except OSError as e:
            logger.warning(f"Could not move {self.path} aside: {e}")

    def _changed(self) -> None:
        super()._changed()
        write_json(self.path, self._data.model_dump(mode="json"))


__all__ = [
    "ConfigStore",
    "JsonConfigStore",
    "MemoryConfigStore",
    "StoreData",
]
