"""
Open preset management.

Which presets a repository shows is resolved through three layers, most
specific first:

1. A RepositoryPresetOverride for the repository (None means inherit).
2. The app-level PresetConfiguration.
3. The preset's own ``default_enabled``.

Presets created for a single repository are always shown for that
repository and are never subject to overrides.
"""

import logging
from typing import Optional
from uuid import UUID

from worktree_hub.core.store import ConfigStore
from worktree_hub.models.preset import (
    BUILT_IN_PRESET_IDS,
    BUILT_IN_PRESETS,
    OpenCommand,
    OpenPreset,
    PresetConfiguration,
)

logger = logging.getLogger(__name__)


class PresetError(Exception):
    """Base exception for preset operations."""


class PresetNotFoundError(PresetError):
    """Raised when no preset matches an id or name."""

    def __init__(self, identifier: str | UUID):
        self.identifier = identifier
        super().__init__(f"Preset '{identifier}' not found")


class BuiltInPresetError(PresetError):
    """Raised when trying to edit or delete a built-in preset."""

    def __init__(self, preset: OpenPreset):
        self.preset = preset
        super().__init__(f"'{preset.name}' is a built-in preset and cannot be changed")


class PresetManager:
    """Resolves and edits open presets at app and repository level."""

    def __init__(self, store: ConfigStore):
        self.store = store

    # Resolution

    def all_presets(self) -> list[OpenPreset]:
        """Built-in and custom app presets, ordered by their effective sort order."""
        configurations = self.store.get_app_configurations()
        combined = list(BUILT_IN_PRESETS) + self.store.get_custom_presets()

        def order(preset: OpenPreset) -> int:
            config = configurations.get(preset.id)
            return config.sort_order if config is not None else preset.sort_order

        # sorted() is stable, so ties keep catalog order.
        return sorted(combined, key=order)

    def enabled_presets(self) -> list[OpenPreset]:
        """Presets enabled at app level, ignoring repository overrides."""
        configurations = self.store.get_app_configurations()
        return [p for p in self.all_presets() if self._app_enabled(p, configurations)]

    def effective_presets(self, repository_id: UUID) -> list[OpenPreset]:
        """
        Presets to offer for a repository.

        Args:
            repository_id: Repository whose overrides and scoped presets apply.

        Returns:
            Enabled app presets in order, followed by the repository's own
            presets sorted by their sort order.
        """
        configurations = self.store.get_app_configurations()
        overrides = self._override_map(repository_id)

        app_presets = [
            p for p in self.all_presets() if self._resolve(p, configurations, overrides)
        ]
        return app_presets + self.repository_presets(repository_id)

    def is_enabled(self, preset_id: UUID, repository_id: Optional[UUID] = None) -> bool:
        """
        Whether a preset is shown, at app level or for one repository.

        A repository's own presets are enabled for that repository. Unknown
        ids are not enabled.
        """
        if repository_id is not None:
            if any(p.id == preset_id for p in self.store.get_repository_presets(repository_id)):
                return True

        preset = self._find_app_preset(preset_id)
        if preset is None:
            return False

        configurations = self.store.get_app_configurations()
        if repository_id is None:
            return self._app_enabled(preset, configurations)
        return self._resolve(preset, configurations, self._override_map(repository_id))

    def override_state(self, preset_id: UUID, repository_id: UUID) -> Optional[bool]:
        """The repository's explicit override, or None when it inherits."""
        return self._override_map(repository_id).get(preset_id)

    def _override_map(self, repository_id: UUID) -> dict[UUID, Optional[bool]]:
        return {o.preset_id: o.is_enabled for o in self.store.get_overrides(repository_id)}

    @staticmethod
    def _app_enabled(
        preset: OpenPreset, configurations: dict[UUID, PresetConfiguration]
    ) -> bool:
        config = configurations.get(preset.id)
        return config.is_enabled if config is not None else preset.default_enabled

    def _resolve(
        self,
        preset: OpenPreset,
        configurations: dict[UUID, PresetConfiguration],
        overrides: dict[UUID, Optional[bool]],
    ) -> bool:
        override = overrides.get(preset.id)
        if override is not None:
            return override
        return self._app_enabled(preset, configurations)

    # Lookup

    def _find_app_preset(self, preset_id: UUID) -> Optional[OpenPreset]:
        return next((p for p in self.all_presets() if p.id == preset_id), None)

    def get_preset(self, preset_id: UUID, repository_id: Optional[UUID] = None) -> OpenPreset:
        """Return an app preset, or a preset scoped to ``repository_id``."""
        preset = self._find_app_preset(preset_id)
        if preset is None and repository_id is not None:
            preset = next(
                (p for p in self.repository_presets(repository_id) if p.id == preset_id), None
            )
        if preset is None:
            raise PresetNotFoundError(preset_id)
        return preset

    def find_preset(self, identifier: str, repository_id: Optional[UUID] = None) -> OpenPreset:
        """
        Find a preset by id or case-insensitive name.

        Repository presets are searched first when ``repository_id`` is given.

        Raises:
            PresetNotFoundError: If nothing matches.
        """
        candidates = self.all_presets()
        if repository_id is not None:
            candidates = self.repository_presets(repository_id) + candidates

        for preset in candidates:
            if str(preset.id) == identifier:
                return preset
        lowered = identifier.casefold()
        for preset in candidates:
            if preset.name.casefold() == lowered:
                return preset
        raise PresetNotFoundError(identifier)

    # App-level configuration

    def set_preset_enabled(self, preset_id: UUID, enabled: bool) -> None:
        """Enable or disable a preset at app level."""
        configurations = self.store.get_app_configurations()
        config = configurations.get(preset_id)
        if config is None:
            ordered = [p.id for p in self.all_presets()]
            sort_order = ordered.index(preset_id) if preset_id in ordered else 0
            config = PresetConfiguration(
                preset_id=preset_id, is_enabled=enabled, sort_order=sort_order
            )
        else:
            config = config.model_copy(update={"is_enabled": enabled})
        self.store.set_app_configuration(config)

    def update_sort_order(self, preset_ids: list[UUID]) -> None:
        """Give the listed presets consecutive sort orders, keeping their enablement."""
        configurations = self.store.get_app_configurations()
        presets = {p.id: p for p in self.all_presets()}

        for index, preset_id in enumerate(preset_ids):
            config = configurations.get(preset_id)
            if config is not None:
                config = config.model_copy(update={"sort_order": index})
            else:
                preset = presets.get(preset_id)
                enabled = preset.default_enabled if preset is not None else True
                config = PresetConfiguration(
                    preset_id=preset_id, is_enabled=enabled, sort_order=index
                )
            self.store.set_app_configuration(config)

    # Repository overrides

    def set_repository_override(
        self, repository_id: UUID, preset_id: UUID, enabled: Optional[bool]
    ) -> None:
        """Force a preset on or off for a repository; None returns it to inheriting."""
        self.store.set_override(repository_id, preset_id, enabled)

    def clear_repository_overrides(self, repository_id: UUID) -> None:
        removed = self.store.clear_overrides(repository_id=repository_id)
        logger.debug(f"Cleared {removed} overrides for repository {repository_id}")

    # Custom app presets

    def create_preset(self, name: str, command: OpenCommand, icon: str = "app") -> OpenPreset:
        """Add an app-level preset at the end of the list, enabled."""
        preset = OpenPreset(name=name, icon=icon, command=command, sort_order=len(self.all_presets()))
        self.store.set_custom_presets(self.store.get_custom_presets() + [preset])
        self.store.set_app_configuration(
            PresetConfiguration(preset_id=preset.id, is_enabled=True, sort_order=preset.sort_order)
        )
        logger.info(f"Created preset '{name}'")
        return preset

    def update_preset(self, preset: OpenPreset) -> None:
        """Replace a custom preset with the same id."""
        if preset.id in BUILT_IN_PRESET_IDS:
            raise BuiltInPresetError(preset)

        presets = self.store.get_custom_presets()
        for index, existing in enumerate(presets):
            if existing.id == preset.id:
                presets[index] = preset
                self.store.set_custom_presets(presets)
                return
        raise PresetNotFoundError(preset.id)

    def delete_preset(self, preset_id: UUID) -> None:
        """Delete a custom preset along with its app configuration and every override."""
        if preset_id in BUILT_IN_PRESET_IDS:
            raise BuiltInPresetError(self.get_preset(preset_id))

        presets = self.store.get_custom_presets()
        remaining = [p for p in presets if p.id != preset_id]
        if len(remaining) == len(presets):
            raise PresetNotFoundError(preset_id)

        self.store.set_custom_presets(remaining)
        self.store.remove_app_configuration(preset_id)
        self.store.clear_overrides(preset_id=preset_id)
        logger.info(f"Deleted preset {preset_id}")

    # Repository presets

    def repository_presets(self, repository_id: UUID) -> list[OpenPreset]:
        return sorted(self.store.get_repository_presets(repository_id), key=lambda p: p.sort_order)

    def create_repository_preset(
        self,
        repository_id: UUID,
        name: str,
        command: OpenCommand,
        icon: str = "app",
    ) -> OpenPreset:
        """Add a preset that only exists for one repository."""
        presets = self.store.get_repository_presets(repository_id)
        preset = OpenPreset(name=name, icon=icon, command=command, sort_order=len(presets))
        self.store.set_repository_presets(repository_id, presets + [preset])
        logger.info(f"Created preset '{name}' for repository {repository_id}")
        return preset

    def update_repository_preset(self, repository_id: UUID, preset: OpenPreset) -> None:
        presets = self.store.get_repository_presets(repository_id)
        for index, existing in enumerate(presets):
            if existing.id == preset.id:
                presets[index] = preset
                self.store.set_repository_presets(repository_id, presets)
                return
        raise PresetNotFoundError(preset.id)

    def delete_repository_preset(self, repository_id: UUID, preset_id: UUID) -> None:
        presets = self.store.get_repository_presets(repository_id)
        remaining = [p for p in presets if p.id != preset_id]
        if len(remaining) == len(presets):
            raise PresetNotFoundError(preset_id)
        self.store.set_repository_presets(repository_id, remaining)


__all__ = [
    "BuiltInPresetError",
    "PresetError",
    "PresetManager",
    "PresetNotFoundError",
]
