from __future__ import annotations

import copy
from dataclasses import dataclass
from typing import Any

from settings_dashboard.dashboard_contracts import CategoryDef, is_unconfigured


UNCONFIGURED_LABEL = "Unconfigured"
DISPLAY_VALUE_LIMIT = 100


def display_value(value: Any, limit: int = DISPLAY_VALUE_LIMIT) -> str:
    """Single-line text shown after "Currently:" for a fetched value."""
    if is_unconfigured(value):
        return UNCONFIGURED_LABEL
    text = str(value).replace("\n", " ")
    if len(text) > limit:
        text = text[:limit] + "..."
    return text


@dataclass(frozen=True)
class SettingSnapshot:
    value: Any = None
    error: str | None = None
    fetch_failed: bool = False

    @property
    def display(self) -> str:
        return display_value(self.value)

    @property
    def unconfigured(self) -> bool:
        return is_unconfigured(self.value)


class SettingValueCache:
    """Last known value of every setting displayed in one dashboard session.

    Entries are keyed by (category name, setting name). Nothing here is shared
    between sessions, and the setting definitions themselves are never touched.
    """

    def __init__(self):
        self._snapshots: dict[tuple[str, str], SettingSnapshot] = {}
        self._loaded_categories: set[str] = set()

    def store(self, category_name: str, setting_name: str, value: Any, error: str | None = None) -> SettingSnapshot:
        snapshot = SettingSnapshot(value=copy.deepcopy(value), error=error)
        self._snapshots[(category_name, setting_name)] = snapshot
        return snapshot

    def store_fetch_failure(self, category_name: str, setting_name: str, error: str) -> SettingSnapshot:
        # Keep the previous value on screen; the failure is reported next to it.
        previous = self._snapshots.get((category_name, setting_name))
        snapshot = SettingSnapshot(
            value=previous.value if previous is not None else None,
            error=error,
            fetch_failed=True,
        )
        self._snapshots[(category_name, setting_name)] = snapshot
        return snapshot

    def annotate(self, category_name: str, setting_name: str, error: str | None) -> None:
        previous = self._snapshots.get((category_name, setting_name), SettingSnapshot())
        if previous.error and error and previous.error != error:
            error = f"{error} {previous.error}"
        self._snapshots[(category_name, setting_name)] = SettingSnapshot(
            value=previous.value,
            error=error or previous.error,
            fetch_failed=previous.fetch_failed,
        )

    def get(self, category_name: str, setting_name: str) -> SettingSnapshot | None:
        return self._snapshots.get((category_name, setting_name))

    def last_value(self, category_name: str, setting_name: str) -> Any:
        snapshot = self._snapshots.get((category_name, setting_name))
        if snapshot is None:
            return None
        return snapshot.value

    def mark_loaded(self, category_name: str) -> None:
        self._loaded_categories.add(category_name)

    def is_loaded(self, category_name: str) -> bool:
        return category_name in self._loaded_categories

    def values_for(self, category: CategoryDef) -> dict[str, SettingSnapshot]:
        """Snapshots for a category in definition order; missing entries read as unconfigured."""
        return {
            setting.name: self._snapshots.get((category.name, setting.name), SettingSnapshot())
            for setting in category.settings
        }

    def clear_errors(self, category: CategoryDef) -> None:
        for setting in category.settings:
            key = (category.name, setting.name)
            snapshot = self._snapshots.get(key)
            if snapshot is not None and snapshot.error:
                self._snapshots[key] = SettingSnapshot(value=snapshot.value)

    def __len__(self) -> int:
        return len(self._snapshots)
