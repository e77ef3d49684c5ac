from __future__ import annotations

from dataclasses import dataclass
from typing import Mapping

from settings_dashboard.dashboard_contracts import CategoryDef, FormToken, SettingKind
from settings_dashboard.value_cache import SettingSnapshot


PLACEHOLDER_LIMIT = 100
PLACEHOLDER_KEEP = 96


def check_submission(
    value: str | None,
    *,
    required: bool = False,
    min_length: int | None = None,
    max_length: int | None = None,
) -> str | None:
    """Return why a submitted value breaks a field's constraints, if it does."""
    text = value or ""
    if not text:
        return "A value is required." if required else None
    if min_length is not None and len(text) < min_length:
        return f"Must be at least {min_length} characters."
    if max_length is not None and len(text) > max_length:
        return f"Must be at most {max_length} characters."
    return None


@dataclass(frozen=True)
class FormField:
    setting_name: str
    label: str
    kind: SettingKind
    placeholder: str
    required: bool = False
    min_length: int | None = None
    max_length: int | None = None

    def check(self, value: str | None) -> str | None:
        return check_submission(
            value,
            required=self.required,
            min_length=self.min_length,
            max_length=self.max_length,
        )


@dataclass(frozen=True)
class FormPayload:
    title: str
    token: FormToken
    fields: tuple[FormField, ...]


def placeholder_for(setting_name: str, snapshot: SettingSnapshot | None) -> str:
    if snapshot is None or snapshot.unconfigured:
        return f"Enter {setting_name}..."
    text = str(snapshot.value)
    if len(text) > PLACEHOLDER_LIMIT:
        text = text[:PLACEHOLDER_KEEP] + "..."
    return text


class FormBuilder:
    def build(
        self,
        category: CategoryDef,
        setting_values: Mapping[str, SettingSnapshot],
        token: FormToken,
    ) -> FormPayload:
        fields = tuple(
            FormField(
                setting_name=setting.name,
                label=setting.name,
                kind=SettingKind.parse(setting.kind),
                placeholder=placeholder_for(setting.name, setting_values.get(setting.name)),
                required=setting.required,
                min_length=setting.min_length,
                max_length=setting.max_length,
            )
            for setting in category.settings
        )
        return FormPayload(title=category.name, token=token, fields=fields)
