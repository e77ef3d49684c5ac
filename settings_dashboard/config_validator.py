##########################################################################
#                                                                        #
#  Static validation of dashboard categories, settings and options.      #
#  A failed validation means the dashboard must not open.                #
#                                                                        #
##########################################################################

from __future__ import annotations

import re
from dataclasses import dataclass
from typing import Any, Sequence

from settings_dashboard.dashboard_contracts import (
    MAX_CATEGORIES,
    MAX_INPUT_LENGTH,
    MAX_NAME_LENGTH,
    MAX_SETTINGS_PER_CATEGORY,
    CategoryDef,
    DashboardConfigError,
    DashboardOptions,
    SettingKind,
)


_EMOJI_PATTERN = re.compile(
    "["
    "\U0001F1E6-\U0001F1FF"  # regional indicators (flags)
    "\U0001F300-\U0001F5FF"
    "\U0001F600-\U0001F64F"
    "\U0001F680-\U0001F6FF"
    "\U0001F700-\U0001F77F"
    "\U0001F780-\U0001F7FF"
    "\U0001F800-\U0001F8FF"
    "\U0001F900-\U0001F9FF"
    "\U0001FA00-\U0001FAFF"
    "\u2600-\u26FF"
    "\u2700-\u27BF"
    "\u2B00-\u2BFF"
    "\u2300-\u23FF"
    "]"
)
_EMOJI_JOINERS = re.compile("[\u200d\ufe0f\ufe0e\U0001F3FB-\U0001F3FF\u20e3]")


def contains_emoji(text: str) -> bool:
    return bool(_EMOJI_PATTERN.search(str(text or "")))


def is_emoji(text: str) -> bool:
    """True when the text is a single emoji, including joined and flag sequences."""
    stripped = _EMOJI_JOINERS.sub("", str(text or "").strip())
    if not stripped:
        return False
    return all(_EMOJI_PATTERN.fullmatch(char) for char in stripped) and len(stripped) <= 4


@dataclass(frozen=True)
class ValidationResult:
    ok: bool
    reason: str = ""

    def __bool__(self) -> bool:
        return self.ok


def _fail(reason: str) -> ValidationResult:
    return ValidationResult(ok=False, reason=reason)


def _validate_length_bound(setting_name: str, label: str, value: Any) -> str | None:
    if value is None:
        return None
    if isinstance(value, bool) or not isinstance(value, int):
        return f"Setting '{setting_name}' has a {label} that is not an integer."
    if value <= 0:
        return f"Setting '{setting_name}' has a {label} less than or equal to 0."
    if value > MAX_INPUT_LENGTH:
        return f"Setting '{setting_name}' has a {label} greater than {MAX_INPUT_LENGTH}."
    return None


class ConfigValidator:
    """Checks the static shape rules a dashboard configuration has to satisfy."""

    def validate(
        self,
        categories: Sequence[CategoryDef],
        options: DashboardOptions | None = None,
    ) -> ValidationResult:
        if categories is None or len(categories) == 0:
            return _fail("No categories have been provided.")
        if len(categories) > MAX_CATEGORIES:
            return _fail(f"Cannot have more than {MAX_CATEGORIES} categories.")

        seen_categories: set[str] = set()
        for category in categories:
            result = self._validate_category(category)
            if not result:
                return result
            key = category.name.lower()
            if key in seen_categories:
                return _fail(f"Category name '{category.name}' is used more than once.")
            seen_categories.add(key)

        if options is not None:
            result = self._validate_options(options)
            if not result:
                return result
        return ValidationResult(ok=True)

    def ensure_valid(
        self,
        categories: Sequence[CategoryDef],
        options: DashboardOptions | None = None,
    ) -> None:
        result = self.validate(categories, options)
        if not result:
            raise DashboardConfigError(result.reason)

    def _validate_category(self, category: CategoryDef) -> ValidationResult:
        name = category.name
        if not name:
            return _fail("One or more categories are missing names.")
        if not isinstance(name, str):
            return _fail("One or more categories' names are not strings.")
        if contains_emoji(name):
            return _fail(f"Category name '{name}' contains emoji.")
        if "_" in name:
            return _fail(f"Category name '{name}' contains an underscore.")
        if len(name) > MAX_NAME_LENGTH:
            return _fail(f"Category name '{name}' is longer than {MAX_NAME_LENGTH} characters.")
        if not category.description or not isinstance(category.description, str):
            return _fail(f"Category '{name}' is missing a description.")
        if category.emoji is not None and not is_emoji(category.emoji):
            return _fail(f"Category '{name}' has an invalid emoji.")
        if category.reset is not None and not callable(category.reset):
            return _fail(f"Category '{name}' has a reset action that is not callable.")

        settings = category.settings
        if len(settings) == 0:
            return _fail(f"Category '{name}' has no settings.")
        if len(settings) > MAX_SETTINGS_PER_CATEGORY:
            return _fail(f"Category '{name}' has more than {MAX_SETTINGS_PER_CATEGORY} settings.")

        seen_settings: set[str] = set()
        for setting in settings:
            reason = self._validate_setting(setting)
            if reason:
                return _fail(f"Category '{name}': {reason}")
            key = setting.name.lower()
            if key in seen_settings:
                return _fail(f"Category '{name}' has duplicate setting '{setting.name}'.")
            seen_settings.add(key)
        return ValidationResult(ok=True)

    def _validate_setting(self, setting: Any) -> str | None:
        name = getattr(setting, "name", None)
        if not name:
            return "one or more settings are missing names."
        if not isinstance(name, str):
            return "one or more settings' names are not strings."
        if "_" in name:
            return f"setting name '{name}' contains an underscore."
        if len(name) > MAX_NAME_LENGTH:
            return f"setting name '{name}' is longer than {MAX_NAME_LENGTH} characters."

        description = setting.description
        if description is not None:
            if not isinstance(description, str):
                return f"setting '{name}' has a description that is not a string."
            if "\n" in description:
                return f"setting '{name}' has a description containing a newline."

        try:
            SettingKind.parse(setting.kind)
        except DashboardConfigError as error:
            return f"setting '{name}': {error}"

        if not isinstance(setting.required, bool):
            return f"setting '{name}' has a 'required' flag that is not a boolean."

        for label, value in (("minLength", setting.min_length), ("maxLength", setting.max_length)):
            reason = _validate_length_bound(name, label, value)
            if reason:
                return reason
        if setting.min_length is not None and setting.max_length is not None:
            if setting.max_length < setting.min_length:
                return f"setting '{name}' has a maxLength less than its minLength."

        if setting.fetch is None or not callable(setting.fetch):
            return f"setting '{name}' is missing a fetch function."
        if setting.save is None or not callable(setting.save):
            return f"setting '{name}' is missing a save function."
        return None

    def _validate_options(self, options: DashboardOptions) -> ValidationResult:
        if int(options.idle_timeout_ms) <= 0:
            return _fail("idle_timeout_ms must be greater than 0.")
        if int(options.form_timeout_ms) <= 0:
            return _fail("form_timeout_ms must be greater than 0.")
        return ValidationResult(ok=True)
