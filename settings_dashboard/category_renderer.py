##########################################################################
#                                                                        #
#  Builds the transport-neutral view of the dashboard: overview,         #
#  category view, controls and the closing notice.                       #
#                                                                        #
##########################################################################

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Mapping, Sequence

from settings_dashboard.dashboard_contracts import (
    BUTTON_EDIT,
    BUTTON_RESET,
    CategoryDef,
    DashboardOptions,
)
from settings_dashboard.value_cache import SettingSnapshot


SELECTOR_PLACEHOLDER = "Select a Category to Configure..."


@dataclass(frozen=True)
class PayloadField:
    name: str
    description: str = ""
    current: str | None = None
    error: str | None = None

    @property
    def value(self) -> str:
        lines = []
        if self.description:
            lines.append(self.description)
        if self.current is not None:
            lines.append(f"Currently: **{self.current}**")
        if self.error:
            lines.append(f"⚠ {self.error}")
        return "\n".join(lines)


@dataclass(frozen=True)
class VisualPayload:
    title: str
    description: str = ""
    fields: tuple[PayloadField, ...] = ()
    notice: str | None = None


@dataclass(frozen=True)
class ControlButton:
    category_name: str
    action: str
    label: str
    emoji: str
    style: str


@dataclass(frozen=True)
class SelectorOption:
    label: str
    value: str
    description: str = ""
    emoji: str | None = None


@dataclass(frozen=True)
class ControlSet:
    buttons: tuple[ControlButton, ...] = ()
    selector: tuple[SelectorOption, ...] = ()
    selector_placeholder: str = SELECTOR_PLACEHOLDER


@dataclass
class CategoryRenderer:
    """Pure rendering: the same inputs always give the same payload."""

    bot_name: str = "Bot"
    options: DashboardOptions = field(default_factory=DashboardOptions)

    def overview(self, categories: Sequence[CategoryDef]) -> VisualPayload:
        title = self.options.overview_title or f"{self.bot_name} Settings Menu"
        description = self.options.overview_description or (
            f"Welcome to the {self.bot_name} Settings Menu!\n"
            f"Use the selection menu below to find and configure {self.bot_name}'s settings."
        )
        fields: tuple[PayloadField, ...] = ()
        if self.options.show_categories_and_descriptions:
            fields = tuple(
                PayloadField(name=_category_label(category), description=category.description)
                for category in categories
            )
        return VisualPayload(title=title, description=description, fields=fields)

    def render(
        self,
        category: CategoryDef,
        setting_values: Mapping[str, SettingSnapshot],
        notice: str | None = None,
    ) -> VisualPayload:
        fields = []
        for setting in category.settings:
            snapshot = setting_values.get(setting.name) or SettingSnapshot()
            fields.append(
                PayloadField(
                    name=setting.name,
                    description=setting.description or "",
                    current=snapshot.display,
                    error=snapshot.error,
                )
            )
        return VisualPayload(
            title=category.name,
            description=self.options.category_description or category.description,
            fields=tuple(fields),
            notice=notice,
        )

    def controls(self, category: CategoryDef, categories: Sequence[CategoryDef]) -> ControlSet:
        buttons = [
            ControlButton(
                category_name=category.name,
                action=BUTTON_EDIT,
                label="Edit...",
                emoji="📝",
                style="success",
            )
        ]
        if category.can_reset:
            buttons.append(
                ControlButton(
                    category_name=category.name,
                    action=BUTTON_RESET,
                    label="Reset to Default...",
                    emoji="🗑",
                    style="danger",
                )
            )
        return ControlSet(buttons=tuple(buttons), selector=self.selector(categories))

    def overview_controls(self, categories: Sequence[CategoryDef]) -> ControlSet:
        return ControlSet(selector=self.selector(categories))

    def selector(self, categories: Sequence[CategoryDef]) -> tuple[SelectorOption, ...]:
        return tuple(
            SelectorOption(
                label=category.name,
                value=category.name,
                description=category.description,
                emoji=category.emoji,
            )
            for category in categories
        )

    def closed(self) -> VisualPayload:
        return VisualPayload(
            title=self.options.closing_title or "Settings Menu Closed",
            description=self.options.closing_description or f"The {self.bot_name} Settings Menu has been closed.",
        )


def _category_label(category: CategoryDef) -> str:
    if category.emoji:
        return f"{category.emoji} {category.name}"
    return category.name
