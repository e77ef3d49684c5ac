##########################################################################
#                                                                        #
#  Shared contracts for the settings dashboard: category/setting         #
#  definitions, session options, form tokens and interaction events.     #
#                                                                        #
##########################################################################

from __future__ import annotations

import secrets
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Awaitable, Callable, Mapping

from settings_dashboard.runtime_settings import DEFAULT_RUNTIME_SETTINGS, get_runtime_setting


MAX_CATEGORIES = 25
MAX_SETTINGS_PER_CATEGORY = 5
MAX_NAME_LENGTH = 40
MAX_INPUT_LENGTH = 4000

# Callables may be plain functions or coroutine functions.
FetchCallable = Callable[[], Any]
SaveCallable = Callable[[str], Any]
ResetCallable = Callable[[], Any]
AcknowledgeCallable = Callable[[], Awaitable[None]]


class _Unconfigured:
    """Marker returned by a fetch capability when a setting has no value yet."""

    _instance = None

    def __new__(cls):
        if cls._instance is None:
            cls._instance = super().__new__(cls)
        return cls._instance

    def __repr__(self) -> str:
        return "UNCONFIGURED"

    def __bool__(self) -> bool:
        return False


UNCONFIGURED = _Unconfigured()


def is_unconfigured(value: Any) -> bool:
    return value is None or value is UNCONFIGURED or (isinstance(value, str) and value == "")


class DashboardConfigError(ValueError):
    """Raised when categories, settings or options cannot open a dashboard."""


class SettingKind(str, Enum):
    SINGLE_LINE = "textinput"
    MULTI_LINE = "textarea"

    @classmethod
    def parse(cls, value: Any) -> "SettingKind":
        if isinstance(value, SettingKind):
            return value
        text = str(value if value is not None else "").strip().lower()
        for kind in cls:
            if kind.value == text:
                return kind
        raise DashboardConfigError(f"Unknown setting type {value!r}; expected 'textinput' or 'textarea'.")


class DashboardState(str, Enum):
    OVERVIEW = "overview"
    CATEGORY_VIEW = "category_view"
    EDIT_OPEN = "edit_open"
    CLOSED = "closed"


@dataclass(frozen=True)
class SettingDef:
    name: str
    kind: SettingKind | str
    fetch: FetchCallable
    save: SaveCallable
    description: str | None = None
    min_length: int | None = None
    max_length: int | None = None
    required: bool = False


@dataclass(frozen=True)
class CategoryDef:
    name: str
    description: str
    settings: tuple[SettingDef, ...]
    emoji: str | None = None
    reset: ResetCallable | None = None

    def __post_init__(self):
        # Settings are held as a tuple so a definition can't be edited after validation.
        if not isinstance(self.settings, tuple):
            object.__setattr__(self, "settings", tuple(self.settings or ()))

    @property
    def can_reset(self) -> bool:
        return self.reset is not None


@dataclass(frozen=True)
class DashboardOptions:
    idle_timeout_ms: int = 150000
    form_timeout_ms: int = 300000
    show_categories_and_descriptions: bool = True
    prefetch_on_open: bool = True
    refresh_on_switch: bool = False
    overview_title: str | None = None
    overview_description: str | None = None
    category_description: str | None = None
    closing_title: str | None = None
    closing_description: str | None = None

    @property
    def idle_timeout_seconds(self) -> float:
        return self.idle_timeout_ms / 1000.0

    @property
    def form_timeout_seconds(self) -> float:
        return self.form_timeout_ms / 1000.0

    @classmethod
    def from_runtime_settings(
        cls,
        settings: Mapping[str, Any] | None = None,
        **overrides: Any,
    ) -> "DashboardOptions":
        source = dict(settings) if isinstance(settings, Mapping) else DEFAULT_RUNTIME_SETTINGS
        values = {
            "idle_timeout_ms": int(get_runtime_setting(source, "dashboard.idle_timeout_ms", cls.idle_timeout_ms)),
            "form_timeout_ms": int(get_runtime_setting(source, "dashboard.form_timeout_ms", cls.form_timeout_ms)),
            "show_categories_and_descriptions": bool(
                get_runtime_setting(source, "dashboard.show_categories_and_descriptions", True)
            ),
            "prefetch_on_open": bool(get_runtime_setting(source, "dashboard.prefetch_on_open", True)),
            "refresh_on_switch": bool(get_runtime_setting(source, "dashboard.refresh_on_switch", False)),
        }
        values.update(overrides)
        return cls(**values)


@dataclass(frozen=True)
class FormToken:
    """Correlates a form submission with the category and form it was opened for."""

    category_name: str
    nonce: str

    @classmethod
    def new(cls, category_name: str) -> "FormToken":
        return cls(category_name=category_name, nonce=secrets.token_hex(8))


@dataclass
class PendingEdit:
    category: CategoryDef
    token: FormToken
    expires_at: float


async def _no_acknowledge() -> None:
    return None


@dataclass
class InteractionEvent:
    actor_id: int | str
    acknowledge: AcknowledgeCallable = field(default=_no_acknowledge, repr=False, compare=False)


@dataclass
class CategorySelected(InteractionEvent):
    category_name: str = ""


@dataclass
class ButtonPressed(InteractionEvent):
    category_name: str = ""
    action: str = ""


@dataclass
class FormSubmitted(InteractionEvent):
    token: FormToken | None = None
    values: dict[str, str] = field(default_factory=dict)


@dataclass
class FormCancelled(InteractionEvent):
    token: FormToken | None = None


BUTTON_EDIT = "edit"
BUTTON_RESET = "reset"
