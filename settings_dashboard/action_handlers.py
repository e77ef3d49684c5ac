##########################################################################
#                                                                        #
#  The three dashboard flows (category switch, edit submit, reset) and   #
#  the fetch-and-cache pass they share.                                  #
#                                                                        #
##########################################################################

from __future__ import annotations

import inspect
import logging
from typing import TYPE_CHECKING, Any, Callable, Mapping

from settings_dashboard.dashboard_contracts import (
    CategoryDef,
    FormToken,
    PendingEdit,
    is_unconfigured,
)
from settings_dashboard.form_builder import check_submission

if TYPE_CHECKING:
    from settings_dashboard.session_controller import SessionController


logger = logging.getLogger(__name__)


async def call_capability(capability: Callable[..., Any], *args: Any) -> Any:
    result = capability(*args)
    if inspect.isawaitable(result):
        result = await result
    return result


def _error_text(error: BaseException) -> str:
    text = str(error).strip()
    return text if text else error.__class__.__name__


class ActionHandlers:
    """Runs one flow at a time on behalf of a session controller."""

    def __init__(self, controller: "SessionController"):
        self._controller = controller

    @property
    def _session(self):
        return self._controller.session

    @property
    def _cache(self):
        return self._controller.cache

    async def refresh_category(self, category: CategoryDef) -> None:
        """Fetch every setting of a category in order and cache what comes back."""
        for setting in category.settings:
            if self._session.closed:
                return
            try:
                value = await call_capability(setting.fetch)
            except Exception as error:  # noqa: BLE001
                logger.warning(
                    f"Fetching setting {category.name}/{setting.name} failed for session "
                    f"{self._session.session_id}:  {error}."
                )
                self._cache.store_fetch_failure(
                    category.name,
                    setting.name,
                    f"Could not load the current value: {_error_text(error)}",
                )
                continue
            self._cache.store(category.name, setting.name, value)
        self._cache.mark_loaded(category.name)

    async def switch_category(self, category: CategoryDef) -> None:
        self._session.selected_category = category
        if self._controller.options.refresh_on_switch or not self._cache.is_loaded(category.name):
            await self.refresh_category(category)

    async def open_edit(self, category: CategoryDef) -> PendingEdit:
        token = FormToken.new(category.name)
        pending = PendingEdit(
            category=category,
            token=token,
            expires_at=self._controller.now() + self._controller.options.form_timeout_seconds,
        )
        stale = self._session.pending_edit
        if stale is not None:
            logger.debug(f"Form {stale.token.nonce} replaced by {token.nonce} in session {self._session.session_id}.")
        self._session.pending_edit = pending
        form = self._controller.form_builder.build(category, self._cache.values_for(category), token)
        async with self._controller.display_lock:
            if not self._session.closed:
                await self._controller.transport.open_form(form)
        return pending

    async def submit_edit(self, pending: PendingEdit, values: Mapping[str, str]) -> int:
        """Save every changed setting of the edited category, then refresh it.

        Settings are written one at a time in definition order. A failed save is
        reported next to that setting and does not undo earlier saves.
        """
        category = pending.category
        self._cache.clear_errors(category)
        problems: dict[str, str] = {}
        saved = 0

        for setting in category.settings:
            if self._session.closed:
                logger.info(f"Session {self._session.session_id} closed during a save; remaining settings skipped.")
                return saved

            if setting.name not in values and not setting.required:
                # Field left out of the submission; keep whatever is stored.
                continue
            submitted = values.get(setting.name)
            problem = check_submission(
                submitted,
                required=setting.required,
                min_length=setting.min_length,
                max_length=setting.max_length,
            )
            if problem:
                problems[setting.name] = problem
                continue
            submitted = submitted or ""

            try:
                current = await call_capability(setting.fetch)
            except Exception as error:  # noqa: BLE001
                logger.warning(f"Fetching {category.name}/{setting.name} before save failed:  {error}.")
                current = self._cache.last_value(category.name, setting.name)

            stored = "" if is_unconfigured(current) else str(current)
            if submitted == stored:
                continue

            try:
                await call_capability(setting.save, submitted)
                saved += 1
            except Exception as error:  # noqa: BLE001
                logger.warning(
                    f"Saving setting {category.name}/{setting.name} failed for session "
                    f"{self._session.session_id}:  {error}."
                )
                problems[setting.name] = f"Save failed: {_error_text(error)}"

        if self._session.closed:
            return saved
        await self.refresh_category(category)
        for setting_name, problem in problems.items():
            self._cache.annotate(category.name, setting_name, problem)
        logger.info(f"Saved {saved} setting(s) in {category.name} for session {self._session.session_id}.")
        return saved

    async def reset_category(self, category: CategoryDef) -> str | None:
        """Run the category's reset action and refresh its values. Returns a notice on failure."""
        notice = None
        try:
            await call_capability(category.reset)
            logger.info(f"Category {category.name} reset to defaults in session {self._session.session_id}.")
        except Exception as error:  # noqa: BLE001
            logger.warning(f"Resetting category {category.name} failed:  {error}.")
            notice = f"Reset failed: {_error_text(error)}"

        if self._session.closed:
            return notice
        self._cache.clear_errors(category)
        await self.refresh_category(category)
        return notice
