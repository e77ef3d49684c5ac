##########################################################################
#                                                                        #
#  Session controller: owns one dashboard message from open to close,    #
#  processes interaction events one at a time and runs the idle and      #
#  form timers.                                                          #
#                                                                        #
##########################################################################

from __future__ import annotations

import asyncio
import logging
import time
from dataclasses import dataclass, field
from typing import Callable, Sequence
from uuid import uuid4

from settings_dashboard.action_handlers import ActionHandlers
from settings_dashboard.category_renderer import CategoryRenderer
from settings_dashboard.config_validator import ConfigValidator
from settings_dashboard.dashboard_contracts import (
    BUTTON_EDIT,
    BUTTON_RESET,
    ButtonPressed,
    CategoryDef,
    CategorySelected,
    DashboardOptions,
    DashboardState,
    FormCancelled,
    FormSubmitted,
    FormToken,
    InteractionEvent,
    PendingEdit,
)
from settings_dashboard.form_builder import FormBuilder
from settings_dashboard.transport import Transport, TransportError
from settings_dashboard.value_cache import SettingValueCache


logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class _FormExpired:
    token: FormToken


_STOP = object()


@dataclass
class DashboardSession:
    owner: int | str
    categories: tuple[CategoryDef, ...]
    session_id: str = field(default_factory=lambda: f"dash-{uuid4().hex[:12]}")
    state: DashboardState = DashboardState.OVERVIEW
    selected_category: CategoryDef | None = None
    pending_edit: PendingEdit | None = None
    idle_deadline: float = 0.0
    closed: bool = False
    close_reason: str | None = None

    def category(self, name: str) -> CategoryDef | None:
        for category in self.categories:
            if category.name == name:
                return category
        return None


class SessionController:
    """Drives one dashboard session.

    Events from the transport land on a queue and are handled strictly in
    arrival order; the next event is not looked at until the previous
    handler's storage and transport calls have finished. Only the owner's
    events reach a handler or reset the idle timer.
    """

    def __init__(
        self,
        owner: int | str,
        categories: Sequence[CategoryDef],
        transport: Transport,
        options: DashboardOptions | None = None,
        *,
        bot_name: str = "Bot",
        renderer: CategoryRenderer | None = None,
        form_builder: FormBuilder | None = None,
        validator: ConfigValidator | None = None,
        clock: Callable[[], float] | None = None,
    ):
        self.options = options if options is not None else DashboardOptions()
        (validator or ConfigValidator()).ensure_valid(categories, self.options)

        self.session = DashboardSession(owner=owner, categories=tuple(categories))
        self.cache = SettingValueCache()
        self.renderer = renderer or CategoryRenderer(bot_name=bot_name, options=self.options)
        self.form_builder = form_builder or FormBuilder()
        self.transport = transport
        self.handlers = ActionHandlers(self)

        self._clock = clock or time.monotonic
        self._queue: asyncio.Queue = asyncio.Queue()
        self._loop_task: asyncio.Task | None = None
        self._idle_task: asyncio.Task | None = None
        self._form_timer: asyncio.TimerHandle | None = None
        self._closed_event = asyncio.Event()
        # Serialises every call that changes the dashboard message.
        self.display_lock = asyncio.Lock()

    @property
    def state(self) -> DashboardState:
        return self.session.state

    @property
    def closed(self) -> bool:
        return self.session.closed

    def now(self) -> float:
        return self._clock()

    async def open(self) -> "SessionController":
        categories = self.session.categories
        if self.options.prefetch_on_open:
            for category in categories:
                await self.handlers.refresh_category(category)

        try:
            await self.transport.open(
                self.renderer.overview(categories),
                self.renderer.overview_controls(categories),
            )
        except Exception:
            self.session.closed = True
            self.session.close_reason = "open_failed"
            self._transition(DashboardState.CLOSED)
            self._closed_event.set()
            raise

        self._touch()
        self.transport.listen(self._queue)
        self._loop_task = asyncio.create_task(self._run(), name=f"{self.session.session_id}-events")
        self._idle_task = asyncio.create_task(self._watch_idle(), name=f"{self.session.session_id}-idle")
        logger.info(
            f"Dashboard session {self.session.session_id} opened for owner {self.session.owner} "
            f"with {len(categories)} categories."
        )
        return self

    async def close(self, reason: str = "closed") -> None:
        """Move to Closed. Safe to call more than once; only the first call renders."""
        if self.session.closed:
            return
        self.session.closed = True
        self.session.close_reason = reason
        self._discard_pending_edit()
        self._transition(DashboardState.CLOSED)
        self.transport.stop_listening()
        self._queue.put_nowait(_STOP)

        try:
            # A render already talking to the transport finishes first, so the notice is always last.
            async with self.display_lock:
                await self.transport.close(self.renderer.closed())
        except Exception as error:  # noqa: BLE001
            logger.warning(f"Could not render the closing notice for session {self.session.session_id}:  {error}.")

        logger.info(f"Dashboard session {self.session.session_id} closed ({reason}).")
        self._closed_event.set()

        current = asyncio.current_task()
        if self._idle_task is not None and self._idle_task is not current and not self._idle_task.done():
            self._idle_task.cancel()

    async def wait_closed(self) -> None:
        await self._closed_event.wait()
        if self._loop_task is not None and self._loop_task is not asyncio.current_task():
            # An in-flight handler is allowed to finish before the loop exits.
            await asyncio.gather(self._loop_task, return_exceptions=True)

    async def drain_events(self) -> None:
        """Wait until every event queued so far has been handled, or the session closes."""
        if self.session.closed:
            return
        joined = asyncio.ensure_future(self._queue.join())
        closed = asyncio.ensure_future(self._closed_event.wait())
        _, pending = await asyncio.wait({joined, closed}, return_when=asyncio.FIRST_COMPLETED)
        for waiter in pending:
            waiter.cancel()

    async def _run(self) -> None:
        reason = "error"
        try:
            while not self.session.closed:
                event = await self._queue.get()
                try:
                    if event is _STOP or self.session.closed:
                        break
                    await self._dispatch(event)
                finally:
                    self._queue.task_done()
        except TransportError as error:
            logger.error(f"Transport failure in session {self.session.session_id}:  {error}.")
            reason = "transport_error"
        except asyncio.CancelledError:
            reason = "cancelled"
            raise
        except Exception:
            logger.exception(f"Unexpected error while handling an event in session {self.session.session_id}.")
        finally:
            if not self.session.closed:
                await self.close(reason=reason)

    async def _watch_idle(self) -> None:
        while not self.session.closed:
            remaining = self.session.idle_deadline - self.now()
            if remaining <= 0:
                await self.close(reason="idle")
                return
            await asyncio.sleep(remaining)

    async def _dispatch(self, event: object) -> None:
        if isinstance(event, _FormExpired):
            await self._on_form_expired(event.token)
            return
        if not isinstance(event, InteractionEvent):
            logger.debug(f"Ignoring unknown event {event!r} in session {self.session.session_id}.")
            return

        if event.actor_id != self.session.owner:
            await self._acknowledge(event)
            logger.debug(
                f"Ignoring interaction from {event.actor_id} in session {self.session.session_id}; "
                f"only {self.session.owner} may use it."
            )
            return

        if isinstance(event, FormSubmitted):
            await self._on_form_submitted(event)
        elif isinstance(event, FormCancelled):
            await self._on_form_cancelled(event)
        elif isinstance(event, CategorySelected):
            await self._acknowledge(event)
            await self._on_category_selected(event)
        elif isinstance(event, ButtonPressed):
            await self._acknowledge(event)
            await self._on_button_pressed(event)

    async def _on_category_selected(self, event: CategorySelected) -> None:
        category = self.session.category(event.category_name)
        if category is None:
            logger.debug(f"Unknown category {event.category_name!r} selected in session {self.session.session_id}.")
            return
        self._touch()
        self._discard_pending_edit()
        await self.handlers.switch_category(category)
        self._transition(DashboardState.CATEGORY_VIEW)
        await self._render_selected()
        self._touch()

    async def _on_button_pressed(self, event: ButtonPressed) -> None:
        category = self.session.selected_category
        if category is None or category.name != event.category_name:
            logger.debug(f"Button for {event.category_name!r} no longer matches the view; dropped.")
            return

        if event.action == BUTTON_EDIT:
            self._touch()
            pending = await self.handlers.open_edit(category)
            if self.session.closed:
                return
            self._schedule_form_timeout(pending)
            self._transition(DashboardState.EDIT_OPEN)
            self._touch()
        elif event.action == BUTTON_RESET:
            if not category.can_reset:
                logger.debug(f"Category {category.name} has no reset action; reset press dropped.")
                return
            self._touch()
            self._discard_pending_edit()
            notice = await self.handlers.reset_category(category)
            self._transition(DashboardState.CATEGORY_VIEW)
            await self._render_selected(notice)
            self._touch()
        else:
            logger.debug(f"Unknown button action {event.action!r} dropped.")

    async def _on_form_submitted(self, event: FormSubmitted) -> None:
        pending = self._live_pending_edit(event.token)
        if pending is None:
            return
        self._touch()
        self._discard_pending_edit()
        self._transition(DashboardState.CATEGORY_VIEW)
        await self.handlers.submit_edit(pending, event.values)
        await self._render_selected()
        self._touch()

    async def _on_form_cancelled(self, event: FormCancelled) -> None:
        if self._live_pending_edit(event.token) is None:
            return
        self._touch()
        self._discard_pending_edit()
        self._transition(DashboardState.CATEGORY_VIEW)
        await self._render_selected()

    async def _on_form_expired(self, token: FormToken) -> None:
        pending = self.session.pending_edit
        if pending is None or pending.token != token:
            return
        logger.info(f"Form {token.nonce} in session {self.session.session_id} expired without a submission.")
        self._discard_pending_edit()
        self._transition(DashboardState.CATEGORY_VIEW)
        await self._render_selected()

    def _live_pending_edit(self, token: FormToken | None) -> PendingEdit | None:
        pending = self.session.pending_edit
        if pending is None or token is None or pending.token != token:
            logger.info(f"Dropping form submission with a stale token in session {self.session.session_id}.")
            return None
        if self.now() >= pending.expires_at:
            logger.info(f"Dropping form submission received after its window in session {self.session.session_id}.")
            return None
        return pending

    def _schedule_form_timeout(self, pending: PendingEdit) -> None:
        if self._form_timer is not None:
            self._form_timer.cancel()
        loop = asyncio.get_running_loop()
        delay = max(0.0, pending.expires_at - self.now())
        self._form_timer = loop.call_later(delay, self._queue.put_nowait, _FormExpired(pending.token))

    def _discard_pending_edit(self) -> None:
        if self._form_timer is not None:
            self._form_timer.cancel()
            self._form_timer = None
        self.session.pending_edit = None

    async def _render_selected(self, notice: str | None = None) -> None:
        category = self.session.selected_category
        if category is None:
            return
        payload = self.renderer.render(category, self.cache.values_for(category), notice=notice)
        controls = self.renderer.controls(category, self.session.categories)
        async with self.display_lock:
            if self.session.closed:
                return
            await self.transport.render(payload, controls)

    async def _acknowledge(self, event: InteractionEvent) -> None:
        try:
            await event.acknowledge()
        except Exception as error:  # noqa: BLE001
            logger.warning(f"The following error occurred while acknowledging an interaction:  {error}.")

    def _touch(self) -> None:
        if not self.session.closed:
            self.session.idle_deadline = self.now() + self.options.idle_timeout_seconds

    def _transition(self, state: DashboardState) -> None:
        if self.session.state == state:
            return
        if self.session.state == DashboardState.CLOSED:
            return
        logger.debug(f"Session {self.session.session_id}: {self.session.state.value} -> {state.value}.")
        self.session.state = state


async def open_dashboard(
    owner: int | str,
    categories: Sequence[CategoryDef],
    transport: Transport,
    options: DashboardOptions | None = None,
    **kwargs,
) -> SessionController:
    """Validate the configuration, render the overview and start listening.

    Raises DashboardConfigError before anything is sent when the categories
    or options are malformed.
    """
    controller = SessionController(owner, categories, transport, options, **kwargs)
    return await controller.open()
