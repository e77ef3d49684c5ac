from __future__ import annotations

import asyncio
from abc import ABC, abstractmethod

from settings_dashboard.category_renderer import ControlSet, VisualPayload
from settings_dashboard.form_builder import FormPayload


class TransportError(RuntimeError):
    """Raised when the dashboard message can no longer be sent or edited."""


class Transport(ABC):
    """Chat-platform side of one dashboard message.

    A transport owns a single message. It pushes interaction events for that
    message (from any actor) onto the queue handed to ``listen`` and stops
    once ``stop_listening`` is called.
    """

    @abstractmethod
    async def open(self, payload: VisualPayload, controls: ControlSet) -> None:
        ...

    @abstractmethod
    async def render(self, payload: VisualPayload, controls: ControlSet) -> None:
        ...

    @abstractmethod
    async def open_form(self, form: FormPayload) -> None:
        ...

    @abstractmethod
    async def close(self, payload: VisualPayload) -> None:
        """Show the closing notice and remove every interactive control."""

    @abstractmethod
    def listen(self, queue: asyncio.Queue) -> None:
        ...

    @abstractmethod
    def stop_listening(self) -> None:
        ...
