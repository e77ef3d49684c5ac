##########################################################################
#                                                                        #
#  Telegram transport for the settings dashboard. The selector and the   #
#  action buttons are inline keyboards on one message; the edit form is  #
#  a conversation with the owner, one prompt per setting.                #
#                                                                        #
##########################################################################

from __future__ import annotations

import asyncio
import html
import logging
import secrets
from dataclasses import dataclass, field

from telegram import (
    ForceReply,
    InlineKeyboardButton,
    InlineKeyboardMarkup,
    Update,
    constants,
)
from telegram.error import BadRequest, TelegramError
from telegram.ext import (
    BaseHandler,
    CallbackQueryHandler,
    CommandHandler,
    ContextTypes,
    ConversationHandler,
    MessageHandler,
    filters,
)

from settings_dashboard.category_renderer import ControlSet, VisualPayload
from settings_dashboard.dashboard_contracts import (
    BUTTON_EDIT,
    ButtonPressed,
    CategorySelected,
    FormCancelled,
    FormSubmitted,
)
from settings_dashboard.form_builder import FormField, FormPayload
from settings_dashboard.transport import Transport, TransportError


logger = logging.getLogger(__name__)

CALLBACK_PREFIX = "dash"
SELECT_ACTION = "select"
EDIT_PATTERN = rf"^{CALLBACK_PREFIX}:[0-9a-f]+:{BUTTON_EDIT}:\d+$"
FORCE_REPLY_PLACEHOLDER_LIMIT = 64

# Define form conversation states
FORM_ANSWER = 0


def pairs(items: list) -> list[list]:
    return [items[i:i + 2] for i in range(0, len(items), 2)]


def format_payload(payload: VisualPayload) -> str:
    lines = [f"<b>{html.escape(payload.title)}</b>"]
    if payload.description:
        lines.append(html.escape(payload.description))
    if payload.notice:
        lines.append("")
        lines.append(f"⚠ <i>{html.escape(payload.notice)}</i>")
    for payloadField in payload.fields:
        lines.append("")
        lines.append(f"<b>{html.escape(payloadField.name)}</b>")
        if payloadField.description:
            lines.append(html.escape(payloadField.description))
        if payloadField.current is not None:
            lines.append(f"Currently: <b>{html.escape(payloadField.current)}</b>")
        if payloadField.error:
            lines.append(f"⚠ {html.escape(payloadField.error)}")
    return "\n".join(lines)


def format_prompt(form: FormPayload, formField: FormField, position: int, problem: str | None = None) -> str:
    lines = []
    if problem:
        lines.append(f"⚠ {html.escape(problem)}")
    lines.append(f"<b>{html.escape(form.title)}</b> ({position + 1}/{len(form.fields)})")
    lines.append(f"<b>{html.escape(formField.label)}</b>{' (required)' if formField.required else ''}")
    lines.append(f"Currently: <i>{html.escape(formField.placeholder)}</i>")
    limits = []
    if formField.min_length is not None:
        limits.append(f"at least {formField.min_length}")
    if formField.max_length is not None:
        limits.append(f"at most {formField.max_length}")
    if limits:
        lines.append(f"Length: {' and '.join(limits)} characters.")
    lines.append("Reply with a new value.")
    if not formField.required:
        lines.append("/skip keeps the current value and /clear empties it.")
    lines.append("/cancel stops editing.")
    return "\n".join(lines)


def callback_data(key: str, action: str, index: int) -> str:
    return f"{CALLBACK_PREFIX}:{key}:{action}:{index}"


def parse_callback_data(data: str | None) -> tuple[str, str, int] | None:
    parts = str(data or "").split(":")
    if len(parts) != 4 or parts[0] != CALLBACK_PREFIX:
        return None
    try:
        return parts[1], parts[2], int(parts[3])
    except ValueError:
        return None


@dataclass
class _FormState:
    form: FormPayload
    position: int = 0
    values: dict[str, str] = field(default_factory=dict)

    @property
    def current_field(self) -> FormField:
        return self.form.fields[self.position]


class TelegramTransport(Transport):
    """One dashboard message in one chat."""

    def __init__(
        self,
        bot,
        chatID: int,
        ownerID: int,
        router: "TelegramDashboardRouter",
        threadID: int | None = None,
    ):
        self.bot = bot
        self.chatID = chatID
        self.ownerID = ownerID
        self.threadID = threadID
        self.key = secrets.token_hex(4)
        self.messageID: int | None = None
        self._router = router
        self._queue: asyncio.Queue | None = None
        self._categoryNames: list[str] = []
        self._form: _FormState | None = None

    def _keyboard(self, controls: ControlSet) -> InlineKeyboardMarkup | None:
        if controls.selector:
            self._categoryNames = [option.value for option in controls.selector]
        rows = []
        buttonRow = []
        for button in controls.buttons:
            if button.category_name not in self._categoryNames:
                continue
            index = self._categoryNames.index(button.category_name)
            buttonRow.append(
                InlineKeyboardButton(f"{button.emoji} {button.label}", callback_data=callback_data(self.key, button.action, index))
            )
        if buttonRow:
            rows.append(buttonRow)

        selectorButtons = []
        for index, option in enumerate(controls.selector):
            label = f"{option.emoji} {option.label}" if option.emoji else option.label
            selectorButtons.append(
                InlineKeyboardButton(label, callback_data=callback_data(self.key, SELECT_ACTION, index))
            )
        rows.extend(pairs(selectorButtons))
        return InlineKeyboardMarkup(rows) if rows else None

    async def open(self, payload: VisualPayload, controls: ControlSet) -> None:
        try:
            message = await self.bot.send_message(
                chat_id=self.chatID,
                message_thread_id=self.threadID,
                text=format_payload(payload),
                parse_mode=constants.ParseMode.HTML,
                reply_markup=self._keyboard(controls),
            )
        except TelegramError as err:
            raise TransportError(f"Could not send the settings menu: {err}") from err
        self.messageID = message.message_id
        self._router.register(self)

    async def render(self, payload: VisualPayload, controls: ControlSet) -> None:
        # Every re-render follows the end of the pending edit, so stop taking answers for it.
        self._endForm()
        await self._edit(format_payload(payload), self._keyboard(controls))

    async def close(self, payload: VisualPayload) -> None:
        self._endForm()
        self._router.unregister(self)
        await self._edit(format_payload(payload), None)

    async def _edit(self, text: str, keyboard: InlineKeyboardMarkup | None) -> None:
        if self.messageID is None:
            raise TransportError("The settings menu was never sent.")
        try:
            await self.bot.edit_message_text(
                chat_id=self.chatID,
                message_id=self.messageID,
                text=text,
                parse_mode=constants.ParseMode.HTML,
                reply_markup=keyboard,
            )
        except BadRequest as err:
            if "not modified" in str(err).lower():
                return
            raise TransportError(f"Could not edit the settings menu: {err}") from err
        except TelegramError as err:
            raise TransportError(f"Could not edit the settings menu: {err}") from err

    async def open_form(self, form: FormPayload) -> None:
        self._form = _FormState(form=form)
        self._router.registerForm(self)
        await self._prompt()

    async def _prompt(self, problem: str | None = None) -> None:
        state = self._form
        if state is None:
            return
        formField = state.current_field
        try:
            await self.bot.send_message(
                chat_id=self.chatID,
                message_thread_id=self.threadID,
                text=format_prompt(state.form, formField, state.position, problem),
                parse_mode=constants.ParseMode.HTML,
                reply_markup=ForceReply(
                    selective=True,
                    input_field_placeholder=formField.placeholder[:FORCE_REPLY_PLACEHOLDER_LIMIT],
                ),
            )
        except TelegramError as err:
            raise TransportError(f"Could not send the edit form: {err}") from err

    def _endForm(self) -> None:
        if self._form is not None:
            self._form = None
            self._router.unregisterForm(self)

    def listen(self, queue: asyncio.Queue) -> None:
        self._queue = queue

    def stop_listening(self) -> None:
        self._queue = None
        self._endForm()
        self._router.unregister(self)

    @property
    def listening(self) -> bool:
        return self._queue is not None

    def _push(self, event) -> None:
        if self._queue is not None:
            self._queue.put_nowait(event)

    async def handleCallback(self, query, action: str, index: int) -> None:
        if not self.listening or index < 0 or index >= len(self._categoryNames):
            await query.answer()
            return
        categoryName = self._categoryNames[index]
        actorID = query.from_user.id
        if action == SELECT_ACTION:
            self._push(CategorySelected(actor_id=actorID, acknowledge=query.answer, category_name=categoryName))
        else:
            self._push(ButtonPressed(actor_id=actorID, acknowledge=query.answer, category_name=categoryName, action=action))

    async def answerForm(self, value: str) -> bool:
        """Record the owner's answer for the current field.

        An empty string clears the setting. Returns True while the form still
        expects answers.
        """
        state = self._form
        if state is None:
            return False
        formField = state.current_field
        problem = formField.check(value)
        if problem:
            await self._prompt(problem)
            return True
        state.values[formField.setting_name] = value
        return await self._advance()

    async def skipField(self) -> bool:
        """Leave the current field out of the submission so its value is kept."""
        state = self._form
        if state is None:
            return False
        if state.current_field.required:
            await self._prompt("A value is required.")
            return True
        return await self._advance()

    def cancelForm(self) -> bool:
        state = self._form
        if state is None:
            return False
        self._endForm()
        self._push(FormCancelled(actor_id=self.ownerID, token=state.form.token))
        return True

    async def _advance(self) -> bool:
        state = self._form
        state.position += 1
        if state.position < len(state.form.fields):
            await self._prompt()
            return True
        self._endForm()
        self._push(FormSubmitted(actor_id=self.ownerID, token=state.form.token, values=dict(state.values)))
        return False


class TelegramDashboardRouter:
    """Routes callback queries and form conversations to the live dashboard they belong to."""

    def __init__(self):
        self._transports: dict[str, TelegramTransport] = {}
        self._forms: dict[tuple[int, int], TelegramTransport] = {}
        self._controllers: dict[str, object] = {}

    def createTransport(self, bot, chatID: int, ownerID: int, threadID: int | None = None) -> TelegramTransport:
        return TelegramTransport(bot, chatID, ownerID, self, threadID=threadID)

    def register(self, transport: TelegramTransport) -> None:
        self._transports[transport.key] = transport

    def unregister(self, transport: TelegramTransport) -> None:
        if self._transports.get(transport.key) is transport:
            del self._transports[transport.key]
        self._controllers.pop(transport.key, None)
        self.unregisterForm(transport)

    def track(self, transport: TelegramTransport, controller) -> None:
        """Hold a live session controller until its transport unregisters."""
        if transport.key in self._transports:
            self._controllers[transport.key] = controller

    def registerForm(self, transport: TelegramTransport) -> None:
        # One open form per user per chat; a newer dashboard takes the answers over.
        self._forms[(transport.chatID, transport.ownerID)] = transport

    def unregisterForm(self, transport: TelegramTransport) -> None:
        formKey = (transport.chatID, transport.ownerID)
        if self._forms.get(formKey) is transport:
            del self._forms[formKey]

    @property
    def activeCount(self) -> int:
        return len(self._transports)

    async def _transportFor(self, query) -> TelegramTransport | None:
        parsed = parse_callback_data(query.data)
        transport = self._transports.get(parsed[0]) if parsed else None
        if transport is None:
            try:
                await query.answer(text="This settings menu has been closed.")
            except Exception as err:
                logger.warning(f"The following error occurred while receiving a telegram query response:  {err}.")
        return transport

    def _formFor(self, update: Update) -> TelegramTransport | None:
        chat = update.effective_chat
        user = update.effective_user
        if chat is None or user is None:
            return None
        return self._forms.get((chat.id, user.id))

    async def callbackHandler(self, update: Update, context: ContextTypes.DEFAULT_TYPE) -> None:
        query = update.callback_query
        transport = await self._transportFor(query)
        if transport is None:
            return
        _, action, index = parse_callback_data(query.data)
        await transport.handleCallback(query, action, index)

    # Entry point of the form conversation
    async def editHandler(self, update: Update, context: ContextTypes.DEFAULT_TYPE) -> int:
        query = update.callback_query
        transport = await self._transportFor(query)
        if transport is None:
            return ConversationHandler.END
        _, action, index = parse_callback_data(query.data)
        await transport.handleCallback(query, action, index)
        if query.from_user.id != transport.ownerID or not transport.listening:
            return ConversationHandler.END
        return FORM_ANSWER

    async def answerHandler(self, update: Update, context: ContextTypes.DEFAULT_TYPE) -> int:
        transport = self._formFor(update)
        if transport is None:
            return ConversationHandler.END
        if await transport.answerForm(update.effective_message.text or ""):
            return FORM_ANSWER
        return ConversationHandler.END

    async def skipHandler(self, update: Update, context: ContextTypes.DEFAULT_TYPE) -> int:
        transport = self._formFor(update)
        if transport is None:
            return ConversationHandler.END
        return FORM_ANSWER if await transport.skipField() else ConversationHandler.END

    async def clearHandler(self, update: Update, context: ContextTypes.DEFAULT_TYPE) -> int:
        transport = self._formFor(update)
        if transport is None:
            return ConversationHandler.END
        return FORM_ANSWER if await transport.answerForm("") else ConversationHandler.END

    async def cancelHandler(self, update: Update, context: ContextTypes.DEFAULT_TYPE) -> int:
        user = update.effective_user
        transport = self._formFor(update)
        if transport is not None and transport.cancelForm():
            logger.info(f"User {user.name} (user_id: {user.id}) canceled a settings form.")
        return ConversationHandler.END

    def handlers(self) -> list[BaseHandler]:
        formHandler = ConversationHandler(
            entry_points=[CallbackQueryHandler(self.editHandler, pattern=EDIT_PATTERN)],
            states={
                FORM_ANSWER: [
                    MessageHandler(filters.TEXT & ~filters.COMMAND, self.answerHandler),
                    CommandHandler("skip", self.skipHandler),
                    CommandHandler("clear", self.clearHandler),
                ]
            },
            fallbacks=[CommandHandler("cancel", self.cancelHandler)],
            allow_reentry=True,
        )
        return [
            formHandler,
            CallbackQueryHandler(self.callbackHandler, pattern=f"^{CALLBACK_PREFIX}:"),
        ]
