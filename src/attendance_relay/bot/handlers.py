import logging
from functools import wraps
from typing import Optional, Set, Tuple

from telegram import Update, InlineKeyboardButton, InlineKeyboardMarkup
from telegram.constants import ChatType
from telegram.error import BadRequest, TelegramError
from telegram.ext import ContextTypes

from ..fanout import FanOutEngine
from ..formatter import format_notification
from ..links import build_message_link, chat_visibility
from ..matcher.keyword import KeywordDetector, extract_text
from ..models import ATTENDANCE_LIST, CLASS_LIST, TriggerEvent
from ..store import SubscriberStore

logger = logging.getLogger(__name__)

CALLBACK_PREFIX = "sub:"
SELECTED_MARK = "✅ "

# (callback choice, button label, lists enabled by the choice)
MENU_OPTIONS = [
    ("attendance", "🔔 Attendance alerts only", {ATTENDANCE_LIST}),
    ("both", "🔔 Attendance + ⏰ class reminders", {ATTENDANCE_LIST, CLASS_LIST}),
    ("none", "🔕 Turn everything off", set()),
]


def private_only(func):
    """Decorator: ignore the update unless it comes from a one-to-one chat"""
    @wraps(func)
    async def wrapper(self, update: Update, context: ContextTypes.DEFAULT_TYPE, *args, **kwargs):
        chat = update.effective_chat
        if chat is None or chat.type != ChatType.PRIVATE:
            return
        return await func(self, update, context, *args, **kwargs)
    return wrapper


def _on_off(enabled: bool) -> str:
    return "on" if enabled else "off"


class BotHandlers:
    """Telegram bot command handlers"""

    def __init__(
        self,
        store: SubscriberStore,
        engine: FanOutEngine,
        detector: KeywordDetector,
        bot_username: Optional[str] = None
    ):
        self.store = store
        self.engine = engine
        self.detector = detector
        self.bot_username = bot_username

    @property
    def keyword(self) -> str:
        return self.detector.keyword

    def _add_to_group_url(self) -> str:
        if self.bot_username:
            return f"https://t.me/{self.bot_username}?startgroup=true"
        return "https://t.me"

    @private_only
    async def start(self, update: Update, context: ContextTypes.DEFAULT_TYPE) -> None:
        """Handle /start command - subscribe to keyword alerts"""
        user_id = update.effective_user.id
        self.store.add(ATTENDANCE_LIST, user_id)
        logger.info(f"👤 User {user_id} subscribed to '{ATTENDANCE_LIST}'")

        keyboard = InlineKeyboardMarkup([
            [InlineKeyboardButton("➕ Add me to a group", url=self._add_to_group_url())],
            [InlineKeyboardButton("⚙️ Notification settings", callback_data=f"{CALLBACK_PREFIX}menu")],
        ])
        await update.message.reply_text(
            f"You’ll get a DM when someone says “{self.keyword}” in groups I’m in.\n\n"
            "Use /settings to also get class reminders, /stop to opt out.",
            reply_markup=keyboard
        )

    @private_only
    async def stop(self, update: Update, context: ContextTypes.DEFAULT_TYPE) -> None:
        """Handle /stop command - leave every list"""
        user_id = update.effective_user.id
        self.store.remove_from_all_lists(user_id)
        logger.info(f"👤 User {user_id} unsubscribed from all lists")
        await update.message.reply_text(
            f"Okay, I won’t DM you anymore for “{self.keyword}” or class reminders. "
            "You can /start again anytime."
        )

    @private_only
    async def help(self, update: Update, context: ContextTypes.DEFAULT_TYPE) -> None:
        """Handle /help command"""
        await update.message.reply_text(
            "📖 Help\n\n"
            f"Add me to a group. When “{self.keyword}” appears there, I’ll DM you.\n\n"
            "/start - get keyword alerts\n"
            "/settings - choose alerts and class reminders\n"
            "/stop - stop all messages\n\n"
            "Note: in small private groups a direct message link may not be available.\n"
            "Make sure BotFather privacy mode is disabled so I can read group messages."
        )

    def _build_menu_message(self, user_id: int) -> Tuple[str, InlineKeyboardMarkup]:
        """Current subscription state plus the selectable options"""
        current: Set[str] = self.store.memberships(user_id)

        text = (
            "⚙️ Your notifications\n\n"
            f"🔔 “{self.keyword}” alerts: {_on_off(ATTENDANCE_LIST in current)}\n"
            f"⏰ Class reminders: {_on_off(CLASS_LIST in current)}\n\n"
            "Choose what you want to receive:"
        )

        keyboard = []
        for choice, label, lists in MENU_OPTIONS:
            mark = SELECTED_MARK if lists == current else ""
            keyboard.append([
                InlineKeyboardButton(f"{mark}{label}", callback_data=f"{CALLBACK_PREFIX}{choice}")
            ])
        return text, InlineKeyboardMarkup(keyboard)

    def _apply_choice(self, user_id: int, lists: Set[str]) -> None:
        for list_name in self.store.lists:
            if list_name in lists:
                self.store.add(list_name, user_id)
            else:
                self.store.remove(list_name, user_id)

    @private_only
    async def settings(self, update: Update, context: ContextTypes.DEFAULT_TYPE) -> None:
        """Handle /settings command"""
        text, keyboard = self._build_menu_message(update.effective_user.id)
        await update.message.reply_text(text, reply_markup=keyboard)

    async def _render_in_place(self, query, context: ContextTypes.DEFAULT_TYPE, text: str, keyboard) -> None:
        """Edit the menu message; send a new one if Telegram rejects the edit"""
        try:
            await query.edit_message_text(text, reply_markup=keyboard)
            return
        except BadRequest as e:
            if "not modified" in str(e).lower():
                return
            logger.info(f"Menu edit rejected, sending a new message: {e}")
        except TelegramError as e:
            logger.info(f"Menu edit failed, sending a new message: {e}")

        try:
            await context.bot.send_message(chat_id=query.from_user.id, text=text, reply_markup=keyboard)
        except TelegramError as e:
            logger.error(f"Failed to send menu to {query.from_user.id}: {e}")

    @private_only
    async def handle_callback(self, update: Update, context: ContextTypes.DEFAULT_TYPE) -> None:
        """Handle inline keyboard button callbacks"""
        query = update.callback_query
        await query.answer()

        data = query.data or ""
        if not data.startswith(CALLBACK_PREFIX):
            return

        user_id = query.from_user.id
        choice = data[len(CALLBACK_PREFIX):]

        if choice != "menu":
            options = {name: lists for name, _, lists in MENU_OPTIONS}
            if choice not in options:
                logger.warning(f"Unknown menu action from {user_id}: {data}")
                return
            self._apply_choice(user_id, options[choice])
            logger.info(f"👤 User {user_id} switched notifications to '{choice}'")

        text, keyboard = self._build_menu_message(user_id)
        await self._render_in_place(query, context, text, keyboard)

    async def group_message(self, update: Update, context: ContextTypes.DEFAULT_TYPE) -> None:
        """Keyword detection in groups/supergroups"""
        chat = update.effective_chat
        message = update.effective_message
        if chat is None or message is None:
            return
        if chat.type not in (ChatType.GROUP, ChatType.SUPERGROUP):
            return

        text = extract_text(message)
        if not self.detector.matches(text):
            return

        event = TriggerEvent(
            chat_id=chat.id,
            chat_title=chat.title,
            visibility=chat_visibility(chat),
            message_id=message.message_id,
            text=text,
            link=build_message_link(chat, message.message_id),
        )
        logger.info(f"🔔 “{self.keyword}” mentioned in {event.chat_title or event.chat_id} ({event.visibility.value})")

        payload = format_notification(event.chat_title, event.text, event.link, self.keyword)
        await self.engine.fan_out(context.bot, ATTENDANCE_LIST, payload)

    async def my_chat_member(self, update: Update, context: ContextTypes.DEFAULT_TYPE) -> None:
        """Log bot membership changes"""
        chat = update.effective_chat
        member_update = update.my_chat_member
        if chat is None or member_update is None:
            return
        new_status = member_update.new_chat_member.status
        logger.info(f"Bot membership change in {chat.title or chat.id}: {new_status}")

    @private_only
    async def unknown_command(self, update: Update, context: ContextTypes.DEFAULT_TYPE) -> None:
        """Handle unknown commands"""
        await update.message.reply_text("❌ Unknown command\n\nSend /help to see what I can do")

    @private_only
    async def unknown_message(self, update: Update, context: ContextTypes.DEFAULT_TYPE) -> None:
        """Handle plain text in private chats"""
        await update.message.reply_text("❓ I only understand commands\n\nSend /help to see what I can do")

    async def error_handler(self, update: object, context: ContextTypes.DEFAULT_TYPE) -> None:
        update_id = update.update_id if isinstance(update, Update) else None
        logger.error(f"Bot error for update {update_id}: {context.error}", exc_info=context.error)
