import logging
from typing import Optional

from telegram.ext import Application, CallbackQueryHandler, ChatMemberHandler, CommandHandler, MessageHandler, filters
from telegram.error import TelegramError
from telegram.request import HTTPXRequest

from ..config import AppConfig, ConfigError
from ..fanout import FanOutEngine
from ..matcher.keyword import KeywordDetector
from ..store import SubscriberStore
from .handlers import BotHandlers

logger = logging.getLogger(__name__)

# Telegram API timeouts (seconds)
CONNECT_TIMEOUT = 30.0
READ_TIMEOUT = 30.0
WRITE_TIMEOUT = 30.0
POOL_TIMEOUT = 10.0


class TelegramBot:
    """Telegram bot wrapper"""

    def __init__(self, config: AppConfig, store: SubscriberStore):
        self.config = config
        self.store = store
        self.engine = FanOutEngine(store, send_interval=config.send_interval)
        try:
            self.detector = KeywordDetector(config.keyword, config.keyword_pattern)
        except ValueError as e:
            raise ConfigError(str(e)) from e
        self.handlers = BotHandlers(store, self.engine, self.detector)
        self.application: Optional[Application] = None

    def setup(self, webhook: bool = False) -> Application:
        """Setup bot application with handlers

        In webhook mode the application has no updater; updates are fed
        through Application.process_update.
        """
        request = HTTPXRequest(
            connect_timeout=CONNECT_TIMEOUT,
            read_timeout=READ_TIMEOUT,
            write_timeout=WRITE_TIMEOUT,
            pool_timeout=POOL_TIMEOUT,
        )

        builder = Application.builder().token(self.config.bot_token).request(request)
        if webhook:
            builder = builder.updater(None)
        self.application = builder.build()

        # Register command handlers
        self.application.add_handler(CommandHandler("start", self.handlers.start))
        self.application.add_handler(CommandHandler("stop", self.handlers.stop))
        self.application.add_handler(CommandHandler("help", self.handlers.help))
        self.application.add_handler(CommandHandler(["settings", "menu"], self.handlers.settings))

        # Keyword detection in groups, new messages only
        self.application.add_handler(
            MessageHandler(filters.UpdateType.MESSAGE & filters.ChatType.GROUPS, self.handlers.group_message)
        )

        # Handle unknown commands and text in private chats
        private_messages = filters.UpdateType.MESSAGE & filters.ChatType.PRIVATE
        self.application.add_handler(
            MessageHandler(private_messages & filters.COMMAND, self.handlers.unknown_command)
        )
        self.application.add_handler(
            MessageHandler(private_messages & filters.TEXT & ~filters.COMMAND, self.handlers.unknown_message)
        )

        # Handle inline keyboard callbacks
        self.application.add_handler(CallbackQueryHandler(self.handlers.handle_callback))

        # Track bot membership changes
        self.application.add_handler(
            ChatMemberHandler(self.handlers.my_chat_member, ChatMemberHandler.MY_CHAT_MEMBER)
        )

        self.application.add_error_handler(self.handlers.error_handler)

        return self.application

    async def resolve_username(self) -> Optional[str]:
        """Resolve the bot's own username before serving traffic

        Falls back to None, in which case group invite links degrade to https://t.me.
        """
        try:
            me = await self.application.bot.get_me()
            self.handlers.bot_username = me.username
            logger.info(f"🤖 Bot username: @{me.username}")
        except TelegramError as e:
            logger.warning(f"⚠️ Could not resolve bot username: {e}")
            self.handlers.bot_username = None
        return self.handlers.bot_username
