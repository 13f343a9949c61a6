import asyncio
import concurrent.futures
import logging
import logging.handlers
import threading
from pathlib import Path
from typing import Optional

from apscheduler.schedulers.asyncio import AsyncIOScheduler
from telegram import Update

from .bot.bot import TelegramBot
from .config import AppConfig
from .models import ReminderResult
from .reminders import ClassReminderJob
from .store import SubscriberStore


def setup_logging(log_dir: Optional[Path] = None) -> None:
    """Configure logging

    - stdout (collected by journald / the platform)
    - file, rotated at midnight, 30 days kept
    """
    log_format = "%(asctime)s - %(levelname)s - %(message)s"
    root_logger = logging.getLogger()
    root_logger.setLevel(logging.INFO)

    # Avoid duplicate handlers
    root_logger.handlers.clear()

    stream_handler = logging.StreamHandler()
    stream_handler.setFormatter(logging.Formatter(log_format))
    root_logger.addHandler(stream_handler)

    if log_dir:
        log_dir.mkdir(parents=True, exist_ok=True)
        log_file = log_dir / "app.log"
        file_handler = logging.handlers.TimedRotatingFileHandler(
            filename=log_file,
            when="midnight",
            interval=1,
            backupCount=30,
            encoding="utf-8"
        )
        file_handler.setFormatter(logging.Formatter(log_format))
        file_handler.suffix = "%Y-%m-%d"
        root_logger.addHandler(file_handler)

    # Suppress noisy library logs
    logging.getLogger("httpx").setLevel(logging.WARNING)
    logging.getLogger("apscheduler").setLevel(logging.WARNING)


logger = logging.getLogger(__name__)

REMINDER_JOB_ID = "class_reminders"
# Seconds a webhook request waits for its update to be handled
WEBHOOK_TIMEOUT = 55.0


class RelayApplication:
    """Wires store, bot, fan-out engine and reminder job together"""

    def __init__(self, config: AppConfig, store: SubscriberStore):
        self.config = config
        self.store = store
        self.bot = TelegramBot(config, store)
        self.reminder_job = ClassReminderJob(config.reminders, self.bot.engine)
        self.scheduler = AsyncIOScheduler()
        self.application = None  # Telegram Application instance

        # Webhook mode runtime
        self._loop: Optional[asyncio.AbstractEventLoop] = None
        self._loop_thread: Optional[threading.Thread] = None
        self._start_lock = threading.Lock()

    def _schedule_reminders(self) -> None:
        if not self.config.reminders.enabled:
            logger.info("⏰ Class reminders disabled")
            return
        cron = self.reminder_job.cron_kwargs()
        if cron is None:
            logger.info("⏰ No class days configured, reminder job not scheduled")
            return

        async def run_reminders():
            await self.reminder_job.run(self.application.bot)

        self.scheduler.add_job(
            run_reminders,
            "cron",
            id=REMINDER_JOB_ID,
            misfire_grace_time=None,
            coalesce=True,
            **cron
        )
        logger.info(
            f"⏰ Class reminders scheduled: {cron['day_of_week']} "
            f"{cron['hour']:02d}:{cron['minute']:02d} (UTC+{self.config.reminders.utc_offset_hours})"
        )

    def run(self) -> None:
        """Start long polling with the reminder scheduler (blocking)"""
        self.application = self.bot.setup()

        async def post_init(app):
            await self.bot.resolve_username()
            self._schedule_reminders()
            self.scheduler.start()

        async def post_shutdown(app):
            if self.scheduler.running:
                self.scheduler.shutdown(wait=False)

        self.application.post_init = post_init
        self.application.post_shutdown = post_shutdown

        logger.info("🤖 Telegram Bot starting (long polling)...")
        logger.info("Make sure BotFather privacy mode is DISABLED for this bot.")
        self.application.run_polling(allowed_updates=Update.ALL_TYPES)

    # Webhook mode

    @property
    def started(self) -> bool:
        return self._loop is not None

    def start_background(self) -> None:
        """Create the event loop thread and initialize the bot once"""
        with self._start_lock:
            if self.started:
                return
            loop = asyncio.new_event_loop()
            thread = threading.Thread(target=loop.run_forever, name="relay-loop", daemon=True)
            thread.start()
            self._loop = loop
            self._loop_thread = thread

            self.application = self.bot.setup(webhook=True)
            try:
                self.submit(self._initialize_webhook_app())
            except Exception:
                self._stop_loop()
                raise
            logger.info("🤖 Telegram Bot initialized (webhook mode)")

    async def _initialize_webhook_app(self) -> None:
        await self.application.initialize()
        await self.bot.resolve_username()

    def submit(self, coro, timeout: Optional[float] = None):
        """Run a coroutine on the bot's event loop and wait for its result"""
        future = asyncio.run_coroutine_threadsafe(coro, self._loop)
        return future.result(timeout)

    async def _process_update(self, data: dict) -> None:
        update = Update.de_json(data, self.application.bot)
        if update is None:
            logger.warning("Ignoring empty webhook update")
            return
        await self.application.process_update(update)

    def handle_update(self, data: dict) -> None:
        """Process one webhook update; errors are logged, never raised"""
        try:
            self.start_background()
            self.submit(self._process_update(data), timeout=WEBHOOK_TIMEOUT)
        except concurrent.futures.TimeoutError:
            logger.warning(f"Update still processing after {WEBHOOK_TIMEOUT}s, answering webhook")
        except Exception as e:
            logger.error(f"telegram webhook error: {e}")

    def trigger_reminders(self, force: bool = False) -> ReminderResult:
        """Run the reminder job once on the bot's event loop"""
        self.start_background()
        return self.submit(self.reminder_job.run(self.application.bot, force=force))

    def stop_background(self) -> None:
        if not self.started:
            return
        try:
            self.submit(self.application.shutdown(), timeout=10)
        except Exception as e:
            logger.warning(f"Bot shutdown error: {e}")
        self._stop_loop()

    def _stop_loop(self) -> None:
        self._loop.call_soon_threadsafe(self._loop.stop)
        self._loop_thread.join(timeout=5)
        self._loop = None
        self._loop_thread = None
