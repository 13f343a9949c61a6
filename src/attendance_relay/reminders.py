import logging
from datetime import datetime, timedelta, timezone
from typing import Optional, Tuple

from .config import ReminderConfig
from .fanout import FanOutEngine
from .formatter import format_reminder
from .models import CLASS_LIST, ReminderOutcome, ReminderResult

logger = logging.getLogger(__name__)

DAY_NAMES = ["mon", "tue", "wed", "thu", "fri", "sat", "sun"]


class ClassReminderJob:
    """Sends "<class> class starts in 5 mins" to the class list at the configured time"""

    def __init__(self, config: ReminderConfig, engine: FanOutEngine):
        self.config = config
        self.engine = engine
        self.tz = timezone(timedelta(hours=config.utc_offset_hours))

    def local_time(self, now: Optional[datetime] = None) -> datetime:
        """Now (UTC by default) in the schedule's fixed offset"""
        if now is None:
            now = datetime.now(timezone.utc)
        elif now.tzinfo is None:
            now = now.replace(tzinfo=timezone.utc)
        return now.astimezone(self.tz)

    def evaluate(self, now: Optional[datetime] = None, force: bool = False) -> Tuple[ReminderResult, Optional[str]]:
        """Decide whether to send

        Returns:
            (result, class_name); class_name is None when the run is skipped
        """
        local = self.local_time(now)
        day = local.isoweekday()
        result = ReminderResult(
            outcome=ReminderOutcome.EXECUTED,
            day=day,
            hour=local.hour,
            minute=local.minute,
        )

        class_name = self.config.schedule.get(day)
        if not class_name:
            result.outcome = ReminderOutcome.SKIPPED_NO_CLASS
            return result, None

        if not force:
            scheduled_minutes = self.config.hour * 60 + self.config.minute
            now_minutes = local.hour * 60 + local.minute
            if abs(now_minutes - scheduled_minutes) > self.config.tolerance_minutes:
                result.outcome = ReminderOutcome.SKIPPED_WRONG_TIME
                return result, None

        result.class_name = class_name
        return result, class_name

    async def run(self, bot, force: bool = False, now: Optional[datetime] = None) -> ReminderResult:
        """Evaluate the schedule and fan out; never raises"""
        try:
            result, class_name = self.evaluate(now, force)
            if class_name is None:
                logger.info(f"⏭️ Class reminder skipped: {result.reason} (day {result.day} {result.hour:02d}:{result.minute:02d})")
                return result

            payload = format_reminder(class_name, self.config.lead_minutes)
            result.counts = await self.engine.fan_out(bot, CLASS_LIST, payload)
            logger.info(f"⏰ Class reminder sent for {class_name}")
            return result
        except Exception as e:
            logger.exception(f"Class reminder error: {e}")
            return ReminderResult(outcome=ReminderOutcome.ERROR, error=str(e) or "unknown error")

    def cron_kwargs(self) -> Optional[dict]:
        """APScheduler cron trigger arguments, None when no weekday has a class"""
        days = sorted(self.config.schedule)
        if not days:
            return None
        return {
            "day_of_week": ",".join(DAY_NAMES[day - 1] for day in days),
            "hour": self.config.hour,
            "minute": self.config.minute,
            "timezone": self.tz,
        }
