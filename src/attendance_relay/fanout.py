import asyncio
import logging

from telegram.error import Forbidden, TelegramError

from .formatter import build_reply_markup
from .models import FanOutResult, NotificationPayload
from .store import SubscriberStore

logger = logging.getLogger(__name__)

# Pause after each direct message in seconds (Telegram allows ~30 msgs/sec)
SEND_INTERVAL = 0.05


class FanOutEngine:
    """Sends one payload to every member of a subscription list

    Sends are sequential with a fixed pause after each attempt. A failure
    never stops the loop; a blocked recipient is removed from every list.
    """

    def __init__(self, store: SubscriberStore, send_interval: float = SEND_INTERVAL):
        self.store = store
        self.send_interval = send_interval

    async def _send_one(self, bot, user_id: int, payload: NotificationPayload, result: FanOutResult) -> None:
        try:
            await bot.send_message(
                chat_id=user_id,
                text=payload.text,
                reply_markup=build_reply_markup(payload),
            )
            result.sent += 1
        except Forbidden as e:
            # Bot blocked or user deactivated, no retry
            logger.info(f"🚫 User {user_id} blocked the bot, unsubscribing: {e}")
            result.removed += 1
            self.store.remove_from_all_lists(user_id)
        except TelegramError as e:
            logger.error(f"DM error to {user_id}: {e}")
            result.failed += 1
        except Exception as e:
            logger.exception(f"Unexpected DM error to {user_id}: {e}")
            result.failed += 1

    async def fan_out(self, bot, list_name: str, payload: NotificationPayload) -> FanOutResult:
        """Send payload to every subscriber of list_name"""
        user_ids = self.store.list_all(list_name)
        result = FanOutResult(total=len(user_ids))
        if not user_ids:
            logger.info(f"📭 No subscribers in '{list_name}'")
            return result

        for user_id in user_ids:
            await self._send_one(bot, user_id, payload, result)
            await asyncio.sleep(self.send_interval)

        logger.info(
            f"📤 Fan-out '{list_name}': total {result.total}, sent {result.sent}, "
            f"failed {result.failed}, removed {result.removed}"
        )
        return result
