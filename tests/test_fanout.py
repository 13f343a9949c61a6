"""Tests for the fan-out engine."""

from unittest.mock import AsyncMock, patch

import pytest
from telegram.error import BadRequest, Forbidden, TimedOut

from attendance_relay.fanout import FanOutEngine
from attendance_relay.models import ATTENDANCE_LIST, CLASS_LIST, NotificationPayload

PAYLOAD = NotificationPayload(text="hello", action_url="https://t.me/c/1/2")


def subscribe(store, *user_ids, list_name=ATTENDANCE_LIST):
    for user_id in user_ids:
        store.add(list_name, user_id)


@pytest.mark.asyncio
@pytest.mark.parametrize("count", [1, 7, 40])
async def test_one_send_per_subscriber(store, engine, bot, count):
    subscribe(store, *range(1, count + 1))

    result = await engine.fan_out(bot, ATTENDANCE_LIST, PAYLOAD)

    assert bot.send_message.await_count == count
    sent_to = sorted(call.kwargs["chat_id"] for call in bot.send_message.await_args_list)
    assert sent_to == list(range(1, count + 1))
    assert (result.total, result.sent, result.failed, result.removed) == (count, count, 0, 0)


@pytest.mark.asyncio
async def test_payload_and_button_are_sent(store, engine, bot):
    subscribe(store, 1)

    await engine.fan_out(bot, ATTENDANCE_LIST, PAYLOAD)

    kwargs = bot.send_message.await_args.kwargs
    assert kwargs["text"] == "hello"
    assert kwargs["reply_markup"].inline_keyboard[0][0].url == "https://t.me/c/1/2"


@pytest.mark.asyncio
async def test_failures_do_not_stop_the_loop(store, engine, bot):
    subscribe(store, 1, 2, 3, 4, 5)
    bot.send_message.side_effect = [
        TimedOut(),
        BadRequest("Chat not found"),
        RuntimeError("boom"),
        None,
        None,
    ]

    result = await engine.fan_out(bot, ATTENDANCE_LIST, PAYLOAD)

    assert bot.send_message.await_count == 5
    assert (result.sent, result.failed, result.removed) == (2, 3, 0)
    # Transient failures keep the subscription
    assert len(store.list_all(ATTENDANCE_LIST)) == 5


@pytest.mark.asyncio
async def test_blocked_user_removed_from_every_list(store, engine, bot):
    subscribe(store, 1, 2, 3)
    subscribe(store, 2, list_name=CLASS_LIST)

    async def send(chat_id, text, reply_markup=None):
        if chat_id == 2:
            raise Forbidden("Forbidden: bot was blocked by the user")

    bot.send_message.side_effect = send

    result = await engine.fan_out(bot, ATTENDANCE_LIST, PAYLOAD)

    assert (result.sent, result.failed, result.removed) == (2, 0, 1)
    assert store.memberships(2) == set()

    # Absent from later fan-outs
    bot.send_message.reset_mock(side_effect=True)
    again = await engine.fan_out(bot, ATTENDANCE_LIST, PAYLOAD)
    assert again.total == 2
    assert 2 not in [call.kwargs["chat_id"] for call in bot.send_message.await_args_list]


@pytest.mark.asyncio
async def test_pause_after_every_attempt(store, bot):
    subscribe(store, 1, 2, 3)
    bot.send_message.side_effect = [None, TimedOut(), None]
    engine = FanOutEngine(store, send_interval=0.05)

    with patch("attendance_relay.fanout.asyncio.sleep", new_callable=AsyncMock) as sleep:
        await engine.fan_out(bot, ATTENDANCE_LIST, PAYLOAD)

    assert sleep.await_count == 3
    assert all(call.args == (0.05,) for call in sleep.await_args_list)


@pytest.mark.asyncio
async def test_empty_list(engine, bot):
    result = await engine.fan_out(bot, ATTENDANCE_LIST, PAYLOAD)

    bot.send_message.assert_not_awaited()
    assert result.to_dict() == {"total": 0, "sent": 0, "failed": 0, "removed": 0}
