"""Tests for the subscription command handlers and keyword trigger."""

from unittest.mock import AsyncMock

import pytest
from telegram.error import BadRequest

from attendance_relay.bot.handlers import BotHandlers
from attendance_relay.models import ATTENDANCE_LIST, CLASS_LIST

from conftest import (
    make_callback_update,
    make_chat,
    make_context,
    make_group_update,
    make_private_update,
)


@pytest.fixture
def handlers(store, engine, detector):
    return BotHandlers(store, engine, detector, bot_username="attendance_bot")


def button_labels(markup):
    return [row[0].text for row in markup.inline_keyboard]


class TestCommands:

    @pytest.mark.asyncio
    async def test_start_subscribes(self, handlers, store, bot):
        update = make_private_update(user_id=42)

        await handlers.start(update, make_context(bot))

        assert store.list_all(ATTENDANCE_LIST) == [42]
        markup = update.message.reply_text.await_args.kwargs["reply_markup"]
        assert markup.inline_keyboard[0][0].url == "https://t.me/attendance_bot?startgroup=true"

    @pytest.mark.asyncio
    async def test_start_without_username_falls_back(self, store, engine, detector, bot):
        handlers = BotHandlers(store, engine, detector)
        update = make_private_update()

        await handlers.start(update, make_context(bot))

        markup = update.message.reply_text.await_args.kwargs["reply_markup"]
        assert markup.inline_keyboard[0][0].url == "https://t.me"

    @pytest.mark.asyncio
    async def test_commands_ignored_in_groups(self, handlers, store, bot):
        update = make_private_update(user_id=42)
        update.effective_chat = make_chat(-100123, "group", title="G")
        store.add(CLASS_LIST, 42)

        await handlers.start(update, make_context(bot))
        await handlers.stop(update, make_context(bot))
        await handlers.settings(update, make_context(bot))

        update.message.reply_text.assert_not_awaited()
        assert store.list_all(ATTENDANCE_LIST) == []
        assert store.list_all(CLASS_LIST) == [42]

    @pytest.mark.asyncio
    async def test_stop_leaves_every_list(self, handlers, store, bot):
        store.add(ATTENDANCE_LIST, 42)
        store.add(CLASS_LIST, 42)
        update = make_private_update(user_id=42)

        await handlers.stop(update, make_context(bot))

        assert store.memberships(42) == set()
        update.message.reply_text.assert_awaited_once()


class TestSettingsMenu:

    @pytest.mark.asyncio
    @pytest.mark.parametrize("lists,selected", [
        ({ATTENDANCE_LIST}, 0),
        ({ATTENDANCE_LIST, CLASS_LIST}, 1),
        (set(), 2),
        ({CLASS_LIST}, None),
    ])
    async def test_marks_exact_match(self, handlers, store, bot, lists, selected):
        for list_name in lists:
            store.add(list_name, 42)
        update = make_private_update(user_id=42)

        await handlers.settings(update, make_context(bot))

        markup = update.message.reply_text.await_args.kwargs["reply_markup"]
        marked = [i for i, label in enumerate(button_labels(markup)) if label.startswith("✅")]
        assert marked == ([] if selected is None else [selected])

    @pytest.mark.asyncio
    @pytest.mark.parametrize("data,expected", [
        ("sub:attendance", {ATTENDANCE_LIST}),
        ("sub:both", {ATTENDANCE_LIST, CLASS_LIST}),
        ("sub:none", set()),
    ])
    async def test_callback_applies_choice(self, handlers, store, bot, data, expected):
        store.add(CLASS_LIST, 42)
        update = make_callback_update(data)

        await handlers.handle_callback(update, make_context(bot))

        assert store.memberships(42) == expected
        query = update.callback_query
        query.answer.assert_awaited_once()
        query.edit_message_text.assert_awaited_once()
        bot.send_message.assert_not_awaited()

    @pytest.mark.asyncio
    async def test_rejected_edit_sends_new_message(self, handlers, bot):
        update = make_callback_update("sub:both")
        update.callback_query.edit_message_text.side_effect = BadRequest("Message can't be edited")

        await handlers.handle_callback(update, make_context(bot))

        bot.send_message.assert_awaited_once()
        assert bot.send_message.await_args.kwargs["chat_id"] == 42

    @pytest.mark.asyncio
    async def test_not_modified_is_ignored(self, handlers, bot):
        update = make_callback_update("sub:none")
        update.callback_query.edit_message_text.side_effect = BadRequest("Message is not modified")

        await handlers.handle_callback(update, make_context(bot))

        bot.send_message.assert_not_awaited()

    @pytest.mark.asyncio
    async def test_fallback_failure_is_swallowed(self, handlers, bot):
        update = make_callback_update("sub:both")
        update.callback_query.edit_message_text.side_effect = BadRequest("Message to edit not found")
        bot.send_message.side_effect = BadRequest("Chat not found")

        await handlers.handle_callback(update, make_context(bot))

    @pytest.mark.asyncio
    async def test_unknown_action_changes_nothing(self, handlers, store, bot):
        store.add(ATTENDANCE_LIST, 42)
        update = make_callback_update("sub:everything")

        await handlers.handle_callback(update, make_context(bot))

        assert store.memberships(42) == {ATTENDANCE_LIST}
        update.callback_query.edit_message_text.assert_not_awaited()

    @pytest.mark.asyncio
    async def test_callback_in_group_is_noop(self, handlers, store, bot):
        update = make_callback_update("sub:both", chat_type="supergroup")

        await handlers.handle_callback(update, make_context(bot))

        assert store.memberships(42) == set()
        update.callback_query.answer.assert_not_awaited()


class TestGroupTrigger:

    @pytest.mark.asyncio
    async def test_keyword_fans_out_with_link(self, handlers, store, bot):
        store.add(ATTENDANCE_LIST, 1)
        store.add(ATTENDANCE_LIST, 2)
        store.add(CLASS_LIST, 3)
        update = make_group_update("Attendance is being taken now!", chat_id=-1001234567890, message_id=77)

        await handlers.group_message(update, make_context(bot))

        assert bot.send_message.await_count == 2
        kwargs = bot.send_message.await_args.kwargs
        assert kwargs["text"].startswith("🔔 “Attendance” mentioned\nIn CS Group:")
        assert kwargs["reply_markup"].inline_keyboard[0][0].url == "https://t.me/c/1234567890/77"

    @pytest.mark.asyncio
    async def test_caption_triggers(self, handlers, store, bot):
        store.add(ATTENDANCE_LIST, 1)
        update = make_group_update(None, caption="attendance sheet")

        await handlers.group_message(update, make_context(bot))

        bot.send_message.assert_awaited_once()

    @pytest.mark.asyncio
    async def test_basic_group_without_link(self, handlers, store, bot):
        store.add(ATTENDANCE_LIST, 1)
        update = make_group_update("attendance", chat_id=-4512345)

        await handlers.group_message(update, make_context(bot))

        kwargs = bot.send_message.await_args.kwargs
        assert kwargs["text"].endswith("(Direct link not available for this group)")
        assert kwargs["reply_markup"] is None

    @pytest.mark.asyncio
    async def test_no_keyword_no_send(self, handlers, store, bot):
        store.add(ATTENDANCE_LIST, 1)
        update = make_group_update("attendances are boring")

        await handlers.group_message(update, make_context(bot))

        bot.send_message.assert_not_awaited()

    @pytest.mark.asyncio
    async def test_private_chat_does_not_trigger(self, store, detector, bot):
        engine = AsyncMock()
        handlers = BotHandlers(store, engine, detector)
        update = make_group_update("attendance")
        update.effective_chat = make_chat(42, "private")

        await handlers.group_message(update, make_context(bot))

        engine.fan_out.assert_not_awaited()
