import re
from typing import Optional

from telegram import InlineKeyboardButton, InlineKeyboardMarkup

from .models import NotificationPayload

MAX_EXCERPT_LENGTH = 160
ELLIPSIS = "…"
DEFAULT_CHAT_NAME = "a group"
NO_LINK_SUFFIX = "\n(Direct link not available for this group)"


def make_excerpt(text: str, limit: int = MAX_EXCERPT_LENGTH) -> str:
    """Collapse whitespace and cut to limit - 3 characters plus an ellipsis"""
    normalized = re.sub(r"\s+", " ", text or "").strip()
    if len(normalized) > limit:
        return normalized[:limit - 3] + ELLIPSIS
    return normalized


def format_preview(chat_title: Optional[str], text: str) -> str:
    group_name = chat_title or DEFAULT_CHAT_NAME
    return f'In {group_name}: "{make_excerpt(text)}"'


def format_notification(
    chat_title: Optional[str],
    text: str,
    link: Optional[str],
    keyword: str = "Attendance"
) -> NotificationPayload:
    """Build the direct message for a keyword mention"""
    message = f"🔔 “{keyword}” mentioned\n{format_preview(chat_title, text)}"
    if not link:
        message += NO_LINK_SUFFIX
    return NotificationPayload(text=message, action_url=link)


def format_reminder(class_name: str, lead_minutes: int = 5) -> NotificationPayload:
    return NotificationPayload(text=f"{class_name} class starts in {lead_minutes} mins")


def build_reply_markup(payload: NotificationPayload) -> Optional[InlineKeyboardMarkup]:
    if not payload.action_url:
        return None
    return InlineKeyboardMarkup([
        [InlineKeyboardButton(payload.action_text, url=payload.action_url)]
    ])
