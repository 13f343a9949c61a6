"""Deep links back to group messages.

- Public groups/channels: https://t.me/<username>/<message_id>
- Private supergroups/channels: https://t.me/c/<internal_id>/<message_id>
  (internal_id is the chat id without its "-100" prefix)
- Basic private groups: no stable per-message URL
"""
from typing import Optional

from .models import ChatVisibility

SUPERGROUP_PREFIX = "-100"


def chat_visibility(chat) -> ChatVisibility:
    if chat is not None and getattr(chat, "username", None):
        return ChatVisibility.PUBLIC
    chat_id = getattr(chat, "id", None)
    if chat_id is not None and str(chat_id).startswith(SUPERGROUP_PREFIX):
        return ChatVisibility.PRIVATE_SUPERGROUP
    return ChatVisibility.PRIVATE_GROUP


def build_message_link(chat, message_id) -> Optional[str]:
    """Best-effort link to a message, None when the chat has none"""
    if chat is None or message_id is None:
        return None

    username = getattr(chat, "username", None)
    if username:
        return f"https://t.me/{username}/{message_id}"

    chat_id = getattr(chat, "id", None)
    id_str = "" if chat_id is None else str(chat_id)
    if id_str.startswith(SUPERGROUP_PREFIX) and len(id_str) > len(SUPERGROUP_PREFIX):
        internal = id_str[len(SUPERGROUP_PREFIX):]
        return f"https://t.me/c/{internal}/{message_id}"

    return None
