from dataclasses import dataclass, field
from enum import Enum
from typing import Optional

# Subscription list names
ATTENDANCE_LIST = "attendance"
CLASS_LIST = "class"
KNOWN_LISTS = (ATTENDANCE_LIST, CLASS_LIST)


class ChatVisibility(str, Enum):
    """How a group chat can be linked to"""
    PUBLIC = "public"
    PRIVATE_SUPERGROUP = "private_supergroup"
    PRIVATE_GROUP = "private_group"


@dataclass
class TriggerEvent:
    """A group message that matched the keyword"""
    chat_id: int
    chat_title: Optional[str]
    visibility: ChatVisibility
    message_id: int
    text: str
    link: Optional[str] = None


@dataclass
class NotificationPayload:
    """Outbound direct message"""
    text: str
    action_url: Optional[str] = None
    action_text: str = "Open message"


@dataclass
class FanOutResult:
    """Aggregate counts of one fan-out run"""
    total: int = 0
    sent: int = 0
    failed: int = 0
    removed: int = 0

    def to_dict(self) -> dict:
        return {
            "total": self.total,
            "sent": self.sent,
            "failed": self.failed,
            "removed": self.removed,
        }


class ReminderOutcome(str, Enum):
    SKIPPED_NO_CLASS = "skipped_no_class"
    SKIPPED_WRONG_TIME = "skipped_wrong_time"
    EXECUTED = "executed"
    ERROR = "error"


@dataclass
class ReminderResult:
    """Result of one class reminder invocation"""
    outcome: ReminderOutcome
    day: Optional[int] = None
    hour: Optional[int] = None
    minute: Optional[int] = None
    class_name: Optional[str] = None
    counts: FanOutResult = field(default_factory=FanOutResult)
    error: Optional[str] = None

    @property
    def ok(self) -> bool:
        return self.outcome != ReminderOutcome.ERROR

    @property
    def skipped(self) -> bool:
        return self.outcome in (ReminderOutcome.SKIPPED_NO_CLASS, ReminderOutcome.SKIPPED_WRONG_TIME)

    @property
    def reason(self) -> Optional[str]:
        if self.outcome == ReminderOutcome.SKIPPED_NO_CLASS:
            return "no class today"
        if self.outcome == ReminderOutcome.SKIPPED_WRONG_TIME:
            return "not scheduled time"
        return None

    def to_dict(self) -> dict:
        data = {
            "ok": self.ok,
            "outcome": self.outcome.value,
            "skipped": self.skipped,
            "day": self.day,
            "hour": self.hour,
            "minute": self.minute,
        }
        if self.reason:
            data["reason"] = self.reason
        if self.outcome == ReminderOutcome.EXECUTED:
            data["class_name"] = self.class_name
            data.update(self.counts.to_dict())
        if self.error:
            data["error"] = self.error
        return data
