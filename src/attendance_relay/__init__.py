"""Keyword-triggered Telegram notification relay with class reminders."""

__version__ = "0.1.0"
