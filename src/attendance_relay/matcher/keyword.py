import re
import logging
from typing import Optional, Tuple

logger = logging.getLogger(__name__)

# Regex safety limits
MAX_REGEX_LENGTH = 200


def extract_text(message) -> str:
    """Text or caption of a message, stripped; empty string if neither"""
    if message is None:
        return ""
    text = getattr(message, "text", None) or getattr(message, "caption", None) or ""
    return text.strip()


def build_keyword_pattern(keyword: str) -> str:
    """Keyword bounded by non-word characters or string edges

    "Attendance," matches, "Attendances" and "attendance_list" do not.
    """
    return rf"(^|\W){re.escape(keyword)}(\W|$)"


def validate_regex(pattern: str) -> Tuple[bool, Optional[str]]:
    """Check that a trigger pattern is safe and valid

    Returns:
        (is_valid, error_message)
    """
    if len(pattern) > MAX_REGEX_LENGTH:
        return False, f"pattern too long (max {MAX_REGEX_LENGTH} characters)"

    # Shapes prone to catastrophic backtracking
    dangerous_patterns = [
        r'\(\.\*\)\+',      # (.*)+
        r'\(\.\+\)\+',      # (.+)+
        r'\(\.\*\)\*',      # (.*)*
        r'\(\.\+\)\*',      # (.+)*
        r'\([^\)]+\)\{[0-9]+,\}',
    ]
    for dp in dangerous_patterns:
        if re.search(dp, pattern):
            return False, "pattern contains a shape that may cause heavy backtracking"

    try:
        re.compile(pattern, re.IGNORECASE)
        return True, None
    except re.error as e:
        return False, f"regex syntax error: {e}"


class KeywordDetector:
    """Case-insensitive trigger word detector"""

    def __init__(self, keyword: str = "Attendance", pattern: Optional[str] = None):
        self.keyword = keyword
        if pattern is None:
            pattern = build_keyword_pattern(keyword)
        else:
            is_valid, error = validate_regex(pattern)
            if not is_valid:
                raise ValueError(f"Invalid keyword pattern '{pattern}': {error}")
        self.pattern = re.compile(pattern, re.IGNORECASE)

    def matches(self, text: Optional[str]) -> bool:
        if not text:
            return False
        text = text.strip()
        if not text:
            return False
        return bool(self.pattern.search(text))

    def match_message(self, message) -> bool:
        return self.matches(extract_text(message))
