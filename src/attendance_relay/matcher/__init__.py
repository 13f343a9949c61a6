from .keyword import KeywordDetector, extract_text, validate_regex

__all__ = ["KeywordDetector", "extract_text", "validate_regex"]
