"""
Shared helpers: logging, JSON extraction/repair, retry
"""
from .logger import get_logger
from .json_repair import (
    ParseResult,
    safe_json_parse,
    extract_json_block,
    extract_json_object,
    repair_truncated_json,
)
from .retry import retry_with_backoff

__all__ = [
    "get_logger",
    "ParseResult",
    "safe_json_parse",
    "extract_json_block",
    "extract_json_object",
    "repair_truncated_json",
    "retry_with_backoff",
]
