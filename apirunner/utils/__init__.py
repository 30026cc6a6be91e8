"""Utility functions for APIRunner."""

from .helpers import (
    split_and_trim,
    is_all,
    includes_regex,
    format_json_pretty,
    parse_key_value_list,
    endpoint_id,
)

from .async_utils import (
    now_ms,
    sleep_ms,
    run_with_timeout,
    retry_async,
    Stopwatch,
)

__all__ = [
    # Helpers
    "split_and_trim",
    "is_all",
    "includes_regex",
    "format_json_pretty",
    "parse_key_value_list",
    "endpoint_id",
    # Async utilities
    "now_ms",
    "sleep_ms",
    "run_with_timeout",
    "retry_async",
    "Stopwatch",
]
