"""General helper utility functions."""

import json
import re
from typing import Any, Dict, Iterable, List, Optional, Union

from apirunner.logger import get_logger

logger = get_logger(__name__)


def split_and_trim(value: Optional[Union[str, Iterable[str]]]) -> List[str]:
    """
    Split a comma separated filter into trimmed, non-empty items.

    Args:
        value: Comma separated string, an iterable of strings, or None

    Returns:
        List of filter items
    """
    if not value:
        return []
    if isinstance(value, str):
        items = value.split(",")
    else:
        items = list(value)
    return [item.strip() for item in items if item and item.strip()]


def is_all(value: Optional[Union[str, Iterable[str]]]) -> bool:
    """
    Check whether a filter selects everything.

    ``None``, an empty filter and the literal ``all`` (any case) match everything.
    """
    if value is None:
        return True
    if isinstance(value, str):
        return value.strip() == "" or value.strip().lower() == "all"
    items = split_and_trim(value)
    return not items or (len(items) == 1 and items[0].lower() == "all")


def includes_regex(patterns: Iterable[str], text: str) -> bool:
    """
    Check whether any pattern matches somewhere in the text, ignoring case.

    Patterns that are not valid regular expressions are matched as plain substrings.

    Args:
        patterns: Candidate regular expressions
        text: Text to search in

    Returns:
        True if at least one pattern matches
    """
    if text is None:
        return False
    for pattern in patterns:
        try:
            if re.search(pattern, text, re.IGNORECASE):
                return True
        except re.error:
            if pattern.lower() in text.lower():
                return True
    return False


def format_json_pretty(data: Any, indent: int = 2) -> str:
    """
    Format data as pretty-printed JSON.

    Args:
        data: Data to format
        indent: Number of spaces for indentation

    Returns:
        Formatted JSON string
    """
    return json.dumps(data, indent=indent, ensure_ascii=False, default=str)


def to_json_text(value: Any) -> str:
    """Serialize a value the way it is embedded into templates."""
    return json.dumps(value, ensure_ascii=False, separators=(",", ":"))


def stringify(value: Any) -> str:
    """
    Render a scalar the way it appears when substituted into a string.

    Booleans and null use their JSON spelling so that substituted
    expressions and payloads stay valid JSON.
    """
    if value is None:
        return "null"
    if isinstance(value, bool):
        return "true" if value else "false"
    if isinstance(value, float) and value.is_integer():
        return str(int(value))
    return str(value)


def is_number(value: Any) -> bool:
    """Check whether a value is numeric or a numeric string."""
    if isinstance(value, bool):
        return False
    if isinstance(value, (int, float)):
        return True
    if isinstance(value, str):
        try:
            float(value)
            return True
        except ValueError:
            return False
    return False


def parse_key_value_list(value: Optional[str], separator: str = ",") -> Dict[str, str]:
    """
    Parse a ``k=v,k2=v2`` string into a dictionary.

    Args:
        value: The string to parse
        separator: Separator between pairs

    Returns:
        Parsed dictionary

    Raises:
        ValueError: If a pair does not contain ``=``
    """
    parsed: Dict[str, str] = {}
    if not value:
        return parsed
    for pair in value.split(separator):
        if not pair.strip():
            continue
        if "=" not in pair:
            raise ValueError(f"Invalid key=value pair: '{pair}'")
        key, val = pair.split("=", 1)
        parsed[key.strip()] = val.strip()
    return parsed


def endpoint_id(collection: Optional[str], scenario: Optional[str], name: Optional[str]) -> str:
    """Identity of an endpoint as ``collection.scenario.endpoint``."""
    return f"{collection}.{scenario}.{name}"
