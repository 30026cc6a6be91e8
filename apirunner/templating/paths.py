"""
Extraction paths over JSON values.

A path is a sequence of segments separated by ``.`` or ``/``. A leading
``response`` segment is ignored. Segments are evaluated left to right:

- ``ANY``, ``ANY_OBJECT``, ``RANDOM``, ``RANDOM_OBJECT``: one random element
- ``ANY_<n>``: ``n`` random elements (fewer if the collection is smaller)
- ``ALL <field>``: ``field`` of every element
- ``length``, ``keys``, ``values``: structural operations, unless the current
  object has a real key of that name
- a number: positional index, clamped to the last valid index
- anything else: an object key

Keywords are case-insensitive. An unknown key yields ``NOT_FOUND``.
"""

import json
import random
from typing import Any, List

from apirunner.constants import ALL_KEYWORD, RANDOM_KEYWORDS, RESPONSE_PREFIX
from apirunner.exceptions import PathResolutionError
from apirunner.logger import get_logger

logger = get_logger(__name__)


class _NotFound:
    """Marker for a path that could not be resolved."""

    _instance = None

    def __new__(cls):
        if cls._instance is None:
            cls._instance = super().__new__(cls)
        return cls._instance

    def __repr__(self) -> str:
        return "NOT_FOUND"

    def __bool__(self) -> bool:
        return False


NOT_FOUND = _NotFound()


def split_path(path: str) -> List[str]:
    """Split a path into segments, dropping a leading ``response``."""
    segments = path.replace("/", ".").split(".")
    if segments and segments[0].strip() == RESPONSE_PREFIX:
        segments = segments[1:]
    return segments


def _values(value: Any) -> List[Any]:
    if isinstance(value, dict):
        return list(value.values())
    if isinstance(value, (list, tuple)):
        return list(value)
    if isinstance(value, str):
        return list(value)
    raise PathResolutionError(f"Cannot iterate over {type(value).__name__}")


def _has_key(value: Any, key: str) -> bool:
    return isinstance(value, dict) and key in value


def _as_index(key: str):
    try:
        return abs(int(key))
    except ValueError:
        return None


def _child(value: Any, key: Any) -> Any:
    """Lenient single step used by ``ALL``; missing children become ``None``."""
    if isinstance(value, dict):
        return value.get(key)
    if isinstance(value, (list, tuple)):
        index = _as_index(str(key))
        if index is not None and index < len(value):
            return value[index]
    return None


def _describe(value: Any) -> str:
    try:
        return json.dumps(value, default=str)[:200]
    except (TypeError, ValueError):
        return str(value)[:200]


def extract(value: Any, path: str) -> Any:
    """
    Evaluate ``path`` against ``value``.

    Args:
        value: Parsed JSON value to read from
        path: Extraction path

    Returns:
        The selected value, or ``NOT_FOUND`` when a key is missing. String
        inputs and empty paths return ``value`` unchanged.
    """
    if not path or isinstance(value, str):
        return value

    segments = split_path(path)
    current = value
    index = 0

    try:
        while index < len(segments):
            key = segments[index].strip()
            index += 1
            if not key:
                continue

            upper = key.upper()
            lower = key.lower()

            if upper in RANDOM_KEYWORDS:
                values = _values(current)
                if not values:
                    logger.warning(f"Cannot pick a random element of an empty value for path '{path}'")
                    return NOT_FOUND
                current = random.choice(values)

            elif upper.startswith("ANY_") and key[4:].isdigit():
                values = _values(current)
                count = min(int(key[4:]), len(values))
                current = random.sample(values, count)

            elif upper == ALL_KEYWORD:
                values = _values(current)
                if index < len(segments):
                    field = segments[index].strip()
                    index += 1
                    current = [_child(item, field) for item in values]
                else:
                    current = values

            elif lower == "length" and not _has_key(current, key):
                current = len(_values(current))

            elif lower == "keys" and not _has_key(current, key):
                if isinstance(current, dict):
                    current = list(current.keys())
                else:
                    current = list(range(len(_values(current))))

            elif lower == "values" and not _has_key(current, key):
                current = _values(current)

            elif _has_key(current, key):
                current = current[key]

            elif _as_index(key) is not None and isinstance(current, (list, tuple, str)):
                values = _values(current)
                if not values:
                    logger.warning(f"Cannot index into an empty value for path '{path}'")
                    return NOT_FOUND
                position = min(_as_index(key), len(values) - 1)
                current = values[position]

            else:
                logger.warning(
                    f"Could not find key '{key}' in {_describe(current)}. Setting value to undefined"
                )
                return NOT_FOUND

    except PathResolutionError as e:
        logger.error(f"Could not parse '{path}' from {_describe(value)}: {e}")
        return NOT_FOUND

    logger.debug(f"Parsed '{path}' as {_describe(current)}")
    return current


def extract_or_none(value: Any, path: str) -> Any:
    """Like ``extract`` but maps ``NOT_FOUND`` to ``None``."""
    result = extract(value, path)
    return None if result is NOT_FOUND else result
