"""
Scenario and endpoint filters.

Name filters select by collection, scenario and endpoint names either
exactly or by case-insensitive regex search. Key filters select by any
field of a scenario, endpoint or dependency document:

    endpoint.method=POST
    endpoint.repeat>1
    scenario.name~user
    dependency.api!=login
    endpoint.cache
"""

import re
from enum import Enum
from typing import Any, List, Optional, Sequence

from apirunner.core.models import Scenario
from apirunner.logger import get_logger
from apirunner.utils.helpers import includes_regex, is_all, is_number, split_and_trim, stringify

logger = get_logger(__name__)

KEY_EXPRESSION_PATTERN = re.compile(r"^(?P<key>[^=<>~˜!]+?)\s*(?P<operator>!==|!=|>=|<=|=|<|>|~|˜)\s*(?P<value>.*)$")


class MatchMode(str, Enum):
    """How name filters are compared with names."""

    EXACT = "exact"
    SEARCH = "search"

    def matches(self, filter_value: Any, *candidates: Optional[str]) -> bool:
        """
        Check whether any candidate name is selected by a filter.

        Args:
            filter_value: Comma separated filter, a list of names, ``all`` or None
            *candidates: Names to test, e.g. a scenario name and its file stem

        Returns:
            True if the filter selects everything or matches a candidate
        """
        if is_all(filter_value):
            return True
        items = split_and_trim(filter_value)
        names = [candidate for candidate in candidates if candidate]
        if self is MatchMode.EXACT:
            return any(name in items for name in names)
        return any(includes_regex(items, name) for name in names)


class FilterScope(str, Enum):
    """Document level a key filter applies to."""

    SCENARIO = "scenario"
    ENDPOINT = "endpoint"
    DEPENDENCY = "dependency"


class KeyOperator(str, Enum):
    """Comparison operators of key filters."""

    EQUAL = "="
    LESS = "<"
    GREATER = ">"
    LESS_EQUAL = "<="
    GREATER_EQUAL = ">="
    CONTAINS = "~"
    NOT_EQUAL = "!="
    STRICT_NOT_EQUAL = "!=="
    TRUTHY = ""

    @classmethod
    def parse(cls, symbol: str) -> "KeyOperator":
        return cls.CONTAINS if symbol == "˜" else cls(symbol)

    def compare(self, left: Any, right: str) -> bool:
        """
        Compare a document value with the filter value.

        Missing or falsy document values never match.
        """
        if not left:
            return False
        if self is KeyOperator.TRUTHY or (self is KeyOperator.EQUAL and not right):
            return True
        if self is KeyOperator.EQUAL:
            return _loose_equal(left, right)
        if self is KeyOperator.NOT_EQUAL:
            return not _loose_equal(left, right)
        if self is KeyOperator.STRICT_NOT_EQUAL:
            return not (isinstance(left, str) and left == right)
        if self is KeyOperator.CONTAINS:
            if isinstance(left, (list, tuple)):
                return right in [stringify(item) for item in left]
            return right in stringify(left)
        if is_number(left) and is_number(right):
            left_number, right_number = float(left), float(right)
        else:
            left_number, right_number = stringify(left), right
        if self is KeyOperator.LESS:
            return left_number < right_number
        if self is KeyOperator.LESS_EQUAL:
            return left_number <= right_number
        if self is KeyOperator.GREATER_EQUAL:
            return left_number >= right_number
        return left_number > right_number


def _loose_equal(left: Any, right: str) -> bool:
    if is_number(left) and is_number(right):
        return float(left) == float(right)
    return stringify(left) == right


def lookup_key(document: Any, path: Sequence[str]) -> Any:
    """
    Read a dotted key path from a scenario, endpoint or dependency document.

    ``payload`` reads the payload reference when the payload was loaded from
    a file and ``length`` yields the size of the current value.
    """
    current = document
    for segment in path:
        if segment == "payload" and isinstance(current, dict) and current.get("payloadKey"):
            segment = "payloadKey"
        if segment == "length" and not (isinstance(current, dict) and "length" in current):
            current = len(current) if hasattr(current, "__len__") else None
        elif isinstance(current, dict):
            current = current.get(segment)
        elif isinstance(current, list) and segment.isdigit() and int(segment) < len(current):
            current = current[int(segment)]
        else:
            return None
    return current


def filter_by_key(scenarios: List[Scenario], expression: Optional[str]) -> List[Scenario]:
    """
    Keep the scenarios and endpoints matching a key expression.

    Args:
        scenarios: Compiled scenarios
        expression: ``<scope>.<path>[<operator><value>]`` with scope
            ``scenario``, ``endpoint`` or ``dependency``

    Returns:
        Copies of the matching scenarios holding only the matching endpoints
    """
    if is_all(expression):
        return scenarios

    match = KEY_EXPRESSION_PATTERN.match(expression.strip())
    if match:
        key = match.group("key").strip()
        operator = KeyOperator.parse(match.group("operator"))
        value = match.group("value").strip().replace("'", "").replace('"', "")
    else:
        key, operator, value = expression.strip(), KeyOperator.TRUTHY, ""

    scope_name, _, path = key.partition(".")
    try:
        scope = FilterScope(scope_name)
    except ValueError:
        logger.warning(f"Key filter '{expression}' must start with scenario, endpoint or dependency")
        return []
    segments = path.split(".") if path else []

    selected = []
    for scenario in scenarios:
        if scope is FilterScope.SCENARIO:
            if operator.compare(lookup_key(scenario.to_document(), segments), value):
                selected.append(scenario)
            continue

        endpoints = []
        for endpoint in scenario.endpoints:
            if scope is FilterScope.ENDPOINT:
                documents = [endpoint.to_document()]
            else:
                documents = [dependency.to_document() for dependency in endpoint.dependencies]
            if any(operator.compare(lookup_key(document, segments), value) for document in documents):
                endpoints.append(endpoint)
        if endpoints:
            selected.append(scenario.model_copy(update={"endpoints": endpoints}))

    logger.debug(f"Key filter '{expression}' selected {len(selected)} scenario(s)")
    return selected
