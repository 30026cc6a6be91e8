"""
Sandboxed evaluation of assertion expressions and lifecycle scripts.

The default sandbox is a restricted expression evaluator built on
``simpleeval``: no builtins beyond a small function whitelist, no attribute
access to dunder members, no imports, no filesystem or network access.
"""

import asyncio
import re
from abc import ABC, abstractmethod
from concurrent.futures import ThreadPoolExecutor
from typing import Any, Awaitable, Callable, Dict, Optional

from pydantic import BaseModel, Field
from simpleeval import DEFAULT_FUNCTIONS, EvalWithCompoundTypes

from apirunner.config import settings
from apirunner.exceptions import ScriptExecutionError
from apirunner.logger import get_logger
from apirunner.templating.scope import Scope
from apirunner.utils.async_utils import run_with_timeout

logger = get_logger(__name__)

ApiCallback = Callable[..., Awaitable[Any]]

ASSIGNMENT_PATTERN = re.compile(r"^([A-Za-z_]\w*(?:\.[A-Za-z_]\w*)*)\s*=(?!=)\s*(.+)$")

JSON_CONSTANTS = {"true": True, "false": False, "null": None, "undefined": None}

STRING_LITERAL_PATTERN = re.compile(r"""("(?:[^"\\]|\\.)*"|'(?:[^'\\]|\\.)*')""")

OPERATOR_REWRITES = [
    (re.compile(r"!=="), "!="),
    (re.compile(r"==="), "=="),
    (re.compile(r"\s*&&\s*"), " and "),
    (re.compile(r"\s*\|\|\s*"), " or "),
    (re.compile(r"!(?!=)\s*"), " not "),
]

SANDBOX_FUNCTIONS = {
    **DEFAULT_FUNCTIONS,
    "len": len,
    "abs": abs,
    "min": min,
    "max": max,
    "round": round,
}


class ScriptResult(BaseModel):
    """Effect of one script run."""

    variables: Dict[str, Any] = Field(default_factory=dict, description="Variables assigned by the script")
    api: Dict[str, Any] = Field(default_factory=dict, description="Endpoint fields replaced by the script")
    value: Any = Field(default=None, description="Value of the last evaluated line")


class ScriptSandbox(ABC):
    """
    Runs user snippets against a variable scope.

    Implementations must not expose the host filesystem, processes or the
    network, and must bound the run time of a script.
    """

    @abstractmethod
    async def run(
        self,
        script: str,
        scope: Scope,
        api_callback: Optional[ApiCallback] = None,
        endpoint: Optional[Dict[str, Any]] = None
    ) -> ScriptResult:
        """
        Run a lifecycle script.

        Args:
            script: Script text
            scope: Variables visible to the script. Not modified.
            api_callback: Coroutine function running another endpoint,
                exposed to scripts as ``get_api_response``
            endpoint: Document of the endpoint the script belongs to, exposed as ``api``

        Returns:
            ScriptResult: Assigned variables and endpoint updates

        Raises:
            ScriptExecutionError: If the script fails or times out
        """
        pass

    @abstractmethod
    def evaluate(self, expression: str, names: Optional[Dict[str, Any]] = None) -> Any:
        """
        Evaluate a single expression.

        Raises:
            ScriptExecutionError: If the expression cannot be evaluated
        """
        pass


class ExpressionSandbox(ScriptSandbox):
    """
    ``ScriptSandbox`` backed by a restricted expression evaluator.

    Scripts are line based. Blank lines and ``#`` comments are skipped, a line
    ``target = expression`` assigns, any other line is evaluated for its value.
    Targets are a variable name, ``variables.<name>`` or ``api.<field>``.
    JavaScript style ``===``, ``!==``, ``&&``, ``||`` and ``!`` are accepted.
    Scripts run on a thread pool of their own, separate from the event
    loop's default executor.
    """

    def __init__(self, timeout: Optional[float] = None, workers: Optional[int] = None):
        self.timeout = timeout or settings.script_timeout
        self._executor = ThreadPoolExecutor(
            max_workers=workers or settings.script_workers,
            thread_name_prefix="apirunner-script"
        )

    @staticmethod
    def normalize(expression: str) -> str:
        """Rewrite JavaScript operators outside string literals into Python ones."""
        parts = STRING_LITERAL_PATTERN.split(expression.strip())
        for index in range(0, len(parts), 2):
            for pattern, replacement in OPERATOR_REWRITES:
                parts[index] = pattern.sub(replacement, parts[index])
        return "".join(parts).strip()

    def evaluate(self, expression: str, names: Optional[Dict[str, Any]] = None) -> Any:
        return self._evaluate(expression, names or {}, {})

    def _evaluate(self, expression: str, names: Dict[str, Any], functions: Dict[str, Callable]) -> Any:
        evaluator = EvalWithCompoundTypes(
            names={**JSON_CONSTANTS, **names},
            functions={**SANDBOX_FUNCTIONS, **functions},
        )
        try:
            return evaluator.eval(self.normalize(expression))
        except Exception as e:
            raise ScriptExecutionError(f"Could not evaluate '{expression}': {e}") from e

    async def run(
        self,
        script: str,
        scope: Scope,
        api_callback: Optional[ApiCallback] = None,
        endpoint: Optional[Dict[str, Any]] = None
    ) -> ScriptResult:
        names = {name: scope[name] for name in scope}
        api = dict(endpoint or {})
        functions: Dict[str, Callable] = {}
        loop = asyncio.get_running_loop()
        if api_callback is not None:
            functions["get_api_response"] = self._bridge(api_callback, loop)

        return await run_with_timeout(
            loop.run_in_executor(self._executor, self._run_lines, script, names, api, functions),
            self.timeout,
            "Script"
        )

    def _bridge(self, api_callback: ApiCallback, loop: asyncio.AbstractEventLoop) -> Callable[..., Any]:
        """Expose an async callback as a blocking function callable from the script thread."""
        def get_api_response(collection: str, scenario: str, api: str, variables: Optional[Dict[str, Any]] = None):
            future = asyncio.run_coroutine_threadsafe(
                api_callback(collection, scenario, api, variables or {}),
                loop
            )
            return future.result(self.timeout)

        return get_api_response

    def _run_lines(
        self,
        script: str,
        names: Dict[str, Any],
        api: Dict[str, Any],
        functions: Dict[str, Callable]
    ) -> ScriptResult:
        variables = dict(names)
        result = ScriptResult()

        for number, raw in enumerate(script.splitlines(), start=1):
            line = raw.strip().rstrip(";").strip()
            if not line or line.startswith("#") or line.startswith("//"):
                continue

            context = {**variables, "variables": variables, "api": api}
            assignment = ASSIGNMENT_PATTERN.match(line)
            if not assignment:
                result.value = self._evaluate(line, context, functions)
                continue

            target, expression = assignment.groups()
            value = self._evaluate(expression, context, functions)
            result.value = value

            head, _, rest = target.partition(".")
            if head == "api" and rest:
                _assign_path(api, rest, value)
                field = rest.split(".")[0]
                result.api[field] = api[field]
            elif head == "variables" and rest and "." not in rest:
                variables[rest] = value
                result.variables[rest] = value
            elif not rest:
                variables[target] = value
                result.variables[target] = value
            else:
                raise ScriptExecutionError(f"Line {number}: cannot assign to '{target}'")

        logger.debug(f"Script assigned {list(result.variables)} and updated {list(result.api)}")
        return result


def _assign_path(document: Dict[str, Any], path: str, value: Any) -> None:
    keys = path.split(".")
    current = document
    for key in keys[:-1]:
        if not isinstance(current.get(key), dict):
            current[key] = {}
        current = current[key]
    current[keys[-1]] = value
