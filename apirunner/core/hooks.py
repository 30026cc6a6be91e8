"""Lifecycle script execution."""

from typing import Any, Dict, Optional

from apirunner.assertions.sandbox import ApiCallback, ScriptResult, ScriptSandbox
from apirunner.constants import ScriptType
from apirunner.exceptions import ScriptExecutionError
from apirunner.logger import get_logger
from apirunner.templating.scope import Scope

logger = get_logger(__name__)


class HookRunner:
    """Runs the scripts attached to scenarios and endpoints in a sandbox."""

    def __init__(self, sandbox: ScriptSandbox, api_callback: Optional[ApiCallback] = None):
        self.sandbox = sandbox
        self.api_callback = api_callback

    async def run(
        self,
        scripts: Dict[str, str],
        script_type: ScriptType,
        scope: Scope,
        owner: str,
        endpoint: Optional[Dict[str, Any]] = None
    ) -> Optional[ScriptResult]:
        """
        Run the script of ``script_type`` if one is declared.

        Args:
            scripts: Scripts of the scenario or endpoint, keyed by type
            script_type: Lifecycle point being executed
            scope: Variables visible to the script
            owner: Name of the scenario or endpoint, for logging
            endpoint: Endpoint document exposed to the script as ``api``

        Returns:
            The script result, or None if no script is declared

        Raises:
            ScriptExecutionError: If the script fails
        """
        script = (scripts or {}).get(script_type.value)
        if not script:
            return None

        logger.debug(f"Running {script_type.value} script of {owner}")
        try:
            return await self.sandbox.run(script, scope, self.api_callback, endpoint)
        except ScriptExecutionError as e:
            raise ScriptExecutionError(f"{script_type.value} script of {owner} failed: {e}") from e

    async def run_logged(
        self,
        scripts: Dict[str, str],
        script_type: ScriptType,
        scope: Scope,
        owner: str,
        endpoint: Optional[Dict[str, Any]] = None
    ) -> Optional[ScriptResult]:
        """``run`` for scripts whose failure must not change the outcome; errors are logged."""
        try:
            return await self.run(scripts, script_type, scope, owner, endpoint)
        except ScriptExecutionError as e:
            logger.error(str(e))
            return None


def apply_result(scope: Scope, result: Optional[ScriptResult]) -> Scope:
    """Return ``scope`` with the variables assigned by a script layered on top."""
    if result is None or not result.variables:
        return scope
    return scope.merged(result.variables)
