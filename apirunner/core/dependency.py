"""
Recursive resolution of endpoint dependencies.

A dependency names another endpoint (``collection``/``scenario`` default to
those of the dependent) and the variables to extract from its response:

    {"api": "login", "variable": "token", "path": "response.token"}
    {"api": "create", "variable": {"id": "response.id", "name": "{name}"}}

A path of the form ``{name}`` copies a variable of the dependency's execution
instead of reading its response.
"""

import copy
from typing import TYPE_CHECKING, Any, Dict, List, Optional, Tuple

from apirunner.compiler.filters import MatchMode
from apirunner.core.models import Dependency, Endpoint, ScenarioResult
from apirunner.exceptions import (
    CompilationError,
    CyclicDependencyError,
    DependencyExecutionFailed,
    DependencyNotFound,
)
from apirunner.logger import get_logger
from apirunner.templating.paths import extract_or_none
from apirunner.templating.scope import Scope
from apirunner.utils.helpers import endpoint_id

if TYPE_CHECKING:
    from apirunner.core.executor import Executor

logger = get_logger(__name__)

Chain = Tuple[str, ...]


class DependencyResolver:
    """Executes dependency endpoints and extracts variables from their results."""

    def __init__(self, executor: "Executor"):
        self.executor = executor
        self.context = executor.context

    async def resolve(
        self,
        dependency: Dependency,
        scope: Scope,
        chain: Chain = (),
        parent: Optional[Endpoint] = None,
        collection: Optional[str] = None,
        scenario: Optional[str] = None
    ) -> Scope:
        """
        Execute ``dependency`` and return ``scope`` extended with the extracted variables.

        Args:
            dependency: The dependency to resolve
            scope: Scope of the dependent, not modified
            chain: Ids of the endpoints currently being resolved, outermost first
            parent: Dependent endpoint; its aliases pointing at an extracted
                variable are updated with the extracted value
            collection: Default collection, when there is no parent endpoint
            scenario: Default scenario, when there is no parent endpoint

        Returns:
            Scope: A new scope holding the extracted variables

        Raises:
            CyclicDependencyError: If the dependency is already being resolved
            DependencyNotFound: If the dependency endpoint does not exist
            DependencyExecutionFailed: If the dependency endpoint failed
        """
        collection = dependency.collection or (parent.collection if parent else collection)
        scenario = dependency.scenario or (parent.scenario if parent else scenario)
        target = endpoint_id(collection, scenario, dependency.api)

        if target in chain:
            raise CyclicDependencyError(f"Cyclic dependency detected: {' -> '.join(chain + (target,))}")

        entry = await self._find(collection, scenario, dependency.api)
        if entry is None:
            raise DependencyNotFound(f"Endpoint {target} not found")

        overrides = dict(dependency.variables or {})
        dependent = entry.endpoints[0]
        dependent.dependency_level = (parent.dependency_level if parent else 0) + 1
        if overrides:
            dependent.dependencies = [
                nested for nested in dependent.dependencies
                if not _supplied_by(nested, overrides)
            ]
        if dependency.repeat and dependency.repeat > 0:
            dependent.repeat = dependency.repeat
        if dependency.cache is not None:
            dependent.cache = dependency.cache
        dependent.variables = {**dependent.variables, **overrides}

        requester = f"endpoint {parent.id}" if parent else "globals"
        logger.info(f"Executing dependency {target} for {requester}")

        result = await self.executor.execute_scenario_steps(
            entry,
            scope.merged(overrides),
            override_ignore=True,
            is_dependency=True,
            chain=chain
        )
        failure = _failure(result)
        if failure is not None:
            logger.error(f"Executing dependency {target}: FAIL")
            raise DependencyExecutionFailed(f"Endpoint {target} execution failed: {failure}")

        logger.info(f"Executing dependency {target}: SUCCESS")
        return self._extract(result, dependency, scope, parent)

    async def _find(self, collection: Optional[str], scenario: Optional[str], name: str):
        cache = self.context.scenario_cache
        entry = await cache.find(collection, scenario, name)
        if entry is not None:
            return entry

        logger.debug(f"Dependency {endpoint_id(collection, scenario, name)} not in scenario cache, compiling")
        try:
            compiled = await self.context.compiler.compile(collection, scenario, name, MatchMode.EXACT)
        except CompilationError as e:
            logger.error(f"Could not compile dependency {endpoint_id(collection, scenario, name)}: {e}")
            return None
        await cache.add(compiled)
        return await cache.find(collection, scenario, name)

    @staticmethod
    def _extract(
        result: ScenarioResult,
        dependency: Dependency,
        scope: Scope,
        parent: Optional[Endpoint]
    ) -> Scope:
        endpoint_result = result.endpoints[0]
        responses = [execution.result.response if execution.result else None for execution in endpoint_result.executions]
        response: Any = responses[0] if len(responses) == 1 else responses
        sibling_variables = endpoint_result.last.variables if endpoint_result.last else {}

        extracted = scope.copy()
        for variable, path in dependency.extraction_map().items():
            if path.startswith("{") and path.endswith("}"):
                value = sibling_variables.get(path[1:-1], "")
            else:
                value = extract_or_none(copy.deepcopy(response), path)
            extracted[variable] = value
            logger.info(f"Setting value {value!r} for {variable}")

            if parent is not None:
                for alias, template in list(parent.variables.items()):
                    if template == variable:
                        parent.variables[alias] = value
        return extracted


def _supplied_by(dependency: Dependency, overrides: Dict[str, Any]) -> bool:
    """True if every variable the dependency extracts is given by ``overrides``."""
    variables = list(dependency.extraction_map())
    return bool(variables) and all(variable in overrides for variable in variables)


def _failure(result: ScenarioResult) -> Optional[str]:
    """Message of the first failure in ``result``, None if everything passed."""
    if result.error:
        return result.error
    failed: List[str] = []
    for endpoint in result.endpoints:
        if endpoint.status:
            continue
        failed.append(endpoint.message or (endpoint.last.message if endpoint.last else None) or "assertions failed")
    if not result.endpoints and not result.passed:
        failed.append(result.message or "no endpoint executed")
    return failed[0] if failed else None
