"""
Scenario execution.

The executor drives every scenario of a job through its lifecycle:

    before-scenario -> generate -> after-globals -> endpoints -> after-scenario

and every endpoint repeat through the states

    PENDING -> BEFORE_HOOKS -> DEPENDENCIES -> THROTTLE_WAIT -> IN_FLIGHT -> ASSERTING -> DONE

with ``FAILED`` reachable from BEFORE_HOOKS, DEPENDENCIES and IN_FLIGHT.
Dependencies re-enter the executor through ``execute_scenario_steps``.
"""

import asyncio
from typing import Any, Dict, List, Optional, Tuple

from apirunner.assertions.evaluator import AssertionEvaluator
from apirunner.constants import EndpointState, ExecutionStatus, ScriptType
from apirunner.core.context import ExecutionContext
from apirunner.core.dependency import Chain, DependencyResolver
from apirunner.core.hooks import HookRunner, apply_result
from apirunner.core.models import (
    Dependency,
    Endpoint,
    EndpointResult,
    ExecutionRecord,
    JobResult,
    ResponseData,
    RunOptions,
    Scenario,
    ScenarioResult,
)
from apirunner.exceptions import (
    APIRunnerError,
    ConfigurationError,
    DependencyError,
    DependencyNotFound,
    NetworkError,
    ScriptExecutionError,
    StorageError,
    TemplateError,
)
from apirunner.logger import get_logger
from apirunner.templating.generators import time_generators
from apirunner.templating.scope import Scope
from apirunner.utils.async_utils import Stopwatch, now_ms, sleep_ms

logger = get_logger(__name__)

RANGE_INDEX_VARIABLE = "_range_index"


class Executor:
    """
    Runs compiled scenarios with bounded concurrency.

    Usage:
        context = ExecutionContext.create(RunOptions(variables="env=qa"))
        result = await Executor(context).run_job(scenarios)
    """

    def __init__(self, context: ExecutionContext):
        self.context = context
        self.dependencies = DependencyResolver(self)
        self.hooks = HookRunner(context.sandbox, self.execute_api)
        self._globals: Optional[Scope] = None

    async def run_job(self, scenarios: List[Scenario]) -> JobResult:
        """
        Execute every scenario of a job concurrently.

        Args:
            scenarios: Compiled scenarios

        Returns:
            JobResult: Scenario results and the job summary

        Raises:
            ConfigurationError: If there is nothing to run or the options are invalid
        """
        context = self.context
        if not scenarios or all(not scenario.endpoints for scenario in scenarios):
            logger.error("No tests found")
            raise ConfigurationError("No tests found")

        context.systems.select(context.options.system_aliases())
        self._globals = self.global_scope()
        await context.scenario_cache.add(scenarios)

        logger.info(
            f"Job {context.job_id}: executing {len(scenarios)} scenario(s) "
            f"with at most {context.throttle.limit} parallel executors"
        )
        results = await asyncio.gather(*(
            self.execute_scenario(scenario, self._globals.copy())
            for scenario in scenarios
        ))
        results = list(results)

        summary = context.summary(results)
        try:
            await context.job_store.record_job(summary)
        except StorageError as e:
            logger.error(f"Could not save job {context.job_id}: {e}")

        logger.info(
            f"Job {context.job_id} finished in {summary.duration}ms: "
            f"{summary.endpoints_successful}/{summary.endpoints_executed} endpoints and "
            f"{summary.assertions_successful}/{summary.assertions_processed} assertions passed"
        )
        return JobResult(job_id=context.job_id, scenarios=results, summary=summary)

    def global_scope(self) -> Scope:
        """
        Variables every scenario of the job starts with.

        Time functions, the job id, configured ``env_vars`` and the user
        overrides, later ones winning.

        Raises:
            ConfigurationError: If the variable overrides are malformed
        """
        job_id = self.context.job_id
        return Scope(time_generators()).merged(
            {"jobId": job_id, "job_id": job_id},
            self.context.env_vars,
            self.context.options.variable_overrides()
        )

    async def execute_scenario(self, scenario: Scenario, scope: Scope) -> ScenarioResult:
        """Execute a top level scenario; ignored scenarios end with status ``ERROR``."""
        if scenario.ignore:
            logger.info(f"Scenario {scenario.collection}.{scenario.name} ignored")
            return ScenarioResult(
                name=scenario.name,
                collection=scenario.collection,
                file=scenario.file,
                status=ExecutionStatus.ERROR,
                message="Scenario ignored"
            )

        logger.info(f"Starting scenario {scenario.collection}.{scenario.name}")
        result = await self.execute_scenario_steps(scenario, scope)
        level = logger.info if result.passed else logger.error
        level(f"Scenario {scenario.collection}.{scenario.name}: {result.status.value} in {result.timing}ms")
        return result

    async def execute_scenario_steps(
        self,
        scenario: Scenario,
        scope: Scope,
        override_ignore: bool = False,
        is_dependency: bool = False,
        chain: Chain = ()
    ) -> ScenarioResult:
        """
        Run the lifecycle of one scenario.

        Args:
            scenario: The scenario to run
            scope: Scope the scenario starts with, not modified
            override_ignore: Run endpoints flagged ``ignore`` too
            is_dependency: The scenario runs to satisfy a dependency; object
                entries of its ``generate`` block are skipped
            chain: Ids of the endpoints being resolved, for cycle detection

        Returns:
            ScenarioResult: The outcome. A failing before-scenario script,
            generate entry or after-globals script fails every endpoint.
        """
        stopwatch = Stopwatch()
        scope = scope.copy()
        try:
            scope = apply_result(scope, await self.hooks.run(
                scenario.scripts, ScriptType.BEFORE_SCENARIO, scope, scenario.name
            ))
            scope = await self.generate(scenario, scope, is_dependency, chain)
            scope = apply_result(scope, await self.hooks.run(
                scenario.scripts, ScriptType.AFTER_GLOBALS, scope, scenario.name
            ))
        except (ScriptExecutionError, TemplateError, DependencyError) as e:
            logger.error(f"Could not execute globals and generators of {scenario.name}. Scenario will be skipped: {e}")
            return ScenarioResult(
                name=scenario.name,
                collection=scenario.collection,
                file=scenario.file,
                status=ExecutionStatus.FAIL,
                endpoints=[
                    EndpointResult(
                        name=endpoint.name,
                        collection=endpoint.collection,
                        scenario=endpoint.scenario,
                        state=EndpointState.FAILED,
                        message=str(e)
                    )
                    for endpoint in scenario.endpoints
                ],
                timing=stopwatch.stop(),
                error=str(e)
            )

        endpoints = [
            endpoint for endpoint in scenario.endpoints
            if override_ignore or not endpoint.ignore
        ]
        results = await asyncio.gather(*(
            self.execute_endpoint(scenario, endpoint, scope, chain)
            for endpoint in endpoints
        ))

        result = ScenarioResult(
            name=scenario.name,
            collection=scenario.collection,
            file=scenario.file,
            status=ExecutionStatus.SUCCESS if all(r.status for r in results) else ExecutionStatus.FAIL,
            endpoints=list(results),
            variables=scope.literals(),
            timing=stopwatch.stop()
        )
        await self.hooks.run_logged(scenario.scripts, ScriptType.AFTER_SCENARIO, scope, scenario.name)
        return result

    async def generate(self, scenario: Scenario, scope: Scope, is_dependency: bool = False, chain: Chain = ()) -> Scope:
        """
        Resolve the ``generate`` block of a scenario, in declaration order.

        String entries are templates. Object entries with ``api`` and
        ``variable`` are dependencies whose extracted value is stored under
        the entry name; other objects are resolved as JSON templates.

        Raises:
            TemplateError: If an entry cannot be resolved
            DependencyError: If a dependency entry fails
        """
        engine = self.context.engine
        scope = scope.copy()
        for name, entry in scenario.generate.items():
            if isinstance(entry, (dict, list)):
                if is_dependency:
                    continue
                if isinstance(entry, dict) and entry.get("api") and entry.get("variable"):
                    dependency = Dependency.model_validate({**entry, "variable": name})
                    resolved = await self.dependencies.resolve(
                        dependency,
                        scope,
                        chain,
                        collection=scenario.collection,
                        scenario=scenario.name
                    )
                    scope[name] = resolved[name]
                else:
                    scope[name] = engine.resolve(entry, scope, use_regex=False)
            elif isinstance(entry, str):
                scope[name] = engine.resolve(entry, scope)
            else:
                scope[name] = entry
        return scope

    async def execute_endpoint(
        self,
        scenario: Scenario,
        endpoint: Endpoint,
        scope: Scope,
        chain: Chain = ()
    ) -> EndpointResult:
        """
        Run every repeat of an endpoint.

        Async endpoints launch all repeats at once unless the job is forced
        synchronous. Otherwise repeats run in order, each starting from the
        scope left by the previous repeat's dependencies.
        """
        stopwatch = Stopwatch()
        records: List[ExecutionRecord] = []

        if endpoint.async_ and not self.context.sync:
            outcomes = await asyncio.gather(*(
                self._run_repeat(scenario, endpoint, scope.copy(), index, chain)
                for index in range(endpoint.repeat)
            ))
            records = [record for record, _ in outcomes]
        else:
            current = scope
            for index in range(endpoint.repeat):
                record, current = await self._run_repeat(scenario, endpoint, current.copy(), index, chain)
                records.append(record)

        status = all(record.status for record in records)
        failed = next((record for record in records if not record.status), None)
        return EndpointResult(
            name=endpoint.name,
            collection=endpoint.collection,
            scenario=endpoint.scenario,
            executions=records,
            status=status,
            state=EndpointState.DONE if status else EndpointState.FAILED,
            time=stopwatch.stop(),
            message=_describe_failure(failed) if failed else None
        )

    async def _run_repeat(
        self,
        scenario: Scenario,
        endpoint: Endpoint,
        scope: Scope,
        index: int,
        chain: Chain
    ) -> Tuple[ExecutionRecord, Scope]:
        endpoint = endpoint.model_copy(deep=True)
        chain = chain + (endpoint.id,)
        scope[RANGE_INDEX_VARIABLE] = index + 1
        transitions = [EndpointState.PENDING, EndpointState.BEFORE_HOOKS]

        try:
            try:
                scope = apply_result(scope, await self.hooks.run(
                    scenario.scripts, ScriptType.BEFORE_EACH, scope, scenario.name
                ))
                before = await self.hooks.run(
                    endpoint.scripts, ScriptType.BEFORE_ENDPOINT, scope, endpoint.id, endpoint.to_document()
                )
            except ScriptExecutionError as e:
                logger.error(str(e))
                record = self._failed_record(endpoint, scope, f"Script execution failed: {e}", index)
                return await self._complete(record, transitions), scope

            scope = apply_result(scope, before)
            if before is not None and "payload" in before.api:
                endpoint.payload = before.api["payload"]

            transitions.append(EndpointState.DEPENDENCIES)
            try:
                for dependency in endpoint.dependencies:
                    scope = await self.dependencies.resolve(dependency, scope, chain, parent=endpoint)
            except DependencyError as e:
                logger.error(f"Dependency execution failed for {endpoint.id}: {e}")
                record = self._failed_record(endpoint, scope, f"Dependency execution failed: {e}", index)
                return await self._complete(record, transitions), scope

            scope = apply_result(scope, await self.hooks.run_logged(
                endpoint.scripts, ScriptType.AFTER_DEPENDENCIES, scope, endpoint.id, endpoint.to_document()
            ))

            await sleep_ms(endpoint.delay if index == 0 else endpoint.repeat_delay)
            record = await self._complete(await self._execute_until(endpoint, scope, index, transitions), transitions)

            await self.hooks.run_logged(
                endpoint.scripts, ScriptType.AFTER_ENDPOINT, scope, endpoint.id, endpoint.to_document()
            )
            return record, scope
        finally:
            await self.hooks.run_logged(scenario.scripts, ScriptType.AFTER_EACH, scope, scenario.name)

    async def _execute_until(
        self,
        endpoint: Endpoint,
        scope: Scope,
        index: int,
        transitions: List[EndpointState]
    ) -> ExecutionRecord:
        """Call the endpoint, repeating while its ``repeat-until`` expectations fail."""
        if not endpoint.repeat_until:
            return await self._call_endpoint(endpoint, scope, index, transitions)

        endpoint = endpoint.model_copy(update={"expect": {**endpoint.expect, **endpoint.repeat_until}})
        timeout = endpoint.timeout or self.context.repeat_until_timeout_ms
        stopwatch = Stopwatch()
        attempts = 0

        while True:
            attempts += 1
            record = await self._call_endpoint(endpoint, scope.copy(), index, transitions)
            checks = await self.context.evaluator.evaluate_expectations(
                endpoint.repeat_until, record.result or ResponseData(), scope
            )
            if all(check.result for check in checks):
                break
            if stopwatch.elapsed >= timeout:
                logger.error(f"Repeat-until of {endpoint.id} timed out after {attempts} attempt(s) and {timeout}ms")
                break
            logger.error("Repeat assertion failed. Repeating the execution...")
            await sleep_ms(endpoint.repeat_delay)

        logger.debug(f"Repeat-until of {endpoint.id} finished after {attempts} attempt(s)")
        return record

    async def _call_endpoint(
        self,
        endpoint: Endpoint,
        scope: Scope,
        index: int,
        transitions: List[EndpointState]
    ) -> ExecutionRecord:
        """
        One network call of an endpoint, or its cached result.

        The states the call passes through are appended to ``transitions``.
        """
        context = self.context
        expected = AssertionEvaluator.expected_status(endpoint.expect)

        if endpoint.cache:
            cached = await self._from_cache(endpoint, scope, expected, index)
            if cached is not None:
                transitions.append(EndpointState.ASSERTING)
                return cached

        scope = scope.merged(context.systems.variables(endpoint.system))
        try:
            request = context.engine.resolve_endpoint(endpoint, scope)
        except TemplateError as e:
            logger.error(f"Could not resolve {endpoint.id}: {e}")
            return self._failed_record(endpoint, scope, str(e), index)

        started_at = now_ms()
        failed_network = False
        logger.info(f"Executing {endpoint.method} {endpoint.id} [{request.url}]")
        transitions.append(EndpointState.THROTTLE_WAIT)
        try:
            async with context.throttle:
                transitions.append(EndpointState.IN_FLIGHT)
                transport_response = await context.transport.send(
                    endpoint.system,
                    request.url,
                    endpoint.method,
                    request.payload,
                    language=endpoint.language,
                    headers=request.headers
                )
            response = ResponseData.from_transport(transport_response)
        except NetworkError as e:
            logger.error(f"Executing api {endpoint.id} failed: {e}")
            response = ResponseData.failed(str(e))
            failed_network = True
        else:
            transitions.append(EndpointState.ASSERTING)

        assertions = await context.evaluator.evaluate(endpoint, response, scope)
        passed = response.status == expected and all(assertion.result for assertion in assertions)

        record = ExecutionRecord(
            job_id=context.job_id,
            collection=endpoint.collection,
            scenario=endpoint.scenario,
            name=endpoint.name,
            url=request.url,
            method=endpoint.method,
            payload=request.payload,
            full_url=response.full_url,
            range_index=index + 1,
            dependency_level=endpoint.dependency_level,
            result=response,
            status=passed,
            expect=assertions,
            variables=scope.literals(),
            state=EndpointState.DONE if passed else EndpointState.FAILED,
            started_at=started_at
        )

        if endpoint.cache and not failed_network:
            logger.info(f"Caching response of {endpoint.id}")
            try:
                await context.response_cache.put(record)
            except StorageError as e:
                logger.error(f"Could not cache response of {endpoint.id}: {e}")
        return record

    async def _from_cache(
        self,
        endpoint: Endpoint,
        scope: Scope,
        expected: int,
        index: int
    ) -> Optional[ExecutionRecord]:
        try:
            cached = await self.context.response_cache.get(endpoint.collection, endpoint.scenario, endpoint.name)
        except StorageError as e:
            logger.info(f"Could not fetch {endpoint.id} from cache: {e}")
            return None
        if cached is None:
            logger.info(f"Could not fetch {endpoint.id} from cache: not found")
            return None

        logger.info(f"Loaded response of {endpoint.id} from cache")
        passed = cached.http_status == expected and all(assertion.result for assertion in cached.expect)
        return cached.model_copy(update={
            "job_id": self.context.job_id,
            "range_index": index + 1,
            "dependency_level": endpoint.dependency_level,
            "variables": scope.literals(),
            "status": passed,
            "state": EndpointState.DONE if passed else EndpointState.FAILED,
            "cached": True,
            "started_at": now_ms(),
        })

    def _failed_record(self, endpoint: Endpoint, scope: Scope, message: str, index: int) -> ExecutionRecord:
        return ExecutionRecord(
            job_id=self.context.job_id,
            collection=endpoint.collection,
            scenario=endpoint.scenario,
            name=endpoint.name,
            url=endpoint.url,
            method=endpoint.method,
            range_index=index + 1,
            dependency_level=endpoint.dependency_level,
            result=ResponseData.failed(message),
            status=False,
            variables=scope.literals(),
            state=EndpointState.FAILED,
            started_at=now_ms()
        )

    async def _complete(self, record: ExecutionRecord, transitions: List[EndpointState]) -> ExecutionRecord:
        """Count and persist a finished execution, ending its transitions in its final state."""
        record.transitions = [*transitions, record.state]
        self.context.record_counts(record)
        try:
            await self.context.job_store.record_endpoint_execution(record)
        except StorageError as e:
            logger.error(f"Could not save execution of {record.id}: {e}")

        if record.status:
            logger.info(f"{record.id} [{record.range_index}]: PASS ({record.http_status})")
        else:
            logger.error(f"{record.id} [{record.range_index}]: FAIL - {_describe_failure(record)}")
        return record

    async def execute_api(
        self,
        collection: str,
        scenario: str,
        api: str,
        variables: Optional[Dict[str, Any]] = None
    ) -> Any:
        """
        Run another endpoint on behalf of a script and return its response.

        The endpoint is looked up in the scenario cache, then searched with
        regex matching. It runs with its own lifecycle and is not counted in
        the job totals. Multiple repeats return a list of responses.

        Returns:
            The response body, or an empty dict if the endpoint could not be run
        """
        try:
            entry = await self.context.scenario_cache.find(collection, scenario, api)
            if entry is None:
                found = await self.context.compiler.search(collection, scenario, api)
                if not found:
                    raise DependencyNotFound(f"Endpoint {collection}.{scenario}.{api} not found")
                entry = found[0].model_copy(update={"endpoints": found[0].endpoints[:1]}, deep=True)

            entry.endpoints[0].dependency_level = 1
            base = self._globals if self._globals is not None else self.global_scope()
            result = await self.execute_scenario_steps(entry, base.merged(variables), override_ignore=True)
            executions = result.endpoints[0].executions if result.endpoints else []
            responses = [execution.result.response if execution.result else None for execution in executions]
            return responses[0] if len(responses) == 1 else responses
        except APIRunnerError as e:
            logger.error(f"Error executing api [{collection}, {scenario}, {api}] from a script: {e}")
            return {}


def _describe_failure(record: ExecutionRecord) -> str:
    if record.message:
        return record.message
    failed = [
        f"{assertion.test} (expected {assertion.expected!r}, obtained {assertion.obtained!r})"
        for assertion in record.expect
        if not assertion.result
    ]
    return "; ".join(failed) or f"Unexpected status {record.http_status}"


async def run_job(
    scenarios: List[Scenario],
    options: Optional[RunOptions] = None,
    context: Optional[ExecutionContext] = None
) -> JobResult:
    """
    Execute ``scenarios`` as one job.

    Args:
        scenarios: Compiled scenarios
        options: Options of the job, used when no context is given
        context: Pre-wired execution context

    Returns:
        JobResult: Scenario results and the job summary
    """
    if context is None:
        context = ExecutionContext.create(options)
    elif options is not None:
        context.options = options
    return await Executor(context).run_job(scenarios)
