"""Per-job execution state shared by the executor and the dependency resolver."""

from typing import Any, Dict, List, Optional

from apirunner.assertions.evaluator import AssertionEvaluator
from apirunner.assertions.sandbox import ExpressionSandbox, ScriptSandbox
from apirunner.compiler.compiler import Compiler
from apirunner.compiler.freeze import ScenarioFreezer
from apirunner.compiler.sources import (
    DirectoryPayloadLoader,
    DirectoryScenarioSource,
    DirectorySchemaLoader,
)
from apirunner.config import Settings, settings as default_settings
from apirunner.constants import ExecutionStatus
from apirunner.core.models import ExecutionRecord, JobSummary, RunOptions, ScenarioResult
from apirunner.core.scenario_cache import ScenarioCache
from apirunner.core.throttle import Throttle
from apirunner.storage.base import JobStore, ResponseCache
from apirunner.storage.memory import MemoryStore
from apirunner.templating.engine import TemplateEngine, default_engine
from apirunner.transport.base import HttpTransport
from apirunner.transport.httpx_transport import HttpxTransport
from apirunner.transport.systems import SystemRegistry
from apirunner.utils.async_utils import now_ms


class ExecutionContext:
    """
    Everything one job needs, passed explicitly instead of module globals.

    Holds the collaborators (compiler, transport, sandbox, stores), the shared
    throttle and scenario cache, and the job counters. Counters only include
    top level endpoint executions; dependency runs are not counted.
    """

    def __init__(
        self,
        compiler: Compiler,
        transport: HttpTransport,
        sandbox: ScriptSandbox,
        response_cache: ResponseCache,
        job_store: JobStore,
        options: Optional[RunOptions] = None,
        evaluator: Optional[AssertionEvaluator] = None,
        systems: Optional[SystemRegistry] = None,
        throttle: Optional[Throttle] = None,
        scenario_cache: Optional[ScenarioCache] = None,
        engine: Optional[TemplateEngine] = None,
        repeat_until_timeout_ms: Optional[int] = None,
        env_vars: Optional[Dict[str, Any]] = None
    ):
        self.options = options or RunOptions()
        self.job_id = self.options.job_id or now_ms()
        self.compiler = compiler
        self.transport = transport
        self.sandbox = sandbox
        self.engine = engine or default_engine()
        self.evaluator = evaluator or AssertionEvaluator(sandbox, engine=self.engine)
        self.response_cache = response_cache
        self.job_store = job_store
        self.systems = systems or getattr(transport, "systems", None) or SystemRegistry()
        self.throttle = throttle or Throttle()
        self.scenario_cache = scenario_cache or ScenarioCache()
        if repeat_until_timeout_ms is None:
            repeat_until_timeout_ms = default_settings.repeat_until_timeout_ms
        self.repeat_until_timeout_ms = repeat_until_timeout_ms
        self.env_vars = dict(default_settings.env_vars if env_vars is None else env_vars)

        self.endpoints_executed = 0
        self.endpoints_successful = 0
        self.assertions_processed = 0
        self.assertions_successful = 0
        self.started_at = now_ms()

    @classmethod
    def create(
        cls,
        options: Optional[RunOptions] = None,
        settings: Optional[Settings] = None,
        **overrides: Any
    ) -> "ExecutionContext":
        """
        Build a context wired with the default implementations.

        Scenarios, payloads and schemas are read from the workspace, requests
        go through ``HttpxTransport`` and results are kept in a ``MemoryStore``.
        Any constructor argument can be passed to replace a default.

        Args:
            options: Options of the job
            settings: Settings to read paths and limits from
            **overrides: Collaborators replacing the defaults

        Returns:
            ExecutionContext: The wired context
        """
        settings = settings or default_settings
        systems = overrides.pop("systems", None) or SystemRegistry.from_settings(settings)
        engine = overrides.pop("engine", None) or default_engine()
        sandbox = overrides.pop("sandbox", None) or ExpressionSandbox(settings.script_timeout)
        store = MemoryStore()

        compiler = overrides.pop("compiler", None) or Compiler(
            DirectoryScenarioSource(settings.scenarios_dir),
            DirectoryPayloadLoader(settings.payloads_dir),
            ScenarioFreezer(settings.frozen_scenarios_file)
        )
        evaluator = overrides.pop("evaluator", None) or AssertionEvaluator(
            sandbox,
            DirectorySchemaLoader(settings.schemas_dir),
            engine
        )

        return cls(
            compiler=compiler,
            transport=overrides.pop("transport", None) or HttpxTransport(systems),
            sandbox=sandbox,
            response_cache=overrides.pop("response_cache", None) or store,
            job_store=overrides.pop("job_store", None) or store,
            options=options,
            evaluator=evaluator,
            systems=systems,
            throttle=overrides.pop("throttle", None) or Throttle(
                settings.max_parallel_executors,
                settings.throttle_poll_interval
            ),
            engine=engine,
            repeat_until_timeout_ms=overrides.pop("repeat_until_timeout_ms", settings.repeat_until_timeout_ms),
            env_vars=overrides.pop("env_vars", settings.env_vars),
            **overrides
        )

    @property
    def sync(self) -> bool:
        """Force repeats of async endpoints to run one after another."""
        return self.options.sync

    def record_counts(self, record: ExecutionRecord) -> None:
        """Add a top level execution to the job counters."""
        if record.dependency_level > 0:
            return
        self.endpoints_executed += 1
        self.endpoints_successful += 1 if record.status else 0
        self.assertions_processed += len(record.expect)
        self.assertions_successful += sum(1 for assertion in record.expect if assertion.result)

    def summary(self, scenarios: List[ScenarioResult]) -> JobSummary:
        """
        Summary of the job so far.

        The job passed iff every count matches and no scenario failed.
        Ignored scenarios do not fail the job.
        """
        return JobSummary(
            job_id=self.job_id,
            status=(
                self.endpoints_executed == self.endpoints_successful
                and self.assertions_processed == self.assertions_successful
                and all(result.status != ExecutionStatus.FAIL for result in scenarios)
            ),
            scenarios=len(scenarios),
            endpoints_executed=self.endpoints_executed,
            endpoints_successful=self.endpoints_successful,
            assertions_processed=self.assertions_processed,
            assertions_successful=self.assertions_successful,
            started_at=self.started_at,
            finished_at=now_ms(),
            options=self.options.model_dump(exclude_none=True),
        )
