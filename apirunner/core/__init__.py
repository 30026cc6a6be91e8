"""Core engine: models, execution context and the executor."""

from .models import (
    AssertionResult,
    Dependency,
    Endpoint,
    EndpointResult,
    ExecutionRecord,
    JobResult,
    JobSummary,
    ResponseData,
    RunOptions,
    Scenario,
    ScenarioResult,
)
from .scenario_cache import ScenarioCache
from .throttle import Throttle

__all__ = [
    "AssertionResult",
    "Dependency",
    "Endpoint",
    "EndpointResult",
    "ExecutionRecord",
    "JobResult",
    "JobSummary",
    "ResponseData",
    "RunOptions",
    "Scenario",
    "ScenarioResult",
    "ScenarioCache",
    "Throttle",
]
