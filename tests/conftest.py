"""Shared test fixtures and fakes for APIRunner."""

import asyncio
import time
from typing import Any, Callable, Dict, List, Optional, Tuple, Union

import pytest

from apirunner.assertions import AssertionEvaluator, ExpressionSandbox
from apirunner.compiler import Compiler, InMemoryScenarioSource
from apirunner.core.context import ExecutionContext
from apirunner.core.executor import Executor
from apirunner.core.models import JobResult, RunOptions
from apirunner.core.throttle import Throttle
from apirunner.exceptions import NetworkError
from apirunner.storage import MemoryStore
from apirunner.transport import HttpTransport, SystemRegistry, TransportResponse

Reply = Union[Tuple[int, Any], Callable[[Dict[str, Any]], Tuple[int, Any]], Exception]


class FakeTransport(HttpTransport):
    """
    Transport answering from a route table.

    Routes are keyed by ``"METHOD /url"`` or ``"/url"``. A reply is a
    ``(status, body)`` tuple, a callable receiving the request and returning
    one, or an exception raised as ``NetworkError``.
    """

    def __init__(self, routes: Optional[Dict[str, Reply]] = None, default: Reply = (200, {}), latency: float = 0.0):
        self.routes = routes or {}
        self.default = default
        self.latency = latency
        self.calls: List[Dict[str, Any]] = []
        self.active = 0
        self.peak = 0

    async def send(self, system, url, method, payload=None, auth=None, language=None, headers=None):
        request = {
            "system": system,
            "url": url,
            "method": method,
            "payload": payload,
            "headers": headers or {},
            "started": time.monotonic(),
        }
        self.active += 1
        self.peak = max(self.peak, self.active)
        try:
            await asyncio.sleep(self.latency)
        finally:
            self.active -= 1
        request["finished"] = time.monotonic()
        self.calls.append(request)

        reply = self.routes.get(f"{method} {url}", self.routes.get(url, self.default))
        if isinstance(reply, Exception):
            raise NetworkError(str(reply))
        status, body = reply(request) if callable(reply) else reply
        return TransportResponse(
            status=status,
            body=body,
            headers={"content-type": "application/json"},
            timing={"total": 5},
            full_url=f"http://service.test{url}",
        )

    def calls_to(self, url: str) -> List[Dict[str, Any]]:
        return [call for call in self.calls if call["url"] == url]


def scenario_doc(name: str, endpoints: List[Dict[str, Any]], collection: str = "main", **extra: Any) -> Dict[str, Any]:
    """Raw scenario document as a source would return it."""
    return {
        "name": name,
        "collection": collection,
        "file": f"{collection}/{name}.json",
        "scenarioFile": name,
        "endpoints": endpoints,
        **extra,
    }


def build_context(
    documents: List[Dict[str, Any]],
    transport: HttpTransport,
    options: Optional[RunOptions] = None,
    limit: int = 10,
    schema_loader: Any = None,
    **kwargs: Any
) -> ExecutionContext:
    sandbox = ExpressionSandbox(timeout=5)
    store = MemoryStore()
    return ExecutionContext(
        compiler=Compiler(InMemoryScenarioSource(documents)),
        transport=transport,
        sandbox=sandbox,
        response_cache=store,
        job_store=store,
        options=options,
        evaluator=AssertionEvaluator(sandbox, schema_loader),
        systems=SystemRegistry(),
        throttle=Throttle(limit, 0.01),
        env_vars={},
        **kwargs
    )


async def run_documents(
    documents: List[Dict[str, Any]],
    transport: HttpTransport,
    options: Optional[RunOptions] = None,
    **kwargs: Any
) -> Tuple[JobResult, ExecutionContext]:
    """Compile ``documents`` and run them as one job."""
    context = build_context(documents, transport, options, **kwargs)
    scenarios = await context.compiler.compile()
    result = await Executor(context).run_job(scenarios)
    return result, context


@pytest.fixture
def transport() -> FakeTransport:
    return FakeTransport()


@pytest.fixture
def sandbox() -> ExpressionSandbox:
    return ExpressionSandbox(timeout=5)
