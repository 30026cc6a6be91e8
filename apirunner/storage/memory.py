"""In-process storage used for library embedding and tests."""

import asyncio
from typing import Dict, List, Optional, Tuple

from apirunner.core.models import ExecutionRecord, JobSummary
from apirunner.storage.base import JobStore, ResponseCache

CacheKey = Tuple[Optional[str], Optional[str], str]


class MemoryStore(ResponseCache, JobStore):
    """Response cache and job store kept in memory for the lifetime of the process."""

    def __init__(self):
        self._cache: Dict[CacheKey, ExecutionRecord] = {}
        self.jobs: List[JobSummary] = []
        self.executions: List[ExecutionRecord] = []
        self._lock = asyncio.Lock()

    async def get(self, collection: Optional[str], scenario: Optional[str], name: str) -> Optional[ExecutionRecord]:
        async with self._lock:
            record = self._cache.get((collection, scenario, name))
        return record.model_copy(deep=True) if record else None

    async def put(self, record: ExecutionRecord) -> None:
        async with self._lock:
            self._cache[(record.collection, record.scenario, record.name)] = record.model_copy(deep=True)

    async def record_job(self, summary: JobSummary) -> None:
        async with self._lock:
            self.jobs.append(summary.model_copy(deep=True))

    async def record_endpoint_execution(self, record: ExecutionRecord) -> None:
        async with self._lock:
            self.executions.append(record.model_copy(deep=True))

    def __len__(self) -> int:
        return len(self._cache)
