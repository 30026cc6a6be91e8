"""
Abstract storage interfaces.

The executor persists through two narrow interfaces: a response cache keyed
by endpoint identity and a job store recording execution history.
"""

from abc import ABC, abstractmethod
from typing import Optional

from apirunner.core.models import ExecutionRecord, JobSummary


class ResponseCache(ABC):
    """Cache of endpoint executions keyed by collection, scenario and name."""

    @abstractmethod
    async def get(self, collection: Optional[str], scenario: Optional[str], name: str) -> Optional[ExecutionRecord]:
        """
        Look up a cached execution.

        Returns:
            The cached execution, or None on a miss

        Raises:
            StorageError: If the cache cannot be read
        """
        pass

    @abstractmethod
    async def put(self, record: ExecutionRecord) -> None:
        """
        Store an execution, replacing any previous entry for the same endpoint.

        Raises:
            StorageError: If the cache cannot be written
        """
        pass


class JobStore(ABC):
    """Execution history."""

    @abstractmethod
    async def record_job(self, summary: JobSummary) -> None:
        """Persist the summary of a finished job."""
        pass

    @abstractmethod
    async def record_endpoint_execution(self, record: ExecutionRecord) -> None:
        """Persist one endpoint execution."""
        pass

    async def close(self) -> None:
        """Release resources held by the store."""
        pass
