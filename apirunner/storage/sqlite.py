"""SQLite backed response cache and job store."""

import asyncio
import json
from pathlib import Path
from typing import Any, Dict, List, Optional

import aiofiles
import aiosqlite

from apirunner.core.models import ExecutionRecord, JobSummary
from apirunner.exceptions import StorageError
from apirunner.logger import get_logger
from apirunner.storage.base import JobStore, ResponseCache
from apirunner.storage.connection import SQLiteConnection
from apirunner.utils.async_utils import now_ms

logger = get_logger(__name__)

SCHEMA_FILE = Path(__file__).parent / "schema.sql"


class SQLiteStore(ResponseCache, JobStore):
    """
    Persists job summaries, endpoint executions and cached responses.

    The schema is created on first use. Every database error is raised as
    ``StorageError``.
    """

    def __init__(self, db_path: str):
        """
        Args:
            db_path: Path to SQLite database file
        """
        self.connection = SQLiteConnection(db_path)
        self._initialized = False
        self._lock = asyncio.Lock()

    async def initialize(self) -> None:
        """Create the schema if needed."""
        if self._initialized:
            return
        async with aiofiles.open(SCHEMA_FILE, "r", encoding="utf-8") as f:
            schema_sql = await f.read()
        try:
            await self.connection.executescript(schema_sql)
        except aiosqlite.Error as e:
            raise StorageError(f"Could not create database schema: {e}") from e
        self._initialized = True
        logger.debug(f"Initialized job database (db_path={self.connection.db_path})")

    async def close(self) -> None:
        await self.connection.close()
        self._initialized = False

    async def _write(self, query: str, parameters: tuple) -> None:
        async with self._lock:
            await self.initialize()
            try:
                async with self.connection.transaction() as conn:
                    await conn.execute(query, parameters)
            except aiosqlite.Error as e:
                raise StorageError(f"Database write failed: {e}") from e

    async def _read(self, query: str, parameters: tuple = ()) -> List[Dict[str, Any]]:
        async with self._lock:
            await self.initialize()
            try:
                cursor = await self.connection.execute(query, parameters)
                rows = await cursor.fetchall()
            except aiosqlite.Error as e:
                raise StorageError(f"Database read failed: {e}") from e
        return [dict(row) for row in rows]

    # Response cache

    async def get(self, collection: Optional[str], scenario: Optional[str], name: str) -> Optional[ExecutionRecord]:
        rows = await self._read(
            "SELECT record FROM response_cache WHERE collection = ? AND scenario = ? AND name = ?",
            (collection or "", scenario or "", name)
        )
        if not rows:
            return None
        return ExecutionRecord.model_validate_json(rows[0]["record"])

    async def put(self, record: ExecutionRecord) -> None:
        await self._write(
            """
            INSERT OR REPLACE INTO response_cache (collection, scenario, name, record, updated_at)
            VALUES (?, ?, ?, ?, ?)
            """,
            (record.collection or "", record.scenario or "", record.name, record.model_dump_json(), now_ms())
        )

    # Job store

    async def record_job(self, summary: JobSummary) -> None:
        await self._write(
            """
            INSERT OR REPLACE INTO jobs (
                job_id, status, scenarios, endpoints_executed, endpoints_successful,
                assertions_processed, assertions_successful, started_at, finished_at, options
            ) VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?)
            """,
            (
                summary.job_id,
                int(summary.status),
                summary.scenarios,
                summary.endpoints_executed,
                summary.endpoints_successful,
                summary.assertions_processed,
                summary.assertions_successful,
                summary.started_at,
                summary.finished_at,
                json.dumps(summary.options, default=str),
            )
        )
        logger.debug(f"Recorded job (job_id={summary.job_id})")

    async def record_endpoint_execution(self, record: ExecutionRecord) -> None:
        await self._write(
            """
            INSERT INTO endpoint_executions (
                job_id, collection, scenario, name, status, http_status,
                range_index, dependency_level, started_at, record
            ) VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?)
            """,
            (
                record.job_id,
                record.collection,
                record.scenario,
                record.name,
                int(record.status),
                record.http_status,
                record.range_index,
                record.dependency_level,
                record.started_at,
                record.model_dump_json(),
            )
        )

    # History queries

    async def list_jobs(self, limit: int = 20) -> List[JobSummary]:
        """Most recent jobs first."""
        rows = await self._read("SELECT * FROM jobs ORDER BY job_id DESC LIMIT ?", (limit,))
        return [self._row_to_summary(row) for row in rows]

    async def get_job(self, job_id: int) -> Optional[JobSummary]:
        rows = await self._read("SELECT * FROM jobs WHERE job_id = ?", (job_id,))
        return self._row_to_summary(rows[0]) if rows else None

    async def list_endpoint_executions(
        self,
        job_id: Optional[int] = None,
        collection: Optional[str] = None,
        scenario: Optional[str] = None,
        name: Optional[str] = None
    ) -> List[ExecutionRecord]:
        """Executions matching every given filter, oldest first."""
        clauses = []
        parameters = []
        for column, value in (("job_id", job_id), ("collection", collection), ("scenario", scenario), ("name", name)):
            if value is not None:
                clauses.append(f"{column} = ?")
                parameters.append(value)
        where = f"WHERE {' AND '.join(clauses)}" if clauses else ""
        rows = await self._read(f"SELECT record FROM endpoint_executions {where} ORDER BY id", tuple(parameters))
        return [ExecutionRecord.model_validate_json(row["record"]) for row in rows]

    @staticmethod
    def _row_to_summary(row: Dict[str, Any]) -> JobSummary:
        return JobSummary(
            job_id=row["job_id"],
            status=bool(row["status"]),
            scenarios=row["scenarios"],
            endpoints_executed=row["endpoints_executed"],
            endpoints_successful=row["endpoints_successful"],
            assertions_processed=row["assertions_processed"],
            assertions_successful=row["assertions_successful"],
            started_at=row["started_at"],
            finished_at=row["finished_at"],
            options=json.loads(row["options"]) if row["options"] else {},
        )
