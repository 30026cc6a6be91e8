"""Tests for the response cache and job history stores."""

import pytest

from apirunner.constants import EndpointState
from apirunner.core.models import AssertionResult, ExecutionRecord, JobSummary, ResponseData
from apirunner.storage import MemoryStore, SQLiteStore


def make_record(name="get user", job_id=1, status=True, dependency_level=0) -> ExecutionRecord:
    return ExecutionRecord(
        job_id=job_id,
        collection="users",
        scenario="crud",
        name=name,
        url="/users/1",
        method="GET",
        range_index=1,
        dependency_level=dependency_level,
        result=ResponseData(response={"id": 1}, status=200, timing={"total": 12}),
        status=status,
        expect=[AssertionResult(test="Response status", expected=200, obtained=200, result=True)],
        variables={"id": 1},
        state=EndpointState.DONE,
        started_at=1700000000000,
    )


def make_summary(job_id: int, status: bool = True) -> JobSummary:
    return JobSummary(
        job_id=job_id,
        status=status,
        scenarios=2,
        endpoints_executed=3,
        endpoints_successful=3 if status else 2,
        assertions_processed=4,
        assertions_successful=4 if status else 3,
        started_at=job_id,
        finished_at=job_id + 100,
        options={"variables": "env=qa"},
    )


@pytest.fixture
async def sqlite_store(tmp_path):
    store = SQLiteStore(str(tmp_path / "data" / "apirunner.db"))
    yield store
    await store.close()


@pytest.mark.asyncio
async def test_memory_cache_returns_copies():
    store = MemoryStore()
    record = make_record()

    await store.put(record)
    cached = await store.get("users", "crud", "get user")
    cached.variables["id"] = 2

    assert (await store.get("users", "crud", "get user")).variables == {"id": 1}
    assert await store.get("users", "crud", "other") is None
    assert len(store) == 1


@pytest.mark.asyncio
async def test_memory_cache_replaces_entries():
    store = MemoryStore()
    await store.put(make_record(status=True))
    await store.put(make_record(status=False))

    assert (await store.get("users", "crud", "get user")).status is False
    assert len(store) == 1


@pytest.mark.asyncio
async def test_memory_job_store():
    store = MemoryStore()
    await store.record_endpoint_execution(make_record())
    await store.record_job(make_summary(5))

    assert [summary.job_id for summary in store.jobs] == [5]
    assert [record.name for record in store.executions] == ["get user"]


@pytest.mark.asyncio
async def test_sqlite_cache_round_trip(sqlite_store):
    record = make_record()

    assert await sqlite_store.get("users", "crud", "get user") is None
    await sqlite_store.put(record)
    cached = await sqlite_store.get("users", "crud", "get user")

    assert cached.model_dump() == record.model_dump()
    assert cached.http_status == 200


@pytest.mark.asyncio
async def test_sqlite_cache_replaces_entries(sqlite_store):
    await sqlite_store.put(make_record(status=True))
    await sqlite_store.put(make_record(status=False))

    assert (await sqlite_store.get("users", "crud", "get user")).status is False


@pytest.mark.asyncio
async def test_sqlite_job_history(sqlite_store):
    await sqlite_store.record_job(make_summary(100))
    await sqlite_store.record_job(make_summary(200, status=False))

    jobs = await sqlite_store.list_jobs()

    assert [job.job_id for job in jobs] == [200, 100]
    assert jobs[0].status is False
    assert jobs[1].model_dump() == make_summary(100).model_dump()
    assert (await sqlite_store.get_job(100)).model_dump() == make_summary(100).model_dump()
    assert await sqlite_store.get_job(300) is None
    assert len(await sqlite_store.list_jobs(limit=1)) == 1


@pytest.mark.asyncio
async def test_sqlite_endpoint_executions(sqlite_store):
    await sqlite_store.record_endpoint_execution(make_record("create user", job_id=1, dependency_level=1))
    await sqlite_store.record_endpoint_execution(make_record("get user", job_id=1))
    await sqlite_store.record_endpoint_execution(make_record("get user", job_id=2, status=False))

    first_job = await sqlite_store.list_endpoint_executions(job_id=1)
    history = await sqlite_store.list_endpoint_executions(collection="users", scenario="crud", name="get user")

    assert [record.name for record in first_job] == ["create user", "get user"]
    assert first_job[0].dependency_level == 1
    assert [(record.job_id, record.status) for record in history] == [(1, True), (2, False)]


@pytest.mark.asyncio
async def test_sqlite_store_reopens_after_close(tmp_path):
    path = str(tmp_path / "apirunner.db")
    store = SQLiteStore(path)
    await store.record_job(make_summary(1))
    await store.close()

    reopened = SQLiteStore(path)
    try:
        assert [job.job_id for job in await reopened.list_jobs()] == [1]
    finally:
        await reopened.close()
