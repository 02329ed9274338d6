import pytest

from flowweave import persistence
from flowweave.config import FlowweaveConfig
from flowweave.models import ExecutionStatus, NodeStatus
from flowweave.persistence import (
    InMemoryExecutionRepository,
    SQLiteExecutionRepository,
    get_repository,
)
from flowweave.recorder import ExecutionRecorder


def _finished_record(workflow_id="wf", status=ExecutionStatus.SUCCESS):
    recorder = ExecutionRecorder(workflow_id=workflow_id, user_id="u1", input_data={"x": 1})
    recorder.record_execution_start()
    started = recorder.snapshot()
    recorder.record_node_start("a")
    recorder.record_node_end("a", NodeStatus.SUCCEEDED, output={"output": {"x": 1}}, attempt=1)
    final = recorder.finalize(
        status, output={"a": {"output": {"x": 1}}}, node_states={"a": "succeeded"}
    )
    return started, final


@pytest.fixture(params=["memory", "sqlite"])
def repo(request, tmp_path):
    if request.param == "memory":
        return InMemoryExecutionRepository()
    return SQLiteExecutionRepository(tmp_path / "executions.db")


@pytest.mark.asyncio
async def test_repository_crud(repo):
    started, final = _finished_record()

    await repo.create_execution(started)
    running = await repo.get_execution(started.execution_id)
    assert running is not None
    assert running.status == ExecutionStatus.RUNNING

    await repo.complete_execution(final)
    stored = await repo.get_execution(final.execution_id)
    assert stored is not None
    assert stored.status == ExecutionStatus.SUCCESS
    assert stored.input_data == {"x": 1}
    assert stored.output_data == {"a": {"output": {"x": 1}}}
    assert stored.node_states == {"a": "succeeded"}
    assert [e.event for e in stored.logs] == [e.event for e in final.logs]
    assert stored.logs[2].output == {"output": {"x": 1}}
    assert stored.started_at == final.started_at
    assert stored.duration == final.duration


@pytest.mark.asyncio
async def test_get_unknown_execution(repo):
    assert await repo.get_execution("nope") is None


@pytest.mark.asyncio
async def test_list_filters_and_omits_logs(repo):
    _, first = _finished_record("wf-1")
    _, second = _finished_record("wf-2", ExecutionStatus.FAILED)
    _, third = _finished_record("wf-1", ExecutionStatus.FAILED)
    for record in (first, second, third):
        await repo.complete_execution(record)

    all_records = await repo.list_executions()
    assert {r.execution_id for r in all_records} == {
        first.execution_id,
        second.execution_id,
        third.execution_id,
    }
    started = [r.started_at for r in all_records]
    assert started == sorted(started, reverse=True)
    assert all(r.logs == [] for r in all_records)

    wf1 = await repo.list_executions(workflow_id="wf-1")
    assert {r.execution_id for r in wf1} == {first.execution_id, third.execution_id}

    failed = await repo.list_executions(workflow_id="wf-1", status=ExecutionStatus.FAILED)
    assert [r.execution_id for r in failed] == [third.execution_id]


@pytest.mark.asyncio
async def test_stats(repo):
    started, _ = _finished_record("wf-1")
    await repo.create_execution(started)
    for workflow_id, status in [
        ("wf-1", ExecutionStatus.SUCCESS),
        ("wf-1", ExecutionStatus.FAILED),
        ("wf-2", ExecutionStatus.CANCELLED),
    ]:
        _, record = _finished_record(workflow_id, status)
        await repo.complete_execution(record)

    stats = await repo.get_stats()
    assert stats.total == 4
    assert (stats.success, stats.failed, stats.running, stats.cancelled) == (1, 1, 1, 1)
    assert stats.pending == 0

    wf1 = await repo.get_stats("wf-1")
    assert wf1.total == 3
    assert wf1.running == 1


@pytest.mark.asyncio
async def test_inmemory_rejects_duplicate_create():
    repo = InMemoryExecutionRepository()
    started, _ = _finished_record()
    await repo.create_execution(started)

    with pytest.raises(ValueError):
        await repo.create_execution(started)


@pytest.mark.asyncio
async def test_sqlite_survives_reopen(tmp_path):
    _, final = _finished_record()
    await SQLiteExecutionRepository(tmp_path / "db.sqlite").complete_execution(final)

    reopened = SQLiteExecutionRepository(tmp_path / "db.sqlite")
    stored = await reopened.get_execution(final.execution_id)
    assert stored is not None
    assert stored.status == ExecutionStatus.SUCCESS


def test_get_repository_selects_backend(tmp_path, monkeypatch):
    monkeypatch.setattr(persistence, "_repository_instance", None)

    sqlite_repo = get_repository(f"sqlite://{tmp_path / 'x.db'}")
    assert isinstance(sqlite_repo, SQLiteExecutionRepository)

    monkeypatch.setattr(persistence, "_repository_instance", None)
    assert isinstance(get_repository(), InMemoryExecutionRepository)
    assert get_repository() is get_repository()

    with pytest.raises(ValueError):
        get_repository("mysql://localhost/db")


def test_get_repository_reads_env(tmp_path, monkeypatch):
    monkeypatch.setattr(persistence, "_repository_instance", None)
    monkeypatch.setenv("FLOWWEAVE_DATABASE_URL", f"sqlite://{tmp_path / 'env.db'}")

    repo = get_repository()
    assert isinstance(repo, SQLiteExecutionRepository)
    assert repo.db_path == str(tmp_path / "env.db")


def test_get_repository_uses_config_url(tmp_path, monkeypatch):
    monkeypatch.setattr(persistence, "_repository_instance", None)
    config = FlowweaveConfig(database_url=f"sqlite://{tmp_path / 'cfg.db'}")

    repo = get_repository(config=config)

    assert isinstance(repo, SQLiteExecutionRepository)
    assert repo.db_path == str(tmp_path / "cfg.db")
    assert get_repository() is repo
