from datetime import datetime, timezone

import pytest

from runledger.cache import WORKFLOW_RUNS, CacheKey
from runledger.cost import UnknownRunnerError
from runledger.gather import GatherError, RunNotCompletedError, workflow_run
from runledger.github.model import Artifact
from runledger.records import WorkflowRunRecord

from gather_fakes import (
    OWNER,
    REPO,
    _FakeAPI,
    make_context,
    make_job,
    make_run,
    make_usage,
    monitor_archive,
)


def _api_with_run(run_id=10, usage=None, artifacts=None, status="completed"):
    api = _FakeAPI()
    api.add_run(
        make_run(run_id, status=status),
        [
            [
                make_job(
                    1,
                    run_id,
                    "test",
                    started_at="2024-01-01T10:02:00Z",
                    completed_at="2024-01-01T10:30:00Z",
                ),
                make_job(
                    2,
                    run_id,
                    "build",
                    started_at="2024-01-01T10:00:00Z",
                    completed_at="2024-01-01T10:10:00Z",
                ),
            ],
            [
                make_job(3, run_id, "skipped", started_at=None, completed_at=None),
            ],
        ],
        usage=usage
        or make_usage({"UBUNTU": [(1, 150_000)], "UBUNTU_4_CORE": [(2, 60_000)]}),
        artifacts=artifacts,
    )
    return api


@pytest.mark.asyncio
async def test_workflow_run_record(tmp_path):
    api = _api_with_run()
    ctx = make_context(api, tmp_path)

    run = await workflow_run(ctx, OWNER, REPO, 10)

    # all pages, ordered by start time, jobs that never started last
    assert [j.id for j in run.jobs] == [2, 1, 3]
    assert [(j.runner, j.cost) for j in run.jobs] == [
        ("UBUNTU_4_CORE", 16),
        ("UBUNTU", 16),
        ("Free", 0),
    ]
    assert run.cost == 32
    assert run.completed_at == datetime(2024, 1, 1, 10, 30, tzinfo=timezone.utc)
    assert run.usage.run_duration_ms == 1000
    assert run.analyses == []


@pytest.mark.asyncio
async def test_workflow_run_is_cached(tmp_path):
    api = _api_with_run()
    ctx = make_context(api, tmp_path)

    first = await workflow_run(ctx, OWNER, REPO, 10)
    calls = api.call_count
    second = await workflow_run(ctx, OWNER, REPO, 10)

    assert api.call_count == calls
    assert second == first
    path = ctx.cache.path_for(CacheKey(OWNER, REPO, WORKFLOW_RUNS, 10))
    assert path == tmp_path / OWNER / REPO / "workflow_runs" / "10.json"
    assert WorkflowRunRecord.model_validate_json(path.read_text()) == first


@pytest.mark.asyncio
async def test_workflow_run_force_update(tmp_path):
    api = _api_with_run()
    await workflow_run(make_context(api, tmp_path), OWNER, REPO, 10)

    api.usage[10] = make_usage({"UBUNTU": [(1, 600_000)]})
    forced = await workflow_run(
        make_context(api, tmp_path, force_update=True), OWNER, REPO, 10
    )

    assert api.count("run") == 2
    assert forced.cost == 80


@pytest.mark.asyncio
async def test_workflow_run_not_completed_is_not_cached(tmp_path):
    api = _api_with_run(status="in_progress")
    ctx = make_context(api, tmp_path)

    with pytest.raises(GatherError) as exc_info:
        await workflow_run(ctx, OWNER, REPO, 10)

    assert isinstance(exc_info.value.__cause__, RunNotCompletedError)
    assert exc_info.value.kind == "workflow run"
    assert exc_info.value.entity_id == 10
    assert not ctx.cache.exists(CacheKey(OWNER, REPO, WORKFLOW_RUNS, 10))
    assert api.count("jobs") == 0


@pytest.mark.asyncio
async def test_workflow_run_unknown_runner(tmp_path):
    api = _api_with_run(usage=make_usage({"MAINFRAME": [(1, 60_000)]}))
    ctx = make_context(api, tmp_path)

    with pytest.raises(GatherError) as exc_info:
        await workflow_run(ctx, OWNER, REPO, 10)

    assert isinstance(exc_info.value.__cause__, UnknownRunnerError)
    assert not ctx.cache.exists(CacheKey(OWNER, REPO, WORKFLOW_RUNS, 10))


@pytest.mark.asyncio
async def test_workflow_run_attaches_monitoring(tmp_path):
    artifacts = [
        (Artifact(id=100, name="build-monitor.json"), monitor_archive("build")),
        (Artifact(id=101, name="coverage"), b""),
        (Artifact(id=102, name="old-monitor.json", expired=True), b""),
    ]
    api = _api_with_run(artifacts=artifacts)
    ctx = make_context(api, tmp_path)

    run = await workflow_run(ctx, OWNER, REPO, 10)

    build = next(j for j in run.jobs if j.name == "build")
    assert build.analysis is not None
    assert build.analysis.job_name == "build"
    assert build.analysis.system_info.memory.total == 16000
    assert [a.job_name for a in run.analyses] == ["build"]
    assert api.count("download") == 1

    # only the cached record remains, temporary archives are gone
    run_dir = tmp_path / OWNER / REPO / "workflow_runs"
    assert sorted(p.name for p in run_dir.iterdir()) == ["10.json"]
