import logging
import os
from pathlib import Path
import tempfile
from typing import Dict, List

from runledger.cache import WORKFLOW_RUNS, CacheKey
from runledger.cost import cost_of
from runledger.gather.context import GatherContext, join_all
from runledger.gather.errors import GatherError, RunNotCompletedError
from runledger.github.api import API
from runledger.github.model import WorkflowJob
from runledger.metric import gather_error_count
from runledger.monitor import Analysis, analyze, extract_monitor_file
from runledger.records import JobRecord, WorkflowRunRecord, sort_key

logger = logging.getLogger("runledger")


async def jobs_for_run(
    api: API, owner: str, repo: str, run_id: int
) -> List[WorkflowJob]:
    jobs = [job async for job in api.get_workflow_jobs(owner, repo, run_id)]
    jobs.sort(key=lambda job: sort_key(job.started_at))
    return jobs


async def monitoring_for_run(
    ctx: GatherContext, owner: str, repo: str, run_id: int, work_dir: Path
) -> List[Analysis]:
    artifacts = [
        artifact
        async for artifact in ctx.api.get_workflow_run_artifacts(owner, repo, run_id)
        if artifact.name.endswith(ctx.monitor_suffix)
    ]
    if len(artifacts) == 0:
        logger.debug("No monitoring artifact for workflow run %d", run_id)
        return []

    ctx.cache.make_dirs(work_dir)

    analyses = []
    for artifact in artifacts:
        if artifact.expired:
            logger.warning(
                "Monitoring artifact %s of workflow run %d has expired, skipping",
                artifact.name,
                run_id,
            )
            continue

        fd, archive_name = tempfile.mkstemp(dir=work_dir, suffix=f"-{artifact.id}.zip")
        os.close(fd)
        archive = Path(archive_name)
        monitor_file = None
        try:
            await ctx.api.download_artifact(owner, repo, artifact.id, archive)
            monitor_file = extract_monitor_file(archive, work_dir, ctx.monitor_suffix)
            analyses.append(analyze(monitor_file))
        finally:
            archive.unlink(missing_ok=True)
            if monitor_file is not None:
                monitor_file.unlink(missing_ok=True)

    return analyses


def build_jobs(
    run_id: int, jobs: List[WorkflowJob], usage, analyses: List[Analysis]
) -> List[JobRecord]:
    analysis_by_job: Dict[str, Analysis] = {
        a.job_name: a for a in analyses if a.job_name is not None
    }

    records = []
    for job in jobs:
        runner, cost = cost_of(job.id, usage)
        records.append(
            JobRecord.model_validate(
                {
                    **job.model_dump(),
                    "runner": runner,
                    "cost": cost,
                    "analysis": analysis_by_job.pop(job.name, None),
                }
            )
        )

    for job_name in analysis_by_job:
        logger.warning(
            "Monitoring data for job '%s' matches no job of workflow run %d",
            job_name,
            run_id,
        )
    return records


async def _gather_workflow_run(
    ctx: GatherContext, key: CacheKey, owner: str, repo: str, run_id: int
) -> WorkflowRunRecord:
    run = await ctx.api.get_workflow_run(owner, repo, run_id)
    if not run.is_completed:
        raise RunNotCompletedError(run_id, run.status)

    work_dir = ctx.cache.path_for(key).parent
    jobs, usage, analyses = await join_all(
        jobs_for_run(ctx.api, owner, repo, run_id),
        ctx.api.get_workflow_run_usage(owner, repo, run_id),
        monitoring_for_run(ctx, owner, repo, run_id, work_dir),
    )

    job_records = build_jobs(run_id, jobs, usage, analyses)
    completed = [job.completed_at for job in job_records if job.completed_at is not None]

    return WorkflowRunRecord.model_validate(
        {
            **run.model_dump(),
            "jobs": job_records,
            "cost": sum(job.cost for job in job_records),
            "completed_at": max(completed) if completed else None,
            "usage": usage,
        }
    )


async def workflow_run(
    ctx: GatherContext, owner: str, repo: str, run_id: int
) -> WorkflowRunRecord:
    """
    Gather a completed workflow run with its jobs, billing and monitoring data.
    """
    key = CacheKey(owner, repo, WORKFLOW_RUNS, run_id)
    try:
        return await ctx.cache.fetch_or_compute(
            key,
            WorkflowRunRecord,
            lambda: _gather_workflow_run(ctx, key, owner, repo, run_id),
            force_update=ctx.force_update,
        )
    except Exception as e:
        gather_error_count.labels(kind=WORKFLOW_RUNS).inc()
        raise GatherError("workflow run", run_id, str(e)) from e
