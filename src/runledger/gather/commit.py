import logging
import re
from datetime import datetime
from typing import Iterable, List, NamedTuple, Optional, Sequence

from runledger.cache import COMMITS, CacheKey
from runledger.gather.context import GatherContext, join_all
from runledger.gather.errors import GatherError
from runledger.gather.workflow_run import workflow_run
from runledger.github.api import API
from runledger.github.model import CheckRun
from runledger.metric import gather_error_count
from runledger.records import CommitRecord, WorkflowRunRecord

logger = logging.getLogger("runledger")

WORKFLOW_RUN_ID_RE = re.compile(r"/actions/runs/(\d+)")

# worst first
CONCLUSION_PRECEDENCE = (
    "failure",
    "timed_out",
    "cancelled",
    "action_required",
    "startup_failure",
    "stale",
    "in_progress",
    "neutral",
    "skipped",
    "success",
)


def conclusion_rank(conclusion: str) -> int:
    try:
        return CONCLUSION_PRECEDENCE.index(conclusion)
    except ValueError:
        return len(CONCLUSION_PRECEDENCE)


def combine_conclusions(conclusions: Iterable[Optional[str]]) -> Optional[str]:
    """
    The most severe conclusion, ``None`` when there is nothing to combine.
    """
    present = [c for c in conclusions if c is not None]
    if len(present) == 0:
        return None
    return min(present, key=conclusion_rank)


def extract_workflow_run_ids(sha: str, check_runs: Iterable[CheckRun]) -> List[int]:
    run_ids = set()
    for check_run in check_runs:
        if not check_run.is_completed:
            logger.warning(
                "Check run %s (%d) on commit %s is not completed (%s), skipping",
                check_run.name,
                check_run.id,
                sha,
                check_run.status,
            )
            continue

        m = WORKFLOW_RUN_ID_RE.search(check_run.html_url or "")
        if m is None:
            logger.info(
                "Check run %s (%d) on commit %s does not belong to a workflow run: %s",
                check_run.name,
                check_run.id,
                sha,
                check_run.html_url,
            )
            continue
        run_ids.add(int(m.group(1)))

    return sorted(run_ids)


class Aggregate(NamedTuple):
    workflow_run_ids: List[int]
    conclusion: Optional[str]
    cost: int
    start_actions_time: Optional[datetime]
    end_actions_time: Optional[datetime]


def aggregate(runs: Sequence[WorkflowRunRecord]) -> Aggregate:
    starts = [r.run_started_at for r in runs if r.run_started_at is not None]
    ends = [r.completed_at for r in runs if r.completed_at is not None]
    return Aggregate(
        workflow_run_ids=sorted({r.id for r in runs}),
        conclusion=combine_conclusions(r.conclusion for r in runs),
        cost=sum(r.cost for r in runs),
        start_actions_time=min(starts) if starts else None,
        end_actions_time=max(ends) if ends else None,
    )


async def check_runs_for_commit(
    api: API, owner: str, repo: str, sha: str
) -> List[CheckRun]:
    return [cr async for cr in api.get_check_runs_for_ref(owner, repo, sha)]


async def _gather_commit(
    ctx: GatherContext, owner: str, repo: str, sha: str
) -> CommitRecord:
    commit_meta, check_runs = await join_all(
        ctx.api.get_commit(owner, repo, sha),
        check_runs_for_commit(ctx.api, owner, repo, sha),
    )

    run_ids = extract_workflow_run_ids(sha, check_runs)
    logger.debug("Commit %s references %d workflow runs", sha, len(run_ids))

    runs = await join_all(
        *(workflow_run(ctx, owner, repo, run_id) for run_id in run_ids)
    )
    agg = aggregate(runs)

    return CommitRecord.model_validate(
        {
            **commit_meta.model_dump(),
            "owner": owner,
            "repo": repo,
            "check_runs": check_runs,
            "workflow_run_ids": agg.workflow_run_ids,
            "conclusion": agg.conclusion,
            "cost": agg.cost,
            "start_actions_time": agg.start_actions_time,
            "end_actions_time": agg.end_actions_time,
        }
    )


async def commit(ctx: GatherContext, owner: str, repo: str, sha: str) -> CommitRecord:
    """
    Gather a commit with its check runs and every workflow run they point to.
    """
    try:
        return await ctx.cache.fetch_or_compute(
            CacheKey(owner, repo, COMMITS, sha),
            CommitRecord,
            lambda: _gather_commit(ctx, owner, repo, sha),
            force_update=ctx.force_update,
        )
    except Exception as e:
        gather_error_count.labels(kind=COMMITS).inc()
        raise GatherError("commit", sha, str(e)) from e
