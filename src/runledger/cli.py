import asyncio
import logging
from pathlib import Path
from typing import Optional

import typer
from prometheus_client import push_to_gateway
from tabulate import tabulate

from runledger import config
from runledger.cache import COMMITS, PULL_REQUESTS, WORKFLOW_RUNS, CacheKey, JsonCache
from runledger.cost import FREE_RUNNER
from runledger.gather import GatherContext, commit, pull_request, workflow_run
from runledger.github import API, github_client
from runledger.logger import configure_logging
from runledger.metric import push_registry

logger = logging.getLogger("runledger")

app = typer.Typer()

ForceUpdate = typer.Option(False, "--force-update", help="Ignore cached records")
DataDir = typer.Option(config.DATA_DIR, "--data-dir", help="Cache root directory")
Token = typer.Option(None, "--token", help="GitHub token, defaults to $GITHUB_TOKEN")


@app.callback()
def init():
    configure_logging()


def format_cost(cost: int) -> str:
    # tenths of a cent
    return f"${cost / 1000:.3f}"


def push_metrics():
    if config.PUSH_GATEWAY is None:
        return
    try:
        push_to_gateway(config.PUSH_GATEWAY, job="runledger", registry=push_registry)
    except OSError:
        logger.warning("Could not push metrics to %s", config.PUSH_GATEWAY, exc_info=True)


async def _run(gather, key: CacheKey, data_dir: Path, force_update: bool, token):
    cache = JsonCache(data_dir)
    async with github_client(token) as gh:
        api = API(gh)
        ctx = GatherContext(api=api, cache=cache, force_update=force_update)
        record = await gather(ctx, key.owner, key.repo, key.id)
        logger.info("Gathered %s with %d API calls", key.key, api.call_count)
    return record, cache.path_for(key)


@app.command("workflow-run")
def workflow_run_cmd(
    owner: str,
    repo: str,
    run_id: int,
    force_update: bool = ForceUpdate,
    data_dir: Path = DataDir,
    token: Optional[str] = Token,
):
    key = CacheKey(owner, repo, WORKFLOW_RUNS, run_id)
    run, path = asyncio.run(_run(workflow_run, key, data_dir, force_update, token))
    push_metrics()

    rows = [
        (
            job.name,
            job.conclusion,
            job.runner,
            format_cost(job.cost) if job.runner != FREE_RUNNER else "-",
            "yes" if job.analysis is not None else "",
        )
        for job in run.jobs
    ]
    print(tabulate(rows, headers=["job", "conclusion", "runner", "cost", "monitored"]))
    print(f"\nrun {run.id} {run.conclusion}: {format_cost(run.cost)}")
    print(path)


@app.command("commit")
def commit_cmd(
    owner: str,
    repo: str,
    sha: str,
    force_update: bool = ForceUpdate,
    data_dir: Path = DataDir,
    token: Optional[str] = Token,
):
    key = CacheKey(owner, repo, COMMITS, sha)
    record, path = asyncio.run(_run(commit, key, data_dir, force_update, token))
    push_metrics()

    rows = [(run_id,) for run_id in record.workflow_run_ids]
    print(tabulate(rows, headers=["workflow run"]))
    print(f"\n{record} {record.conclusion}: {format_cost(record.cost)}")
    print(path)


@app.command("pull-request")
def pull_request_cmd(
    owner: str,
    repo: str,
    number: int,
    force_update: bool = ForceUpdate,
    data_dir: Path = DataDir,
    token: Optional[str] = Token,
):
    key = CacheKey(owner, repo, PULL_REQUESTS, number)
    pr, path = asyncio.run(_run(pull_request, key, data_dir, force_update, token))
    push_metrics()

    rows = [
        (
            c.sha[:10],
            c.author_date,
            c.conclusion,
            len(c.workflow_run_ids),
            len(c.merge_queue_events),
            format_cost(c.cost),
        )
        for c in pr.commits
    ]
    print(
        tabulate(
            rows,
            headers=["commit", "authored", "conclusion", "runs", "merge queue", "cost"],
        )
    )
    print(f"\n{pr} {pr.title}: {format_cost(pr.cost)}")
    print(path)
