import logging
from typing import Dict, List

from runledger.cache import PULL_REQUESTS, CacheKey
from runledger.gather.commit import commit
from runledger.gather.context import GatherContext, join_all
from runledger.gather.errors import GatherError
from runledger.gather.merge_queue import merge_queue_events
from runledger.github.api import API
from runledger.github.model import Commit
from runledger.metric import gather_error_count
from runledger.records import PullRequestRecord, sort_key

logger = logging.getLogger("runledger")


async def commits_for_pull(
    api: API, owner: str, repo: str, number: int
) -> List[Commit]:
    return [c async for c in api.get_pull_commits(owner, repo, number)]


async def _gather_pull_request(
    ctx: GatherContext, owner: str, repo: str, number: int
) -> PullRequestRecord:
    pr = await ctx.api.get_pull(owner, repo, number)

    listed, events = await join_all(
        commits_for_pull(ctx.api, owner, repo, number),
        merge_queue_events(ctx.api, owner, repo, number),
    )

    commits: Dict[str, Commit] = {c.sha: c for c in listed}

    # merge queue commits are not part of the PR's commit list
    missing = sorted(
        {e.commit for e in events if e.commit is not None and e.commit not in commits}
    )
    if len(missing) > 0:
        logger.debug(
            "%s: fetching %d commits only referenced by merge queue events",
            pr,
            len(missing),
        )
    for c in await join_all(*(ctx.api.get_commit(owner, repo, sha) for sha in missing)):
        commits[c.sha] = c

    records = await join_all(*(commit(ctx, owner, repo, sha) for sha in commits))

    tagged = [
        record.model_copy(
            update={
                "merge_queue_events": [e for e in events if e.commit == record.sha]
            }
        )
        for record in records
    ]
    tagged.sort(key=lambda r: sort_key(r.author_date))

    return PullRequestRecord.model_validate({**pr.model_dump(), "commits": tagged})


async def pull_request(
    ctx: GatherContext, owner: str, repo: str, number: int
) -> PullRequestRecord:
    """
    Gather a pull request and all of its commits, including the ones that were
    only ever tested in the merge queue.
    """
    try:
        return await ctx.cache.fetch_or_compute(
            CacheKey(owner, repo, PULL_REQUESTS, number),
            PullRequestRecord,
            lambda: _gather_pull_request(ctx, owner, repo, number),
            force_update=ctx.force_update,
        )
    except Exception as e:
        gather_error_count.labels(kind=PULL_REQUESTS).inc()
        raise GatherError("pull request", number, str(e)) from e
