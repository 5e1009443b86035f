import logging
from pathlib import Path
from typing import Any, AsyncIterator, Dict, List

from runledger.github.client import GitHubClient
from runledger.github.model import (
    AddedToMergeQueueEvent,
    Artifact,
    CheckRun,
    Commit,
    PullRequest,
    RemovedFromMergeQueueEvent,
    WorkflowJob,
    WorkflowRun,
    WorkflowRunUsage,
)

logger = logging.getLogger("runledger")

PER_PAGE = 100

# https://docs.github.com/en/graphql/reference/objects#addedtomergequeueevent
MERGE_QUEUE_ADDED_QUERY = """
query($owner: String!, $repo: String!, $number: Int!) {
  repository(owner: $owner, name: $repo) {
    pullRequest(number: $number) {
      timelineItems(itemTypes: [ADDED_TO_MERGE_QUEUE_EVENT], first: 100) {
        nodes {
          ... on AddedToMergeQueueEvent {
            id
            createdAt
            actor { login }
            enqueuer { login }
          }
        }
      }
    }
  }
}
"""

# https://docs.github.com/en/graphql/reference/objects#removedfrommergequeueevent
MERGE_QUEUE_REMOVED_QUERY = """
query($owner: String!, $repo: String!, $number: Int!) {
  repository(owner: $owner, name: $repo) {
    pullRequest(number: $number) {
      timelineItems(itemTypes: [REMOVED_FROM_MERGE_QUEUE_EVENT], first: 100) {
        nodes {
          ... on RemovedFromMergeQueueEvent {
            id
            createdAt
            reason
            actor { login }
            enqueuer { login }
            beforeCommit { oid commitUrl }
          }
        }
      }
    }
  }
}
"""


def _timeline_nodes(data: Dict[str, Any]) -> List[Dict[str, Any]]:
    pull_request = (data.get("repository") or {}).get("pullRequest")
    if pull_request is None:
        raise ValueError("GraphQL response does not contain a pull request")
    # nodes of other item types come back as empty objects
    return [n for n in pull_request["timelineItems"]["nodes"] if n]


class API:
    gh: GitHubClient

    call_count: int

    def __init__(self, gh: GitHubClient):
        self.gh = gh
        self.call_count = 0

    async def get_workflow_run(self, owner: str, repo: str, run_id: int) -> WorkflowRun:
        self.call_count += 1
        url = f"/repos/{owner}/{repo}/actions/runs/{run_id}"
        logger.debug("Get workflow run %s", url)
        return WorkflowRun.model_validate(await self.gh.getitem(url))

    async def get_workflow_jobs(
        self, owner: str, repo: str, run_id: int
    ) -> AsyncIterator[WorkflowJob]:
        self.call_count += 1
        url = f"/repos/{owner}/{repo}/actions/runs/{run_id}/jobs?filter=all&per_page={PER_PAGE}"
        logger.debug("Get jobs for workflow run %s", url)
        async for item in self.gh.getiter(url, iterable_key="jobs"):
            yield WorkflowJob.model_validate(item)

    async def get_workflow_run_usage(
        self, owner: str, repo: str, run_id: int
    ) -> WorkflowRunUsage:
        self.call_count += 1
        url = f"/repos/{owner}/{repo}/actions/runs/{run_id}/timing"
        logger.debug("Get billing usage %s", url)
        return WorkflowRunUsage.model_validate(await self.gh.getitem(url))

    async def get_workflow_run_artifacts(
        self, owner: str, repo: str, run_id: int
    ) -> AsyncIterator[Artifact]:
        self.call_count += 1
        url = f"/repos/{owner}/{repo}/actions/runs/{run_id}/artifacts?per_page={PER_PAGE}"
        logger.debug("Get artifacts for workflow run %s", url)
        async for item in self.gh.getiter(url, iterable_key="artifacts"):
            yield Artifact.model_validate(item)

    async def download_artifact(
        self, owner: str, repo: str, artifact_id: int, destination: Path
    ) -> Path:
        self.call_count += 1
        url = f"https://api.github.com/repos/{owner}/{repo}/actions/artifacts/{artifact_id}/zip"
        logger.debug("Download artifact %s", url)
        return await self.gh.download(url, destination)

    async def get_commit(self, owner: str, repo: str, sha: str) -> Commit:
        self.call_count += 1
        url = f"/repos/{owner}/{repo}/commits/{sha}"
        logger.debug("Get commit %s", url)
        return Commit.model_validate(await self.gh.getitem(url))

    async def get_check_runs_for_ref(
        self, owner: str, repo: str, ref: str
    ) -> AsyncIterator[CheckRun]:
        self.call_count += 1
        url = f"/repos/{owner}/{repo}/commits/{ref}/check-runs?filter=all&per_page={PER_PAGE}"
        logger.debug("Get check runs for ref %s", url)
        async for item in self.gh.getiter(url, iterable_key="check_runs"):
            yield CheckRun.model_validate(item)

    async def get_pull(self, owner: str, repo: str, number: int) -> PullRequest:
        self.call_count += 1
        url = f"/repos/{owner}/{repo}/pulls/{number}"
        logger.debug("Get pull %s", url)
        return PullRequest.model_validate(await self.gh.getitem(url))

    async def get_pull_commits(
        self, owner: str, repo: str, number: int
    ) -> AsyncIterator[Commit]:
        self.call_count += 1
        url = f"/repos/{owner}/{repo}/pulls/{number}/commits?per_page={PER_PAGE}"
        logger.debug("Get commits for PR #%d %s", number, url)
        async for item in self.gh.getiter(url):
            yield Commit.model_validate(item)

    async def get_merge_queue_added(
        self, owner: str, repo: str, number: int
    ) -> List[AddedToMergeQueueEvent]:
        self.call_count += 1
        logger.debug("Query added to merge queue events for %s/%s#%d", owner, repo, number)
        data = await self.gh.graphql(
            MERGE_QUEUE_ADDED_QUERY, owner=owner, repo=repo, number=number
        )
        return [AddedToMergeQueueEvent.model_validate(n) for n in _timeline_nodes(data)]

    async def get_merge_queue_removed(
        self, owner: str, repo: str, number: int
    ) -> List[RemovedFromMergeQueueEvent]:
        self.call_count += 1
        logger.debug(
            "Query removed from merge queue events for %s/%s#%d", owner, repo, number
        )
        data = await self.gh.graphql(
            MERGE_QUEUE_REMOVED_QUERY, owner=owner, repo=repo, number=number
        )
        return [
            RemovedFromMergeQueueEvent.model_validate(n) for n in _timeline_nodes(data)
        ]
