from datetime import datetime, timezone
from typing import List, Optional

import pydantic

from runledger.github.model import (
    CheckRun,
    Commit,
    Model,
    PullRequest,
    UTCDateTime,
    WorkflowJob,
    WorkflowRun,
    WorkflowRunUsage,
)
from runledger.monitor import Analysis


class JobRecord(WorkflowJob):
    runner: str
    # tenths of a cent
    cost: int = 0
    analysis: Optional[Analysis] = None


class WorkflowRunRecord(WorkflowRun):
    jobs: List[JobRecord] = pydantic.Field(default_factory=list)
    cost: int = 0
    # max job completion, the run's updated_at also moves on metadata edits
    completed_at: Optional[UTCDateTime] = None
    usage: Optional[WorkflowRunUsage] = None

    @property
    def analyses(self) -> List[Analysis]:
        return [job.analysis for job in self.jobs if job.analysis is not None]


class MergeQueueEvent(Model):
    added_time: UTCDateTime
    added_actor: Optional[str] = None
    added_enqueuer: Optional[str] = None
    added_id: str

    # unset while the pull request is still queued
    commit: Optional[str] = None
    removed_time: Optional[UTCDateTime] = None
    removed_actor: Optional[str] = None
    removed_enqueuer: Optional[str] = None
    removed_reason: Optional[str] = None
    removed_id: Optional[str] = None


class CommitRecord(Commit):
    owner: str
    repo: str
    check_runs: List[CheckRun] = pydantic.Field(default_factory=list)
    merge_queue_events: List[MergeQueueEvent] = pydantic.Field(default_factory=list)
    workflow_run_ids: List[int] = pydantic.Field(default_factory=list)
    start_actions_time: Optional[UTCDateTime] = None
    end_actions_time: Optional[UTCDateTime] = None
    conclusion: Optional[str] = None
    cost: int = 0


class PullRequestRecord(PullRequest):
    commits: List[CommitRecord] = pydantic.Field(default_factory=list)

    @property
    def cost(self) -> int:
        return sum(c.cost for c in self.commits)


def sort_key(value: Optional[datetime]):
    return (value is None, value or datetime.min.replace(tzinfo=timezone.utc))
