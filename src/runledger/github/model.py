from __future__ import annotations

from datetime import datetime, timezone
from typing import Annotated, Any, Dict, List, Literal, Optional

import pydantic
from pydantic import BeforeValidator, PlainSerializer


def _parse_utc_datetime(value: Any) -> datetime:
    if isinstance(value, datetime):
        dt = value
    elif isinstance(value, str):
        raw = value.strip()
        if raw.endswith("Z"):
            raw = raw[:-1] + "+00:00"
        dt = datetime.fromisoformat(raw)
    else:
        raise ValueError(f"Unsupported datetime value type: {type(value)!r}")
    if dt.tzinfo is None:
        return dt.replace(tzinfo=timezone.utc)
    return dt.astimezone(timezone.utc)


def _format_utc_datetime(value: datetime) -> str:
    return value.astimezone(timezone.utc).strftime("%Y-%m-%dT%H:%M:%S.%fZ")


UTCDateTime = Annotated[
    datetime,
    BeforeValidator(_parse_utc_datetime),
    PlainSerializer(_format_utc_datetime, return_type=str, when_used="always"),
]

Status = Literal[
    "completed",
    "queued",
    "in_progress",
    "requested",
    "waiting",
    "pending",
    "action_required",
]

Conclusion = Literal[
    "action_required",
    "cancelled",
    "failure",
    "neutral",
    "success",
    "skipped",
    "stale",
    "timed_out",
    "startup_failure",
]


class Model(pydantic.BaseModel):
    # GitHub payloads carry far more than we read, keep all of it
    model_config = pydantic.ConfigDict(extra="allow")


class WorkflowRun(Model):
    id: int
    name: Optional[str] = None
    head_sha: str
    run_number: Optional[int] = None
    run_attempt: Optional[int] = None
    event: Optional[str] = None
    status: Optional[Status] = None
    conclusion: Optional[Conclusion] = None
    html_url: Optional[str] = None
    created_at: Optional[UTCDateTime] = None
    updated_at: Optional[UTCDateTime] = None
    run_started_at: Optional[UTCDateTime] = None

    @property
    def is_completed(self) -> bool:
        return self.status == "completed"


class WorkflowJob(Model):
    id: int
    run_id: int
    name: str
    status: Status
    conclusion: Optional[Conclusion] = None
    html_url: Optional[str] = None
    created_at: Optional[UTCDateTime] = None
    started_at: Optional[UTCDateTime] = None
    completed_at: Optional[UTCDateTime] = None
    runner_name: Optional[str] = None
    labels: List[str] = pydantic.Field(default_factory=list)


class JobRunUsage(Model):
    job_id: int
    duration_ms: int


class RunnerUsage(Model):
    total_ms: int = 0
    jobs: int = 0
    job_runs: List[JobRunUsage] = pydantic.Field(default_factory=list)


class WorkflowRunUsage(Model):
    billable: Dict[str, RunnerUsage] = pydantic.Field(default_factory=dict)
    run_duration_ms: Optional[int] = None


class Artifact(Model):
    id: int
    name: str
    size_in_bytes: Optional[int] = None
    archive_download_url: Optional[str] = None
    expired: bool = False


class CheckRun(Model):
    id: int
    name: str
    head_sha: str
    status: Status = "queued"
    conclusion: Optional[Conclusion] = None
    started_at: Optional[UTCDateTime] = None
    completed_at: Optional[UTCDateTime] = None
    html_url: Optional[str] = None
    details_url: Optional[str] = None

    @property
    def is_completed(self) -> bool:
        return self.status == "completed"

    def __hash__(self):
        return self.id


class GitActor(Model):
    name: Optional[str] = None
    email: Optional[str] = None
    date: Optional[UTCDateTime] = None


class GitCommit(Model):
    message: str = ""
    author: Optional[GitActor] = None
    committer: Optional[GitActor] = None


class Commit(Model):
    sha: str
    html_url: Optional[str] = None
    commit: GitCommit = pydantic.Field(default_factory=GitCommit)

    @property
    def author_date(self) -> Optional[datetime]:
        if self.commit.author is None:
            return None
        return self.commit.author.date

    def __str__(self) -> str:
        return f"Commit({self.sha[:10]})"


class PrRef(Model):
    ref: str
    sha: str


class PullRequest(Model):
    id: int
    number: int
    state: Literal["open", "closed"]
    title: Optional[str] = None
    html_url: Optional[str] = None
    created_at: UTCDateTime
    updated_at: UTCDateTime
    merged_at: Optional[UTCDateTime] = None
    head: PrRef
    base: PrRef

    def __str__(self) -> str:
        return f"PR(#{self.number}, {self.id})"


class Login(Model):
    login: Optional[str] = None


class GitObject(Model):
    oid: str
    commit_url: Optional[str] = pydantic.Field(None, alias="commitUrl")


class AddedToMergeQueueEvent(Model):
    id: str
    created_at: UTCDateTime = pydantic.Field(alias="createdAt")
    actor: Optional[Login] = None
    enqueuer: Optional[Login] = None


class RemovedFromMergeQueueEvent(Model):
    id: str
    created_at: UTCDateTime = pydantic.Field(alias="createdAt")
    actor: Optional[Login] = None
    enqueuer: Optional[Login] = None
    reason: Optional[str] = None
    before_commit: Optional[GitObject] = pydantic.Field(None, alias="beforeCommit")
