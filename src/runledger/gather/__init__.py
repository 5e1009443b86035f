from runledger.gather.commit import commit
from runledger.gather.context import GatherContext, join_all
from runledger.gather.errors import (
    ConsistencyError,
    GatherError,
    MergeQueueOrderError,
    RunNotCompletedError,
)
from runledger.gather.merge_queue import merge_queue_events
from runledger.gather.pull_request import pull_request
from runledger.gather.workflow_run import workflow_run

__all__ = [
    "ConsistencyError",
    "GatherContext",
    "GatherError",
    "MergeQueueOrderError",
    "RunNotCompletedError",
    "commit",
    "join_all",
    "merge_queue_events",
    "pull_request",
    "workflow_run",
]
