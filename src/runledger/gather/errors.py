from typing import Union


class GatherError(Exception):
    """Raised by every gather entry point, chained to the underlying cause."""

    kind: str
    entity_id: Union[int, str]

    def __init__(self, kind: str, entity_id: Union[int, str], message: str):
        self.kind = kind
        self.entity_id = entity_id
        super().__init__(f"failed to gather {kind} {entity_id}: {message}")


class ConsistencyError(Exception):
    """Remote data broke an assumption the gatherers rely on."""


class RunNotCompletedError(ConsistencyError):
    run_id: int
    status: str

    def __init__(self, run_id: int, status: str):
        self.run_id = run_id
        self.status = status
        super().__init__(f"workflow run {run_id} is not completed (status {status})")


class MergeQueueOrderError(ConsistencyError):
    pass
