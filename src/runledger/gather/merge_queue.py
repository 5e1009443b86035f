import logging
from typing import List, Sequence

from runledger.gather.context import join_all
from runledger.gather.errors import MergeQueueOrderError
from runledger.github.api import API
from runledger.github.model import AddedToMergeQueueEvent, RemovedFromMergeQueueEvent
from runledger.records import MergeQueueEvent

logger = logging.getLogger("runledger")

# pull request numbers go into a GraphQL Int
MAX_GRAPHQL_INT = 2**31 - 1


def reconcile(
    added: Sequence[AddedToMergeQueueEvent],
    removed: Sequence[RemovedFromMergeQueueEvent],
    number: int,
) -> List[MergeQueueEvent]:
    """
    Pair "added to merge queue" events with "removed from merge queue" events.

    Both timelines are sorted by creation time and matched by position. Added
    events without a removed counterpart are kept without a commit.
    """
    added = sorted(added, key=lambda e: e.created_at)
    removed = sorted(removed, key=lambda e: e.created_at)

    if len(removed) > len(added):
        logger.warning(
            "PR #%d has %d removed from merge queue events but only %d added events, ignoring the surplus",
            number,
            len(removed),
            len(added),
        )

    events: List[MergeQueueEvent] = []
    for index, add in enumerate(added):
        event = MergeQueueEvent(
            added_time=add.created_at,
            added_actor=add.actor.login if add.actor else None,
            added_enqueuer=add.enqueuer.login if add.enqueuer else None,
            added_id=add.id,
        )

        if index >= len(removed):
            events.append(event)
            continue

        rem = removed[index]
        if add.created_at > rem.created_at:
            raise MergeQueueOrderError(
                f"'added' merge queue event {add.id} at {add.created_at} is after "
                f"the corresponding 'removed' merge queue event {rem.id} at "
                f"{rem.created_at} for pull request {number}"
            )

        event.removed_time = rem.created_at
        event.removed_actor = rem.actor.login if rem.actor else None
        event.removed_enqueuer = rem.enqueuer.login if rem.enqueuer else None
        event.removed_reason = rem.reason
        event.removed_id = rem.id
        event.commit = rem.before_commit.oid if rem.before_commit else None
        events.append(event)

    return events


async def merge_queue_events(
    api: API, owner: str, repo: str, number: int
) -> List[MergeQueueEvent]:
    if number > MAX_GRAPHQL_INT:
        raise ValueError(
            f"pull request number {number} is too large for the GitHub GraphQL API"
        )

    added, removed = await join_all(
        api.get_merge_queue_added(owner, repo, number),
        api.get_merge_queue_removed(owner, repo, number),
    )
    logger.debug(
        "PR #%d has %d added and %d removed merge queue events",
        number,
        len(added),
        len(removed),
    )
    return reconcile(added, removed, number)
