import asyncio
from dataclasses import dataclass
from typing import Any, Awaitable, List

from runledger import config
from runledger.cache import JsonCache
from runledger.github.api import API


@dataclass
class GatherContext:
    api: API
    cache: JsonCache
    force_update: bool = False
    monitor_suffix: str = config.MONITOR_ARTIFACT_SUFFIX


async def join_all(*aws: Awaitable[Any]) -> List[Any]:
    """
    Run ``aws`` concurrently and return their results in order. The first
    failure cancels the others and is re-raised once they have unwound.
    """
    tasks = [asyncio.ensure_future(aw) for aw in aws]
    try:
        return list(await asyncio.gather(*tasks))
    except BaseException:
        for task in tasks:
            task.cancel()
        await asyncio.gather(*tasks, return_exceptions=True)
        raise
