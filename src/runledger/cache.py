import asyncio
from dataclasses import dataclass
import logging
import os
from pathlib import Path
import tempfile
from typing import Awaitable, Callable, Dict, Type, TypeVar, Union

import pydantic

from runledger.metric import cache_counter

logger = logging.getLogger("runledger")

COMMITS = "commits"
PULL_REQUESTS = "pull_requests"
WORKFLOW_RUNS = "workflow_runs"

KINDS = (COMMITS, PULL_REQUESTS, WORKFLOW_RUNS)

RecordT = TypeVar("RecordT", bound=pydantic.BaseModel)


@dataclass(frozen=True)
class CacheKey:
    owner: str
    repo: str
    kind: str
    id: Union[int, str]

    def __post_init__(self):
        if self.kind not in KINDS:
            raise ValueError(f"Unknown record kind {self.kind}")

    @property
    def key(self) -> str:
        return f"{self.owner}/{self.repo}/{self.kind}/{self.id}"


class CacheReadError(Exception):
    path: Path

    def __init__(self, path: Path, message: str):
        self.path = path
        super().__init__(f"failed to read cached record {path}: {message}")


class JsonCache:
    """
    Records stored as one JSON document per entity below ``data_dir``.

    There is no expiry and no locking across processes. Within a process,
    concurrent lookups of the same key share one computation.
    """

    data_dir: Path

    def __init__(self, data_dir: Union[str, Path]):
        self.data_dir = Path(data_dir)
        self._inflight: Dict[str, asyncio.Task] = {}

    def path_for(self, key: CacheKey) -> Path:
        return self.data_dir / key.owner / key.repo / key.kind / f"{key.id}.json"

    def make_dirs(self, directory: Path) -> Path:
        """Create ``directory`` and any missing parents, all owner-only."""
        missing = []
        current = directory
        while not current.exists():
            missing.append(current)
            current = current.parent
        for d in reversed(missing):
            d.mkdir(mode=0o700, exist_ok=True)
        return directory

    def exists(self, key: CacheKey) -> bool:
        return self.path_for(key).exists()

    def read(self, key: CacheKey, model: Type[RecordT]) -> RecordT:
        path = self.path_for(key)
        try:
            return model.model_validate_json(path.read_bytes())
        except (OSError, pydantic.ValidationError) as e:
            raise CacheReadError(path, str(e)) from e

    def write(self, key: CacheKey, record: pydantic.BaseModel) -> Path:
        path = self.path_for(key)
        self.make_dirs(path.parent)
        fd, tmp_name = tempfile.mkstemp(
            dir=path.parent, prefix=f".{path.name}.", suffix=".tmp"
        )
        try:
            with os.fdopen(fd, "wb") as fh:
                fh.write(record.model_dump_json().encode())
            os.chmod(tmp_name, 0o600)
            os.replace(tmp_name, path)
        except BaseException:
            if os.path.exists(tmp_name):
                os.unlink(tmp_name)
            raise
        cache_counter.labels(kind=key.kind, result="write").inc()
        return path

    async def fetch_or_compute(
        self,
        key: CacheKey,
        model: Type[RecordT],
        compute: Callable[[], Awaitable[RecordT]],
        *,
        force_update: bool = False,
    ) -> RecordT:
        if not force_update and self.exists(key):
            logger.debug("Reading %s from %s", key.key, self.path_for(key))
            cache_counter.labels(kind=key.kind, result="hit").inc()
            return self.read(key, model)

        if (task := self._inflight.get(key.key)) is not None:
            logger.debug("Joining in-flight gather of %s", key.key)
            cache_counter.labels(kind=key.kind, result="joined").inc()
            return await asyncio.shield(task)

        cache_counter.labels(kind=key.kind, result="miss").inc()
        task = asyncio.ensure_future(self._compute_and_store(key, compute))
        self._inflight[key.key] = task
        task.add_done_callback(lambda t: self._forget(key, t))
        return await task

    def _forget(self, key: CacheKey, task: asyncio.Task) -> None:
        if self._inflight.get(key.key) is task:
            del self._inflight[key.key]

    async def _compute_and_store(
        self, key: CacheKey, compute: Callable[[], Awaitable[RecordT]]
    ) -> RecordT:
        record = await compute()
        path = self.write(key, record)
        logger.debug("Wrote %s to %s", key.key, path)
        return record
