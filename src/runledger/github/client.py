import asyncio
from contextlib import asynccontextmanager
import logging
from pathlib import Path
import time
from typing import Mapping, Optional, Tuple

import aiohttp
from aiolimiter import AsyncLimiter
import cachetools
from gidgethub import aiohttp as gh_aiohttp
from gidgethub import sansio
import humanize

from runledger import config
from runledger.metric import rate_limit_wait_count, record_api_call

logger = logging.getLogger("runledger")


class GitHubTimeout(Exception):
    method: str
    url: str
    timeout: float

    def __init__(self, method: str, url: str, timeout: float):
        self.method = method
        self.url = url
        self.timeout = timeout
        super().__init__(f"GitHub API timeout after {timeout}s: {method} {url}")


class DownloadError(Exception):
    pass


class RateLimitPolicy:
    """
    Tracks the quota GitHub reports on every response and decides whether a
    response is a rate limit rejection that should be waited out.
    """

    def __init__(
        self,
        *,
        sleep_until_reset: bool = True,
        warn_threshold: int = 50,
        sleep=asyncio.sleep,
        clock=time.time,
    ):
        self.sleep_until_reset = sleep_until_reset
        self.warn_threshold = warn_threshold
        self.rate_limit: Optional[sansio.RateLimit] = None
        self.waits = 0
        self._sleep = sleep
        self._clock = clock

    def observe(self, headers: Mapping[str, str]) -> Optional[sansio.RateLimit]:
        rate_limit = sansio.RateLimit.from_http(headers)
        if rate_limit is not None:
            self.rate_limit = rate_limit
        return rate_limit

    def is_rate_limited(self, status: int, headers: Mapping[str, str]) -> bool:
        if status not in (403, 429):
            return False
        if headers.get("retry-after") is not None:
            return True
        return headers.get("x-ratelimit-remaining") == "0"

    def delay(self, headers: Mapping[str, str]) -> float:
        retry_after = headers.get("retry-after")
        if retry_after is not None:
            return max(float(retry_after), 0.0)
        reset = headers.get("x-ratelimit-reset")
        if reset is not None:
            # reset is whole seconds, give the server a moment past it
            return max(float(reset) - self._clock(), 0.0) + 1.0
        return 60.0

    def should_warn(self) -> bool:
        if self.rate_limit is None:
            return False
        remaining = self.rate_limit.remaining
        return remaining <= self.warn_threshold and remaining % 10 == 0

    async def wait(self, delay: float) -> None:
        self.waits += 1
        rate_limit_wait_count.inc()
        await self._sleep(delay)


class GitHubClient(gh_aiohttp.GitHubAPI):
    policy: RateLimitPolicy
    timeout: float
    download_timeout: float

    def __init__(
        self,
        session: aiohttp.ClientSession,
        requester: str,
        *,
        oauth_token: Optional[str] = None,
        cache=None,
        policy: Optional[RateLimitPolicy] = None,
        timeout: float = 10.0,
        download_timeout: float = 60.0,
        max_rate: float = 0.0,
    ):
        super().__init__(session, requester, oauth_token=oauth_token, cache=cache)
        self.policy = policy or RateLimitPolicy()
        self.timeout = timeout
        self.download_timeout = download_timeout
        self.limiter = AsyncLimiter(max_rate, 1) if max_rate > 0 else None

    async def _request(
        self, method: str, url: str, headers: Mapping[str, str], body: bytes = b""
    ) -> Tuple[int, Mapping[str, str], bytes]:
        client_type = "GraphQL" if url.rstrip("/").endswith("/graphql") else "REST"
        while True:
            if self.limiter is not None:
                await self.limiter.acquire()

            start = time.monotonic()
            try:
                status, response_headers, response_body = await asyncio.wait_for(
                    super()._request(method, url, headers, body), timeout=self.timeout
                )
            except asyncio.TimeoutError as e:
                raise GitHubTimeout(method, url, self.timeout) from e
            duration = time.monotonic() - start
            record_api_call(url)

            rate_limit = self.policy.observe(response_headers)
            logger.debug(
                "%s %s %s -> %d in %.3fs (%s calls remaining)",
                client_type,
                method,
                url,
                status,
                duration,
                rate_limit.remaining if rate_limit is not None else "?",
            )

            if self.policy.sleep_until_reset and self.policy.is_rate_limited(
                status, response_headers
            ):
                delay = self.policy.delay(response_headers)
                logger.warning(
                    "GitHub API rate limit hit on %s %s, sleeping %s until limit reset",
                    method,
                    url,
                    humanize.naturaldelta(delay),
                )
                await self.policy.wait(delay)
                continue

            if self.policy.should_warn():
                logger.warning(
                    "GitHub API request nearing rate limit: %d of %d calls remaining, reset %s",
                    rate_limit.remaining,
                    rate_limit.limit,
                    rate_limit.reset_datetime,
                )
            return status, response_headers, response_body

    async def download(self, url: str, destination: Path) -> Path:
        """
        Follow the redirect GitHub answers archive requests with and stream
        the payload to ``destination``.
        """
        headers = sansio.create_headers(self.requester, oauth_token=self.oauth_token)
        timeout = aiohttp.ClientTimeout(total=self.download_timeout)
        try:
            async with self._session.get(
                url, headers=headers, allow_redirects=False, timeout=timeout
            ) as response:
                record_api_call(url)
                self.policy.observe(response.headers)
                if response.status != 302:
                    raise DownloadError(
                        f"expected redirect for {url}, got status {response.status}"
                    )
                location = response.headers["Location"]

            logger.debug("Downloading %s to %s", url, destination)
            async with self._session.get(location, timeout=timeout) as response:
                if response.status != 200:
                    body = await response.text()
                    raise DownloadError(
                        f"got status {response.status} downloading {url}: {body}"
                    )
                with open(destination, "wb") as fh:
                    async for chunk in response.content.iter_chunked(64 * 1024):
                        fh.write(chunk)
        except asyncio.TimeoutError as e:
            raise GitHubTimeout("GET", url, self.download_timeout) from e

        return destination


@asynccontextmanager
async def github_client(token: Optional[str] = None):
    if token:
        logger.debug("Using GitHub token from flag")
    elif config.GITHUB_TOKEN:
        token = config.GITHUB_TOKEN
        logger.debug("Using GitHub token from environment variable")
    else:
        logger.warning("GitHub token not provided, will likely hit rate limits quickly")

    policy = RateLimitPolicy(
        sleep_until_reset=config.SLEEP_ON_RATE_LIMIT,
        warn_threshold=config.RATE_LIMIT_WARN_THRESHOLD,
    )

    async with aiohttp.ClientSession() as session:
        yield GitHubClient(
            session,
            "runledger",
            oauth_token=token,
            cache=cachetools.LRUCache(maxsize=500),
            policy=policy,
            timeout=config.GITHUB_TIMEOUT,
            download_timeout=config.DOWNLOAD_TIMEOUT,
            max_rate=config.MAX_REQUESTS_PER_SECOND,
        )
