import asyncio
import logging
from pathlib import Path
from typing import BinaryIO

import aiohttp
from tenacity import (
    AsyncRetrying,
    RetryError,
    before_sleep_log,
    retry_if_exception_type,
    stop_after_attempt,
    wait_exponential,
)

from .config import FetchConfig
from .errors import FetchError, FetchFailed, PermanentFetchError, StoreIOError, TruncatedTransfer
from .types import RemoteFileRef

logger = logging.getLogger(__name__)

# 4xx statuses that signal a busy or slow server rather than a missing file
TRANSIENT_CLIENT_STATUSES = frozenset({408, 425, 429})


class _TransientStatus(FetchError):
    def __init__(self, url: str, status: int):
        super().__init__(f"{url} answered HTTP {status}")
        self.status = status


RETRYABLE_ERRORS = (
    _TransientStatus,
    TruncatedTransfer,
    aiohttp.ClientError,
    asyncio.TimeoutError,
)


def backoff_wait(config: FetchConfig) -> wait_exponential:
    """``min(retry_ceiling_ms, retry_base_ms * 2**n)`` before retry ``n`` (0 based)"""
    return wait_exponential(
        multiplier=config.retry_base_ms / 1000,
        max=config.retry_ceiling_ms / 1000,
    )


class Fetcher:
    def __init__(self, config: FetchConfig, session: aiohttp.ClientSession):
        self.config = config
        self._session = session

    def _retrying(self) -> AsyncRetrying:
        return AsyncRetrying(
            stop=stop_after_attempt(self.config.max_num_retries + 1),
            wait=backoff_wait(self.config),
            retry=retry_if_exception_type(RETRYABLE_ERRORS),
            before_sleep=before_sleep_log(logger, logging.WARNING),
        )

    async def fetch(self, ref: RemoteFileRef, staging_path: Path) -> int:
        """Download ``ref`` into ``staging_path`` and return the byte count.

        Connection faults, timeouts, 5xx answers and short transfers are
        retried up to ``max_num_retries`` times, after which ``FetchFailed``
        is raised. Any other 4xx answer raises ``PermanentFetchError``
        without retrying, and a local write fault raises ``StoreIOError``.
        """
        attempts = self.config.max_num_retries + 1
        try:
            async for attempt in self._retrying():
                with attempt:
                    received = await self._attempt(ref, staging_path)
        except RetryError as e:
            last_error = e.last_attempt.exception()
            raise FetchFailed(ref.url, attempts, last_error) from last_error

        logger.debug(f"Downloaded {received} bytes from {ref.url}")
        return received

    async def _attempt(self, ref: RemoteFileRef, staging_path: Path) -> int:
        timeout = aiohttp.ClientTimeout(total=self.config.http_req_timeout_millis / 1000)

        async with self._session.get(ref.url, timeout=timeout) as response:
            status = response.status
            if status >= 500 or status in TRANSIENT_CLIENT_STATUSES:
                raise _TransientStatus(ref.url, status)
            if status != 200:
                raise PermanentFetchError(ref.url, status, response.reason or "")

            expected = ref.expected_size
            if expected is None and "Content-Encoding" not in response.headers:
                expected = response.content_length

            try:
                f = open(staging_path, "wb")
            except OSError as e:
                raise StoreIOError(f"cannot open staging file {staging_path}: {e}") from e

            received = 0
            with f:
                async for chunk in response.content.iter_chunked(self.config.chunk_size):
                    await _write(f, chunk, staging_path)
                    received += len(chunk)

        if expected is not None and received != expected:
            raise TruncatedTransfer(ref.url, expected, received)

        return received


async def _write(f: BinaryIO, chunk: bytes, staging_path: Path) -> None:
    try:
        await asyncio.to_thread(f.write, chunk)
    except OSError as e:
        raise StoreIOError(f"failed writing {staging_path}: {e}") from e


__all__ = ["Fetcher", "TRANSIENT_CLIENT_STATUSES", "backoff_wait"]
