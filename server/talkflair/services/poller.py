from __future__ import annotations

import asyncio
import logging
from typing import Awaitable, Callable, Optional

from talkflair.errors import JobCancelled, StatusCheckFailed
from talkflair.services.providers.base import GenerationProvider, JobHandle, JobOutcome

logger = logging.getLogger(__name__)

ProgressCallback = Callable[[Optional[int]], None]
CancelCheck = Callable[[], Awaitable[bool]]


class JobPoller:
    """Fixed-interval status poller for one submitted generation job.

    Each pass sleeps `poll_interval_seconds` and then asks the provider for the
    job state. The loop ends on the first terminal outcome, after
    `max_attempts` passes or once `poll_interval_seconds * max_attempts` of
    wall-clock time has gone by (returning a timed-out outcome), or when
    `max_consecutive_failures` status checks in a row have failed (raising
    StatusCheckFailed). Isolated status-check failures count as pending
    passes. No backoff: the interval is constant.
    """

    def __init__(
        self,
        *,
        poll_interval_seconds: float = 10.0,
        max_attempts: int = 30,
        max_consecutive_failures: int = 3,
        status_timeout_seconds: Optional[float] = 30.0,
        on_progress: Optional[ProgressCallback] = None,
        sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
    ) -> None:
        if poll_interval_seconds < 0:
            raise ValueError("poll_interval_seconds must be >= 0")
        if max_attempts <= 0:
            raise ValueError("max_attempts must be > 0")
        if max_consecutive_failures <= 0:
            raise ValueError("max_consecutive_failures must be > 0")
        self.poll_interval_seconds = poll_interval_seconds
        self.max_attempts = max_attempts
        self.max_consecutive_failures = max_consecutive_failures
        self.status_timeout_seconds = status_timeout_seconds
        self.on_progress = on_progress
        self._sleep = sleep

    @property
    def max_wait_seconds(self) -> float:
        return self.poll_interval_seconds * self.max_attempts

    async def _query(
        self, provider: GenerationProvider, handle: JobHandle, timeout: Optional[float]
    ) -> JobOutcome:
        if timeout is None:
            return await provider.query_status(handle)
        try:
            return await asyncio.wait_for(provider.query_status(handle), timeout=timeout)
        except asyncio.TimeoutError as exc:
            raise StatusCheckFailed(f"Status check exceeded {timeout:g}s") from exc

    async def wait(
        self,
        provider: GenerationProvider,
        handle: JobHandle,
        *,
        should_cancel: Optional[CancelCheck] = None,
        on_progress: Optional[ProgressCallback] = None,
    ) -> JobOutcome:
        """Poll until terminal, timed out, cancelled or out of failure budget."""
        progress_cb = on_progress or self.on_progress
        consecutive_failures = 0
        last_progress: Optional[int] = None

        # Status call time counts against the same budget as the sleeps.
        loop = asyncio.get_running_loop()
        deadline = loop.time() + self.max_wait_seconds if self.max_wait_seconds > 0 else None

        for attempt in range(1, self.max_attempts + 1):
            if should_cancel is not None and await should_cancel():
                logger.info(
                    "Stopped polling %s job %s: caller went away",
                    handle.provider_id,
                    handle.external_job_id,
                )
                raise JobCancelled(f"Polling cancelled for job {handle.external_job_id}")

            if deadline is not None and loop.time() >= deadline:
                break
            await self._sleep(self.poll_interval_seconds)

            timeout = self.status_timeout_seconds
            if deadline is not None:
                remaining = deadline - loop.time()
                if remaining <= 0:
                    break
                timeout = remaining if timeout is None else min(timeout, remaining)

            try:
                outcome = await self._query(provider, handle, timeout)
            except StatusCheckFailed as exc:
                if deadline is not None and loop.time() >= deadline:
                    break
                consecutive_failures += 1
                logger.warning(
                    "Status check %d/%d for %s job %s failed (%d in a row): %s",
                    attempt,
                    self.max_attempts,
                    handle.provider_id,
                    handle.external_job_id,
                    consecutive_failures,
                    exc,
                )
                if consecutive_failures >= self.max_consecutive_failures:
                    raise StatusCheckFailed(
                        f"Status check failed {consecutive_failures} times in a row",
                        details=exc.message,
                    ) from exc
                continue

            consecutive_failures = 0
            logger.debug(
                "Attempt %d/%d: %s job %s is %s",
                attempt,
                self.max_attempts,
                handle.provider_id,
                handle.external_job_id,
                outcome.state.value,
            )
            if outcome.is_terminal:
                return outcome

            if outcome.progress is not None:
                last_progress = outcome.progress
            if progress_cb is not None:
                progress_cb(outcome.progress)

        logger.info(
            "%s job %s still pending after %d attempts or %gs",
            handle.provider_id,
            handle.external_job_id,
            self.max_attempts,
            self.max_wait_seconds,
        )
        return JobOutcome.timed_out(last_progress)
