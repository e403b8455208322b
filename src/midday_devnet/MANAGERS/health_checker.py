# Copyright 2024 Michael Maillet, Damien Davison, Sacha Davison
#
# Licensed under the Apache License, Version 2.0 (the "License");
# you may not use this file except in compliance with the License.
# You may obtain a copy of the License at
#
#     http://www.apache.org/licenses/LICENSE-2.0
#
# Unless required by applicable law or agreed to in writing, software
# distributed under the License is distributed on an "AS IS" BASIS,
# WITHOUT WARRANTIES OR CONDITIONS OF ANY KIND, either express or implied.
# See the License for the specific language governing permissions and
# limitations under the License.

"""
Readiness polling with exponential backoff.
"""
import asyncio
import logging
from typing import Optional

from tenacity import AsyncRetrying, RetryCallState, RetryError, retry_if_result, stop_after_delay, wait_exponential

from ..errors import Cancelled, HealthTimeout
from ..MODELS.cluster_spec import BackoffPolicy
from .probes import Probe

logger = logging.getLogger(__name__)

# Time granted to the attempt made at the deadline.
_LAST_ATTEMPT_BUDGET = 0.5


class HealthChecker:
    """
    Polls a probe until it succeeds, its timeout runs out, or the caller cancels.

    A probe returning False is only a signal to retry. Exceptions raised by a
    probe are fatal and propagate immediately.
    """

    def __init__(self, backoff: Optional[BackoffPolicy] = None,
                 attempt_timeout: Optional[float] = 5.0):
        """
        Initializes the health checker.

        Args:
            backoff: Default backoff when a call does not pass one.
            attempt_timeout: Default bound on a single probe attempt, in seconds.
        """
        self.backoff = backoff or BackoffPolicy()
        self.attempt_timeout = attempt_timeout

    async def wait_until_healthy(self, probe: Probe, timeout: float, *,
                                 backoff: Optional[BackoffPolicy] = None,
                                 attempt_timeout: Optional[float] = None,
                                 service: str = "service",
                                 cancel: Optional[asyncio.Event] = None) -> int:
        """
        Waits for ``probe`` to report success.

        Args:
            probe: One readiness attempt; True means ready.
            timeout: Total seconds to keep trying.
            backoff: Delay schedule between attempts.
            attempt_timeout: Bound on a single attempt; a slow attempt counts as a failure.
            service: Name used in logs and errors.
            cancel: When set, waiting stops and Cancelled is raised.

        Returns:
            The number of attempts made.

        Raises:
            HealthTimeout: No attempt succeeded within ``timeout``.
            Cancelled: ``cancel`` was set while waiting.
        """
        policy = backoff or self.backoff
        per_attempt = attempt_timeout if attempt_timeout is not None else self.attempt_timeout
        loop = asyncio.get_running_loop()
        deadline = loop.time() + timeout
        attempts = 0
        last_error: Optional[BaseException] = None

        async def attempt() -> bool:
            nonlocal attempts, last_error
            if cancel is not None and cancel.is_set():
                raise Cancelled(f"Waiting for '{service}' was cancelled")
            attempts += 1
            bound = max(deadline - loop.time(), _LAST_ATTEMPT_BUDGET)
            if per_attempt is not None:
                bound = min(per_attempt, bound)
            try:
                return bool(await asyncio.wait_for(probe(), bound))
            except asyncio.TimeoutError as exc:
                last_error = exc
                logger.debug("Probe for %s timed out after %.2fs", service, bound)
                return False

        async def sleep(seconds: float) -> None:
            if cancel is None:
                await asyncio.sleep(seconds)
                return
            try:
                await asyncio.wait_for(cancel.wait(), seconds)
            except asyncio.TimeoutError:
                return
            raise Cancelled(f"Waiting for '{service}' was cancelled")

        def before_sleep(state: RetryCallState) -> None:
            logger.debug(
                "%s not ready after attempt %d, retrying in %.2fs",
                service, state.attempt_number, state.next_action.sleep if state.next_action else 0.0,
            )

        exponential = wait_exponential(multiplier=policy.initial_delay, exp_base=policy.factor, max=policy.max_delay)

        def wait(state: RetryCallState) -> float:
            # Never sleep past the deadline; the last attempt runs at it.
            return min(exponential(state), max(0.0, deadline - loop.time()))

        retrying = AsyncRetrying(
            stop=stop_after_delay(timeout),
            wait=wait,
            retry=retry_if_result(lambda ready: not ready),
            sleep=sleep,
            before_sleep=before_sleep,
        )

        try:
            await retrying(attempt)
        except RetryError:
            raise HealthTimeout(service, timeout, attempts, last_error) from last_error

        logger.debug("%s ready after %d attempt(s)", service, attempts)
        return attempts
