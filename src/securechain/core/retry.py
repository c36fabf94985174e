"""Bounded exponential-backoff retry around backend invocations."""

import asyncio
import logging
from typing import Awaitable, Callable, List, Optional

from tenacity import (
    AsyncRetrying,
    RetryCallState,
    retry_if_exception,
    stop_after_attempt,
    wait_exponential,
)

from securechain.config.settings import RetryConfig
from securechain.errors import BackendError, FatalBackendError, TransientBackendError
from securechain.models.finding import RawFinding
from securechain.models.results import BackendTaskResult

logger = logging.getLogger(__name__)

Invocation = Callable[[], Awaitable[List[RawFinding]]]
Sleeper = Callable[[float], Awaitable[None]]


class RetryPolicy:
    """Retries transient backend failures with capped exponential backoff.

    ``max_retries`` is the total number of attempts. The k-th retry
    waits ``min(base_delay * multiplier ** (k - 1), max_delay)``.
    Fatal errors end the loop at once.
    """

    def __init__(self, config: Optional[RetryConfig] = None, sleep: Sleeper = asyncio.sleep):
        self.config = config or RetryConfig()
        self._sleep = sleep

    def _retrying(self, label: str) -> AsyncRetrying:
        return AsyncRetrying(
            stop=stop_after_attempt(self.config.max_retries),
            wait=wait_exponential(
                multiplier=self.config.base_delay,
                exp_base=self.config.multiplier,
                max=self.config.max_delay,
            ),
            retry=retry_if_exception(_is_retryable),
            sleep=self._sleep,
            before_sleep=_log_retry(label),
            reraise=True,
        )

    async def run(
        self,
        invocation: Invocation,
        timeout: Optional[float] = None,
        label: str = "backend",
    ) -> BackendTaskResult:
        """Run ``invocation`` until it succeeds, fails fatally or runs out of attempts.

        Args:
            invocation: Zero-argument coroutine factory, called once per attempt
            timeout: Per-attempt limit in seconds; a timeout is transient
            label: Name used in log messages

        Returns:
            ``Success`` with the raw findings or ``Failed`` with the last
            error kind and the number of attempts used
        """
        attempts = 0
        try:
            async for attempt in self._retrying(label):
                with attempt:
                    attempts = attempt.retry_state.attempt_number
                    findings = await self._attempt(invocation, timeout, label)
        except BackendError as e:
            logger.warning(
                "event=backend_failed backend=%s kind=%s attempts=%d error=%s",
                label,
                e.kind.value,
                attempts,
                e,
            )
            return BackendTaskResult.failed(e.kind, attempts, str(e))
        return BackendTaskResult.success(findings, attempts)

    async def _attempt(
        self, invocation: Invocation, timeout: Optional[float], label: str
    ) -> List[RawFinding]:
        try:
            if timeout is None:
                return await invocation()
            return await asyncio.wait_for(invocation(), timeout)
        except BackendError:
            raise
        except asyncio.TimeoutError as e:
            raise TransientBackendError(f"{label} attempt timed out after {timeout}s") from e
        except Exception as e:
            logger.exception("event=backend_crashed backend=%s", label)
            raise FatalBackendError(f"{type(e).__name__}: {e}") from e


def _is_retryable(exc: BaseException) -> bool:
    return isinstance(exc, BackendError) and exc.retryable


def _log_retry(label: str) -> Callable[[RetryCallState], None]:
    def before_sleep(retry_state: RetryCallState) -> None:
        logger.warning(
            "event=retry backend=%s attempt=%d delay=%.2fs error=%s",
            label,
            retry_state.attempt_number,
            retry_state.next_action.sleep if retry_state.next_action else 0.0,
            retry_state.outcome.exception() if retry_state.outcome else None,
        )

    return before_sleep
