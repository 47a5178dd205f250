import asyncio
import time
from typing import Any, Awaitable, Callable, Optional

from loguru import logger
from resource_waiter.backoff import apply_jitter, backoff_delays
from resource_waiter.models import (
    OutcomeKind,
    PollOutcome,
    PollRequest,
    StatusResponse,
    WaiterConfig,
)


class ResourceWaiter:
    """Polls a resource until it is ready, fails terminally or runs out of time.

    The clock and sleep primitives are injectable so that callers running on
    another event loop policy, or tests, can drive time themselves.
    """

    def __init__(
        self,
        clock: Callable[[], float] = time.monotonic,
        sleep: Callable[[float], Awaitable[Any]] = asyncio.sleep,
        on_status_change: Optional[Callable[[StatusResponse], Awaitable[Any]]] = None,
    ):
        self.clock = clock
        self.sleep = sleep
        self.on_status_change = on_status_change
        self.logger = logger

    def _next_delay(self, delays, config: WaiterConfig) -> float:
        delay = next(delays)
        if config.jitter:
            delay = apply_jitter(delay, config.max_delay)
        return delay

    async def _handle_status_change(
        self, status_response: StatusResponse, last_status: Optional[str]
    ) -> None:
        """Invoke the status change callback if the status has changed"""
        if last_status != status_response.status and self.on_status_change is not None:
            self.logger.debug(
                f"{status_response.resource_id} status changed to {status_response.status}"
            )
            try:
                await self.on_status_change(status_response)
            except Exception as callback_error:
                self.logger.error(
                    f"Status change callback failed for {status_response.resource_id}: "
                    f"{callback_error}"
                )

    async def _sleep_unless_cancelled(
        self, delay: float, cancel_event: Optional[asyncio.Event]
    ) -> None:
        """Sleep for ``delay`` seconds, returning early once cancellation is signalled"""
        if cancel_event is None:
            await self.sleep(delay)
            return

        sleeper = asyncio.ensure_future(self.sleep(delay))
        canceller = asyncio.ensure_future(cancel_event.wait())
        try:
            await asyncio.wait(
                {sleeper, canceller}, return_when=asyncio.FIRST_COMPLETED
            )
        finally:
            for task in (sleeper, canceller):
                if not task.done():
                    task.cancel()
            await asyncio.gather(sleeper, canceller, return_exceptions=True)

    async def wait(
        self, request: PollRequest, cancel_event: Optional[asyncio.Event] = None
    ) -> PollOutcome:
        """Poll ``request.fetch_status`` until an outcome is reached.

        Every outcome, including timeouts and transport failures, is returned
        as a ``PollOutcome``; nothing is raised for them.
        """
        config = request.config
        start_time = self.clock()
        deadline = (
            request.deadline
            if request.deadline is not None
            else start_time + config.timeout
        )
        delays = backoff_delays(
            config.initial_delay, config.max_delay, config.backoff_multiplier
        )
        attempts = 0
        transient_failures = 0
        last_response: Optional[StatusResponse] = None

        def outcome(kind: OutcomeKind, **kwargs) -> PollOutcome:
            result = PollOutcome(
                kind=kind,
                resource_id=request.resource_id,
                status=kwargs.pop("status", last_response),
                attempts=attempts,
                elapsed_time=self.clock() - start_time,
                **kwargs,
            )
            self.logger.info(
                f"Finished waiting for {request.resource_id}: {kind.value} "
                f"after {result.attempts} attempt(s)"
            )
            return result

        while True:
            if cancel_event is not None and cancel_event.is_set():
                return outcome(OutcomeKind.cancelled)

            attempts += 1
            try:
                status_response = await request.fetch_status(request.resource_id)
            except Exception as fetch_error:
                if not request.is_transient_error(fetch_error):
                    self.logger.error(
                        f"Error polling {request.resource_id}: {fetch_error}"
                    )
                    return outcome(OutcomeKind.transport_error, error=fetch_error)

                transient_failures += 1
                self.logger.warning(
                    f"Transient error polling {request.resource_id} "
                    f"({transient_failures}/{config.max_transient_failures}): {fetch_error}"
                )
                if transient_failures > config.max_transient_failures:
                    return outcome(OutcomeKind.transport_error, error=fetch_error)
            else:
                transient_failures = 0
                await self._handle_status_change(
                    status_response,
                    last_response.status if last_response is not None else None,
                )
                last_response = status_response

                if request.is_terminal_failure is not None and request.is_terminal_failure(
                    status_response
                ):
                    return outcome(OutcomeKind.terminal_failure)

                if request.is_ready(status_response):
                    return outcome(OutcomeKind.ready)

            if cancel_event is not None and cancel_event.is_set():
                return outcome(OutcomeKind.cancelled)

            remaining = deadline - self.clock()
            if remaining <= 0:
                return outcome(OutcomeKind.timed_out)

            delay = min(self._next_delay(delays, config), remaining)
            self.logger.debug(
                f"{request.resource_id} not ready, waiting {delay:.2f}s before next attempt"
            )
            await self._sleep_unless_cancelled(delay, cancel_event)

            if cancel_event is not None and cancel_event.is_set():
                return outcome(OutcomeKind.cancelled)

            if self.clock() >= deadline:
                return outcome(OutcomeKind.timed_out)


async def wait_until_ready(
    resource_id: str,
    fetch_status: Callable[[str], Awaitable[StatusResponse]],
    is_ready: Callable[[StatusResponse], bool],
    is_terminal_failure: Optional[Callable[[StatusResponse], bool]] = None,
    config: Optional[WaiterConfig] = None,
    cancel_event: Optional[asyncio.Event] = None,
) -> PollOutcome:
    request = PollRequest(
        resource_id=resource_id,
        fetch_status=fetch_status,
        is_ready=is_ready,
        is_terminal_failure=is_terminal_failure,
        config=config or WaiterConfig(),
    )
    return await ResourceWaiter().wait(request, cancel_event=cancel_event)
