from enum import Enum
from typing import Awaitable, Callable, Optional

from pydantic import BaseModel, ConfigDict, Field, model_validator

from resource_waiter.errors import (
    TerminalStateError,
    TransientFetchError,
    WaiterCancelledError,
    WaiterTimeoutError,
    WaiterTransportError,
)


class WaiterConfig(BaseModel):
    initial_delay: float = Field(default=1.0, gt=0)
    max_delay: float = Field(default=32.0, gt=0)
    backoff_multiplier: float = Field(default=2.0, ge=1.0)
    timeout: float = Field(default=300.0, gt=0)  # 5 minutes
    max_transient_failures: int = Field(default=5, ge=0)
    jitter: bool = False

    @model_validator(mode="after")
    def check_delay_ceiling(self) -> "WaiterConfig":
        if self.max_delay < self.initial_delay:
            raise ValueError("max_delay must be >= initial_delay")
        return self


class StatusResponse(BaseModel):
    resource_id: str
    status: str
    raw_response: dict
    elapsed_time: float


def is_transient_fetch_error(error: BaseException) -> bool:
    return isinstance(error, TransientFetchError)


class PollRequest(BaseModel):
    """Everything the waiter needs to poll one resource.

    ``deadline`` is an absolute timestamp on the waiter's clock. When it is
    left unset the waiter derives it from ``config.timeout`` at the start of
    the call.
    """

    resource_id: str
    fetch_status: Callable[[str], Awaitable[StatusResponse]]
    is_ready: Callable[[StatusResponse], bool]
    is_terminal_failure: Optional[Callable[[StatusResponse], bool]] = None
    is_transient_error: Callable[[BaseException], bool] = Field(
        default=is_transient_fetch_error
    )
    config: WaiterConfig = Field(default_factory=WaiterConfig)
    deadline: Optional[float] = None


class OutcomeKind(str, Enum):
    ready = "ready"
    timed_out = "timed_out"
    terminal_failure = "terminal_failure"
    transport_error = "transport_error"
    cancelled = "cancelled"


class PollOutcome(BaseModel):
    model_config = ConfigDict(arbitrary_types_allowed=True)

    kind: OutcomeKind
    resource_id: str
    status: Optional[StatusResponse] = None
    error: Optional[BaseException] = None
    attempts: int = 0
    elapsed_time: float = 0.0

    @property
    def is_ready(self) -> bool:
        return self.kind == OutcomeKind.ready

    def unwrap(self) -> StatusResponse:
        """Return the ready status or raise the error matching this outcome."""
        if self.kind == OutcomeKind.ready:
            return self.status
        if self.kind == OutcomeKind.timed_out:
            raise WaiterTimeoutError(
                f"{self.resource_id} not ready after {self.elapsed_time:.2f}s",
                outcome=self,
            )
        if self.kind == OutcomeKind.terminal_failure:
            state = self.status.status if self.status is not None else "unknown"
            raise TerminalStateError(
                f"{self.resource_id} entered terminal state {state}",
                outcome=self,
            )
        if self.kind == OutcomeKind.cancelled:
            raise WaiterCancelledError(
                f"Waiting for {self.resource_id} was cancelled", outcome=self
            )
        raise WaiterTransportError(
            f"Could not fetch status of {self.resource_id}: {self.error}",
            outcome=self,
        ) from self.error
