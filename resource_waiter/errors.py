from typing import Any


class FetchError(Exception):
    """A status read failed."""


class TransientFetchError(FetchError):
    """A status read failed for reasons unrelated to the resource itself."""


class WaiterError(Exception):
    def __init__(self, message: str, outcome: Any = None):
        super().__init__(message)
        self.outcome = outcome


class WaiterTimeoutError(WaiterError, TimeoutError):
    pass


class TerminalStateError(WaiterError):
    pass


class WaiterTransportError(WaiterError):
    pass


class WaiterCancelledError(WaiterError):
    pass
