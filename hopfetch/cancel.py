from typing import Callable


class CancelToken:
    """
    Cancellation token threaded through a request and all of its redirect hops.

    - cancel() is idempotent: listeners fire once, in registration order
    - removing a listener that is not registered is a no-op
    - the orchestrator also checks `cancelled` before every hop
    """

    def __init__(self):
        self._cancelled = False
        self._listeners: list[Callable[[], None]] = []
        self.reason: str | None = None

    @property
    def cancelled(self) -> bool:
        return self._cancelled

    def cancel(self, reason: str | None = None) -> None:
        if self._cancelled:
            return
        self._cancelled = True
        self.reason = reason
        for callback in list(self._listeners):
            callback()

    def add_listener(self, callback: Callable[[], None]) -> None:
        self._listeners.append(callback)

    def remove_listener(self, callback: Callable[[], None]) -> None:
        try:
            self._listeners.remove(callback)
        except ValueError:
            pass

    def __repr__(self) -> str:
        state = "cancelled" if self._cancelled else "active"
        return f"<CancelToken {state} listeners={len(self._listeners)}>"
