"""
Cooperative cancellation for analysis runs.

Engines poll the token at iteration boundaries. A token is cancelled
explicitly, by its deadline passing, or by its parent being cancelled.
"""
import threading
import time
from typing import Optional

from geo_analysis.core.exceptions import AnalysisCancelledException


class CancellationToken:
    """Thread-safe cancellation flag with an optional monotonic deadline."""

    def __init__(
        self,
        deadline: Optional[float] = None,
        parent: Optional["CancellationToken"] = None,
    ):
        self._event = threading.Event()
        self._deadline = deadline
        self._parent = parent

    @classmethod
    def with_timeout(
        cls,
        seconds: float,
        parent: Optional["CancellationToken"] = None,
    ) -> "CancellationToken":
        return cls(deadline=time.monotonic() + seconds, parent=parent)

    def child(self) -> "CancellationToken":
        """Token cancelled together with this one, but cancellable on its own."""
        return CancellationToken(parent=self)

    def cancel(self) -> None:
        self._event.set()

    @property
    def deadline_exceeded(self) -> bool:
        if self._deadline is not None and time.monotonic() >= self._deadline:
            return True
        return self._parent.deadline_exceeded if self._parent else False

    @property
    def is_cancelled(self) -> bool:
        if self._event.is_set() or self.deadline_exceeded:
            return True
        return self._parent.is_cancelled if self._parent else False

    def raise_if_cancelled(self, stage: Optional[str] = None) -> None:
        """
        Raise AnalysisCancelledException when the run should stop.

        Deadline expiry is reported as such even if an explicit cancel
        also happened, so callers can tell timeouts apart.
        """
        if not self.is_cancelled:
            return
        reason = (
            AnalysisCancelledException.REASON_DEADLINE
            if self.deadline_exceeded
            else AnalysisCancelledException.REASON_CANCELLED
        )
        raise AnalysisCancelledException(reason=reason, stage=stage)


def check_cancelled(token: Optional[CancellationToken], stage: str) -> None:
    """Poll an optional token."""
    if token is not None:
        token.raise_if_cancelled(stage)
