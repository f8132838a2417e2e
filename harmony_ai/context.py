"""Per-request identity and cancellation handle."""

import threading
from dataclasses import dataclass, field
from typing import Optional


@dataclass
class GenerationContext:
    """
    Identity resolved by the upstream auth layer, plus a cancel signal.

    The route layer calls cancel() when the client disconnects; the
    orchestrator stops waiting on the in-flight provider call.
    """

    user_id: str
    tier: str = "free"
    _cancel_event: threading.Event = field(default_factory=threading.Event, repr=False)
    _parent: Optional["GenerationContext"] = field(default=None, repr=False)

    def cancel(self) -> None:
        self._cancel_event.set()

    @property
    def cancelled(self) -> bool:
        if self._cancel_event.is_set():
            return True
        return self._parent is not None and self._parent.cancelled

    def attempt(self) -> "GenerationContext":
        """Child context for one provider attempt: cancelled with its parent, or on its own."""
        return GenerationContext(user_id=self.user_id, tier=self.tier, _parent=self)
