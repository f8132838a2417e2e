"""
Single-flight coalescing of identical in-flight generations.

Only one call per key runs at a time. Callers arriving while it runs
wait for it and share its result. When the running call fails, waiters
do not inherit the failure: they go around again and one of them runs.
"""

import logging
import threading
from typing import Any, Callable, Dict, Optional, Tuple, TypeVar

logger = logging.getLogger(__name__)

T = TypeVar("T")

_WAIT_SLICE_SEC = 0.05


class FlightCancelled(Exception):
    """A waiter was cancelled before the in-flight call finished."""


class _Call:
    __slots__ = ("done", "result", "failed")

    def __init__(self):
        self.done = threading.Event()
        self.result: Any = None
        self.failed = False


class SingleFlightGroup:

    def __init__(self):
        self._in_flight: Dict[str, _Call] = {}
        self._lock = threading.Lock()

    def do(
        self,
        key: str,
        fn: Callable[[], T],
        is_cancelled: Optional[Callable[[], bool]] = None,
    ) -> Tuple[T, bool]:
        """
        Run fn under single-flight semantics.

        Returns:
            (result, shared) where shared is True when the result came from
            another caller's run.

        Raises:
            Whatever fn raises, for the caller that ran it.
            FlightCancelled if is_cancelled() turns true while waiting.
        """
        while True:
            with self._lock:
                call = self._in_flight.get(key)
                leader = call is None
                if leader:
                    call = _Call()
                    self._in_flight[key] = call

            if leader:
                return self._run(key, call, fn), False

            self._wait(call, is_cancelled)
            if not call.failed:
                return call.result, True
            logger.debug(f"In-flight call for {key[:12]} failed; retrying as a new caller")

    def _run(self, key: str, call: _Call, fn: Callable[[], T]) -> T:
        try:
            call.result = fn()
            return call.result
        except BaseException:
            call.failed = True
            raise
        finally:
            with self._lock:
                self._in_flight.pop(key, None)
            call.done.set()

    @staticmethod
    def _wait(call: _Call, is_cancelled: Optional[Callable[[], bool]]) -> None:
        if is_cancelled is None:
            call.done.wait()
            return
        while not call.done.wait(_WAIT_SLICE_SEC):
            if is_cancelled():
                raise FlightCancelled()

    def in_flight(self) -> int:
        with self._lock:
            return len(self._in_flight)
