"""
Idempotency and per-caller cooldown for sponsored registration.

State is process-local and lost on restart; the on-chain lookup stays the
source of truth. A name recorded as processed is never submitted again by
this process, even when the outcome of the earlier submission is unknown.
"""
import threading
import time
from typing import Callable, Dict, Optional, Set

from agent_directory.errors import ConflictError, RateLimitedError


class GateStore:
    """Interface for gate state. Every method is atomic."""

    def admit(self, caller_id: str, name: str) -> None:
        """Check cooldown and idempotency, then stamp the caller and reserve the name."""
        raise NotImplementedError

    def release(self, name: str) -> None:
        """Drop a reservation taken by ``admit`` without marking the name processed."""
        raise NotImplementedError

    def mark_processed(self, name: str) -> None:
        raise NotImplementedError

    def touch(self, caller_id: str) -> None:
        raise NotImplementedError

    def is_processed(self, name: str) -> bool:
        raise NotImplementedError


class InMemoryGateStore(GateStore):

    def __init__(self, cooldown_seconds: float = 60.0, clock: Callable[[], float] = time.monotonic):
        self.cooldown_seconds = cooldown_seconds
        self._clock = clock
        self._lock = threading.Lock()
        self._processed: Set[str] = set()
        self._in_flight: Set[str] = set()
        self._last_request: Dict[str, float] = {}

    def admit(self, caller_id: str, name: str) -> None:
        key = name.lower()
        with self._lock:
            now = self._clock()
            last = self._last_request.get(caller_id)
            if last is not None and now - last < self.cooldown_seconds:
                raise RateLimitedError(
                    "Please wait before registering another agent",
                    retry_after=self.cooldown_seconds - (now - last),
                )
            if key in self._processed:
                raise ConflictError("This name has already been registered")
            if key in self._in_flight:
                raise ConflictError("A registration for this name is already in progress")
            self._last_request[caller_id] = now
            self._in_flight.add(key)

    def release(self, name: str) -> None:
        with self._lock:
            self._in_flight.discard(name.lower())

    def mark_processed(self, name: str) -> None:
        key = name.lower()
        with self._lock:
            self._processed.add(key)
            self._in_flight.discard(key)

    def touch(self, caller_id: str) -> None:
        with self._lock:
            self._last_request[caller_id] = self._clock()

    def is_processed(self, name: str) -> bool:
        with self._lock:
            return name.lower() in self._processed

    def last_request(self, caller_id: str) -> Optional[float]:
        with self._lock:
            return self._last_request.get(caller_id)
