import asyncio
import time
from typing import Callable, Optional

class CircuitOpenError(RuntimeError):
    pass

class CircuitBreaker:
    """
    Simple async in-memory circuit breaker.

    Usage:
      cb = CircuitBreaker(name="postgres", failure_threshold=3, recovery_timeout=30, half_open_success_threshold=1)

    Behavior:
      - CLOSED: normal operation; failures increment fail_count.
      - OPEN: immediately raise CircuitOpenError from before_call().
      - HALF_OPEN: allows `max_concurrent_half_open_probes` probes to check the service; enough
        successful probes close the circuit, a failing probe reopens it.
    """
    def __init__(
        self,
        name: str,
        failure_threshold: int = 5,
        recovery_timeout: float = 30.0,
        half_open_success_threshold: int = 1,
        max_concurrent_half_open_probes: int = 1,
        clock: Callable[[], float] = time.monotonic,
    ):
        self.name = name
        self.failure_threshold = max(1, int(failure_threshold))
        self.recovery_timeout = float(recovery_timeout)
        self.half_open_success_threshold = max(1, int(half_open_success_threshold))
        self.max_concurrent_half_open_probes = max_concurrent_half_open_probes
        self._clock = clock

        self._state = "CLOSED"  # CLOSED | OPEN | HALF_OPEN
        self._fail_count = 0
        self._opened_at: Optional[float] = None
        self._half_open_success_count = 0

        self._lock = asyncio.Lock()
        self._half_open_semaphore = asyncio.Semaphore(self.max_concurrent_half_open_probes)

    @property
    def state(self) -> str:
        return self._state

    def _maybe_transition(self):
        # called under lock before allowing calls
        if self._state == "OPEN" and self._opened_at is not None:
            if self._clock() - self._opened_at >= self.recovery_timeout:
                self._state = "HALF_OPEN"
                self._half_open_success_count = 0

    async def before_call(self):
        async with self._lock:
            self._maybe_transition()
            if self._state == "OPEN":
                raise CircuitOpenError(f"circuit {self.name} is open")

    async def record_success(self):
        async with self._lock:
            if self._state == "HALF_OPEN":
                self._half_open_success_count += 1
                if self._half_open_success_count >= self.half_open_success_threshold:
                    self._close()
            elif self._state == "OPEN":
                self._close()
            else:
                self._fail_count = 0

    async def record_failure(self):
        async with self._lock:
            if self._state == "HALF_OPEN":
                # any failing probe re-opens immediately
                self._open()
            elif self._state == "CLOSED":
                self._fail_count += 1
                if self._fail_count >= self.failure_threshold:
                    self._open()

    def _open(self):
        self._state = "OPEN"
        self._opened_at = self._clock()
        self._fail_count = 0
        self._half_open_success_count = 0

    def _close(self):
        self._state = "CLOSED"
        self._fail_count = 0
        self._opened_at = None
        self._half_open_success_count = 0

    async def acquire_half_open_probe(self, timeout: Optional[float] = None) -> bool:
        """Acquire permission to run a probe when in HALF_OPEN. Returns True if acquired."""
        try:
            await asyncio.wait_for(self._half_open_semaphore.acquire(), timeout=timeout)
            return True
        except asyncio.TimeoutError:
            return False

    def release_half_open_probe(self):
        self._half_open_semaphore.release()

    def reset(self):
        self._close()


db_circuit = CircuitBreaker(name="postgres", failure_threshold=5, recovery_timeout=10.0)
