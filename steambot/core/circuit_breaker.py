"""
Circuit breakers for the model provider and the SMS carrier.

After ``failure_threshold`` consecutive failures the breaker opens and callers
get an immediate "unavailable" instead of waiting on an upstream that is
already down. After ``timeout_seconds`` a few probe calls are let through;
enough probe successes close it again, any probe failure re-opens it.
"""
import asyncio
import threading
import time
from dataclasses import dataclass
from enum import Enum
from typing import Awaitable, Callable, ParamSpec, TypeVar

from steambot.core.exceptions import CircuitBreakerOpenError
from steambot.core.logging import get_logger

logger = get_logger(__name__)

P = ParamSpec("P")
T = TypeVar("T")

Clock = Callable[[], float]


class CircuitState(Enum):
    CLOSED = "closed"
    OPEN = "open"
    HALF_OPEN = "half_open"


@dataclass(frozen=True)
class CircuitBreakerConfig:
    failure_threshold: int = 5
    success_threshold: int = 2     # probe successes needed to close
    timeout_seconds: float = 30.0  # open period before probing
    half_open_max_calls: int = 3   # probes admitted per half-open period


class CircuitBreaker:
    """
    Per-upstream failure gate.

    Callers that own a retry loop use ``can_execute`` / ``record_success`` /
    ``record_failure`` directly; everyone else awaits through ``execute``.
    """

    _instances: dict[str, "CircuitBreaker"] = {}
    _instances_lock = threading.Lock()

    def __init__(
        self,
        service_name: str,
        config: CircuitBreakerConfig | None = None,
        clock: Clock = time.monotonic,
    ):
        self.service_name = service_name
        self.config = config or CircuitBreakerConfig()
        self._clock = clock
        # Celery tasks each get a fresh event loop, so an asyncio.Lock won't do
        self._lock = threading.Lock()
        self._state = CircuitState.CLOSED
        self._failures = 0
        self._probe_successes = 0
        self._probes_admitted = 0
        self._opened_at = 0.0

    @classmethod
    def get_instance(cls, service_name: str, config: CircuitBreakerConfig | None = None) -> "CircuitBreaker":
        """Process-wide breaker for ``service_name``; ``config`` only applies on first use"""
        with cls._instances_lock:
            breaker = cls._instances.get(service_name)
            if breaker is None:
                breaker = cls._instances[service_name] = cls(service_name, config)
            return breaker

    @classmethod
    def reset_all(cls) -> None:
        with cls._instances_lock:
            cls._instances.clear()

    @property
    def state(self) -> CircuitState:
        return self._state

    @property
    def failure_count(self) -> int:
        return self._failures

    @property
    def is_closed(self) -> bool:
        return self._state is CircuitState.CLOSED

    @property
    def is_open(self) -> bool:
        return self._state is CircuitState.OPEN

    @property
    def is_half_open(self) -> bool:
        return self._state is CircuitState.HALF_OPEN

    def _move(self, new_state: CircuitState) -> None:
        if new_state is self._state:
            return
        logger.info(
            "Circuit breaker state changed",
            extra_data={
                "service": self.service_name,
                "from": self._state.value,
                "to": new_state.value,
                "failures": self._failures,
            }
        )
        self._state = new_state
        self._probe_successes = 0
        self._probes_admitted = 0
        if new_state is CircuitState.OPEN:
            self._opened_at = self._clock()
        elif new_state is CircuitState.CLOSED:
            self._failures = 0

    def _cooled_down(self) -> bool:
        return self._clock() - self._opened_at >= self.config.timeout_seconds

    def can_execute(self) -> bool:
        """Whether a call may go out now; admitting a half-open probe uses up a slot"""
        with self._lock:
            if self._state is CircuitState.OPEN:
                if not self._cooled_down():
                    return False
                self._move(CircuitState.HALF_OPEN)

            if self._state is CircuitState.HALF_OPEN:
                if self._probes_admitted >= self.config.half_open_max_calls:
                    return False
                self._probes_admitted += 1
            return True

    def record_success(self) -> None:
        with self._lock:
            if self._state is CircuitState.HALF_OPEN:
                self._probe_successes += 1
                if self._probe_successes >= self.config.success_threshold:
                    self._move(CircuitState.CLOSED)
            else:
                self._failures = 0

    def record_failure(self, error: BaseException | None = None) -> None:
        with self._lock:
            self._failures += 1
            logger.warning(
                "Upstream call failed",
                extra_data={
                    "service": self.service_name,
                    "failures": self._failures,
                    "threshold": self.config.failure_threshold,
                    "error": type(error).__name__ if error else None,
                }
            )
            if self._state is CircuitState.HALF_OPEN or self._failures >= self.config.failure_threshold:
                self._move(CircuitState.OPEN)
                # any failure while open pushes the next probe out
                self._opened_at = self._clock()

    def get_retry_after(self) -> float:
        """Seconds left in the open period, 0 when not open"""
        if self._state is not CircuitState.OPEN:
            return 0.0
        return max(0.0, self.config.timeout_seconds - (self._clock() - self._opened_at))

    async def execute(self, func: Callable[P, Awaitable[T]], *args: P.args, **kwargs: P.kwargs) -> T:
        """
        Await ``func`` through the breaker.

        Raises:
            CircuitBreakerOpenError: the circuit is open (or out of probe slots)
        """
        if not self.can_execute():
            raise CircuitBreakerOpenError(self.service_name, self.get_retry_after())
        try:
            result = await func(*args, **kwargs)
        except asyncio.CancelledError:
            raise
        except Exception as e:
            self.record_failure(e)
            raise
        self.record_success()
        return result


def get_model_circuit_breaker() -> CircuitBreaker:
    return CircuitBreaker.get_instance(
        "model_provider", CircuitBreakerConfig(failure_threshold=5, timeout_seconds=30.0)
    )


def get_sms_circuit_breaker() -> CircuitBreaker:
    return CircuitBreaker.get_instance(
        "twilio", CircuitBreakerConfig(failure_threshold=5, timeout_seconds=60.0)
    )
