"""Circuit breaker and metrics tracking for upstream catalog and LLM calls."""

from __future__ import annotations

import asyncio
import json
import logging
import time
from collections import defaultdict
from dataclasses import asdict, dataclass
from typing import Any, Awaitable, Callable, DefaultDict

from app.core.errors import UpstreamUnavailable

logger = logging.getLogger("app.ingestion.upstream")


class CircuitOpenError(UpstreamUnavailable):
    """Raised when a source circuit is open and calls are temporarily blocked."""


class SourceCircuit:
    """Failure streak for one upstream source.

    ``threshold`` consecutive failures open the circuit for the current
    backoff, which doubles on every opening up to ``max_backoff_seconds``.
    A success closes it and resets the backoff.
    """

    def __init__(self, threshold: int, base_backoff_seconds: float, max_backoff_seconds: float) -> None:
        self.threshold = threshold
        self.base_backoff_seconds = base_backoff_seconds
        self.max_backoff_seconds = max_backoff_seconds
        self.failure_streak = 0
        self.open_until = 0.0
        self.backoff = base_backoff_seconds
        self.opened_count = 0

    def cooldown(self) -> float:
        return max(0.0, self.open_until - time.monotonic())

    def is_open(self) -> bool:
        return self.cooldown() > 0

    def succeeded(self) -> None:
        self.failure_streak = 0
        self.open_until = 0.0
        self.backoff = self.base_backoff_seconds

    def failed(self) -> None:
        self.failure_streak += 1
        if self.failure_streak < self.threshold:
            return
        self.open_until = time.monotonic() + self.backoff
        self.opened_count += 1
        self.failure_streak = 0
        self.backoff = min(self.backoff * 2, self.max_backoff_seconds)

    def snapshot(self) -> dict[str, Any]:
        return {
            "failure_streak": self.failure_streak,
            "open_until": self.open_until,
            "remaining_cooldown": self.cooldown(),
            "current_backoff": self.backoff,
            "opened_count": self.opened_count,
        }


@dataclass
class OperationMetrics:
    started: int = 0
    succeeded: int = 0
    failed: int = 0
    skipped: int = 0
    last_latency_ms: float | None = None
    last_error: str | None = None


def _log(level: int, event: str, **fields: Any) -> None:
    logger.log(level, json.dumps({"event": event, **fields}, default=str))


class UpstreamMonitor:
    """Track upstream call performance and enforce per-source circuit breaking.

    Every failure mode of a tracked call (exception, timeout, open circuit)
    surfaces to the caller as :class:`UpstreamUnavailable`, so fallback tiers
    only need to handle one signal.
    """

    def __init__(
        self,
        *,
        circuit_threshold: int = 3,
        base_backoff_seconds: float = 15.0,
        max_backoff_seconds: float = 300.0,
    ) -> None:
        self._metrics: DefaultDict[str, DefaultDict[str, OperationMetrics]] = defaultdict(
            lambda: defaultdict(OperationMetrics)
        )
        self._circuits: DefaultDict[str, SourceCircuit] = defaultdict(
            lambda: SourceCircuit(circuit_threshold, base_backoff_seconds, max_backoff_seconds)
        )
        self._lock = asyncio.Lock()

    def allow_call(self, source: str) -> bool:
        return not self._circuits[source].is_open()

    async def track(
        self,
        source: str,
        operation: str,
        func: Callable[[], Awaitable[Any]],
        *,
        timeout: float | None = None,
        context: dict[str, Any] | None = None,
    ) -> Any:
        """Run ``func`` under the source circuit, bounded by ``timeout`` seconds."""
        context = context or {}
        async with self._lock:
            circuit = self._circuits[source]
            metrics = self._metrics[source][operation]
            if circuit.is_open():
                metrics.skipped += 1
                remaining = circuit.cooldown()
                _log(
                    logging.WARNING,
                    "upstream_circuit_open",
                    source=source,
                    operation=operation,
                    context=context,
                    remaining_cooldown=remaining,
                )
                raise CircuitOpenError(f"{source} circuit open for {remaining:.2f}s")
            metrics.started += 1

        start = time.monotonic()
        try:
            if timeout:
                result = await asyncio.wait_for(func(), timeout=timeout)
            else:
                result = await func()
        except Exception as exc:  # noqa: BLE001
            latency_ms = (time.monotonic() - start) * 1000
            error = str(exc) or type(exc).__name__
            async with self._lock:
                metrics.failed += 1
                metrics.last_latency_ms = latency_ms
                metrics.last_error = error
                circuit.failed()
                circuit_state = circuit.snapshot()
            _log(
                logging.WARNING,
                "upstream_failure",
                source=source,
                operation=operation,
                error=error,
                latency_ms=round(latency_ms, 2),
                context=context,
                circuit=circuit_state,
            )
            raise UpstreamUnavailable(f"{source}.{operation} failed: {error}") from exc

        latency_ms = (time.monotonic() - start) * 1000
        async with self._lock:
            metrics.succeeded += 1
            metrics.last_latency_ms = latency_ms
            metrics.last_error = None
            circuit.succeeded()
        _log(
            logging.DEBUG,
            "upstream_success",
            source=source,
            operation=operation,
            latency_ms=round(latency_ms, 2),
            context=context,
        )
        return result

    async def snapshot(self) -> dict[str, Any]:
        """Per-source circuit state and per-operation counters."""
        async with self._lock:
            return {
                source: {
                    "circuit": self._circuits[source].snapshot(),
                    "operations": {name: asdict(metrics) for name, metrics in operations.items()},
                }
                for source, operations in self._metrics.items()
            }

    def reset(self) -> None:
        self._metrics.clear()
        self._circuits.clear()


upstream_monitor = UpstreamMonitor()
