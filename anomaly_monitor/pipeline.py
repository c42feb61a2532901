from __future__ import annotations

import json
import logging
from dataclasses import dataclass, replace
from enum import Enum
from typing import Callable, List, Optional, Protocol, Sequence

from .signals import Signal
from .suppression import SuppressionStore


class SignalSender(Protocol):
    def send_signal(self, signal: Signal) -> None: ...


class SignalAnalyst(Protocol):
    def analyze(self, signal: Signal, context: str) -> str: ...


class DeliveryOutcome(str, Enum):
    """Terminal state of a signal in the pipeline."""

    SUPPRESSED = "suppressed"
    SENT = "sent"
    NOTIFICATION_FAILED = "notification_failed"
    DRY_RUN = "dry_run"


@dataclass(frozen=True)
class DeliveryResult:
    signal: Signal
    outcome: DeliveryOutcome

    @property
    def enriched(self) -> bool:
        return bool(self.signal.ai_analysis)


class SignalPipeline:
    """Deduplicates signals against the suppression store, enriches and delivers them.

    Delivery is at-least-once: the suppression key is written only after a
    successful send, and a failed write never undoes the notification.
    """

    def __init__(
        self,
        *,
        sender: SignalSender,
        store: Optional[SuppressionStore],
        ttl_seconds: int,
        analyst: Optional[SignalAnalyst] = None,
        dry_run: bool = False,
        logger: logging.Logger | None = None,
    ) -> None:
        if ttl_seconds <= 0:
            raise ValueError("ttl_seconds must be positive")
        self._sender = sender
        self._store = store
        self._ttl_seconds = ttl_seconds
        self._analyst = analyst
        self._dry_run = dry_run
        self._log = logger or logging.getLogger(__name__)

    def deliver_all(self, signals: Sequence[Signal], context_factory: Callable[[], str]) -> List[DeliveryResult]:
        """Deliver a symbol's signals; the context is built at most once, on first need."""
        cached: List[str] = []

        def context() -> str:
            if not cached:
                cached.append(context_factory())
            return cached[0]

        return [self.deliver(signal, context) for signal in signals]

    def deliver(self, signal: Signal, context: Callable[[], str]) -> DeliveryResult:
        key = signal.suppression_key
        if self._is_suppressed(key):
            self._log.info("Signal %s already sent within the suppression window, skipping.", key)
            return DeliveryResult(signal, DeliveryOutcome.SUPPRESSED)

        self._log.info(
            "Signal %s: %s",
            signal.kind.value,
            signal.description,
            extra={"symbol": signal.symbol},
        )
        signal = self._enrich(signal, context)

        if self._dry_run:
            self._log.info("DRY RUN - Would send signal:\n%s", _describe(signal))
            return DeliveryResult(signal, DeliveryOutcome.DRY_RUN)

        try:
            self._sender.send_signal(signal)
        except Exception:
            self._log.exception("Failed to send signal %s", key)
            return DeliveryResult(signal, DeliveryOutcome.NOTIFICATION_FAILED)

        self._remember(key)
        return DeliveryResult(signal, DeliveryOutcome.SENT)

    def _is_suppressed(self, key: str) -> bool:
        if self._store is None:
            return False
        try:
            return self._store.exists(key)
        except Exception as exc:
            self._log.warning("Suppression lookup for %s failed, treating as new: %s", key, exc)
            return False

    def _enrich(self, signal: Signal, context: Callable[[], str]) -> Signal:
        if self._analyst is None:
            return signal
        try:
            analysis = self._analyst.analyze(signal, context())
        except Exception as exc:
            self._log.warning(
                "AI analysis failed, sending without it: %s",
                exc,
                extra={"symbol": signal.symbol, "kind": signal.kind.value},
            )
            return signal
        return replace(signal, ai_analysis=analysis)

    def _remember(self, key: str) -> None:
        if self._store is None:
            return
        try:
            self._store.put(key, self._ttl_seconds)
        except Exception as exc:
            self._log.warning("Failed to record suppression key %s: %s", key, exc)
            return
        self._log.info("Signal %s cached for %s seconds.", key, self._ttl_seconds)


def _describe(signal: Signal) -> str:
    lines = [
        f"Symbol: {signal.symbol}",
        f"Kind: {signal.kind.label}",
        f"Time: {signal.timestamp.isoformat()}",
        f"Description: {signal.description}",
        f"Metadata: {json.dumps(signal.metadata, default=str, sort_keys=True)}",
    ]
    if signal.ai_analysis:
        lines.append(f"AI analysis: {signal.ai_analysis}")
    return "\n".join(lines)
