from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from typing import Any, Dict


class SignalKind(str, Enum):
    """Detector family that produced a signal."""

    VOLUME = "volume"
    OPEN_INTEREST = "open_interest"
    LONG_SHORT_RATIO = "long_short_ratio"
    # Reserved for multi-detector fusion; no detector emits it yet.
    COMPOSITE = "composite"

    @property
    def label(self) -> str:
        return _LABELS[self]

    @property
    def card_color(self) -> str:
        return _CARD_COLORS.get(self, "blue")


_LABELS = {
    SignalKind.VOLUME: "Volume Anomaly",
    SignalKind.OPEN_INTEREST: "Open Interest Shift",
    SignalKind.LONG_SHORT_RATIO: "Long/Short Ratio Extreme",
    SignalKind.COMPOSITE: "Composite Signal",
}

_CARD_COLORS = {
    SignalKind.VOLUME: "orange",
    SignalKind.OPEN_INTEREST: "orange",
    SignalKind.LONG_SHORT_RATIO: "purple",
}


@dataclass(frozen=True)
class Signal:
    """Normalized anomaly signal fed into the delivery pipeline."""

    symbol: str
    kind: SignalKind
    timestamp: datetime
    description: str
    metadata: Dict[str, Any] = field(default_factory=dict)
    ai_analysis: str | None = None

    @property
    def suppression_key(self) -> str:
        return suppression_key(self.symbol, self.kind)


def suppression_key(symbol: str, kind: SignalKind) -> str:
    return f"{symbol}:{kind.value}"
