from __future__ import annotations

import logging
import math
import time
from dataclasses import asdict, dataclass, field
from datetime import datetime, timezone
from typing import Dict, List, Optional, Protocol, Sequence

from market_data.binance import BinanceClientConfig, BinanceFuturesClient, interval_to_milliseconds
from market_data.models import MarketSnapshot, parse_failure_total

from .ai_client import AIAnalysisClient
from .analysis import analyze, build_context
from .config import ConfigurationError, MonitorConfig
from .detectors import DEFAULT_THRESHOLDS, DetectorThresholds
from .lark_client import LarkClient, LarkConfig
from .pipeline import DeliveryOutcome, DeliveryResult, SignalPipeline
from .suppression import SuppressionStore, build_suppression_store


class SnapshotFetcher(Protocol):
    def fetch_snapshot(self, symbol: str, interval: str, limit: int) -> MarketSnapshot: ...


@dataclass
class RunSummary:
    started_at: datetime
    finished_at: datetime | None = None
    symbols: int = 0
    failed_symbols: List[str] = field(default_factory=list)
    signals: int = 0
    sent: int = 0
    suppressed: int = 0
    notification_failures: int = 0
    dry_run: int = 0
    parse_failures: int = 0

    def record(self, results: Sequence[DeliveryResult]) -> None:
        self.signals += len(results)
        for result in results:
            if result.outcome is DeliveryOutcome.SENT:
                self.sent += 1
            elif result.outcome is DeliveryOutcome.SUPPRESSED:
                self.suppressed += 1
            elif result.outcome is DeliveryOutcome.NOTIFICATION_FAILED:
                self.notification_failures += 1
            elif result.outcome is DeliveryOutcome.DRY_RUN:
                self.dry_run += 1

    def to_payload(self) -> Dict[str, object]:
        payload = asdict(self)
        payload["started_at"] = self.started_at.isoformat()
        payload["finished_at"] = self.finished_at.isoformat() if self.finished_at else None
        return payload


class AnomalyMonitor:
    """Runs the detectors for every configured symbol and hands signals to the pipeline."""

    def __init__(
        self,
        *,
        fetcher: SnapshotFetcher,
        pipeline: SignalPipeline,
        symbols: Sequence[str],
        interval: str,
        lookback: int,
        thresholds: DetectorThresholds = DEFAULT_THRESHOLDS,
        poll_epsilon_minutes: float = 0.1,
        logger: Optional[logging.Logger] = None,
    ) -> None:
        self._symbols = [symbol.strip().upper() for symbol in symbols if symbol.strip()]
        if not self._symbols:
            raise ValueError("At least one symbol is required.")
        self._fetcher = fetcher
        self._pipeline = pipeline
        self._interval = interval
        self._lookback = lookback
        self._thresholds = thresholds
        self._log = logger or logging.getLogger(__name__)

        self._interval_seconds = interval_to_milliseconds(interval) / 1000.0
        self._epsilon_seconds = poll_epsilon_minutes * 60.0

    @property
    def symbols(self) -> List[str]:
        return list(self._symbols)

    def run_once(self) -> RunSummary:
        """Check every symbol once; a failing symbol never stops the others."""
        summary = RunSummary(started_at=datetime.now(timezone.utc))
        parse_failures_before = parse_failure_total()
        self._log.info("Starting check of %s symbols...", len(self._symbols))

        for symbol in self._symbols:
            summary.symbols += 1
            try:
                results = self._process_symbol(symbol)
            except Exception:
                self._log.exception("Failed to process %s", symbol)
                summary.failed_symbols.append(symbol)
                continue
            summary.record(results)

        summary.parse_failures = parse_failure_total() - parse_failures_before
        summary.finished_at = datetime.now(timezone.utc)
        if summary.parse_failures:
            self._log.warning("%s malformed numeric fields were replaced by 0.0 this run.", summary.parse_failures)
        self._log.info(
            "Check finished: %s signal(s), %s sent, %s suppressed, %s failed, %s symbol(s) skipped.",
            summary.signals,
            summary.sent,
            summary.suppressed,
            summary.notification_failures,
            len(summary.failed_symbols),
        )
        return summary

    def run(self) -> None:
        wait_seconds = self._interval_seconds + self._epsilon_seconds
        self._log.info(
            "Monitoring %s symbols on %s timeframe (poll every %.1fs)",
            len(self._symbols),
            self._interval,
            wait_seconds,
        )

        next_poll = self._next_poll_time()
        try:
            while True:
                now_epoch = datetime.now(timezone.utc).timestamp()
                sleep_for = next_poll - now_epoch
                if sleep_for > 0:
                    time.sleep(sleep_for)

                self.run_once()
                next_poll = self._next_poll_time()
        except KeyboardInterrupt:
            self._log.info("Anomaly monitor stopped by user.")

    def _process_symbol(self, symbol: str) -> List[DeliveryResult]:
        self._log.info("Fetching market data for %s...", symbol)
        snapshot = self._fetcher.fetch_snapshot(symbol, self._interval, self._lookback)

        signals = analyze(snapshot, self._thresholds)
        if not signals:
            self._log.info("No signals for %s.", symbol)
            return []

        self._log.info("Found %s signal(s) for %s.", len(signals), symbol)
        return self._pipeline.deliver_all(signals, lambda: build_context(snapshot))

    def _next_poll_time(self) -> float:
        """Return the next UTC timestamp (epoch seconds) to poll."""
        now_epoch = datetime.now(timezone.utc).timestamp()
        interval = self._interval_seconds
        epsilon = self._epsilon_seconds
        base = math.floor(now_epoch / interval) * interval
        candidate = base + epsilon
        if candidate <= now_epoch:
            candidate += interval
        return candidate


@dataclass
class MonitorResources:
    """A wired monitor together with the clients that need closing."""

    monitor: AnomalyMonitor
    fetcher: BinanceFuturesClient
    lark: LarkClient
    analyst: Optional[AIAnalysisClient]
    store: Optional[SuppressionStore]

    def close(self) -> None:
        self.fetcher.close()
        self.lark.close()
        if self.analyst is not None:
            self.analyst.close()
        if self.store is not None:
            self.store.close()


def build_monitor(config: MonitorConfig, logger: Optional[logging.Logger] = None) -> MonitorResources:
    """Wire the production clients described by ``config``."""
    log = logger or logging.getLogger("anomaly_monitor")
    proxies = {"http": config.proxy, "https": config.proxy} if config.proxy else None

    try:
        binance_config = BinanceClientConfig(base_url=config.binance_base_url, proxies=proxies)
        lark_config = LarkConfig(
            webhook_url=config.webhook_url,
            utc_offset_hours=config.utc_offset_hours,
            proxy=config.proxy,
        )
    except ValueError as exc:
        raise ConfigurationError(str(exc)) from exc

    fetcher = BinanceFuturesClient(binance_config, logger=log.getChild("binance"))
    lark = LarkClient(lark_config, logger=log.getChild("lark"))
    analyst = AIAnalysisClient(config.ai, logger=log.getChild("ai")) if config.ai else None

    try:
        store = build_suppression_store(
            config.suppression_backend,
            state_file=config.state_file,
            database_url=config.database_url,
        )
    except Exception as exc:
        log.warning("Suppression store unavailable, signals will not be deduplicated: %s", exc)
        store = None

    pipeline = SignalPipeline(
        sender=lark,
        store=store,
        ttl_seconds=config.suppression_ttl_seconds,
        analyst=analyst,
        dry_run=config.dry_run,
        logger=log.getChild("pipeline"),
    )
    monitor = AnomalyMonitor(
        fetcher=fetcher,
        pipeline=pipeline,
        symbols=config.symbols,
        interval=config.interval,
        lookback=config.lookback,
        thresholds=config.thresholds,
        poll_epsilon_minutes=config.poll_epsilon_minutes,
        logger=log,
    )
    return MonitorResources(monitor=monitor, fetcher=fetcher, lark=lark, analyst=analyst, store=store)
