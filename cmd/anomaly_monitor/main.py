from __future__ import annotations

import argparse
import logging
import os
import sys
from pathlib import Path
from typing import List, Optional

from anomaly_monitor.config import ConfigurationError, load_config
from anomaly_monitor.logging_utils import configure_logging
from anomaly_monitor.monitor import build_monitor
from anomaly_monitor.suppression import SUPPRESSION_BACKENDS


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        description="Check Binance futures symbols for volume, open interest and long/short ratio anomalies "
        "and push alerts to a Lark webhook.",
        formatter_class=argparse.ArgumentDefaultsHelpFormatter,
    )
    parser.add_argument("--symbols", help="Comma-separated list of symbols (overrides SYMBOLS).")
    parser.add_argument("--webhook-url", help="Lark bot webhook URL (overrides LARK_WEBHOOK_URL).")
    parser.add_argument("--interval", help="Binance period, e.g. 15m (overrides DATA_INTERVAL).")
    parser.add_argument("--lookback", type=int, help="Number of periods fetched per series (overrides LOOKBACK_PERIODS).")
    parser.add_argument("--ttl", type=int, help="Suppression window in seconds (overrides SUPPRESSION_TTL_SECONDS).")
    parser.add_argument(
        "--suppression-backend",
        choices=SUPPRESSION_BACKENDS,
        help="Where sent signals are remembered (overrides SUPPRESSION_BACKEND).",
    )
    parser.add_argument("--state-file", type=Path, help="State file for the file backend.")
    parser.add_argument("--env-file", type=Path, help="Optional .env file with settings.")
    parser.add_argument(
        "--epsilon-minutes",
        type=float,
        default=0.1,
        help="Extra minutes to wait after each interval boundary before polling again.",
    )
    parser.add_argument("--once", action="store_true", help="Run a single check and exit.")
    parser.add_argument("--dry-run", action="store_true", help="Log signals without sending to Lark.")
    parser.add_argument("--log-level", default=os.getenv("LOG_LEVEL", "INFO"), help="Logging level.")
    return parser


def main(argv: Optional[List[str]] = None) -> int:
    parser = build_parser()
    args = parser.parse_args(argv)

    configure_logging(args.log_level)
    logger = logging.getLogger("anomaly_monitor")

    try:
        config = load_config(
            env_file=args.env_file,
            symbols=args.symbols,
            webhook_url=args.webhook_url,
            interval=args.interval,
            lookback=args.lookback,
            ttl=args.ttl,
            suppression_backend=args.suppression_backend,
            state_file=args.state_file,
            poll_epsilon_minutes=args.epsilon_minutes,
            dry_run=args.dry_run,
        )
    except ConfigurationError as exc:
        logger.error("Configuration error: %s", exc)
        return 2

    logger.info(
        "Loaded configuration: %s symbol(s), interval=%s, lookback=%s, ttl=%ss, suppression=%s, AI %s",
        len(config.symbols),
        config.interval,
        config.lookback,
        config.suppression_ttl_seconds,
        config.suppression_backend,
        "enabled" if config.ai_enabled else "disabled",
    )

    try:
        resources = build_monitor(config, logger=logger)
    except ConfigurationError as exc:
        logger.error("Configuration error: %s", exc)
        return 2

    try:
        if args.once:
            summary = resources.monitor.run_once()
            return 1 if summary.failed_symbols and len(summary.failed_symbols) == summary.symbols else 0
        resources.monitor.run()
    finally:
        resources.close()
    return 0


if __name__ == "__main__":
    sys.exit(main())
