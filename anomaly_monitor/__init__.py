"""Futures anomaly monitor package."""

from .analysis import analyze, build_context
from .config import ConfigurationError, MonitorConfig, load_config
from .monitor import AnomalyMonitor, RunSummary, build_monitor
from .pipeline import DeliveryOutcome, DeliveryResult, SignalPipeline
from .signals import Signal, SignalKind, suppression_key

__all__ = [
    "AnomalyMonitor",
    "ConfigurationError",
    "DeliveryOutcome",
    "DeliveryResult",
    "MonitorConfig",
    "RunSummary",
    "Signal",
    "SignalKind",
    "SignalPipeline",
    "analyze",
    "build_context",
    "build_monitor",
    "load_config",
    "suppression_key",
]
