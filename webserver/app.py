from __future__ import annotations

import hmac
import logging
import os
import threading
from contextlib import asynccontextmanager
from pathlib import Path
from typing import AsyncIterator, Awaitable, Callable, Optional, TypeVar

from fastapi import FastAPI, HTTPException, Request  # type: ignore[import-not-found]
from fastapi.concurrency import run_in_threadpool  # type: ignore[import-not-found]

from anomaly_monitor.config import ConfigurationError, MonitorConfig, load_config
from anomaly_monitor.monitor import MonitorResources, RunSummary, build_monitor

from .models import HealthResponse, RunSummaryResponse

logger = logging.getLogger("anomaly_monitor.web")

ConfigLoader = Callable[[], MonitorConfig]
MonitorBuilder = Callable[[MonitorConfig], MonitorResources]
T = TypeVar("T")

ENV_FILE_VARIABLE = "ANOMALY_MONITOR_ENV_FILE"


def load_service_config() -> MonitorConfig:
    """Load settings from the environment plus the optional env file named by ``ANOMALY_MONITOR_ENV_FILE``."""
    env_file = os.getenv(ENV_FILE_VARIABLE)
    return load_config(env_file=Path(env_file) if env_file else None)


class TriggerState:
    """Lazily wired monitor plus the guard that keeps runs from overlapping."""

    def __init__(self, config_loader: ConfigLoader, monitor_builder: MonitorBuilder) -> None:
        self._config_loader = config_loader
        self._monitor_builder = monitor_builder
        self._init_lock = threading.Lock()
        self.run_lock = threading.Lock()
        self.config: Optional[MonitorConfig] = None
        self.resources: Optional[MonitorResources] = None
        self.last_summary: Optional[RunSummary] = None

    def ensure_config(self) -> MonitorConfig:
        with self._init_lock:
            if self.config is None:
                self.config = self._config_loader()
            return self.config

    def ensure_ready(self) -> MonitorResources:
        config = self.ensure_config()
        with self._init_lock:
            if self.resources is None:
                self.resources = self._monitor_builder(config)
            return self.resources

    def close(self) -> None:
        if self.resources is not None:
            self.resources.close()
            self.resources = None


def _summary_response(summary: RunSummary) -> RunSummaryResponse:
    return RunSummaryResponse.model_validate(summary.to_payload())


def _check_token(request: Request, expected: str | None) -> None:
    if not expected:
        return
    header = request.headers.get("Authorization", "")
    supplied = header[len("Bearer "):] if header.startswith("Bearer ") else ""
    if not hmac.compare_digest(supplied, expected):
        raise HTTPException(status_code=401, detail="Invalid trigger token")


def create_app(
    config_loader: ConfigLoader = load_service_config,
    monitor_builder: MonitorBuilder = build_monitor,
    trigger_token: str | None = None,
) -> FastAPI:
    token = trigger_token if trigger_token is not None else os.getenv("TRIGGER_TOKEN") or None
    state = TriggerState(config_loader, monitor_builder)

    @asynccontextmanager
    async def lifespan(_: FastAPI) -> AsyncIterator[None]:
        yield
        state.close()

    app = FastAPI(title="Anomaly Monitor Trigger", version="1.0.0", lifespan=lifespan)
    app.state.trigger = state

    @app.middleware("http")
    async def security_headers(request: Request, call_next: Callable[[Request], Awaitable]):
        response = await call_next(request)
        response.headers.setdefault("X-Content-Type-Options", "nosniff")
        response.headers.setdefault("X-Frame-Options", "DENY")
        response.headers.setdefault("Referrer-Policy", "strict-origin-when-cross-origin")
        response.headers.setdefault("Cache-Control", "no-store")
        return response

    async def off_loop(func: Callable[[], T]) -> T:
        # config loading and client wiring block (pool connect, schema DDL)
        try:
            return await run_in_threadpool(func)
        except ConfigurationError as exc:
            logger.error("Configuration error: %s", exc)
            raise HTTPException(status_code=500, detail=f"Configuration error: {exc}") from exc

    @app.get("/healthz", response_model=HealthResponse)
    async def healthz() -> HealthResponse:
        config = await off_loop(state.ensure_config)
        return HealthResponse(
            symbols=list(config.symbols),
            interval=config.interval,
            ai_enabled=config.ai_enabled,
            run_in_progress=state.run_lock.locked(),
        )

    @app.post("/api/runs", response_model=RunSummaryResponse)
    async def trigger_run(request: Request) -> RunSummaryResponse:
        _check_token(request, token)
        resources = await off_loop(state.ensure_ready)
        if not state.run_lock.acquire(blocking=False):
            logger.warning("Run requested while another run is in progress")
            raise HTTPException(status_code=409, detail="A run is already in progress")
        try:
            summary = await run_in_threadpool(resources.monitor.run_once)
        finally:
            state.run_lock.release()
        state.last_summary = summary
        return _summary_response(summary)

    @app.get("/api/runs/last", response_model=RunSummaryResponse)
    async def last_run() -> RunSummaryResponse:
        if state.last_summary is None:
            raise HTTPException(status_code=404, detail="No run has completed yet")
        return _summary_response(state.last_summary)

    return app
