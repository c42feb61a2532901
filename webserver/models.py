from __future__ import annotations

from datetime import datetime
from typing import List

from pydantic import BaseModel, ConfigDict, Field  # type: ignore[import-not-found]


class RunSummaryResponse(BaseModel):
    """Outcome of one monitoring cycle."""

    model_config = ConfigDict(extra="ignore")

    started_at: datetime
    finished_at: datetime | None = None
    symbols: int = Field(default=0, ge=0)
    failed_symbols: List[str] = Field(default_factory=list)
    signals: int = Field(default=0, ge=0)
    sent: int = Field(default=0, ge=0)
    suppressed: int = Field(default=0, ge=0)
    notification_failures: int = Field(default=0, ge=0)
    dry_run: int = Field(default=0, ge=0)
    parse_failures: int = Field(default=0, ge=0)


class HealthResponse(BaseModel):
    status: str = "ok"
    symbols: List[str] = Field(default_factory=list)
    interval: str
    ai_enabled: bool
    run_in_progress: bool
