from __future__ import annotations

import logging


class ExtraFormatter(logging.Formatter):
    """Appends ``extra=`` fields to the rendered line as ``key=value`` pairs."""

    _reserved = {
        "name",
        "msg",
        "args",
        "levelname",
        "levelno",
        "pathname",
        "filename",
        "module",
        "exc_info",
        "exc_text",
        "stack_info",
        "lineno",
        "funcName",
        "created",
        "msecs",
        "relativeCreated",
        "thread",
        "threadName",
        "processName",
        "process",
        "taskName",
        "message",
        "asctime",
    }

    def format(self, record: logging.LogRecord) -> str:
        base = super().format(record)
        extras = {
            key: value
            for key, value in record.__dict__.items()
            if key not in self._reserved and not key.startswith("_")
        }
        if extras:
            extra_str = " ".join(f"{key}={_render(value)}" for key, value in sorted(extras.items()))
            return f"{base} | {extra_str}"
        return base


def _render(value: object) -> str:
    text = str(value)
    # keep key=value pairs splittable on whitespace
    if not text or any(char.isspace() for char in text):
        return repr(text)
    return text


def configure_logging(level: str) -> None:
    numeric_level = getattr(logging, level.upper(), logging.INFO)
    handler = logging.StreamHandler()
    handler.setFormatter(ExtraFormatter("%(asctime)s %(levelname)s %(name)s %(message)s"))
    logging.basicConfig(level=numeric_level, handlers=[handler], force=True)
