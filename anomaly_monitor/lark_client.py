from __future__ import annotations

import logging
from dataclasses import dataclass
from datetime import timedelta, timezone
from typing import Any, Dict, List

import requests

from .signals import Signal


class NotificationError(RuntimeError):
    """Raised when a signal could not be delivered to the chat webhook."""


@dataclass(frozen=True)
class LarkConfig:
    """Configuration for posting interactive cards to a Lark (Feishu) bot webhook."""

    webhook_url: str
    timeout: float = 10.0
    utc_offset_hours: float = 8.0
    proxy: str | None = None

    def __post_init__(self) -> None:
        if not self.webhook_url.strip():
            raise ValueError("Lark webhook URL must not be empty")
        if self.timeout <= 0:
            raise ValueError("Lark timeout must be positive")
        if not -12 <= self.utc_offset_hours <= 14:
            raise ValueError("utc_offset_hours must be within -12..14")

    def as_proxy_dict(self) -> Dict[str, str] | None:
        if not self.proxy:
            return None
        proxy = self.proxy.strip()
        if not proxy:
            return None
        return {"http": proxy, "https": proxy}


def emphasize_sections(text: str) -> str:
    """Render 【section】 headers in bold for lark_md."""
    return text.replace("【", "**【").replace("】", "】**")


def format_signal_card(signal: Signal, utc_offset_hours: float = 8.0) -> Dict[str, Any]:
    """Build the interactive card payload for a signal."""
    elements: List[Dict[str, Any]] = [
        {"tag": "div", "text": {"tag": "lark_md", "content": signal.description}},
        {"tag": "hr"},
    ]

    if signal.ai_analysis:
        elements.extend(
            [
                {
                    "tag": "div",
                    "text": {
                        "tag": "lark_md",
                        "content": "**🤖 AI Analysis**\n" + emphasize_sections(signal.ai_analysis),
                    },
                },
                {"tag": "hr"},
            ]
        )

    local_zone = timezone(timedelta(hours=utc_offset_hours))
    local_time = signal.timestamp.astimezone(local_zone)
    elements.append(
        {
            "tag": "note",
            "elements": [
                {
                    "tag": "plain_text",
                    "content": f"Time: {local_time.strftime('%Y-%m-%d %H:%M:%S')} UTC{_format_offset(utc_offset_hours)}",
                }
            ],
        }
    )

    return {
        "msg_type": "interactive",
        "card": {
            "header": {
                "title": {
                    "tag": "plain_text",
                    "content": f"📈 {signal.symbol} signal: {signal.kind.label}",
                },
                "template": signal.kind.card_color,
            },
            "elements": elements,
        },
    }


def _format_offset(hours: float) -> str:
    sign = "+" if hours >= 0 else "-"
    whole = int(abs(hours))
    minutes = int(round((abs(hours) - whole) * 60))
    if minutes:
        return f"{sign}{whole}:{minutes:02d}"
    return f"{sign}{whole}"


class LarkClient:
    """Thin client for a Lark custom bot webhook."""

    def __init__(
        self,
        config: LarkConfig,
        logger: logging.Logger | None = None,
        session: requests.Session | None = None,
    ) -> None:
        self._config = config
        self._log = logger or logging.getLogger(__name__)
        self._session = session or requests.Session()
        proxy_dict = config.as_proxy_dict()
        if proxy_dict:
            self._session.proxies.update(proxy_dict)

    def render(self, signal: Signal) -> Dict[str, Any]:
        return format_signal_card(signal, self._config.utc_offset_hours)

    def send_signal(self, signal: Signal) -> None:
        card = self.render(signal)
        try:
            response = self._session.post(
                self._config.webhook_url,
                json=card,
                timeout=self._config.timeout,
            )
        except requests.RequestException as exc:
            raise NotificationError(f"Lark connection error: {exc}") from exc

        if response.status_code != 200:
            raise NotificationError(
                f"Lark webhook returned status {response.status_code}: {response.text[:200]}"
            )

        # Lark answers 200 with a non-zero code for rejected payloads (bad signature, rate limit)
        try:
            body = response.json()
        except ValueError:
            body = {}
        code = body.get("code", body.get("StatusCode", 0)) if isinstance(body, dict) else 0
        if code:
            message = body.get("msg", body.get("StatusMessage", "unknown error"))
            raise NotificationError(f"Lark API error {code}: {message}")

        self._log.info(
            "Sent %s signal to Lark",
            signal.kind.value,
            extra={"symbol": signal.symbol},
        )

    def close(self) -> None:
        self._session.close()
