from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import List

import requests
from pydantic import BaseModel, ConfigDict, Field, ValidationError  # type: ignore[import-not-found]

from .signals import Signal

SYSTEM_PROMPT = (
    "You are a professional crypto market analyst. Your task is to provide a concise and "
    "insightful analysis in Chinese based on the data provided. Your entire response must "
    'follow this three-section format strictly: "【核心信号】", "【市场背景】", and "【潜在影响】". '
    "Be concise and straight to the point."
)


class AIAnalysisError(RuntimeError):
    """Raised when the analysis endpoint fails or answers with nothing usable."""


class ChatMessage(BaseModel):
    model_config = ConfigDict(extra="ignore")

    role: str
    content: str | None = ""


class ChatCompletionRequest(BaseModel):
    model: str
    messages: List[ChatMessage]


class ChatChoice(BaseModel):
    model_config = ConfigDict(extra="ignore")

    message: ChatMessage


class ChatCompletionResponse(BaseModel):
    model_config = ConfigDict(extra="ignore")

    choices: List[ChatChoice] = Field(default_factory=list)


@dataclass(frozen=True)
class AIAnalysisConfig:
    """Settings for an OpenAI-compatible chat completions endpoint."""

    endpoint: str
    model: str
    api_key: str
    timeout: float = 45.0

    def __post_init__(self) -> None:
        if not (self.endpoint.strip() and self.model.strip() and self.api_key.strip()):
            raise ValueError("AI endpoint, model name and API key are all required")
        if self.timeout <= 0:
            raise ValueError("AI timeout must be positive")

    @classmethod
    def from_values(cls, endpoint: str | None, model: str | None, api_key: str | None) -> "AIAnalysisConfig | None":
        """Return a config only when all three settings are present."""
        if not (endpoint and model and api_key):
            return None
        if not (endpoint.strip() and model.strip() and api_key.strip()):
            return None
        return cls(endpoint=endpoint.strip(), model=model.strip(), api_key=api_key.strip())


def build_user_prompt(signal: Signal, context: str) -> str:
    return (
        f"A trading signal was detected for {signal.symbol}.\n\n"
        "**Detected Signal:**\n"
        f"- Signal Type: {signal.kind.label}\n"
        f"- Description: {signal.description}\n\n"
        "**Market Context Data:**\n"
        f"{context}\n\n"
        "Now, please provide your analysis based on the instructions."
    )


class AIAnalysisClient:
    """Requests a short market commentary for a detected signal."""

    def __init__(
        self,
        config: AIAnalysisConfig,
        logger: logging.Logger | None = None,
        session: requests.Session | None = None,
    ) -> None:
        self._config = config
        self._log = logger or logging.getLogger(__name__)
        self._session = session or requests.Session()

    def analyze(self, signal: Signal, context: str) -> str:
        request = ChatCompletionRequest(
            model=self._config.model,
            messages=[
                ChatMessage(role="system", content=SYSTEM_PROMPT),
                ChatMessage(role="user", content=build_user_prompt(signal, context)),
            ],
        )
        try:
            response = self._session.post(
                self._config.endpoint,
                json=request.model_dump(),
                headers={"Authorization": f"Bearer {self._config.api_key}"},
                timeout=self._config.timeout,
            )
        except requests.RequestException as exc:
            raise AIAnalysisError(f"failed to reach AI endpoint: {exc}") from exc

        if response.status_code != 200:
            raise AIAnalysisError(
                f"AI endpoint returned non-200 status {response.status_code}: {response.text[:200]}"
            )

        try:
            payload = ChatCompletionResponse.model_validate(response.json())
        except (ValueError, ValidationError) as exc:
            raise AIAnalysisError(f"failed to decode AI response: {exc}") from exc

        for choice in payload.choices:
            content = (choice.message.content or "").strip()
            if content:
                self._log.debug(
                    "Received AI analysis (%s chars)",
                    len(content),
                    extra={"symbol": signal.symbol, "kind": signal.kind.value},
                )
                return content
        raise AIAnalysisError("received empty response from AI endpoint")

    def close(self) -> None:
        self._session.close()
