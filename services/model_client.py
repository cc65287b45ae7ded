from __future__ import annotations

import json
import logging
import re
from dataclasses import dataclass
from typing import Any, Optional, Protocol

from openai import OpenAI, RateLimitError

from services.rate_governor import RateGovernor
from utils.errors import ModelResponseError

LOGGER = logging.getLogger(__name__)

DEFAULT_BASE_URL = "https://generativelanguage.googleapis.com/v1beta/openai/"
DEFAULT_MODEL = "gemini-2.0-flash-lite"

_LEADING_NOISE = re.compile(r"^[\s\S]*?{")
_TRAILING_NOISE = re.compile(r"}[^}]*$")


@dataclass(frozen=True, slots=True)
class GenerationConfig:
    temperature: float = 0.7
    top_p: float = 0.8
    top_k: int = 40
    max_output_tokens: int = 512


class TextModel(Protocol):
    def generate(self, prompt: str, config: GenerationConfig) -> str:
        ...


class RemoteModel:
    """Chat-completions client for an OpenAI-compatible generative model endpoint."""

    def __init__(
        self,
        api_key: str,
        model: str = DEFAULT_MODEL,
        base_url: str | None = DEFAULT_BASE_URL,
        governor: Optional[RateGovernor] = None,
        client: Any = None,
        http_client: Any = None,
    ):
        self._model = model
        self._governor = governor
        # the SDK never retries on its own; every attempt goes through the governor
        self._client = client or OpenAI(
            api_key=api_key, base_url=base_url or None, max_retries=0, http_client=http_client
        )

    @property
    def model_name(self) -> str:
        return self._model

    def generate(self, prompt: str, config: GenerationConfig) -> str:
        if self._governor is not None:
            self._governor.wait_if_needed()
        try:
            response = self._client.chat.completions.create(
                model=self._model,
                messages=[{"role": "user", "content": prompt}],
                temperature=config.temperature,
                top_p=config.top_p,
                max_tokens=config.max_output_tokens,
                extra_body={"top_k": config.top_k},
            )
        except Exception:
            if self._governor is not None:
                self._governor.record(success=False)
            raise
        if self._governor is not None:
            self._governor.record(success=True)

        choices = getattr(response, "choices", None) or []
        text = choices[0].message.content if choices else None
        if not text:
            raise ModelResponseError("Model returned an empty response")
        return text


def is_rate_limit_error(exc: BaseException) -> bool:
    if isinstance(exc, RateLimitError):
        return True
    message = str(exc).lower()
    return "rate limit" in message or "quota" in message


def extract_json(text: str) -> Any:
    """Trim anything around the outermost JSON object, then decode it.

    Model output is not guaranteed to be pure JSON (code fences, preambles,
    trailing remarks), so this normalization always runs before parsing.
    """

    trimmed = _TRAILING_NOISE.sub("}", _LEADING_NOISE.sub("{", text or "", count=1), count=1)
    try:
        return json.loads(trimmed)
    except json.JSONDecodeError as exc:
        raise ModelResponseError(f"Failed to parse AI response: {trimmed[:100]}...") from exc
