"""
LLM completion client used by every synthesis stage.

All three call sites share one request shape: a single instruction prompt in,
plain text out, differing only in prompt content and sampling temperature.
"""

from __future__ import annotations

import logging
from typing import Optional, Protocol, runtime_checkable

import openai
from openai import OpenAI

from kgqa_web.config import LLMConfig, get_api_key
from kgqa_web.errors import SynthesisError, SynthesisTimeout


logger = logging.getLogger(__name__)


@runtime_checkable
class LLMClient(Protocol):
    """Minimal interface for a text completion service."""

    def complete(self, prompt: str, temperature: Optional[float] = None) -> str:  # pragma: no cover - protocol
        ...


def _extract_text(completion: object) -> str:
    # The Responses API can return content in segments; join the text parts.
    text_chunks: list[str] = []
    for output in getattr(completion, "output", None) or []:
        for item in getattr(output, "content", []) or []:
            if getattr(item, "type", None) == "output_text":
                text_chunks.append(getattr(item, "text", "") or "")
    return "\n".join(chunk.strip() for chunk in text_chunks if chunk.strip())


class OpenAILLMClient:
    """LLMClient backed by the OpenAI Responses API."""

    def __init__(self, config: LLMConfig, client: Optional[OpenAI] = None) -> None:
        self.config = config
        # No SDK-level retries: a failed stage goes straight to the fallback.
        self._client = client or OpenAI(
            api_key=get_api_key(),
            timeout=config.timeout_s,
            max_retries=0,
        )

    def complete(self, prompt: str, temperature: Optional[float] = None) -> str:
        kwargs = {
            "model": self.config.model,
            "input": [{"role": "user", "content": prompt}],
        }
        if temperature is not None:
            kwargs["temperature"] = temperature

        logger.debug(f"LLM request model={self.config.model} temperature={temperature}")
        try:
            completion = self._client.responses.create(**kwargs)  # type: ignore[arg-type]
        except openai.APITimeoutError as exc:
            raise SynthesisTimeout(
                f"LLM call timed out after {self.config.timeout_s:g}s"
            ) from exc
        except openai.OpenAIError as exc:
            raise SynthesisError(f"LLM call failed: {exc}") from exc

        text = _extract_text(completion)
        if not text:
            raise SynthesisError("LLM returned an empty response.")
        logger.debug(f"LLM response length={len(text)}")
        return text


__all__ = [
    "LLMClient",
    "OpenAILLMClient",
]
