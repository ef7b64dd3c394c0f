from __future__ import annotations

import logging

from kgqa_web.errors import SynthesisError
from kgqa_web.llm import LLMClient


logger = logging.getLogger(__name__)

UNGROUNDED_DISCLAIMER = (
    "The knowledge graph query failed. Here is a general answer from the LLM, "
    "which may be less factually grounded:\n\n"
)


class GeneralKnowledgeFallback:
    """Ungrounded answer path used when the grounded pipeline fails."""

    def __init__(self, llm: LLMClient) -> None:
        self.llm = llm

    def complete(self, question: str) -> str:
        """Send the raw question at the default temperature, without a disclaimer."""

        try:
            return self.llm.complete(question).strip()
        except SynthesisError as exc:
            logger.error(f"Error generating general answer: {exc}")
            raise type(exc)(f"Failed to generate a general answer: {exc}") from exc

    def synthesize_general(self, question: str) -> str:
        return f"{UNGROUNDED_DISCLAIMER}{self.complete(question)}"


__all__ = [
    "GeneralKnowledgeFallback",
    "UNGROUNDED_DISCLAIMER",
]
