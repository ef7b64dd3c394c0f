from __future__ import annotations

import logging
import re
from typing import Optional

from kgqa_web.errors import SynthesisError
from kgqa_web.llm import LLMClient
from kgqa_web.sparql.client import ensure_limit


logger = logging.getLogger(__name__)

QUERY_TEMPERATURE = 0.1

_LEADING_FENCE = re.compile(r"^```[\w+-]*[ \t]*\n?")
_TRAILING_FENCE = re.compile(r"\n?[ \t]*```$")


def build_query_prompt(question: str) -> str:
    return (
        "You are an expert in SPARQL and DBpedia.\n"
        "Your task is to convert a user's natural language question into a valid "
        "SPARQL query to retrieve relevant facts from DBpedia.\n"
        "Use relevant prefixes like 'dbo:', 'dbp:', and 'rdfs:'.\n"
        "Only return the SPARQL query code itself, with no explanations, markdown "
        "formatting, or any other text.\n\n"
        f'The user\'s question is: "{question}"'
    )


def strip_code_fences(text: str) -> str:
    """
    Remove a surrounding markdown code fence such as ```sparql ... ```.

    Leading and trailing fences are stripped independently, so a response with
    only one of them is handled too. Applying this to already-clean text is a
    no-op.
    """

    cleaned = text.strip()
    cleaned = _LEADING_FENCE.sub("", cleaned, count=1)
    cleaned = _TRAILING_FENCE.sub("", cleaned, count=1)
    return cleaned.strip()


class QuerySynthesizer:
    """Turns a natural-language question into a SPARQL query via the LLM."""

    def __init__(
        self,
        llm: LLMClient,
        temperature: float = QUERY_TEMPERATURE,
        max_rows: Optional[int] = None,
    ) -> None:
        self.llm = llm
        self.temperature = temperature
        self.max_rows = max_rows

    def synthesize(self, question: str) -> str:
        prompt = build_query_prompt(question)
        try:
            raw = self.llm.complete(prompt, temperature=self.temperature)
        except SynthesisError as exc:
            logger.error(f"Error generating SPARQL query: {exc}")
            raise type(exc)(f"Failed to generate SPARQL query: {exc}") from exc

        query = strip_code_fences(raw)
        if not query:
            raise SynthesisError("LLM did not return a SPARQL query.")

        if self.max_rows is not None:
            query = ensure_limit(query, self.max_rows)
        logger.debug(f"Generated SPARQL:\n{query}")
        return query


__all__ = [
    "QuerySynthesizer",
    "build_query_prompt",
    "strip_code_fences",
]
