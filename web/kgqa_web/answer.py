from __future__ import annotations

import json
import logging

from kgqa_web.errors import SynthesisError
from kgqa_web.llm import LLMClient
from kgqa_web.models import FactSet


logger = logging.getLogger(__name__)

ANSWER_TEMPERATURE = 0.5

NO_FACTS_MESSAGE = (
    "I couldn't find any specific facts in the knowledge graph for your question. "
    "I'll try to answer based on my general knowledge, but it might not be precise. "
    "\n\nLet me try: "
)


def build_answer_prompt(question: str, facts: FactSet) -> str:
    serialized = json.dumps(facts.to_json_bindings(), ensure_ascii=False)
    return (
        "You are a helpful Q&A assistant.\n"
        "Your task is to provide a clear, concise, and natural language answer to "
        "the user's question based *only* on the factual data provided from a "
        "knowledge graph.\n"
        "Do not add any information that is not present in the provided data.\n"
        "If the data is insufficient to answer the question, state that you cannot "
        "answer with the given facts.\n\n"
        f'User\'s original question: "{question}"\n\n'
        f"Factual data:\n{serialized}"
    )


class AnswerSynthesizer:
    """Answers a question from knowledge-graph facts only."""

    def __init__(self, llm: LLMClient, temperature: float = ANSWER_TEMPERATURE) -> None:
        self.llm = llm
        self.temperature = temperature

    def synthesize_from_facts(self, question: str, facts: FactSet) -> str:
        """
        Return a grounded answer, or NO_FACTS_MESSAGE when `facts` is empty.

        The empty case never calls the LLM.
        """

        if facts.is_empty:
            logger.info("No bindings returned; using the no-facts message.")
            return NO_FACTS_MESSAGE

        prompt = build_answer_prompt(question, facts)
        try:
            text = self.llm.complete(prompt, temperature=self.temperature)
        except SynthesisError as exc:
            logger.error(f"Error generating final answer: {exc}")
            raise type(exc)(f"Failed to generate final answer: {exc}") from exc
        return text.strip()


__all__ = [
    "AnswerSynthesizer",
    "NO_FACTS_MESSAGE",
    "build_answer_prompt",
]
