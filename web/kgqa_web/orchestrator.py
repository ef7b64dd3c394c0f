"""
Sequencing of the grounded question-answering pipeline.

question -> SPARQL (QuerySynthesizer) -> facts (GraphQueryClient) -> answer
(AnswerSynthesizer). The first failure at any stage moves the run to ERROR and
triggers exactly one GeneralKnowledgeFallback attempt.
"""

from __future__ import annotations

import logging
import threading
from typing import Any, Callable, List, Optional

import requests

from kgqa_web.answer import AnswerSynthesizer
from kgqa_web.config import AppConfig, load_config
from kgqa_web.errors import FallbackFailure, KGQAError
from kgqa_web.fallback import GeneralKnowledgeFallback
from kgqa_web.llm import LLMClient, OpenAILLMClient
from kgqa_web.models import PipelineState, RunContext
from kgqa_web.nl_to_sparql import QuerySynthesizer
from kgqa_web.sparql.client import GraphQueryClient


logger = logging.getLogger(__name__)

Subscriber = Callable[[RunContext], None]


class PipelineOrchestrator:
    """
    Owns the RunContext of the current run and drives its state machine.

    Observers receive a RunContext snapshot after every transition. Only one
    run may be in flight; `answer()` rejects a submission made while another
    run is active.
    """

    def __init__(
        self,
        query_synthesizer: QuerySynthesizer,
        graph_client: GraphQueryClient,
        answer_synthesizer: AnswerSynthesizer,
        fallback: GeneralKnowledgeFallback,
        chain_general_on_empty: bool = False,
    ) -> None:
        self.query_synthesizer = query_synthesizer
        self.graph_client = graph_client
        self.answer_synthesizer = answer_synthesizer
        self.fallback = fallback
        self.chain_general_on_empty = chain_general_on_empty

        self._context = RunContext(question="")
        self._subscribers: List[Subscriber] = []
        self._run_lock = threading.Lock()

    @property
    def context(self) -> RunContext:
        return self._context.snapshot()

    @property
    def state(self) -> PipelineState:
        return self._context.state

    @property
    def is_running(self) -> bool:
        return self._run_lock.locked()

    def subscribe(self, callback: Subscriber) -> Callable[[], None]:
        """Register an observer; returns a function that unregisters it."""

        self._subscribers.append(callback)

        def unsubscribe() -> None:
            if callback in self._subscribers:
                self._subscribers.remove(callback)

        return unsubscribe

    def answer(self, question: str) -> Optional[RunContext]:
        """
        Run the pipeline for `question` and return the final RunContext snapshot.

        Empty or whitespace-only questions, and questions submitted while a run
        is in flight, are ignored and return None without touching state.
        """

        if not question or not question.strip():
            logger.debug("Ignoring empty question.")
            return None

        if not self._run_lock.acquire(blocking=False):
            logger.warning("A run is already in progress; rejecting new question.")
            return None
        try:
            self._run(question)
        finally:
            self._run_lock.release()
        return self.context

    def _run(self, question: str) -> None:
        self._context = RunContext(question=question)
        self._transition(PipelineState.SYNTHESIZING_QUERY)
        try:
            query = self.query_synthesizer.synthesize(question)
            self._transition(PipelineState.QUERYING_GRAPH, structured_query=query)

            facts = self.graph_client.execute(query)
            self._transition(PipelineState.SYNTHESIZING_ANSWER, facts=facts)

            answer = self.answer_synthesizer.synthesize_from_facts(question, facts)
            if facts.is_empty and self.chain_general_on_empty:
                answer = f"{answer}{self.fallback.complete(question)}"
            self._transition(PipelineState.DONE, answer=answer)
        except Exception as exc:
            self._recover(question, exc)

    def _recover(self, question: str, exc: Exception) -> None:
        failed_stage = self._context.state
        if isinstance(exc, KGQAError):
            logger.error(f"Pipeline failed at {failed_stage.value}: {exc}")
        else:
            logger.exception(f"Unexpected error at {failed_stage.value}")

        self._transition(
            PipelineState.ERROR,
            failed_stage=failed_stage,
            error=(
                f"Error at step {failed_stage.value}: {exc}. "
                "Attempting to generate a general answer."
            ),
        )

        try:
            general_answer = self.fallback.synthesize_general(question)
        except Exception as fallback_exc:
            failure = FallbackFailure(exc, fallback_exc)
            logger.error(str(failure))
            self._update(error=str(failure))
            return

        logger.info("Fallback produced an ungrounded answer.")
        self._update(answer=general_answer)

    def _transition(self, state: PipelineState, **updates: Any) -> None:
        logger.info(f"{self._context.state.value} -> {state.value}")
        self._context.state = state
        self._update(**updates)

    def _update(self, **updates: Any) -> None:
        for name, value in updates.items():
            setattr(self._context, name, value)
        self._notify()

    def _notify(self) -> None:
        snapshot = self._context.snapshot()
        for callback in list(self._subscribers):
            try:
                callback(snapshot)
            except Exception:
                logger.exception("Pipeline observer raised; continuing.")


def build_orchestrator(
    config: Optional[AppConfig] = None,
    llm: Optional[LLMClient] = None,
    session: Optional[requests.Session] = None,
) -> PipelineOrchestrator:
    """
    Wire an orchestrator from configuration.

    Without an explicit `llm`, an OpenAI client is built, which raises
    ConfigError when OPENAI_API_KEY is missing.
    """

    cfg = config or load_config()
    llm_client = llm or OpenAILLMClient(cfg.llm)
    return PipelineOrchestrator(
        query_synthesizer=QuerySynthesizer(
            llm_client,
            temperature=cfg.llm.query_temperature,
            max_rows=cfg.graph.max_rows,
        ),
        graph_client=GraphQueryClient(cfg.graph, session=session),
        answer_synthesizer=AnswerSynthesizer(
            llm_client, temperature=cfg.llm.answer_temperature
        ),
        fallback=GeneralKnowledgeFallback(llm_client),
        chain_general_on_empty=cfg.pipeline.chain_general_on_empty,
    )


__all__ = [
    "PipelineOrchestrator",
    "Subscriber",
    "build_orchestrator",
]
