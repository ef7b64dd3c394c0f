"""
State machine tests for PipelineOrchestrator with scripted LLM and graph fakes.
"""

import pytest

from conftest import (
    EMPTY_RESULT,
    INCEPTION_QUERY,
    FakeLLM,
    FakeResponse,
    FakeSession,
    make_orchestrator,
)
from kgqa_web.answer import NO_FACTS_MESSAGE
from kgqa_web.errors import SynthesisError
from kgqa_web.fallback import UNGROUNDED_DISCLAIMER
from kgqa_web.models import PipelineState


def _record_states(orchestrator):
    seen = []
    orchestrator.subscribe(lambda ctx: seen.append(ctx.state))
    return seen


class TestHappyPath:
    def test_inception_scenario(self, fake_llm, inception_session) -> None:
        orchestrator = make_orchestrator(fake_llm, inception_session)
        states = _record_states(orchestrator)

        ctx = orchestrator.answer("Who directed the movie Inception?")

        assert ctx.state is PipelineState.DONE
        assert ctx.structured_query == INCEPTION_QUERY
        assert ctx.facts is not None and len(ctx.facts) == 1
        assert "Christopher Nolan" in ctx.answer
        assert ctx.error is None and ctx.failed_stage is None
        assert ctx.grounded
        assert states == [
            PipelineState.SYNTHESIZING_QUERY,
            PipelineState.QUERYING_GRAPH,
            PipelineState.SYNTHESIZING_ANSWER,
            PipelineState.DONE,
        ]
        assert fake_llm.kinds() == ["query", "answer"]
        assert inception_session.requests[0]["params"]["query"] == INCEPTION_QUERY

    def test_observers_see_fields_only_after_their_stage(self, fake_llm, inception_session) -> None:
        orchestrator = make_orchestrator(fake_llm, inception_session)
        snapshots = []
        orchestrator.subscribe(snapshots.append)
        orchestrator.answer("Who directed the movie Inception?")

        by_state = {s.state: s for s in snapshots}
        assert by_state[PipelineState.SYNTHESIZING_QUERY].structured_query is None
        assert by_state[PipelineState.QUERYING_GRAPH].structured_query == INCEPTION_QUERY
        assert by_state[PipelineState.QUERYING_GRAPH].facts is None
        assert by_state[PipelineState.SYNTHESIZING_ANSWER].facts is not None
        assert all(s.answer is None for s in snapshots if not s.state.is_terminal)

    def test_empty_facts_return_canned_message(self, fake_llm) -> None:
        orchestrator = make_orchestrator(fake_llm, FakeSession(FakeResponse(200, EMPTY_RESULT)))
        ctx = orchestrator.answer("Who directed the movie Nowhere?")

        assert ctx.state is PipelineState.DONE
        assert ctx.answer == NO_FACTS_MESSAGE
        assert ctx.facts is not None and ctx.facts.is_empty
        assert fake_llm.kinds() == ["query"]

    def test_empty_facts_can_chain_general_answer(self) -> None:
        llm = FakeLLM(general="Probably nobody.")
        orchestrator = make_orchestrator(
            llm, FakeSession(FakeResponse(200, EMPTY_RESULT)), chain_general_on_empty=True
        )
        ctx = orchestrator.answer("Who directed the movie Nowhere?")

        assert ctx.state is PipelineState.DONE
        assert ctx.answer == f"{NO_FACTS_MESSAGE}Probably nobody."
        assert not ctx.answer.startswith(UNGROUNDED_DISCLAIMER)

    def test_chained_general_failure_goes_through_fallback(self) -> None:
        llm = FakeLLM(general=SynthesisError("quota exceeded"))
        orchestrator = make_orchestrator(
            llm, FakeSession(FakeResponse(200, EMPTY_RESULT)), chain_general_on_empty=True
        )
        ctx = orchestrator.answer("Who directed the movie Nowhere?")

        assert ctx.state is PipelineState.ERROR
        assert ctx.failed_stage is PipelineState.SYNTHESIZING_ANSWER
        assert ctx.facts is not None and ctx.facts.is_empty
        assert ctx.answer is None
        assert ctx.error.startswith("The entire pipeline failed.")
        # One general call for the chained answer, one for the fallback.
        assert llm.kinds() == ["query", "general", "general"]


class TestFailures:
    def test_graph_503_falls_back(self, fake_llm) -> None:
        session = FakeSession(FakeResponse(503, text="Service Temporarily Unavailable"))
        orchestrator = make_orchestrator(fake_llm, session)
        states = _record_states(orchestrator)

        ctx = orchestrator.answer("Who directed the movie Inception?")

        assert ctx.state is PipelineState.ERROR
        assert ctx.failed_stage is PipelineState.QUERYING_GRAPH
        assert "503" in ctx.error
        assert ctx.error.startswith("Error at step QUERYING_GRAPH:")
        assert ctx.answer.startswith(UNGROUNDED_DISCLAIMER)
        assert ctx.answer.endswith("Christopher Nolan directed Inception.")
        # The query produced before the failure is kept.
        assert ctx.structured_query == INCEPTION_QUERY
        assert ctx.facts is None
        assert fake_llm.kinds() == ["query", "general"]
        assert states[-2:] == [PipelineState.ERROR, PipelineState.ERROR]

    def test_answer_stage_failure_falls_back(self, inception_session) -> None:
        llm = FakeLLM(answer=SynthesisError("quota exceeded"))
        ctx = make_orchestrator(llm, inception_session).answer("Who directed the movie Inception?")

        assert ctx.state is PipelineState.ERROR
        assert ctx.failed_stage is PipelineState.SYNTHESIZING_ANSWER
        assert "quota exceeded" in ctx.error
        assert ctx.facts is not None
        assert ctx.answer.startswith(UNGROUNDED_DISCLAIMER)

    def test_synthesis_and_fallback_both_fail(self, inception_session) -> None:
        llm = FakeLLM(
            query=SynthesisError("model overloaded"),
            general=SynthesisError("network unreachable"),
        )
        ctx = make_orchestrator(llm, inception_session).answer("Who directed the movie Inception?")

        assert ctx.state is PipelineState.ERROR
        assert ctx.failed_stage is PipelineState.SYNTHESIZING_QUERY
        assert ctx.answer is None
        assert ctx.structured_query is None
        assert "model overloaded" in ctx.error
        assert "network unreachable" in ctx.error
        assert ctx.error.startswith("The entire pipeline failed.")
        assert inception_session.requests == []
        assert llm.kinds() == ["query", "general"]

    def test_unexpected_exception_is_contained(self, fake_llm) -> None:
        session = FakeSession(RuntimeError("boom"))
        ctx = make_orchestrator(fake_llm, session).answer("Who directed the movie Inception?")

        assert ctx.state is PipelineState.ERROR
        assert "boom" in ctx.error
        assert ctx.answer.startswith(UNGROUNDED_DISCLAIMER)

    def test_observer_errors_do_not_break_the_run(self, fake_llm, inception_session) -> None:
        orchestrator = make_orchestrator(fake_llm, inception_session)

        def broken(ctx):
            raise ValueError("observer bug")

        orchestrator.subscribe(broken)
        assert orchestrator.answer("Who directed the movie Inception?").state is PipelineState.DONE


class TestSubmission:
    @pytest.mark.parametrize("question", ["", "   ", "\n\t"])
    def test_blank_question_is_noop(self, fake_llm, inception_session, question) -> None:
        orchestrator = make_orchestrator(fake_llm, inception_session)
        states = _record_states(orchestrator)

        assert orchestrator.answer(question) is None
        assert orchestrator.state is PipelineState.IDLE
        assert states == []
        assert fake_llm.calls == []

    def test_blank_question_keeps_previous_result(self, fake_llm, inception_session) -> None:
        orchestrator = make_orchestrator(fake_llm, inception_session)
        orchestrator.answer("Who directed the movie Inception?")
        orchestrator.answer("  ")

        assert orchestrator.state is PipelineState.DONE
        assert orchestrator.context.question == "Who directed the movie Inception?"

    def test_new_submission_replaces_context(self, inception_session) -> None:
        llm = FakeLLM(query=SynthesisError("bad"), general="general")
        orchestrator = make_orchestrator(llm, inception_session)
        orchestrator.answer("first question")
        assert orchestrator.state is PipelineState.ERROR

        llm.replies["query"] = INCEPTION_QUERY
        ctx = orchestrator.answer("second question")
        assert ctx.question == "second question"
        assert ctx.state is PipelineState.DONE
        assert ctx.error is None and ctx.failed_stage is None

    def test_concurrent_submission_is_rejected(self, fake_llm, inception_session) -> None:
        orchestrator = make_orchestrator(fake_llm, inception_session)
        nested = []

        def resubmit(ctx):
            if ctx.state is PipelineState.QUERYING_GRAPH:
                assert orchestrator.is_running
                nested.append(orchestrator.answer("another question"))

        orchestrator.subscribe(resubmit)
        ctx = orchestrator.answer("Who directed the movie Inception?")

        assert nested == [None]
        assert ctx.question == "Who directed the movie Inception?"
        assert ctx.state is PipelineState.DONE
        assert fake_llm.kinds() == ["query", "answer"]
        assert not orchestrator.is_running

    def test_unsubscribe_stops_notifications(self, fake_llm, inception_session) -> None:
        orchestrator = make_orchestrator(fake_llm, inception_session)
        seen = []
        unsubscribe = orchestrator.subscribe(seen.append)
        unsubscribe()
        orchestrator.answer("Who directed the movie Inception?")
        assert seen == []

    def test_context_is_a_copy(self, fake_llm, inception_session) -> None:
        orchestrator = make_orchestrator(fake_llm, inception_session)
        orchestrator.answer("Who directed the movie Inception?")
        snapshot = orchestrator.context
        snapshot.answer = "tampered"
        assert orchestrator.context.answer != "tampered"

    def test_snapshot_facts_are_detached(self, fake_llm, inception_session) -> None:
        orchestrator = make_orchestrator(fake_llm, inception_session)
        observed = []
        orchestrator.subscribe(observed.append)
        orchestrator.answer("Who directed the movie Inception?")

        orchestrator.context.facts.bindings.clear()
        observed[-1].facts.bindings.clear()
        observed[-1].facts.variables.append("extra")

        facts = orchestrator.context.facts
        assert len(facts) == 1
        assert facts.variables == ["director"]

    def test_question_is_passed_through_unchanged(self, fake_llm) -> None:
        session = FakeSession(FakeResponse(503, text="busy"))
        question = "  Who directed the movie Inception?\n"
        ctx = make_orchestrator(fake_llm, session).answer(question)

        assert ctx.question == question
        assert f'"{question}"' in fake_llm.calls[0][1]
        assert fake_llm.calls[-1] == ("general", question, None)
