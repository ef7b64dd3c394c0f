import json
from typing import Any, Dict, List, Optional, Tuple, Union

import pytest

from kgqa_web import config as config_module
from kgqa_web.answer import AnswerSynthesizer
from kgqa_web.config import AppConfig, GraphConfig
from kgqa_web.fallback import GeneralKnowledgeFallback
from kgqa_web.nl_to_sparql import QuerySynthesizer
from kgqa_web.orchestrator import PipelineOrchestrator
from kgqa_web.sparql.client import GraphQueryClient


Scripted = Union[str, Exception]

INCEPTION_QUERY = (
    "PREFIX dbo: <http://dbpedia.org/ontology/>\n"
    "PREFIX dbr: <http://dbpedia.org/resource/>\n"
    "SELECT ?director WHERE { dbr:Inception dbo:director ?director }"
)

INCEPTION_RESULT = {
    "head": {"vars": ["director"]},
    "results": {
        "bindings": [
            {
                "director": {
                    "type": "uri",
                    "value": "http://dbpedia.org/resource/Christopher_Nolan",
                }
            }
        ]
    },
}

EMPTY_RESULT = {"head": {"vars": ["director"]}, "results": {"bindings": []}}


class FakeLLM:
    """
    Scripted LLMClient that answers by prompt kind.

    Query prompts, grounded-answer prompts and raw questions each get their own
    scripted reply; an Exception instance is raised instead of returned.
    """

    def __init__(
        self,
        query: Scripted = INCEPTION_QUERY,
        answer: Scripted = "Inception was directed by Christopher Nolan.",
        general: Scripted = "Christopher Nolan directed Inception.",
    ) -> None:
        self.replies = {"query": query, "answer": answer, "general": general}
        self.calls: List[Tuple[str, str, Optional[float]]] = []

    @staticmethod
    def kind_of(prompt: str) -> str:
        if prompt.startswith("You are an expert in SPARQL"):
            return "query"
        if prompt.startswith("You are a helpful Q&A assistant"):
            return "answer"
        return "general"

    def complete(self, prompt: str, temperature: Optional[float] = None) -> str:
        kind = self.kind_of(prompt)
        self.calls.append((kind, prompt, temperature))
        reply = self.replies[kind]
        if isinstance(reply, Exception):
            raise reply
        return reply

    def kinds(self) -> List[str]:
        return [kind for kind, _, _ in self.calls]


class FakeResponse:
    def __init__(self, status_code: int = 200, payload: Any = None, text: Optional[str] = None) -> None:
        self.status_code = status_code
        self._payload = payload
        if text is None:
            text = json.dumps(payload) if payload is not None else ""
        self.text = text

    @property
    def ok(self) -> bool:
        return 200 <= self.status_code < 400

    def json(self) -> Any:
        if self._payload is None:
            return json.loads(self.text)
        return self._payload


class FakeSession:
    """Stands in for requests.Session; returns (or raises) one scripted outcome."""

    def __init__(self, outcome: Union[FakeResponse, Exception]) -> None:
        self.outcome = outcome
        self.headers: Dict[str, str] = {}
        self.requests: List[Dict[str, Any]] = []

    def get(self, url: str, **kwargs: Any) -> FakeResponse:
        self.requests.append({"url": url, **kwargs})
        if isinstance(self.outcome, Exception):
            raise self.outcome
        return self.outcome


def make_orchestrator(
    llm: FakeLLM,
    session: FakeSession,
    chain_general_on_empty: bool = False,
) -> PipelineOrchestrator:
    return PipelineOrchestrator(
        query_synthesizer=QuerySynthesizer(llm),
        graph_client=GraphQueryClient(GraphConfig(), session=session),  # type: ignore[arg-type]
        answer_synthesizer=AnswerSynthesizer(llm),
        fallback=GeneralKnowledgeFallback(llm),
        chain_general_on_empty=chain_general_on_empty,
    )


@pytest.fixture
def fake_llm() -> FakeLLM:
    return FakeLLM()


@pytest.fixture
def inception_session() -> FakeSession:
    return FakeSession(FakeResponse(200, INCEPTION_RESULT))


@pytest.fixture
def app_config() -> AppConfig:
    return AppConfig()


@pytest.fixture(autouse=True)
def reset_config_cache(monkeypatch):
    monkeypatch.setattr(config_module, "_CACHED_CONFIG", None)
    yield
