from __future__ import annotations

import copy
from dataclasses import dataclass, field, replace
from enum import Enum
from typing import Any, Dict, List, Optional


class PipelineState(str, Enum):
    """Stage of a single question-answering run."""

    IDLE = "IDLE"
    SYNTHESIZING_QUERY = "SYNTHESIZING_QUERY"
    QUERYING_GRAPH = "QUERYING_GRAPH"
    SYNTHESIZING_ANSWER = "SYNTHESIZING_ANSWER"
    DONE = "DONE"
    ERROR = "ERROR"

    @property
    def is_terminal(self) -> bool:
        return self in (PipelineState.DONE, PipelineState.ERROR)

    @property
    def is_working(self) -> bool:
        return self in WORKING_STATES


WORKING_STATES = frozenset(
    {
        PipelineState.SYNTHESIZING_QUERY,
        PipelineState.QUERYING_GRAPH,
        PipelineState.SYNTHESIZING_ANSWER,
    }
)


@dataclass(frozen=True)
class Term:
    """A typed value bound to a variable in one result row."""

    type: str
    value: str
    datatype: Optional[str] = None
    lang: Optional[str] = None

    def to_json(self) -> Dict[str, str]:
        data = {"type": self.type, "value": self.value}
        if self.datatype is not None:
            data["datatype"] = self.datatype
        if self.lang is not None:
            data["xml:lang"] = self.lang
        return data


@dataclass
class FactSet:
    """
    Result set of one SPARQL SELECT query.

    - variables: declared variable names, unique, in declaration order.
    - bindings: result rows in endpoint order; each maps a variable to a Term.

    An empty FactSet (no bindings) is a valid "no facts found" outcome.
    """

    variables: List[str] = field(default_factory=list)
    bindings: List[Dict[str, Term]] = field(default_factory=list)

    @property
    def is_empty(self) -> bool:
        return not self.bindings

    def __len__(self) -> int:
        return len(self.bindings)

    def to_json_bindings(self) -> List[Dict[str, Dict[str, str]]]:
        """Bindings in the SPARQL 1.1 JSON results shape."""

        return [
            {var: term.to_json() for var, term in binding.items()}
            for binding in self.bindings
        ]

    def rows(self) -> List[Dict[str, Any]]:
        """Project bindings to plain `{variable: value}` rows for display."""

        return [
            {var: binding[var].value if var in binding else None for var in self.variables}
            for binding in self.bindings
        ]


@dataclass
class RunContext:
    """
    State of a single pipeline run, owned by the orchestrator.

    `structured_query` is set once query synthesis succeeded, `facts` once the
    graph query succeeded, and `answer` only in a terminal state. On failure
    `failed_stage` records which working stage was active and `error` carries
    the user-facing message.
    """

    question: str
    state: PipelineState = PipelineState.IDLE
    structured_query: Optional[str] = None
    facts: Optional[FactSet] = None
    answer: Optional[str] = None
    error: Optional[str] = None
    failed_stage: Optional[PipelineState] = None

    @property
    def grounded(self) -> bool:
        return self.state is PipelineState.DONE and self.answer is not None

    def snapshot(self) -> "RunContext":
        return replace(self, facts=copy.deepcopy(self.facts))


__all__ = [
    "PipelineState",
    "WORKING_STATES",
    "Term",
    "FactSet",
    "RunContext",
]
