"""
Error kinds raised by the grounded QA pipeline stages.

The orchestrator catches all of these at its boundary; they never escape a
call to `PipelineOrchestrator.answer`.
"""

from __future__ import annotations

from typing import Optional


class KGQAError(Exception):
    """Base class for pipeline errors."""

    def __init__(self, message: str) -> None:
        self.message = message
        super().__init__(message)


class GraphServiceError(KGQAError):
    """Raised when the SPARQL endpoint fails or returns an unusable result set."""

    def __init__(
        self,
        message: str,
        status: Optional[int] = None,
        body: Optional[str] = None,
    ) -> None:
        super().__init__(message)
        self.status = status
        self.body = body


class SynthesisError(KGQAError):
    """Raised when an LLM completion call fails or returns nothing usable."""


class SynthesisTimeout(SynthesisError):
    """Raised when an LLM completion call exceeds the client-side timeout."""


class FallbackFailure(KGQAError):
    """Raised when the general-knowledge fallback fails after a pipeline failure."""

    def __init__(self, original: BaseException, fallback: BaseException) -> None:
        self.original = original
        self.fallback = fallback
        super().__init__(
            f"The entire pipeline failed. Initial Error: {original}. "
            f"Fallback Error: {fallback}"
        )


__all__ = [
    "KGQAError",
    "GraphServiceError",
    "SynthesisError",
    "SynthesisTimeout",
    "FallbackFailure",
]
