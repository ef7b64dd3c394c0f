from __future__ import annotations

import logging
import re
import time
from typing import Any, Dict, List, Optional

import requests

from kgqa_web.config import GraphConfig
from kgqa_web.errors import GraphServiceError
from kgqa_web.models import FactSet, Term


logger = logging.getLogger(__name__)

RESULTS_FORMAT = "application/sparql-results+json"
USER_AGENT = "kgqa/0.1 (knowledge-graph grounded QA)"
MAX_ERROR_BODY = 500


def ensure_limit(query: str, max_rows: int) -> str:
    """
    Ensure that a SPARQL SELECT query has a LIMIT clause with the specified max_rows.

    This is a simple, case-insensitive heuristic and does not attempt to fully
    parse SPARQL. If a LIMIT is already present, it is replaced with the specified
    max_rows; otherwise a LIMIT is appended.
    """

    pattern = re.compile(r"\blimit\s+\d+\b", flags=re.IGNORECASE)
    if pattern.search(query):
        return pattern.sub(f"LIMIT {int(max_rows)}", query)

    stripped = query.rstrip().rstrip(";")
    return f"{stripped}\nLIMIT {int(max_rows)}"


def _parse_term(var: str, value_obj: Any) -> Term:
    if not isinstance(value_obj, dict):
        raise GraphServiceError(f"Binding for '{var}' is not an object.")
    term_type = value_obj.get("type")
    value = value_obj.get("value")
    if not isinstance(term_type, str) or not isinstance(value, str):
        raise GraphServiceError(
            f"Binding for '{var}' must carry string 'type' and 'value' fields."
        )
    datatype = value_obj.get("datatype")
    lang = value_obj.get("xml:lang")
    return Term(
        type=term_type,
        value=value,
        datatype=datatype if isinstance(datatype, str) else None,
        lang=lang if isinstance(lang, str) else None,
    )


def parse_result_set(payload: Any) -> FactSet:
    """
    Validate a SPARQL JSON result document and convert it to a FactSet.

    Expects `{"head": {"vars": [...]}, "results": {"bindings": [...]}}`. Any
    shape mismatch raises GraphServiceError.
    """

    if not isinstance(payload, dict):
        raise GraphServiceError("Unexpected JSON structure from SPARQL endpoint.")

    head = payload.get("head")
    if not isinstance(head, dict):
        raise GraphServiceError("SPARQL result is missing the 'head' object.")
    vars_list = head.get("vars", [])
    if not isinstance(vars_list, list) or not all(isinstance(v, str) for v in vars_list):
        raise GraphServiceError("SPARQL result 'head.vars' must be a list of strings.")
    if len(set(vars_list)) != len(vars_list):
        raise GraphServiceError("SPARQL result 'head.vars' contains duplicate names.")

    results = payload.get("results")
    if not isinstance(results, dict):
        raise GraphServiceError("SPARQL result is missing the 'results' object.")
    raw_bindings = results.get("bindings")
    if not isinstance(raw_bindings, list):
        raise GraphServiceError("SPARQL result 'results.bindings' must be a list.")

    bindings: List[Dict[str, Term]] = []
    for idx, binding in enumerate(raw_bindings):
        if not isinstance(binding, dict):
            raise GraphServiceError(f"Binding #{idx} is not an object.")
        bindings.append({var: _parse_term(var, obj) for var, obj in binding.items()})

    return FactSet(variables=list(vars_list), bindings=bindings)


class GraphQueryClient:
    """
    Executes SPARQL queries against a single public endpoint.

    One GET request per query, no retries: failures propagate immediately as
    GraphServiceError.
    """

    def __init__(
        self,
        config: Optional[GraphConfig] = None,
        session: Optional[requests.Session] = None,
    ) -> None:
        self.config = config or GraphConfig()
        self.session = session or requests.Session()
        self.session.headers.update({"User-Agent": USER_AGENT})

    @property
    def endpoint_url(self) -> str:
        return self.config.sparql_url

    def execute(self, query: str) -> FactSet:
        params = {
            "query": query,
            "format": RESULTS_FORMAT,
            "timeout": str(self.config.timeout_ms),
        }
        start = time.perf_counter()
        try:
            resp = self.session.get(
                self.endpoint_url,
                params=params,
                headers={"Accept": RESULTS_FORMAT},
                timeout=self.config.request_timeout_s,
            )
        except requests.RequestException as exc:
            raise GraphServiceError(
                f"{self.config.label} query request failed: {exc}"
            ) from exc
        elapsed_ms = (time.perf_counter() - start) * 1000.0

        if not 200 <= resp.status_code < 300:
            body = resp.text
            logger.warning(
                f"{self.config.label} returned HTTP {resp.status_code} after {elapsed_ms:.1f} ms"
            )
            raise GraphServiceError(
                f"{self.config.label} query failed with status {resp.status_code}: "
                f"{body[:MAX_ERROR_BODY]}",
                status=resp.status_code,
                body=body,
            )

        try:
            payload = resp.json()
        except ValueError as exc:
            raise GraphServiceError(
                f"Failed to decode JSON from SPARQL endpoint: {exc}",
                status=resp.status_code,
                body=resp.text,
            ) from exc

        facts = parse_result_set(payload)
        logger.info(
            f"{self.config.label} returned {len(facts)} binding(s) in {elapsed_ms:.1f} ms"
        )
        return facts


__all__ = [
    "GraphQueryClient",
    "ensure_limit",
    "parse_result_set",
]
