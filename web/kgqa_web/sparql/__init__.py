"""SPARQL protocol client for the knowledge-graph endpoint."""

from kgqa_web.sparql.client import GraphQueryClient, ensure_limit, parse_result_set

__all__ = ["GraphQueryClient", "ensure_limit", "parse_result_set"]
