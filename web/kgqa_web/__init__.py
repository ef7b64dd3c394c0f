"""
Knowledge-graph grounded question answering.

This package turns a natural-language question into a SPARQL query with an
LLM, runs it against a public knowledge graph (DBpedia by default) and asks
the LLM to answer using only the returned facts. When any stage fails, a
single ungrounded general-knowledge answer is attempted instead.
"""

__all__ = []
