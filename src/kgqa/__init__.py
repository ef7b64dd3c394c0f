"""Command-line entry point for knowledge-graph grounded question answering."""
