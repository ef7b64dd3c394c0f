from __future__ import annotations

import json
import logging
import sys
from typing import Optional

import click

from kgqa_web.config import ConfigError, load_config
from kgqa_web.errors import GraphServiceError
from kgqa_web.models import FactSet, PipelineState, RunContext
from kgqa_web.orchestrator import build_orchestrator
from kgqa_web.sparql.client import GraphQueryClient


def _echo_facts(facts: FactSet, max_rows: int) -> None:
    click.echo(f"{len(facts)} binding(s): {', '.join(facts.variables) or '-'}")
    for row in facts.rows()[:max_rows]:
        click.echo("  " + json.dumps(row, ensure_ascii=False))
    if len(facts) > max_rows:
        click.echo(f"  ... {len(facts) - max_rows} more")


def _stage_printer(ctx: RunContext) -> None:
    if ctx.state.is_working:
        click.echo(f"[{ctx.state.value}]", err=True)


@click.group()
@click.option("--verbose", is_flag=True, help="Enable verbose logging.")
def cli(verbose: bool) -> None:
    """Answer questions grounded in a public knowledge graph."""
    logging.basicConfig(level=logging.DEBUG if verbose else logging.INFO)


@cli.command("ask")
@click.argument("question")
@click.option("--show-sparql", is_flag=True, help="Print the generated SPARQL query.")
@click.option("--show-facts", is_flag=True, help="Print the facts returned by the graph.")
@click.option(
    "--max-rows",
    type=click.IntRange(1, 10_000),
    default=20,
    show_default=True,
    help="Maximum number of fact rows to print.",
)
def ask_command(question: str, show_sparql: bool, show_facts: bool, max_rows: int) -> None:
    """Answer QUESTION using the knowledge graph, falling back to the LLM alone."""
    if not question.strip():
        raise click.BadParameter("question must not be empty.", param_hint="QUESTION")

    try:
        orchestrator = build_orchestrator()
    except ConfigError as exc:
        raise click.ClickException(str(exc)) from exc

    orchestrator.subscribe(_stage_printer)
    result = orchestrator.answer(question)
    if result is None:  # pragma: no cover - only for empty or concurrent submissions
        return

    if show_sparql and result.structured_query:
        click.echo("SPARQL:")
        click.echo(result.structured_query)
        click.echo()
    if show_facts and result.facts is not None:
        _echo_facts(result.facts, max_rows)
        click.echo()

    if result.error:
        click.echo(result.error, err=True)
    if result.answer:
        click.echo(result.answer)
    if result.state is PipelineState.ERROR and not result.answer:
        sys.exit(1)


@cli.command("query")
@click.argument("query_file", type=click.File("r", encoding="utf-8"))
@click.option(
    "--max-rows",
    type=click.IntRange(1, 10_000),
    default=20,
    show_default=True,
    help="Maximum number of rows to print.",
)
def query_command(query_file, max_rows: int) -> None:
    """Run the SPARQL query in QUERY_FILE ('-' for stdin) against the graph."""
    try:
        cfg = load_config()
    except ConfigError as exc:
        raise click.ClickException(str(exc)) from exc

    client = GraphQueryClient(cfg.graph)
    try:
        facts = client.execute(query_file.read())
    except GraphServiceError as exc:
        raise click.ClickException(str(exc)) from exc
    _echo_facts(facts, max_rows)


def main(argv: Optional[list] = None) -> None:  # pragma: no cover
    cli(args=argv)


if __name__ == "__main__":  # pragma: no cover
    main()
