import os
from typing import List

import streamlit as st

from kgqa_web import __doc__ as kgqa_web_doc
from kgqa_web.config import API_KEY_ENV_VAR, CONFIG_ENV_VAR, ConfigError, load_config
from kgqa_web.models import PipelineState, RunContext
from kgqa_web.orchestrator import PipelineOrchestrator, build_orchestrator


EXAMPLE_QUESTIONS: List[str] = [
    "Who directed the movie Inception?",
    "What is the capital of Australia?",
    "Which rivers flow through Vienna?",
    "When was Ada Lovelace born?",
]

STAGE_LABELS = {
    PipelineState.SYNTHESIZING_QUERY: "Generating SPARQL query...",
    PipelineState.QUERYING_GRAPH: "Querying the knowledge graph...",
    PipelineState.SYNTHESIZING_ANSWER: "Generating answer from facts...",
}


def _get_orchestrator() -> PipelineOrchestrator:
    # One orchestrator per browser session so runs never share a RunContext.
    if "orchestrator" not in st.session_state:
        st.session_state["orchestrator"] = build_orchestrator()
    return st.session_state["orchestrator"]


def _render_result(ctx: RunContext, show_sparql: bool, show_facts: bool, max_rows: int) -> None:
    if ctx.error:
        st.error(ctx.error)

    if ctx.answer:
        st.markdown("### Answer")
        if ctx.state is PipelineState.ERROR:
            st.warning("This answer is not grounded in the knowledge graph.")
        st.write(ctx.answer)

    if show_sparql and ctx.structured_query:
        with st.expander("Generated SPARQL"):
            st.code(ctx.structured_query, language="sparql")

    if show_facts and ctx.facts is not None:
        with st.expander(f"Knowledge graph facts ({len(ctx.facts)} row(s))"):
            rows = ctx.facts.rows()
            if rows:
                st.dataframe(rows[:max_rows])
            else:
                st.write("No facts returned.")


def main() -> None:
    """Streamlit entrypoint for the grounded QA app."""

    st.set_page_config(page_title="Knowledge-Grounded Q&A", layout="wide")

    # Streamlit secrets take precedence over the environment.
    try:
        api_key = st.secrets.get(API_KEY_ENV_VAR) or os.getenv(API_KEY_ENV_VAR)
    except (FileNotFoundError, AttributeError, KeyError):
        api_key = os.getenv(API_KEY_ENV_VAR)

    if not api_key:
        st.error(f"Missing {API_KEY_ENV_VAR}. Set it in Streamlit secrets or as an environment variable.")
        st.stop()
    os.environ[API_KEY_ENV_VAR] = api_key

    try:
        cfg = load_config()
        orchestrator = _get_orchestrator()
    except ConfigError as exc:
        st.error(str(exc))
        st.stop()

    st.title("Knowledge-Grounded Q&A")
    st.caption(
        f"Config: {os.environ.get(CONFIG_ENV_VAR, 'web/configs/default.yaml')} | "
        f"Graph: {cfg.graph.label} | LLM model: {cfg.llm.model}"
    )

    with st.sidebar:
        st.header("Options")
        show_sparql = st.checkbox("Show generated SPARQL", value=cfg.ui.show_generated_sparql)
        show_facts = st.checkbox("Show knowledge graph facts", value=cfg.ui.show_facts)

        st.markdown("### Example questions")
        for q in EXAMPLE_QUESTIONS:
            if st.button(q, key=f"example-{q}"):
                st.session_state["question_input"] = q

    question = st.text_area(
        "Ask a question:",
        key="question_input",
        height=100,
    )
    run_clicked = st.button("Submit", type="primary", disabled=orchestrator.is_running)

    if run_clicked and question.strip():
        with st.status("Working...", expanded=False) as status:
            def _on_transition(ctx: RunContext) -> None:
                label = STAGE_LABELS.get(ctx.state)
                if label:
                    status.update(label=label, state="running")

            unsubscribe = orchestrator.subscribe(_on_transition)
            try:
                orchestrator.answer(question)
            finally:
                unsubscribe()
            final = orchestrator.context
            status.update(
                label="Done" if final.state is PipelineState.DONE else "Finished with errors",
                state="complete" if final.state is PipelineState.DONE else "error",
            )

    ctx = orchestrator.context
    if ctx.state.is_terminal:
        _render_result(ctx, show_sparql, show_facts, cfg.ui.max_rows)

    with st.expander("About this app"):
        st.write(kgqa_web_doc or "Knowledge-graph grounded question answering.")


if __name__ == "__main__":
    main()
