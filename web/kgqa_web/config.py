from __future__ import annotations

import os
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Dict, Optional

import yaml


CONFIG_ENV_VAR = "KGQA_CONFIG_PATH"
API_KEY_ENV_VAR = "OPENAI_API_KEY"

DEFAULT_SPARQL_URL = "https://dbpedia.org/sparql"


@dataclass
class GraphConfig:
    sparql_url: str = DEFAULT_SPARQL_URL
    label: str = "DBpedia"
    timeout_ms: int = 30000
    request_timeout_s: float = 60.0
    max_rows: Optional[int] = None


@dataclass
class LLMConfig:
    provider: str = "openai"
    model: str = "gpt-4.1"
    query_temperature: float = 0.1
    answer_temperature: float = 0.5
    timeout_s: float = 60.0


@dataclass
class PipelineConfig:
    chain_general_on_empty: bool = False


@dataclass
class UIConfig:
    show_generated_sparql: bool = True
    show_facts: bool = True
    max_rows: int = 200


@dataclass
class AppConfig:
    raw: Dict[str, Any] = field(default_factory=dict)
    graph: GraphConfig = field(default_factory=GraphConfig)
    llm: LLMConfig = field(default_factory=LLMConfig)
    pipeline: PipelineConfig = field(default_factory=PipelineConfig)
    ui: UIConfig = field(default_factory=UIConfig)


class ConfigError(RuntimeError):
    """Raised when the configuration or the LLM credential is missing or invalid."""


def _default_config_path() -> Path:
    """
    Determine the bundled config path.

    This is resolved relative to the `web/` directory so it works both when run
    via `streamlit run web/app.py` and when imported as a package.
    """

    here = Path(__file__).resolve()
    web_root = here.parents[1]  # .../web
    return web_root / "configs" / "default.yaml"


def _load_yaml(path: Path) -> Dict[str, Any]:
    if not path.exists():
        raise ConfigError(
            f"Config file not found at '{path}'. "
            f"Set {CONFIG_ENV_VAR} to a valid YAML config."
        )
    try:
        with path.open("r", encoding="utf-8") as f:
            data = yaml.safe_load(f) or {}
    except yaml.YAMLError as exc:
        raise ConfigError(f"Failed to parse config YAML at '{path}': {exc}") from exc

    if not isinstance(data, dict):
        raise ConfigError(f"Config at '{path}' must be a YAML mapping/object.")
    return data


def _section(raw: Dict[str, Any], key: str) -> Dict[str, Any]:
    section = raw.get(key) or {}
    if not isinstance(section, dict):
        raise ConfigError(f"'{key}' section must be a mapping/object.")
    return section


def _coerce_graph(section: Dict[str, Any]) -> GraphConfig:
    url = str(section.get("sparql_url") or DEFAULT_SPARQL_URL)
    if not url.startswith(("http://", "https://")):
        raise ConfigError(f"'graph.sparql_url' must be an http(s) URL, got '{url}'.")

    max_rows = section.get("max_rows")
    try:
        graph = GraphConfig(
            sparql_url=url,
            label=str(section.get("label") or "DBpedia"),
            timeout_ms=int(section.get("timeout_ms", 30000)),
            request_timeout_s=float(section.get("request_timeout_s", 60.0)),
            max_rows=int(max_rows) if max_rows is not None else None,
        )
    except (TypeError, ValueError) as exc:
        raise ConfigError(f"Invalid value in 'graph' section: {exc}") from exc

    if graph.timeout_ms <= 0:
        raise ConfigError("'graph.timeout_ms' must be positive.")
    if graph.max_rows is not None and graph.max_rows <= 0:
        raise ConfigError("'graph.max_rows' must be positive when set.")
    return graph


def _coerce_llm(section: Dict[str, Any]) -> LLMConfig:
    try:
        llm = LLMConfig(
            provider=str(section.get("provider", "openai")),
            model=str(section.get("model", "gpt-4.1")),
            query_temperature=float(section.get("query_temperature", 0.1)),
            answer_temperature=float(section.get("answer_temperature", 0.5)),
            timeout_s=float(section.get("timeout_s", 60.0)),
        )
    except (TypeError, ValueError) as exc:
        raise ConfigError(f"Invalid value in 'llm' section: {exc}") from exc

    if llm.provider != "openai":
        raise ConfigError(f"Unsupported LLM provider '{llm.provider}'.")
    return llm


def _coerce_pipeline(section: Dict[str, Any]) -> PipelineConfig:
    return PipelineConfig(
        chain_general_on_empty=bool(section.get("chain_general_on_empty", False)),
    )


def _coerce_ui(section: Dict[str, Any]) -> UIConfig:
    return UIConfig(
        show_generated_sparql=bool(section.get("show_generated_sparql", True)),
        show_facts=bool(section.get("show_facts", True)),
        max_rows=int(section.get("max_rows", 200)),
    )


_CACHED_CONFIG: Optional[AppConfig] = None


def load_config(force_reload: bool = False) -> AppConfig:
    """
    Load and validate the application configuration.

    Precedence:
    1. Use path from KGQA_CONFIG_PATH if set.
    2. Otherwise fall back to `web/configs/default.yaml`.
    """

    global _CACHED_CONFIG
    if _CACHED_CONFIG is not None and not force_reload:
        return _CACHED_CONFIG

    env_path = os.environ.get(CONFIG_ENV_VAR)
    path = Path(env_path).expanduser() if env_path else _default_config_path()

    raw = _load_yaml(path)
    _CACHED_CONFIG = AppConfig(
        raw=raw,
        graph=_coerce_graph(_section(raw, "graph")),
        llm=_coerce_llm(_section(raw, "llm")),
        pipeline=_coerce_pipeline(_section(raw, "pipeline")),
        ui=_coerce_ui(_section(raw, "ui")),
    )
    return _CACHED_CONFIG


def get_api_key() -> str:
    """Return the LLM credential; its absence is a fatal startup condition."""

    api_key = os.environ.get(API_KEY_ENV_VAR)
    if not api_key:
        raise ConfigError(
            f"{API_KEY_ENV_VAR} is not set. Please provide an API key to enable "
            "question answering."
        )
    return api_key


__all__ = [
    "AppConfig",
    "GraphConfig",
    "LLMConfig",
    "PipelineConfig",
    "UIConfig",
    "ConfigError",
    "CONFIG_ENV_VAR",
    "API_KEY_ENV_VAR",
    "load_config",
    "get_api_key",
]
