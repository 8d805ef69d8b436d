"""Shared loom configuration utilities.

Centralises reading of ~/.loom/configuration.json (or the file named by
LOOM_CONFIG) so the CLI, the web server and the workflows share one
implementation. Model identifiers use LiteLLM's "provider/model" form.
"""

import json
import os
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any

from loom.runner.tool_registry import FatalToolError

DEFAULT_MAX_STEPS = 250
DEFAULT_MAX_TOKENS = 2048

# ---------------------------------------------------------------------------
# Low-level config file access
# ---------------------------------------------------------------------------

LOOM_CONFIG_FILE = Path.home() / ".loom" / "configuration.json"


def get_config_path() -> Path:
    """Return the configuration file path, honouring LOOM_CONFIG."""
    override = os.environ.get("LOOM_CONFIG")
    return Path(override) if override else LOOM_CONFIG_FILE


def get_loom_config() -> dict[str, Any]:
    """Load loom configuration; missing or unreadable files yield {}."""
    path = get_config_path()
    if not path.exists():
        return {}
    try:
        with open(path, encoding="utf-8-sig") as f:
            return json.load(f)
    except (json.JSONDecodeError, OSError):
        return {}


# ---------------------------------------------------------------------------
# Credentials
# ---------------------------------------------------------------------------


class MissingCredentialError(FatalToolError):
    """A required API key is not present in the environment."""

    def __init__(self, env_var: str):
        super().__init__(f"{env_var} environment variable not set")
        self.env_var = env_var


def require_env(env_var: str) -> str:
    """Return a required environment value or raise MissingCredentialError."""
    value = os.environ.get(env_var)
    if not value:
        raise MissingCredentialError(env_var)
    return value


# ---------------------------------------------------------------------------
# Derived helpers
# ---------------------------------------------------------------------------


def _llm_section() -> dict[str, Any]:
    return get_loom_config().get("llm", {})


def get_preferred_model() -> str:
    """Return the default model used for orchestration and tool loops."""
    return _llm_section().get("model", "openai/gpt-4o")


def get_judge_model() -> str:
    return _llm_section().get("judge_model", "openrouter/anthropic/claude-3-haiku")


def get_debater_models() -> tuple[str, str]:
    """(pro, con) models for debates."""
    debate = get_loom_config().get("debate", {})
    return (
        debate.get("pro_model", "openai/gpt-4o"),
        debate.get("con_model", "gemini/gemini-2.0-flash"),
    )


def get_summary_model() -> str | None:
    """Model that condenses the transcript between rounds; None disables it."""
    return get_loom_config().get("debate", {}).get("summary_model")


def get_candidate_models() -> list[str]:
    """Models that generate candidates in best-of workflows."""
    return list(
        _llm_section().get(
            "candidate_models",
            [
                "openai/gpt-4.1",
                "openrouter/anthropic/claude-3-haiku",
                "gemini/gemini-2.0-flash",
            ],
        )
    )


def get_max_tokens() -> int:
    return _llm_section().get("max_tokens", DEFAULT_MAX_TOKENS)


def get_max_steps() -> int:
    return int(os.environ.get("LOOM_MAX_STEPS", get_loom_config().get("max_steps", DEFAULT_MAX_STEPS)))


def get_memory_dir() -> Path:
    configured = get_loom_config().get("memory_dir")
    return Path(configured) if configured else Path("./debate-memory")


# ---------------------------------------------------------------------------
# RuntimeConfig
# ---------------------------------------------------------------------------


@dataclass
class RuntimeConfig:
    """Runtime configuration loaded from the loom configuration file."""

    model: str = field(default_factory=get_preferred_model)
    judge_model: str = field(default_factory=get_judge_model)
    pro_model: str = field(default_factory=lambda: get_debater_models()[0])
    con_model: str = field(default_factory=lambda: get_debater_models()[1])
    summary_model: str | None = field(default_factory=get_summary_model)
    candidate_models: list[str] = field(default_factory=get_candidate_models)
    temperature: float = 0.7
    max_tokens: int = field(default_factory=get_max_tokens)
    request_timeout: float = 120.0
    max_steps: int = field(default_factory=get_max_steps)
    memory_dir: Path = field(default_factory=get_memory_dir)
    host: str = "0.0.0.0"
    port: int = 8080
