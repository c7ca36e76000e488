"""
streamrun configuration — single source of truth for all settings.

Reads from environment variables (and a local .env file) with sensible
defaults. Explicit arguments to stream_run() always win over these.
"""

from __future__ import annotations

import os
from dataclasses import dataclass, field

from dotenv import load_dotenv

load_dotenv()


@dataclass(frozen=True)
class RunConfig:
    """Orchestration defaults applied when a run doesn't override them."""

    max_steps: int = 1  # default stop condition: step_count_is(max_steps)
    tool_concurrency: int = 0  # 0 = every call of a step runs at once
    timeout: float = 0.0  # seconds; 0 = no run timeout

    @classmethod
    def from_env(cls) -> RunConfig:
        return cls(
            max_steps=int(os.getenv("STREAMRUN_MAX_STEPS", "1")),
            tool_concurrency=int(os.getenv("STREAMRUN_TOOL_CONCURRENCY", "0")),
            timeout=float(os.getenv("STREAMRUN_RUN_TIMEOUT", "0")),
        )


@dataclass(frozen=True)
class LLMConfig:
    """Settings for the bundled OpenAI-compatible backend."""

    api_key: str = ""
    base_url: str = ""
    model: str = "gpt-4o"
    max_tokens: int = 1024
    temperature: float = 0.7

    @classmethod
    def from_env(cls) -> LLMConfig:
        return cls(
            api_key=os.getenv("OPENAI_API_KEY", ""),
            base_url=os.getenv("STREAMRUN_LLM_BASE_URL", ""),
            model=os.getenv("STREAMRUN_LLM_MODEL", "gpt-4o"),
            max_tokens=int(os.getenv("STREAMRUN_LLM_MAX_TOKENS", "1024")),
            temperature=float(os.getenv("STREAMRUN_LLM_TEMPERATURE", "0.7")),
        )


@dataclass(frozen=True)
class StreamRunConfig:
    """Root configuration."""

    run: RunConfig = field(default_factory=RunConfig)
    llm: LLMConfig = field(default_factory=LLMConfig)

    @classmethod
    def from_env(cls) -> StreamRunConfig:
        return cls(
            run=RunConfig.from_env(),
            llm=LLMConfig.from_env(),
        )


# Singleton. Import the module and read `config_module.config` when the
# value may be reloaded (tests, long-lived processes).
config = StreamRunConfig.from_env()


def reload_config() -> StreamRunConfig:
    """Re-read the environment and replace the module-level singleton."""
    global config
    config = StreamRunConfig.from_env()
    return config
