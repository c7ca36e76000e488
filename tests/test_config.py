"""Tests for the config system."""

import json
import logging

import pytest

import streamrun.core.config as config_module
from streamrun.core.config import LLMConfig, RunConfig, StreamRunConfig, reload_config
from streamrun.core.logging import ColorFormatter, StructuredFormatter, setup_logging


def test_run_defaults():
    cfg = RunConfig()
    assert cfg.max_steps == 1
    assert cfg.tool_concurrency == 0
    assert cfg.timeout == 0.0


def test_llm_defaults():
    cfg = LLMConfig()
    assert cfg.model == "gpt-4o"
    assert cfg.max_tokens == 1024
    assert cfg.temperature == 0.7
    assert cfg.base_url == ""


def test_run_config_from_env(monkeypatch):
    monkeypatch.setenv("STREAMRUN_MAX_STEPS", "5")
    monkeypatch.setenv("STREAMRUN_TOOL_CONCURRENCY", "3")
    monkeypatch.setenv("STREAMRUN_RUN_TIMEOUT", "12.5")
    cfg = RunConfig.from_env()
    assert cfg.max_steps == 5
    assert cfg.tool_concurrency == 3
    assert cfg.timeout == 12.5


def test_llm_config_from_env(monkeypatch):
    monkeypatch.setenv("OPENAI_API_KEY", "sk-test")
    monkeypatch.setenv("STREAMRUN_LLM_BASE_URL", "http://localhost:8000/v1")
    monkeypatch.setenv("STREAMRUN_LLM_TEMPERATURE", "0.1")
    cfg = LLMConfig.from_env()
    assert cfg.api_key == "sk-test"
    assert cfg.base_url == "http://localhost:8000/v1"
    assert cfg.temperature == 0.1


def test_config_is_frozen():
    cfg = StreamRunConfig()
    with pytest.raises(Exception):
        cfg.run = RunConfig(max_steps=9)  # type: ignore[misc]


def test_reload_config_replaces_singleton(monkeypatch):
    monkeypatch.setenv("STREAMRUN_MAX_STEPS", "7")
    fresh = reload_config()
    assert fresh.run.max_steps == 7
    assert config_module.config is fresh


def test_structured_formatter_includes_fields():
    formatter = StructuredFormatter()
    record = logging.LogRecord(
        "streamrun.run", logging.INFO, __file__, 1, "Step finished", None, None
    )
    record.run_id = "run-1"
    record.step = 2

    entry = json.loads(formatter.format(record))

    assert entry["msg"] == "Step finished"
    assert entry["run_id"] == "run-1"
    assert entry["step"] == 2
    assert entry["level"] == "INFO"


def test_color_formatter_prefixes_run_context():
    formatter = ColorFormatter(use_color=False)
    record = logging.LogRecord(
        "streamrun.tools.engine", logging.INFO, __file__, 1, "Tool: double(x)", None, None
    )
    record.run_id = "a1b2c3d4e5f6"
    record.step = 1
    record.tool_name = "double"

    line = formatter.format(record)

    assert line.endswith("[streamrun.tools.engine] INFO: [a1b2c3d4#1 double] Tool: double(x)")


def test_color_formatter_without_run_context():
    formatter = ColorFormatter(use_color=False)
    record = logging.LogRecord("streamrun", logging.WARNING, __file__, 1, "hello", None, None)

    assert formatter.format(record).endswith("[streamrun] WARNING: hello")


def test_setup_logging_respects_level(monkeypatch):
    root = logging.getLogger()
    saved_handlers, saved_level = list(root.handlers), root.level
    monkeypatch.setenv("STREAMRUN_LOG_LEVEL", "DEBUG")
    monkeypatch.setenv("STREAMRUN_LOG_FORMAT", "json")
    try:
        setup_logging()
        assert root.level == logging.DEBUG
        assert isinstance(root.handlers[0].formatter, StructuredFormatter)
        assert logging.getLogger("httpx").level == logging.WARNING

        setup_logging(level="warning", fmt="text")
        assert root.level == logging.WARNING
        assert len(root.handlers) == 1
        assert isinstance(root.handlers[0].formatter, ColorFormatter)
    finally:
        root.handlers[:] = saved_handlers
        root.setLevel(saved_level)
