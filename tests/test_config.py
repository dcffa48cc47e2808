"""
Tests for configuration module.
"""

import os
from unittest.mock import patch

import pytest
from pydantic import ValidationError

from openmgr_agent.cli import check_config
from openmgr_agent.config import Settings


def test_settings_default_values():
    """Test that settings have sensible defaults."""
    with patch.dict(os.environ, {}, clear=True):
        settings = Settings(_env_file=None)

        assert settings.app_name == "openmgr-agent"
        assert settings.port == 8080
        assert settings.default_provider == "anthropic"
        assert settings.max_agent_iterations is None
        assert settings.loop_detection_window == 5
        assert settings.tool_timeout_seconds == 30.0
        assert settings.persistence_enabled is True


def test_settings_from_env():
    """Test loading settings from environment variables."""
    env = {
        "ANTHROPIC_API_KEY": "test_anthropic_key",
        "DEFAULT_MODEL": "claude-opus-4-20250514",
        "COMPACTION_TOKEN_THRESHOLD": "0.6",
        "MAX_AGENT_ITERATIONS": "50",
    }

    with patch.dict(os.environ, env, clear=True):
        settings = Settings(_env_file=None)

        assert settings.anthropic_api_key == "test_anthropic_key"
        assert settings.default_model == "claude-opus-4-20250514"
        assert settings.compaction_token_threshold == 0.6
        assert settings.max_agent_iterations == 50


def test_invalid_threshold_rejected():
    with patch.dict(os.environ, {"COMPACTION_TOKEN_THRESHOLD": "1.5"}, clear=True):
        with pytest.raises(ValidationError):
            Settings(_env_file=None)


def test_enabled_tools_list():
    """Test parsing the enabled tools list."""
    with patch.dict(os.environ, {"ENABLED_TOOLS": "bash, task ,"}, clear=True):
        settings = Settings(_env_file=None)

        assert settings.enabled_tools_list == ["bash", "task"]


def test_enabled_tools_empty_means_all():
    with patch.dict(os.environ, {}, clear=True):
        assert Settings(_env_file=None).enabled_tools_list is None


def test_get_llm_config():
    """Test getting LLM configuration."""
    env = {
        "ANTHROPIC_API_KEY": "anthropic_key",
        "OPENAI_API_KEY": "openai_key",
        "GOOGLE_API_KEY": "google_key",
    }

    with patch.dict(os.environ, env, clear=True):
        settings = Settings(_env_file=None)

        anthropic = settings.get_llm_config("anthropic")
        assert anthropic.api_key == "anthropic_key"
        assert anthropic.model == settings.default_model

        openai = settings.get_llm_config("openai")
        assert openai.api_key == "openai_key"
        assert openai.model == "gpt-4o"

        google = settings.get_llm_config("google")
        assert google.base_url.startswith("https://generativelanguage.googleapis.com")


def test_compaction_defaults():
    env = {
        "COMPACTION_ENABLED": "false",
        "COMPACTION_MODEL": "claude-3-5-haiku-20241022",
        "COMPACTION_INCEPTION_COUNT": "2",
        "COMPACTION_WORKING_WINDOW_COUNT": "6",
    }

    with patch.dict(os.environ, env, clear=True):
        config = Settings(_env_file=None).compaction_defaults()

        assert config.enabled is False
        assert config.model == "claude-3-5-haiku-20241022"
        assert config.inception_count == 2
        assert config.working_window_count == 6


def test_tool_permission_config():
    env = {
        "TOOL_PERMISSION_MODE": "ask",
        "TOOL_ALWAYS_ALLOW": "read, glob",
        "TOOL_ALWAYS_DENY": "mcp_*",
    }

    with patch.dict(os.environ, env, clear=True):
        config = Settings(_env_file=None).tool_permission_config()

        assert config.default_mode == "ask"
        assert config.always_allow == ["read", "glob"]
        assert config.always_deny == ["mcp_*"]


def test_unknown_permission_mode_rejected():
    with patch.dict(os.environ, {"TOOL_PERMISSION_MODE": "sometimes"}, clear=True):
        with pytest.raises(ValidationError):
            Settings(_env_file=None)


def test_check_config_requires_a_key():
    with patch.dict(os.environ, {}, clear=True):
        errors, _ = check_config(Settings(_env_file=None))

        assert "At least one LLM API key is required" in errors


def test_check_config_default_provider_key():
    env = {"OPENAI_API_KEY": "k", "DEFAULT_PROVIDER": "anthropic"}

    with patch.dict(os.environ, env, clear=True):
        errors, warnings = check_config(Settings(_env_file=None))

        assert any("default provider" in e for e in errors)
        assert any("MAX_AGENT_ITERATIONS" in w for w in warnings)
