"""
Configuration management for openmgr-agent

Uses pydantic-settings for environment variable parsing and validation.
"""

from functools import lru_cache
from typing import Literal

from pydantic import Field, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict

ProviderName = Literal["anthropic", "openai", "google", "openrouter"]


class LLMConfig(BaseSettings):
    """Configuration for a single LLM provider."""

    model_config = SettingsConfigDict(extra="ignore")

    provider: ProviderName = "anthropic"
    model: str = "claude-sonnet-4-20250514"
    api_key: str = ""
    base_url: str | None = None
    max_tokens: int = 8192
    temperature: float = 0.7


class Settings(BaseSettings):
    """Main application settings."""

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore",
        env_nested_delimiter="__",
    )

    # Application
    app_name: str = "openmgr-agent"
    debug: bool = False
    log_level: str = "INFO"

    # Server
    host: str = "127.0.0.1"
    port: int = 8080

    # LLM Providers (API Keys)
    anthropic_api_key: str = Field(default="", description="Anthropic API key for Claude")
    openai_api_key: str = Field(default="", description="OpenAI API key")
    google_api_key: str = Field(default="", description="Google AI API key for Gemini")
    openrouter_api_key: str = Field(default="", description="OpenRouter API key")

    # Default model settings
    default_provider: ProviderName = "anthropic"
    default_model: str = "claude-sonnet-4-20250514"
    max_tokens: int = 8192
    temperature: float = 0.7

    # Compaction
    compaction_enabled: bool = True
    compaction_model: str | None = Field(
        default=None, description="Per-session summarization model new sessions start with"
    )
    compaction_default_model: str | None = Field(
        default=None,
        description="Fallback summarization model (unset = a small model of the session's provider)",
    )
    compaction_token_threshold: float = Field(default=0.8, gt=0.0, le=1.0)
    compaction_inception_count: int = Field(default=4, ge=0)
    compaction_working_window_count: int = Field(default=10, ge=0)

    # Conversation loop
    max_agent_iterations: int | None = Field(
        default=None, description="Safety valve for model calls per turn (unset = unlimited)"
    )
    loop_detection_window: int = Field(
        default=5, ge=0, description="Identical consecutive tool batches before aborting (0 = off)"
    )

    # Tools
    tool_timeout_seconds: float = Field(default=30.0, gt=0.0)
    tool_termination_grace_seconds: float = Field(default=2.0, ge=0.0)
    tool_max_timeout_seconds: float = Field(
        default=1800.0, gt=0.0, description="Upper bound for any per-call tool timeout"
    )
    shell_max_output_chars: int = 50_000
    enabled_tools: str = Field(default="", description="Comma-separated tool names (empty = all)")

    # Tool permissions
    tool_permission_mode: Literal["allow", "deny", "ask"] = Field(
        default="allow", description="Decision for tools no pattern matches"
    )
    tool_always_allow: str = Field(default="", description="Comma-separated tool name patterns")
    tool_always_deny: str = Field(default="", description="Comma-separated tool name patterns")

    # Session titles
    title_generation_enabled: bool = True
    title_model: str | None = Field(default=None, description="Model for titles (unset = the session's model)")

    # Database
    database_url: str = Field(
        default="sqlite+aiosqlite:///./data/agent.db",
        description="Database connection URL"
    )
    persistence_enabled: bool = True

    @field_validator("enabled_tools", mode="before")
    @classmethod
    def parse_enabled_tools(cls, v: str) -> str:
        return v.strip() if v else ""

    @property
    def enabled_tools_list(self) -> list[str] | None:
        """Tool filter for the model, or None for every registered tool."""
        if not self.enabled_tools:
            return None
        return self._split_list(self.enabled_tools)

    @staticmethod
    def _split_list(value: str) -> list[str]:
        return [item.strip() for item in value.split(",") if item.strip()]

    def get_llm_config(self, provider: str | None = None) -> LLMConfig:
        """Get LLM configuration for a provider."""
        provider = provider or self.default_provider

        api_key_map = {
            "anthropic": self.anthropic_api_key,
            "openai": self.openai_api_key,
            "google": self.google_api_key,
            "openrouter": self.openrouter_api_key,
        }

        model_map = {
            "anthropic": "claude-sonnet-4-20250514",
            "openai": "gpt-4o",
            "google": "gemini-2.5-flash",
            "openrouter": "anthropic/claude-sonnet-4",
        }

        base_url_map = {
            "anthropic": None,
            "openai": None,
            "google": "https://generativelanguage.googleapis.com/v1beta/openai/",
            "openrouter": "https://openrouter.ai/api/v1",
        }

        model = self.default_model if provider == self.default_provider else model_map.get(provider, self.default_model)

        return LLMConfig(
            provider=provider,  # type: ignore
            model=model,
            api_key=api_key_map.get(provider, ""),
            base_url=base_url_map.get(provider),
            max_tokens=self.max_tokens,
            temperature=self.temperature,
        )

    def compaction_defaults(self):
        """Build the compaction config new sessions start with."""
        from .agent.types import CompactionConfig

        return CompactionConfig(
            enabled=self.compaction_enabled,
            model=self.compaction_model,
            token_threshold=self.compaction_token_threshold,
            inception_count=self.compaction_inception_count,
            working_window_count=self.compaction_working_window_count,
        )

    def tool_permission_config(self):
        """Build the permission rules every session starts with."""
        from .agent.permissions import ToolPermissionConfig

        return ToolPermissionConfig(
            default_mode=self.tool_permission_mode,
            always_allow=self._split_list(self.tool_always_allow),
            always_deny=self._split_list(self.tool_always_deny),
        )


@lru_cache
def get_settings() -> Settings:
    """Get cached settings instance."""
    return Settings()
