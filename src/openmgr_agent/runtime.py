"""
Process wiring.

Everything the agents share (settings, registries, the store, the tool
executor and the compaction engine) lives in one explicit AgentRuntime.
Build one per process, or per test, and pass it down.
"""

from dataclasses import dataclass

import structlog

from .agent.compaction import CompactionEngine
from .agent.executor import ToolExecutor
from .commands import CommandRegistry, create_command_registry
from .config import Settings, get_settings
from .llm.registry import ProviderRegistry
from .storage import InMemorySessionStore, SessionStore, SQLSessionStore
from .tools.registry import ToolRegistry
from .tools.shell_tool import create_shell_tools
from .tools.task_tool import create_task_tool

logger = structlog.get_logger()


@dataclass
class AgentRuntime:
    settings: Settings
    providers: ProviderRegistry
    tools: ToolRegistry
    commands: CommandRegistry
    store: SessionStore
    executor: ToolExecutor
    compaction: CompactionEngine

    async def close(self) -> None:
        await self.store.close()


def create_tool_registry(settings: Settings) -> ToolRegistry:
    """Registry with the built-in tools."""
    registry = ToolRegistry()
    for tool in create_shell_tools(max_output_chars=settings.shell_max_output_chars):
        registry.register(tool)
    registry.register(create_task_tool())
    return registry


def assemble_runtime(
    settings: Settings,
    store: SessionStore,
    providers: ProviderRegistry | None = None,
    tools: ToolRegistry | None = None,
    commands: CommandRegistry | None = None,
) -> AgentRuntime:
    """Wire a runtime from parts; anything not given gets the default."""
    providers = providers or ProviderRegistry.from_settings(settings)
    tools = tools or create_tool_registry(settings)
    return AgentRuntime(
        settings=settings,
        providers=providers,
        tools=tools,
        commands=commands or create_command_registry(),
        store=store,
        executor=ToolExecutor(
            tools,
            default_timeout=settings.tool_timeout_seconds,
            termination_grace=settings.tool_termination_grace_seconds,
            max_timeout=settings.tool_max_timeout_seconds,
        ),
        compaction=CompactionEngine(providers, store, default_model=settings.compaction_default_model),
    )


async def build_runtime(settings: Settings | None = None, store: SessionStore | None = None) -> AgentRuntime:
    """Default runtime for the CLI and the HTTP server."""
    settings = settings or get_settings()
    if store is None:
        if settings.persistence_enabled:
            store = await SQLSessionStore.connect(settings.database_url)
        else:
            store = InMemorySessionStore()
    runtime = assemble_runtime(settings, store)
    logger.info(
        "Runtime ready",
        provider=settings.default_provider,
        model=settings.default_model,
        tools=runtime.tools.list_tools(),
        persistence=settings.persistence_enabled,
    )
    return runtime
