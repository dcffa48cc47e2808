"""
Session management for conversations.

The SessionManager is the entry point outer surfaces use: it creates and
restores sessions, keeps one Agent per live session, routes slash commands
and owns the subagent coordinator.
"""

import os
from dataclasses import replace
from typing import TYPE_CHECKING, Any, Callable

import structlog

from ..errors import SessionNotFoundError
from .cancellation import AbortSignal
from .core import Agent
from .events import CommandResultEvent
from .permissions import PermissionRequestCallback
from .subagents import SubagentCoordinator
from .title import DEFAULT_TITLE, generate_title, is_default_title
from .types import AgentState, CompactionConfig, CompactionRecord, FinalResponse, Message, Session

if TYPE_CHECKING:
    from ..runtime import AgentRuntime

logger = structlog.get_logger()


class SessionManager:
    """Manages conversation sessions and their agents."""

    def __init__(self, runtime: "AgentRuntime"):
        self.runtime = runtime
        self.subagents = SubagentCoordinator(self)
        self._agents: dict[str, Agent] = {}
        self.permission_callback: PermissionRequestCallback | None = None

    @property
    def store(self):
        return self.runtime.store

    async def create(
        self,
        working_directory: str | None = None,
        parent_id: str | None = None,
        title: str | None = None,
        provider: str | None = None,
        model: str | None = None,
        system_prompt: str | None = None,
    ) -> Session:
        """Create a session. Children inherit their parent's provider, model and compaction settings."""
        settings = self.runtime.settings
        compaction_config = settings.compaction_defaults()

        if parent_id is not None:
            parent = await self.get_session(parent_id)
            provider = provider or parent.provider
            model = model or parent.model
            working_directory = working_directory or parent.working_directory
            compaction_config = replace(parent.compaction_config)

        provider = provider or settings.default_provider
        model = model or settings.get_llm_config(provider).model

        session = await self.store.create(
            working_directory=os.path.abspath(working_directory or os.getcwd()),
            provider=provider,
            model=model,
            parent_id=parent_id,
            title=title,
            system_prompt=system_prompt,
            compaction_config=compaction_config,
        )
        self._agents[session.id] = self._new_agent(session)
        logger.info("Created new session", session_id=session.id, parent_id=parent_id, model=model)
        return session

    def _new_agent(self, session: Session) -> Agent:
        return Agent(session, self.runtime, subagents=self.subagents, permission_callback=self.permission_callback)

    def set_permission_callback(self, callback: PermissionRequestCallback | None) -> None:
        """Who answers "ask" permission requests, for live and future sessions."""
        self.permission_callback = callback
        for agent in self._agents.values():
            agent.permissions.request_callback = callback

    async def get_session(self, session_id: str) -> Session:
        session = await self.store.get_session(session_id)
        if session is None:
            raise SessionNotFoundError(session_id)
        return session

    async def restore(self, session_id: str) -> Agent:
        """The session's agent, loading it from the store if needed."""
        agent = self._agents.get(session_id)
        if agent is not None:
            return agent

        session = await self.get_session(session_id)
        agent = self._new_agent(session)
        await agent.load()
        self._agents[session_id] = agent
        logger.info("Restored session", session_id=session_id, message_count=len(agent.messages))
        return agent

    def get_agent(self, session_id: str) -> Agent | None:
        """The agent of a session that is already loaded."""
        return self._agents.get(session_id)

    async def list_sessions(self, limit: int | None = None) -> list[Session]:
        return await self.store.list_sessions(limit=limit)

    async def list_children(self, session_id: str) -> list[Session]:
        return await self.store.list_sessions(parent_id=session_id)

    async def get_messages(self, session_id: str) -> list[Message]:
        agent = self._agents.get(session_id)
        if agent is not None:
            return list(agent.messages)
        await self.get_session(session_id)
        return await self.store.get_messages(session_id)

    async def delete(self, session_id: str) -> bool:
        agent = self._agents.pop(session_id, None)
        if agent is not None:
            agent.abort("deleted")
        return await self.store.delete_session(session_id)

    async def prompt(
        self,
        session_id: str,
        text: str,
        signal: AbortSignal | None = None,
        on_event: Callable[[Any], Any] | None = None,
    ) -> FinalResponse:
        """Run a turn, or a slash command if text invokes a registered one."""
        from ..commands import CommandContext

        agent = await self.restore(session_id)
        unsubscribe = agent.events.subscribe(on_event) if on_event is not None else None
        try:
            matched = self.runtime.commands.match(text)
            if matched is not None:
                command, args = matched
                agent.events.reset()
                ctx = CommandContext(session_id=session_id, agent=agent, sessions=self)
                output = await command.handler(args, ctx)
                agent.events.emit(CommandResultEvent(session_id=session_id, command=command.name, output=output))
                return FinalResponse(state=AgentState.DONE, content=output)

            first_turn = not agent.messages
            response = await agent.prompt(text, signal=signal)
            if first_turn and response.ok:
                await self._maybe_generate_title(agent)
            return response
        finally:
            if unsubscribe is not None:
                unsubscribe()

    async def subscribe(self, session_id: str, callback: Callable[[Any], Any]) -> Callable[[], None]:
        agent = await self.restore(session_id)
        return agent.events.subscribe(callback)

    def abort(self, session_id: str, reason: str = "aborted") -> bool:
        agent = self._agents.get(session_id)
        if agent is None:
            return False
        return agent.abort(reason)

    async def compact(self, session_id: str) -> CompactionRecord:
        """Manual compaction. Raises CompactionError."""
        agent = await self.restore(session_id)
        return await agent.compact()

    async def update_compaction_config(self, session_id: str, **fields: Any) -> CompactionConfig:
        """Change a session's compaction settings between turns."""
        agent = await self.restore(session_id)
        if agent.is_running:
            raise RuntimeError("Compaction settings can only change between turns")
        config = replace(agent.session.compaction_config, **fields)
        agent.session = await self.store.update_session(session_id, compaction_config=config)
        logger.info("Compaction config updated", session_id=session_id, **fields)
        return agent.session.compaction_config

    async def compaction_history(self, session_id: str) -> list[CompactionRecord]:
        await self.get_session(session_id)
        return await self.store.get_compaction_history(session_id)

    async def shutdown(self) -> None:
        """Abort running turns and settle every background subagent."""
        for agent in self._agents.values():
            agent.abort("shutdown")
        await self.subagents.shutdown()

    async def _maybe_generate_title(self, agent: Agent) -> None:
        settings = self.runtime.settings
        session = agent.session
        if not settings.title_generation_enabled or not is_default_title(session.title):
            return

        try:
            provider = self.runtime.providers.get(session.provider)
        except KeyError as e:
            logger.warning("No provider for title generation", session_id=session.id, error=str(e))
            return

        title = await generate_title(provider, settings.title_model or session.model, agent.messages)
        if title == DEFAULT_TITLE:
            return
        agent.session = await self.store.update_session(session.id, title=title)
        logger.info("Session titled", session_id=session.id, title=title)
