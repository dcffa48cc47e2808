"""
Command-line interface for openmgr-agent.
"""

import argparse
import asyncio
import os
import sys
from pathlib import Path

import structlog
import uvicorn

from .config import Settings, get_settings

structlog.configure(
    processors=[
        structlog.stdlib.add_log_level,
        structlog.stdlib.PositionalArgumentsFormatter(),
        structlog.processors.TimeStamper(fmt="iso"),
        structlog.processors.StackInfoRenderer(),
        structlog.processors.format_exc_info,
        structlog.dev.ConsoleRenderer(colors=True),
    ],
    wrapper_class=structlog.stdlib.BoundLogger,
    context_class=dict,
    logger_factory=structlog.stdlib.LoggerFactory(),
    cache_logger_on_first_use=True,
)

logger = structlog.get_logger()


def main() -> None:
    """Main entry point for the CLI."""
    parser = argparse.ArgumentParser(
        prog="openmgr-agent",
        description="openmgr-agent - AI coding assistant for your terminal",
    )

    subparsers = parser.add_subparsers(dest="command", help="Available commands")

    prompt_parser = subparsers.add_parser("prompt", help="Run a single prompt and print the answer")
    prompt_parser.add_argument("text", help="The prompt to send")
    prompt_parser.add_argument("--session", help="Continue an existing session")
    prompt_parser.add_argument("--cwd", default=None, help="Working directory (default: current)")
    prompt_parser.add_argument("--provider", default=None, help="LLM provider")
    prompt_parser.add_argument("--model", default=None, help="Model name")

    repl_parser = subparsers.add_parser("repl", help="Start an interactive session")
    repl_parser.add_argument("--session", help="Continue an existing session")
    repl_parser.add_argument("--cwd", default=None, help="Working directory (default: current)")
    repl_parser.add_argument("--provider", default=None, help="LLM provider")
    repl_parser.add_argument("--model", default=None, help="Model name")

    serve_parser = subparsers.add_parser("serve", help="Start the HTTP server")
    serve_parser.add_argument("--host", default=None, help="Host to bind to")
    serve_parser.add_argument("--port", type=int, default=None, help="Port to bind to")
    serve_parser.add_argument("--reload", action="store_true", help="Enable auto-reload")

    sessions_parser = subparsers.add_parser("sessions", help="List stored sessions")
    sessions_parser.add_argument("--limit", type=int, default=20, help="How many to show")
    sessions_parser.add_argument("--children-of", default=None, help="Only subagents of this session")

    compact_parser = subparsers.add_parser("compact", help="Compact a session now")
    compact_parser.add_argument("session", help="Session id")

    config_parser = subparsers.add_parser("config", help="Show configuration")
    config_parser.add_argument("--check", action="store_true", help="Check configuration validity")

    subparsers.add_parser("init", help="Initialize the project (create .env, data dir)")

    args = parser.parse_args()

    if args.command is None:
        parser.print_help()
        sys.exit(0)

    if args.command == "prompt":
        sys.exit(asyncio.run(run_prompt(args.text, args.session, args.cwd, args.provider, args.model)))
    elif args.command == "repl":
        try:
            asyncio.run(run_repl(args.session, args.cwd, args.provider, args.model))
        except KeyboardInterrupt:
            print()
    elif args.command == "serve":
        settings = get_settings()
        run_server(args.host or settings.host, args.port or settings.port, args.reload)
    elif args.command == "sessions":
        asyncio.run(list_sessions(args.limit, args.children_of))
    elif args.command == "compact":
        sys.exit(asyncio.run(compact_session(args.session)))
    elif args.command == "config":
        show_config(args.check)
    elif args.command == "init":
        init_project()
    else:
        parser.print_help()


def run_server(host: str, port: int, reload: bool) -> None:
    """Run the FastAPI server."""
    logger.info("Starting openmgr-agent server", host=host, port=port)

    uvicorn.run(
        "openmgr_agent.api.app:create_app",
        host=host,
        port=port,
        reload=reload,
        factory=True,
        log_level="info",
    )


def print_event(event) -> None:
    """Render one agent event on the terminal."""
    if event.type == "message.delta":
        print(event.text, end="", flush=True)
    elif event.type == "tool.start":
        print(f"\n[tool] {event.tool_call.name} {event.tool_call.arguments}", flush=True)
    elif event.type == "tool.complete":
        status = "error" if event.tool_result.is_error else "ok"
        preview = event.tool_result.content.strip().splitlines()[:5]
        print(f"[tool {status}]", *preview, sep="\n  ", flush=True)
    elif event.type == "tool.permission.granted":
        scope = "for this session" if event.allow_always else "once"
        print(f"[allowed {event.tool_name} {scope}]", flush=True)
    elif event.type == "tool.permission.denied":
        print(f"[denied {event.tool_name}]", flush=True)
    elif event.type == "error":
        print(f"\n[error] {event.message}", file=sys.stderr, flush=True)
    elif event.type == "subagent.start":
        mode = "background" if event.is_async else "foreground"
        print(f"\n[subagent {event.session_id[:8]}] started ({mode}): {event.description}", flush=True)
    elif event.type == "subagent.complete":
        print(f"\n[subagent {event.session_id[:8]}] done", flush=True)
    elif event.type == "subagent.error":
        print(f"\n[subagent {event.session_id[:8]}] failed: {event.error}", flush=True)
    elif event.type == "compaction.complete":
        print(f"\n[compacted {event.record['messagesPruned']} messages]", flush=True)
    elif event.type == "command.result":
        print(event.output, flush=True)


async def ask_permission(tool_call) -> str:
    """Answer a tool permission request from the terminal."""
    answer = await asyncio.to_thread(
        input, f"Allow {tool_call.name} {tool_call.arguments}? [y]es / [a]lways / [N]o: "
    )
    answer = answer.strip().lower()
    if answer in ("a", "always"):
        return "allow_always"
    if answer in ("y", "yes"):
        return "allow_once"
    return "deny"


async def _open_session(manager, session_id: str | None, cwd: str | None, provider: str | None, model: str | None):
    if session_id:
        await manager.restore(session_id)
        return session_id
    session = await manager.create(working_directory=cwd, provider=provider, model=model)
    return session.id


async def run_prompt(
    text: str,
    session_id: str | None,
    cwd: str | None,
    provider: str | None,
    model: str | None,
) -> int:
    """Run one turn and print it. Returns the process exit code."""
    from .agent.session import SessionManager
    from .runtime import build_runtime

    runtime = await build_runtime()
    manager = SessionManager(runtime)
    manager.set_permission_callback(ask_permission)
    try:
        session_id = await _open_session(manager, session_id, cwd, provider, model)
        final = await manager.prompt(session_id, text, on_event=print_event)
        print()
        print(f"(session {session_id})", file=sys.stderr)
        return 0 if final.ok else 1
    finally:
        await manager.shutdown()
        await runtime.close()


async def run_repl(session_id: str | None, cwd: str | None, provider: str | None, model: str | None) -> None:
    """Interactive loop. Ctrl-C aborts the running turn; Ctrl-D exits."""
    from .agent.session import SessionManager
    from .runtime import build_runtime

    runtime = await build_runtime()
    manager = SessionManager(runtime)
    manager.set_permission_callback(ask_permission)
    try:
        session_id = await _open_session(manager, session_id, cwd, provider, model)
        unsubscribe = await manager.subscribe(session_id, print_event)
        print(f"Session {session_id}. Type /help for commands, Ctrl-D to exit.")

        while True:
            try:
                text = await asyncio.to_thread(input, "\n> ")
            except (EOFError, asyncio.CancelledError):
                break
            if not text.strip():
                continue

            turn = asyncio.create_task(manager.prompt(session_id, text))
            try:
                await asyncio.shield(turn)
            except (KeyboardInterrupt, asyncio.CancelledError):
                manager.abort(session_id, "interrupted")
                await turn
            print()

        unsubscribe()
    finally:
        await manager.shutdown()
        await runtime.close()


async def list_sessions(limit: int, children_of: str | None) -> None:
    """List stored sessions."""
    from .storage import SQLSessionStore

    settings = get_settings()
    store = await SQLSessionStore.connect(settings.database_url)
    try:
        if children_of:
            sessions = await store.list_sessions(parent_id=children_of, limit=limit)
        else:
            sessions = await store.list_sessions(limit=limit)
    finally:
        await store.close()

    if not sessions:
        print("No sessions.")
        return

    print(f"\n{'ID':<38} {'Model':<28} {'Messages':<9} {'Tokens':<8} {'Title'}")
    print("-" * 100)

    for s in sessions:
        title = s.title or ("(subagent)" if s.is_subagent else "")
        print(f"{s.id:<38} {s.model:<28} {s.message_count:<9} {s.token_estimate:<8} {title}")


async def compact_session(session_id: str) -> int:
    """Compact a session from the command line."""
    from .agent.session import SessionManager
    from .errors import CompactionError, SessionNotFoundError
    from .runtime import build_runtime

    runtime = await build_runtime()
    manager = SessionManager(runtime)
    try:
        record = await manager.compact(session_id)
    except SessionNotFoundError as e:
        logger.error("Session not found", session_id=session_id)
        print(str(e), file=sys.stderr)
        return 1
    except CompactionError as e:
        logger.error("Compaction failed", session_id=session_id, error=str(e))
        return 1
    finally:
        await runtime.close()

    if record.is_noop:
        print("Nothing to compact.")
    else:
        print(
            f"Compacted {record.messages_pruned} messages. "
            f"Compression ratio: {record.compression_ratio * 100:.1f}%"
        )
    return 0


def check_config(settings: Settings) -> tuple[list[str], list[str]]:
    """Return (errors, warnings) for a configuration."""
    errors = []
    warnings = []

    key_by_provider = {
        "anthropic": settings.anthropic_api_key,
        "openai": settings.openai_api_key,
        "google": settings.google_api_key,
        "openrouter": settings.openrouter_api_key,
    }
    if not any(key_by_provider.values()):
        errors.append("At least one LLM API key is required")
    elif not key_by_provider.get(settings.default_provider):
        errors.append(f"No API key for the default provider ({settings.default_provider})")

    if settings.max_agent_iterations is None:
        warnings.append("MAX_AGENT_ITERATIONS is unset - turns are not bounded")

    if not settings.persistence_enabled:
        warnings.append("Persistence is disabled - sessions are lost on exit")

    return errors, warnings


def show_config(check: bool) -> None:
    """Show current configuration."""
    settings = get_settings()

    def mask(value: str) -> str:
        if not value:
            return "(not set)"
        return value[:4] + "..." + value[-4:] if len(value) > 10 else "****"

    print("\n=== openmgr-agent Configuration ===\n")

    print("Server:")
    print(f"  Host: {settings.host}")
    print(f"  Port: {settings.port}")
    print(f"  Debug: {settings.debug}")

    print("\nLLM Providers:")
    print(f"  Default: {settings.default_provider}")
    print(f"  Default Model: {settings.default_model}")
    print(f"  Anthropic Key: {mask(settings.anthropic_api_key)}")
    print(f"  OpenAI Key: {mask(settings.openai_api_key)}")
    print(f"  Google Key: {mask(settings.google_api_key)}")
    print(f"  OpenRouter Key: {mask(settings.openrouter_api_key)}")

    print("\nCompaction:")
    print(f"  Enabled: {settings.compaction_enabled}")
    print(f"  Threshold: {settings.compaction_token_threshold:.0%}")
    print(f"  Inception / Window: {settings.compaction_inception_count} / {settings.compaction_working_window_count}")
    print(f"  Model: {settings.compaction_model or settings.compaction_default_model or '(provider default)'}")

    print("\nAgent:")
    print(f"  Max Iterations: {settings.max_agent_iterations or '(unlimited)'}")
    print(f"  Loop Detection: {settings.loop_detection_window or '(off)'}")
    print(f"  Tool Timeout: {settings.tool_timeout_seconds}s")
    print(f"  Max Tool Timeout: {settings.tool_max_timeout_seconds}s")
    print(f"  Enabled Tools: {settings.enabled_tools or '(all)'}")
    print(f"  Tool Permissions: {settings.tool_permission_mode}")
    print(f"  Always Allow: {settings.tool_always_allow or '(none)'}")
    print(f"  Always Deny: {settings.tool_always_deny or '(none)'}")
    print(f"  Session Titles: {settings.title_generation_enabled}")

    print("\nDatabase:")
    print(f"  Persistence: {settings.persistence_enabled}")
    print(f"  URL: {settings.database_url}")

    if check:
        print("\n=== Configuration Check ===\n")
        errors, warnings = check_config(settings)

        if errors:
            print("Errors:")
            for e in errors:
                print(f"   - {e}")

        if warnings:
            print("Warnings:")
            for w in warnings:
                print(f"   - {w}")

        if not errors and not warnings:
            print("Configuration looks good!")
        elif not errors:
            print("\nConfiguration is valid (with warnings)")
        else:
            print("\nConfiguration has errors - fix them before starting")


def init_project() -> None:
    """Create a starter .env and the data directory."""
    env_file = Path(".env")
    data_dir = Path("data")

    data_dir.mkdir(exist_ok=True)

    if not env_file.exists():
        env_content = """# openmgr-agent Configuration

# === REQUIRED ===

# LLM API Keys (set at least one)
ANTHROPIC_API_KEY=
OPENAI_API_KEY=
# GOOGLE_API_KEY=
# OPENROUTER_API_KEY=

# === OPTIONAL ===

# Default LLM provider and model
DEFAULT_PROVIDER=anthropic
DEFAULT_MODEL=claude-sonnet-4-20250514

# Compaction
COMPACTION_ENABLED=true
COMPACTION_TOKEN_THRESHOLD=0.8
COMPACTION_INCEPTION_COUNT=4
COMPACTION_WORKING_WINDOW_COUNT=10
# COMPACTION_MODEL=claude-3-5-haiku-20241022

# Agent loop
# MAX_AGENT_ITERATIONS=200
LOOP_DETECTION_WINDOW=5
TOOL_TIMEOUT_SECONDS=30
# TOOL_MAX_TIMEOUT_SECONDS=1800

# Tool permissions: allow, deny or ask (ask prompts in the repl)
TOOL_PERMISSION_MODE=allow
# TOOL_ALWAYS_ALLOW=read,glob,grep
# TOOL_ALWAYS_DENY=

# Session titles
TITLE_GENERATION_ENABLED=true
# TITLE_MODEL=claude-3-5-haiku-20241022

# Server
HOST=127.0.0.1
PORT=8080
DEBUG=false

# Database
DATABASE_URL=sqlite+aiosqlite:///./data/agent.db
"""
        env_file.write_text(env_content)
        print(f"Created {env_file}")
    else:
        print(f"{env_file} already exists")

    print(f"Created {data_dir}")
    print("\n=== Next Steps ===")
    print("1. Edit .env and add at least one LLM API key (ANTHROPIC_API_KEY recommended)")
    print(f"2. Run: openmgr-agent repl --cwd {os.getcwd()}")
    print("3. Or serve over HTTP: openmgr-agent serve")


if __name__ == "__main__":
    main()
