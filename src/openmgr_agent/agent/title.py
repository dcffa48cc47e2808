"""
Session titles, generated by the model from the start of a conversation.
"""

import re

import structlog

from ..llm.base import BaseLLM, LLMMessage, LLMRequest
from .types import Message

logger = structlog.get_logger()

DEFAULT_TITLE = "New conversation"
MAX_TITLE_CHARS = 50
TITLE_MAX_TOKENS = 60
TITLE_TEMPERATURE = 0.5
CONTEXT_MESSAGES = 3

_DEFAULT_TITLES = {"new conversation", "untitled", "(untitled)", "new session"}

TITLE_SYSTEM_PROMPT = """You are a title generator. You output ONLY a thread title. Nothing else.

Generate a brief title that would help the user find this conversation later.
Your output must be a single line of 50 characters or less, with no explanation.

Rules:
- Use the same language as the user message
- Focus on the main topic or question, and on what the user wants to do with any file mentioned
- Keep technical terms, numbers, filenames and HTTP codes exact
- Never include tool names, and never answer the question
- Drop filler words: the, this, my, a, an
- For greetings or very short messages, reflect the tone (Greeting, Quick chat)

Examples:
"debug 500 errors in production" -> Debugging production 500 errors
"why is app.js failing" -> app.js failure investigation
"can you add refresh token support to auth.ts" -> Auth refresh token support
"look at my config" -> Config review"""


def is_default_title(title: str | None) -> bool:
    """True for a missing or placeholder title."""
    if not title or title.startswith("Session "):
        return True
    return title.strip().lower() in _DEFAULT_TITLES


def clean_title(text: str) -> str:
    title = text.strip().splitlines()[0].strip() if text.strip() else ""
    title = title.strip("\"'")
    title = re.sub(r"^title:\s*", "", title, flags=re.IGNORECASE)
    if len(title) > MAX_TITLE_CHARS:
        title = title[: MAX_TITLE_CHARS - 3] + "..."
    return title


async def generate_title(provider: BaseLLM, model: str, messages: list[Message]) -> str:
    """Ask the model for a title. Falls back to DEFAULT_TITLE on any failure."""
    if not any(m.role == "user" for m in messages):
        return DEFAULT_TITLE

    context = "\n\n".join(
        f"{'User' if m.role == 'user' else 'Assistant'}: {m.content}"
        for m in messages[:CONTEXT_MESSAGES]
        if m.role in ("user", "assistant") and m.content
    )
    request = LLMRequest(
        messages=[LLMMessage(role="user", content=f"Generate a title for this conversation:\n\n{context}")],
        model=model,
        system_prompt=TITLE_SYSTEM_PROMPT,
        max_tokens=TITLE_MAX_TOKENS,
        temperature=TITLE_TEMPERATURE,
    )

    try:
        response = await provider.generate(request)
    except Exception as e:
        logger.warning("Title generation failed", model=model, error=str(e))
        return DEFAULT_TITLE

    return clean_title(response.content) or DEFAULT_TITLE
