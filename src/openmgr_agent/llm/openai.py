"""
OpenAI GPT LLM provider (also works with OpenRouter, Gemini and compatible APIs).
"""

import json
from typing import Any, AsyncIterator

import openai
import structlog

from .base import BaseLLM, LLMMessage, LLMRequest, StreamChunk, ToolCall, ToolDefinition

logger = structlog.get_logger()


class OpenAILLM(BaseLLM):
    """OpenAI GPT LLM provider."""

    def __init__(
        self,
        api_key: str,
        model: str = "gpt-4o",
        base_url: str | None = None,
        max_tokens: int = 8192,
        temperature: float = 0.7,
        provider: str = "openai",
    ):
        super().__init__(api_key, model, base_url, max_tokens, temperature)
        self._provider = provider
        self.client = openai.AsyncOpenAI(
            api_key=api_key,
            base_url=base_url,
        )

    @property
    def provider_name(self) -> str:
        return self._provider

    def _convert_messages(self, messages: list[LLMMessage]) -> list[dict[str, Any]]:
        """Convert LLMMessages to OpenAI format."""
        converted = []

        for msg in messages:
            if msg.role == "tool":
                converted.append({
                    "role": "tool",
                    "tool_call_id": msg.tool_call_id,
                    "content": msg.content,
                })
            elif msg.role == "assistant" and msg.tool_calls:
                tool_calls = [
                    {
                        "id": tc.id,
                        "type": "function",
                        "function": {
                            "name": tc.name,
                            "arguments": json.dumps(tc.arguments),
                        },
                    }
                    for tc in msg.tool_calls
                ]
                converted.append({
                    "role": "assistant",
                    "content": msg.content or None,
                    "tool_calls": tool_calls,
                })
            else:
                converted.append({
                    "role": msg.role,
                    "content": msg.content,
                })

        return converted

    def _convert_tools(self, tools: list[ToolDefinition]) -> list[dict[str, Any]]:
        """Convert ToolDefinitions to OpenAI format."""
        return [
            {
                "type": "function",
                "function": {
                    "name": tool.name,
                    "description": tool.description,
                    "parameters": tool.parameters,
                },
            }
            for tool in tools
        ]

    async def _stream_chunks(self, request: LLMRequest) -> AsyncIterator[StreamChunk]:
        """Stream a response from GPT, assembling tool-call fragments by index."""
        model, max_tokens, temperature = self._resolve(request)
        converted_messages = self._convert_messages(request.messages)

        if request.system_prompt:
            converted_messages.insert(0, {"role": "system", "content": request.system_prompt})

        kwargs: dict[str, Any] = {
            "model": model,
            "max_tokens": max_tokens,
            "temperature": temperature,
            "messages": converted_messages,
            "stream": True,
            "stream_options": {"include_usage": True},
        }

        if request.tools:
            kwargs["tools"] = self._convert_tools(request.tools)

        partial_calls: dict[int, dict[str, str]] = {}
        finish_reason = None
        input_tokens = output_tokens = 0
        response_model = model

        try:
            stream = await self.client.chat.completions.create(**kwargs)

            async for chunk in stream:  # type: ignore
                if chunk.usage:
                    input_tokens = chunk.usage.prompt_tokens
                    output_tokens = chunk.usage.completion_tokens
                if chunk.model:
                    response_model = chunk.model
                if not chunk.choices:
                    continue

                choice = chunk.choices[0]
                if choice.finish_reason:
                    finish_reason = choice.finish_reason

                delta = choice.delta
                if delta.content:
                    yield StreamChunk(type="text", text=delta.content)

                for fragment in delta.tool_calls or []:
                    entry = partial_calls.setdefault(
                        fragment.index, {"id": "", "name": "", "arguments": ""}
                    )
                    if fragment.id:
                        entry["id"] = fragment.id
                    if fragment.function and fragment.function.name:
                        entry["name"] += fragment.function.name
                    if fragment.function and fragment.function.arguments:
                        entry["arguments"] += fragment.function.arguments

        except openai.APIError as e:
            logger.error("OpenAI streaming error", error=str(e))
            raise

        for index in sorted(partial_calls):
            entry = partial_calls[index]
            try:
                arguments = json.loads(entry["arguments"]) if entry["arguments"] else {}
            except json.JSONDecodeError:
                logger.warning("Unparseable tool arguments", tool=entry["name"])
                arguments = {"_raw": entry["arguments"]}
            yield StreamChunk(
                type="tool_call",
                tool_call=ToolCall(id=entry["id"], name=entry["name"], arguments=arguments),
            )

        yield StreamChunk(
            type="done",
            input_tokens=input_tokens,
            output_tokens=output_tokens,
            model=response_model,
            stop_reason=finish_reason,
        )
