"""
Anthropic Claude LLM provider.
"""

from typing import Any, AsyncIterator

import anthropic
import structlog

from .base import BaseLLM, LLMMessage, LLMRequest, StreamChunk, ToolCall, ToolDefinition

logger = structlog.get_logger()


class AnthropicLLM(BaseLLM):
    """Anthropic Claude LLM provider."""

    def __init__(
        self,
        api_key: str,
        model: str = "claude-sonnet-4-20250514",
        base_url: str | None = None,
        max_tokens: int = 8192,
        temperature: float = 0.7,
    ):
        super().__init__(api_key, model, base_url, max_tokens, temperature)
        self.client = anthropic.AsyncAnthropic(
            api_key=api_key,
            base_url=base_url,
        )

    @property
    def provider_name(self) -> str:
        return "anthropic"

    def _convert_messages(self, messages: list[LLMMessage]) -> list[dict[str, Any]]:
        """Convert LLMMessages to Anthropic format.

        Consecutive tool results are folded into one user turn, which is
        how the API expects the answers to a multi-tool assistant turn.
        """
        converted: list[dict[str, Any]] = []

        for msg in messages:
            if msg.role == "system":
                continue

            if msg.role == "tool":
                block = {
                    "type": "tool_result",
                    "tool_use_id": msg.tool_call_id,
                    "content": msg.content,
                    "is_error": msg.is_error,
                }
                previous = converted[-1] if converted else None
                if (
                    previous is not None
                    and previous["role"] == "user"
                    and isinstance(previous["content"], list)
                    and previous["content"]
                    and previous["content"][0].get("type") == "tool_result"
                ):
                    previous["content"].append(block)
                else:
                    converted.append({"role": "user", "content": [block]})
            elif msg.role == "assistant" and msg.tool_calls:
                content: list[dict[str, Any]] = []
                if msg.content:
                    content.append({"type": "text", "text": msg.content})
                for tc in msg.tool_calls:
                    content.append({
                        "type": "tool_use",
                        "id": tc.id,
                        "name": tc.name,
                        "input": tc.arguments,
                    })
                converted.append({"role": "assistant", "content": content})
            else:
                converted.append({
                    "role": msg.role,
                    "content": msg.content,
                })

        return converted

    def _convert_tools(self, tools: list[ToolDefinition]) -> list[dict[str, Any]]:
        """Convert ToolDefinitions to Anthropic format."""
        return [
            {
                "name": tool.name,
                "description": tool.description,
                "input_schema": tool.parameters,
            }
            for tool in tools
        ]

    async def _stream_chunks(self, request: LLMRequest) -> AsyncIterator[StreamChunk]:
        """Stream a response from Claude."""
        model, max_tokens, temperature = self._resolve(request)

        kwargs: dict[str, Any] = {
            "model": model,
            "max_tokens": max_tokens,
            "temperature": temperature,
            "messages": self._convert_messages(request.messages),
        }

        if request.system_prompt:
            kwargs["system"] = request.system_prompt

        if request.tools:
            kwargs["tools"] = self._convert_tools(request.tools)

        try:
            async with self.client.messages.stream(**kwargs) as stream:
                async for text in stream.text_stream:
                    yield StreamChunk(type="text", text=text)

                final = await stream.get_final_message()

            for block in final.content:
                if block.type == "tool_use":
                    yield StreamChunk(
                        type="tool_call",
                        tool_call=ToolCall(
                            id=block.id,
                            name=block.name,
                            arguments=dict(block.input) if isinstance(block.input, dict) else {},
                        ),
                    )

            yield StreamChunk(
                type="done",
                input_tokens=final.usage.input_tokens,
                output_tokens=final.usage.output_tokens,
                model=final.model,
                stop_reason=final.stop_reason,
            )

        except anthropic.APIError as e:
            logger.error("Anthropic streaming error", error=str(e))
            raise
