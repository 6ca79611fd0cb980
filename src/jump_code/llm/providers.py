"""Concrete model provider implementations."""

import json
import time
import asyncio
import logging
from typing import Dict, List, Any, Optional, AsyncIterator
import openai
import anthropic
import requests
from .base import (
    BaseLLMProvider,
    ImageBlock,
    ModelResponse,
    Role,
    StreamComplete,
    StreamEvent,
    TextBlock,
    TextDelta,
    ToolDefinition,
    ToolResultBlock,
    ToolUseBlock,
    Turn,
    Usage,
    normalize_stop_reason,
    parse_tool_arguments,
)
from ..core.errors import QuotaError, TransportError

logger = logging.getLogger(__name__)


def to_anthropic_messages(turns: List[Turn]) -> List[Dict[str, Any]]:
    """Render turns as Anthropic content-block messages."""
    messages = []
    for turn in turns:
        blocks = []
        for block in turn.content:
            if isinstance(block, TextBlock):
                if block.text:
                    blocks.append({"type": "text", "text": block.text})
            elif isinstance(block, ToolUseBlock):
                blocks.append({"type": "tool_use", "id": block.id, "name": block.name, "input": block.input})
            elif isinstance(block, ToolResultBlock):
                blocks.append({
                    "type": "tool_result",
                    "tool_use_id": block.tool_use_id,
                    "content": block.output,
                    "is_error": block.is_error,
                })
            elif isinstance(block, ImageBlock):
                blocks.append({
                    "type": "image",
                    "source": {"type": "base64", "media_type": block.media_type, "data": block.data},
                })
        if not blocks:
            blocks.append({"type": "text", "text": "(empty)"})
        messages.append({
            "role": "user" if turn.role == Role.OPERATOR else "assistant",
            "content": blocks,
        })
    return messages


def from_anthropic_content(content: List[Any]) -> List[Any]:
    """Convert Anthropic response blocks (SDK objects or dicts) to ContentBlocks."""
    blocks = []
    for item in content:
        data = item if isinstance(item, dict) else item.model_dump()
        if data.get("type") == "text":
            blocks.append(TextBlock(text=data.get("text", "")))
        elif data.get("type") == "tool_use":
            blocks.append(ToolUseBlock(
                id=data["id"],
                name=data["name"],
                input=parse_tool_arguments(data.get("input")),
            ))
    return blocks


class AnthropicProvider(BaseLLMProvider):
    """Anthropic Messages API provider."""

    def __init__(self, api_key: str, model: str = "claude-sonnet-4-20250514", **kwargs):
        super().__init__(api_key, model, **kwargs)
        self.client = None

    async def initialize(self) -> None:
        """Initialize the Anthropic client."""
        self.client = anthropic.AsyncAnthropic(
            api_key=self.api_key,
            timeout=self.kwargs.get("timeout", 120.0),
            max_retries=0,
        )

    def _request_params(self, turns, system_prompt, tools, **kwargs) -> Dict[str, Any]:
        params = {
            "model": self.model,
            "messages": to_anthropic_messages(turns),
            "temperature": kwargs.get("temperature", 0.7),
            "max_tokens": kwargs.get("max_tokens", 4096),
        }
        if system_prompt:
            params["system"] = system_prompt
        if tools:
            params["tools"] = [tool.model_dump() for tool in tools]
        return params

    def _parse(self, response) -> ModelResponse:
        content = from_anthropic_content(response.content)
        return ModelResponse(
            content=content,
            stop_reason=normalize_stop_reason(
                response.stop_reason,
                any(isinstance(b, ToolUseBlock) for b in content),
            ),
            usage=Usage(
                input_tokens=response.usage.input_tokens,
                output_tokens=response.usage.output_tokens,
            ),
            model=response.model,
        )

    async def send(
        self,
        turns: List[Turn],
        system_prompt: str,
        tools: List[ToolDefinition],
        **kwargs
    ) -> ModelResponse:
        """Generate a response using Anthropic."""
        if not self.client:
            await self.initialize()

        params = self._request_params(turns, system_prompt, tools, **kwargs)
        response = await self.client.messages.create(**params)
        return self._parse(response)

    async def stream(
        self,
        turns: List[Turn],
        system_prompt: str,
        tools: List[ToolDefinition],
        **kwargs
    ) -> AsyncIterator[StreamEvent]:
        """Stream a response using Anthropic."""
        if not self.client:
            await self.initialize()

        params = self._request_params(turns, system_prompt, tools, **kwargs)
        async with self.client.messages.stream(**params) as stream:
            async for text in stream.text_stream:
                yield TextDelta(text=text)
            final = await stream.get_final_message()
        yield StreamComplete(response=self._parse(final))


class OpenAIProvider(BaseLLMProvider):
    """OpenAI chat completions provider (also any OpenAI-compatible endpoint)."""

    def __init__(self, api_key: str, model: str = "gpt-4o", base_url: Optional[str] = None, **kwargs):
        super().__init__(api_key, model, **kwargs)
        self.base_url = base_url
        self.client = None

    async def initialize(self) -> None:
        """Initialize the OpenAI client."""
        self.client = openai.AsyncOpenAI(
            api_key=self.api_key,
            base_url=self.base_url,
            timeout=self.kwargs.get("timeout", 120.0),
            max_retries=0,
        )

    def format_messages(self, turns: List[Turn], system_prompt: str) -> List[Dict[str, Any]]:
        """Render turns as chat-completion messages.

        Tool results become ``role: tool`` messages; text and images in the
        same operator turn follow them as one user message.
        """
        messages: List[Dict[str, Any]] = []
        if system_prompt:
            messages.append({"role": "system", "content": system_prompt})

        for turn in turns:
            if turn.role == Role.ASSISTANT:
                message: Dict[str, Any] = {"role": "assistant", "content": turn.text or None}
                if turn.tool_uses:
                    message["tool_calls"] = [
                        {
                            "id": block.id,
                            "type": "function",
                            "function": {"name": block.name, "arguments": json.dumps(block.input)},
                        }
                        for block in turn.tool_uses
                    ]
                messages.append(message)
                continue

            for result in turn.tool_results:
                output = f"Error: {result.output}" if result.is_error else result.output
                messages.append({"role": "tool", "tool_call_id": result.tool_use_id, "content": output})

            parts = []
            for block in turn.content:
                if isinstance(block, TextBlock) and block.text:
                    parts.append({"type": "text", "text": block.text})
                elif isinstance(block, ImageBlock):
                    parts.append({
                        "type": "image_url",
                        "image_url": {"url": f"data:{block.media_type};base64,{block.data}"},
                    })
            if not parts:
                continue
            if all(part["type"] == "text" for part in parts):
                messages.append({"role": "user", "content": "".join(p["text"] for p in parts)})
            else:
                messages.append({"role": "user", "content": parts})
        return messages

    def _request_params(self, turns, system_prompt, tools, **kwargs) -> Dict[str, Any]:
        params = {
            "model": self.model,
            "messages": self.format_messages(turns, system_prompt),
            "temperature": kwargs.get("temperature", 0.7),
            "max_tokens": kwargs.get("max_tokens", 4096),
        }
        if tools:
            params["tools"] = [
                {
                    "type": "function",
                    "function": {
                        "name": tool.name,
                        "description": tool.description,
                        "parameters": tool.input_schema,
                    },
                }
                for tool in tools
            ]
            params["tool_choice"] = "auto"
        return params

    async def send(
        self,
        turns: List[Turn],
        system_prompt: str,
        tools: List[ToolDefinition],
        **kwargs
    ) -> ModelResponse:
        """Generate a response using OpenAI."""
        if not self.client:
            await self.initialize()

        response = await self.client.chat.completions.create(
            **self._request_params(turns, system_prompt, tools, **kwargs)
        )
        choice = response.choices[0]
        content: List[Any] = []
        if choice.message.content:
            content.append(TextBlock(text=choice.message.content))
        for tool_call in choice.message.tool_calls or []:
            content.append(ToolUseBlock(
                id=tool_call.id,
                name=tool_call.function.name,
                input=parse_tool_arguments(tool_call.function.arguments),
            ))

        usage = Usage()
        if response.usage:
            usage = Usage(
                input_tokens=response.usage.prompt_tokens,
                output_tokens=response.usage.completion_tokens,
            )
        return ModelResponse(
            content=content,
            stop_reason=normalize_stop_reason(choice.finish_reason, bool(choice.message.tool_calls)),
            usage=usage,
            model=response.model,
        )

    async def stream(
        self,
        turns: List[Turn],
        system_prompt: str,
        tools: List[ToolDefinition],
        **kwargs
    ) -> AsyncIterator[StreamEvent]:
        """Stream a response using OpenAI.

        Tool-call fragments arrive keyed by index and are only turned into
        ToolUseBlocks once the stream ends.
        """
        if not self.client:
            await self.initialize()

        params = self._request_params(turns, system_prompt, tools, **kwargs)
        params["stream"] = True
        params["stream_options"] = {"include_usage": True}

        text_parts: List[str] = []
        pending_calls: Dict[int, Dict[str, str]] = {}
        finish_reason = None
        usage = Usage()
        model = self.model

        stream = await self.client.chat.completions.create(**params)
        async for chunk in stream:
            model = chunk.model or model
            if chunk.usage:
                usage = Usage(
                    input_tokens=chunk.usage.prompt_tokens,
                    output_tokens=chunk.usage.completion_tokens,
                )
            if not chunk.choices:
                continue
            choice = chunk.choices[0]
            delta = choice.delta
            if delta.content:
                text_parts.append(delta.content)
                yield TextDelta(text=delta.content)
            for call in delta.tool_calls or []:
                entry = pending_calls.setdefault(call.index, {"id": "", "name": "", "arguments": ""})
                if call.id:
                    entry["id"] = call.id
                if call.function and call.function.name:
                    entry["name"] += call.function.name
                if call.function and call.function.arguments:
                    entry["arguments"] += call.function.arguments
            if choice.finish_reason:
                finish_reason = choice.finish_reason

        content: List[Any] = []
        if text_parts:
            content.append(TextBlock(text="".join(text_parts)))
        for index in sorted(pending_calls):
            entry = pending_calls[index]
            content.append(ToolUseBlock(
                id=entry["id"] or f"call_{index}",
                name=entry["name"],
                input=parse_tool_arguments(entry["arguments"]),
            ))

        yield StreamComplete(response=ModelResponse(
            content=content,
            stop_reason=normalize_stop_reason(finish_reason, bool(pending_calls)),
            usage=usage,
            model=model,
        ))


class GatewayProvider(BaseLLMProvider):
    """The Jump Code web gateway: a JSON endpoint relaying to Anthropic.

    The gateway declares its own tool catalog server-side, so only the
    messages, model alias and system prompt are sent.
    """

    def __init__(self, api_key: Optional[str] = None, model: str = "sonnet",
                 base_url: str = "http://localhost:3000/api/jump-code", requests_per_minute: int = 60, **kwargs):
        super().__init__(api_key, model, **kwargs)
        self.base_url = base_url.rstrip('/')
        self.session: Optional[requests.Session] = None
        self.requests_per_minute = requests_per_minute
        self._window_start = time.monotonic()
        self._window_requests = 0

    async def initialize(self) -> None:
        """Initialize the HTTP session."""
        self.session = requests.Session()
        self.session.headers.update({
            "Content-Type": "application/json",
            "X-Client-ID": "jump-code-cli",
        })
        if self.api_key:
            self.session.headers["Authorization"] = f"Bearer {self.api_key}"

    @property
    def is_available(self) -> bool:
        return bool(self.base_url)

    async def _wait_for_rate_limit(self) -> None:
        """Hold the request until this minute's allowance has room."""
        if not self.requests_per_minute:
            return
        now = time.monotonic()
        if now - self._window_start >= 60:
            self._window_start, self._window_requests = now, 0
        if self._window_requests >= self.requests_per_minute:
            wait = 60 - (now - self._window_start)
            logger.info("Gateway allows %d requests per minute; waiting %.0fs", self.requests_per_minute, wait)
            await asyncio.sleep(wait)
            self._window_start, self._window_requests = time.monotonic(), 0
        self._window_requests += 1

    def _post(self, payload: Dict[str, Any]) -> Dict[str, Any]:
        logger.debug("POST %s with %d messages", self.base_url, len(payload["messages"]))
        try:
            response = self.session.post(
                self.base_url,
                json=payload,
                timeout=self.kwargs.get("timeout", 120.0),
            )
        except requests.RequestException as e:
            raise TransportError(f"Gateway unreachable: {e}") from e

        try:
            body = response.json()
        except ValueError:
            body = None
        data = body if isinstance(body, dict) else {}

        if response.status_code == 429 or "insufficient_quota" in str(data.get("error", "")):
            raise QuotaError(str(data.get("error") or "Gateway rate limit reached"), response.status_code)
        if not 200 <= response.status_code < 300:
            raise TransportError(
                f"Gateway error {response.status_code}: {data.get('error') or response.reason}",
                response.status_code,
            )
        if not isinstance(body, dict):
            raise TransportError("Gateway response is not a JSON object", response.status_code)
        return data

    async def send(
        self,
        turns: List[Turn],
        system_prompt: str,
        tools: List[ToolDefinition],
        **kwargs
    ) -> ModelResponse:
        """Generate a response through the gateway."""
        if self.session is None:
            await self.initialize()

        payload = {
            "messages": to_anthropic_messages(turns),
            "model": self.model,
            "system": system_prompt,
        }
        await self._wait_for_rate_limit()
        loop = asyncio.get_running_loop()
        data = await loop.run_in_executor(None, self._post, payload)

        content = from_anthropic_content(data.get("content") or [])
        usage = data.get("usage") or {}
        return ModelResponse(
            content=content,
            stop_reason=normalize_stop_reason(
                data.get("stop_reason"),
                any(isinstance(b, ToolUseBlock) for b in content),
            ),
            usage=Usage(
                input_tokens=usage.get("input_tokens", 0),
                output_tokens=usage.get("output_tokens", 0),
            ),
            model=data.get("model", self.model),
        )

    async def stream(
        self,
        turns: List[Turn],
        system_prompt: str,
        tools: List[ToolDefinition],
        **kwargs
    ) -> AsyncIterator[StreamEvent]:
        """The gateway has no streaming mode; emit the whole text at once."""
        response = await self.send(turns, system_prompt, tools, **kwargs)
        if response.text:
            yield TextDelta(text=response.text)
        yield StreamComplete(response=response)
