"""Provider implementation for OpenAI-compatible endpoints."""

from __future__ import annotations

import json
import logging
from contextlib import aclosing
from dataclasses import dataclass
from typing import Any, Callable, Dict, List, Mapping, Sequence

from ..chunks import Chunk, ChunkCallback, ChunkType, ToolResponse
from ..client import AIClient, ClientSettings
from ..errors import ProviderDisabledError, is_abort_error
from ..models import get_openai_web_search_params
from ..prompts import SUGGESTIONS_PROMPT, SUMMARIZE_TOPIC_PROMPT, TRANSLATE_PROMPT, build_conversation_block
from ..services.mcp import MCPClient, tool_to_param
from ..types import Assistant, CheckResult, Message, MCPTool, Model, Provider, Suggestion
from .base import BaseProvider, FilterMessagesCallback, ResponseCallback

__all__ = ["OpenAIProvider"]

LOGGER = logging.getLogger(__name__)

ClientFactory = Callable[[ClientSettings], AIClient]

_TOPIC_CONTEXT_MESSAGES = 5
_TOPIC_MAX_CHARS = 1_000
_DEFAULT_TRANSLATE_LANGUAGE = "English"


@dataclass(slots=True)
class _ToolCall:
    call_id: str
    name: str
    arguments: str


class OpenAIProvider(BaseProvider):
    """Talks to any endpoint implementing the OpenAI chat completions API."""

    def __init__(
        self,
        provider: Provider,
        *,
        client: AIClient | None = None,
        client_factory: ClientFactory | None = None,
        mcp_client: MCPClient | None = None,
        max_tool_iterations: int = 8,
        request_timeout: float = 90.0,
        max_retries: int = 3,
    ) -> None:
        super().__init__(provider)
        settings = ClientSettings(
            base_url=provider.api_host,
            api_key=provider.api_key,
            model=provider.models[0].id if provider.models else "",
            request_timeout=request_timeout,
            max_retries=max_retries,
        )
        self._client = client or (client_factory or AIClient)(settings)
        self._mcp_client = mcp_client
        self._max_tool_iterations = max(1, int(max_tool_iterations))

    async def completions(
        self,
        *,
        messages: Sequence[Message],
        assistant: Assistant,
        on_chunk: ChunkCallback,
        mcp_tools: Sequence[MCPTool] = (),
        on_filter_messages: FilterMessagesCallback | None = None,
    ) -> None:
        model = self._resolve_model(assistant)
        context = self.context_window(messages, assistant.settings.context_count)
        if on_filter_messages is not None:
            on_filter_messages(context)

        chat_messages: List[Dict[str, Any]] = []
        if assistant.prompt:
            chat_messages.append({"role": "system", "content": assistant.prompt})
        chat_messages.extend({"role": message.role, "content": message.content} for message in context)

        extra_params = get_openai_web_search_params(assistant, model)
        tools = list(mcp_tools) if self._mcp_client is not None else []
        if mcp_tools and self._mcp_client is None:
            LOGGER.debug("Ignoring %d MCP tool(s); no MCP client configured", len(mcp_tools))

        on_chunk(Chunk(type=ChunkType.LLM_RESPONSE_CREATED))
        try:
            if not tools and not assistant.settings.stream_output:
                result = await self._client.complete_chat(
                    chat_messages,
                    model=model.id,
                    temperature=assistant.settings.temperature,
                    max_tokens=assistant.settings.max_tokens,
                    **extra_params,
                )
                if result.text:
                    on_chunk(Chunk(type=ChunkType.TEXT_DELTA, text=result.text))
                on_chunk(Chunk(type=ChunkType.TEXT_COMPLETE, text=result.text))
                on_chunk(Chunk(type=ChunkType.LLM_RESPONSE_COMPLETE, usage=result.usage))
                return

            full_text = await self._stream_with_tools(
                chat_messages,
                model=model,
                assistant=assistant,
                tools=tools,
                on_chunk=on_chunk,
                extra_params=extra_params,
            )
        except Exception as exc:
            if not is_abort_error(exc):
                LOGGER.warning("Completion via %s failed: %s", self.provider.id, exc)
                on_chunk(Chunk(type=ChunkType.ERROR, error=exc))
            raise
        on_chunk(Chunk(type=ChunkType.TEXT_COMPLETE, text=full_text))
        on_chunk(Chunk(type=ChunkType.LLM_RESPONSE_COMPLETE))

    async def translate(
        self,
        content: str,
        assistant: Assistant,
        on_response: ResponseCallback | None = None,
    ) -> str:
        model = self._resolve_model(assistant)
        if assistant.prompt:
            chat_messages = [
                {"role": "system", "content": assistant.prompt},
                {"role": "user", "content": content},
            ]
        else:
            prompt = TRANSLATE_PROMPT.format(target_language=_DEFAULT_TRANSLATE_LANGUAGE, text=content)
            chat_messages = [{"role": "user", "content": prompt}]

        if on_response is None:
            result = await self._client.complete_chat(chat_messages, model=model.id, temperature=0.3)
            return result.text

        text = ""
        async for event in self._client.stream_chat(chat_messages, model=model.id, temperature=0.3):
            if event.type == "content.delta" and event.content:
                text += event.content
                on_response(text, False)
        on_response(text, True)
        return text

    async def summaries(self, messages: Sequence[Message], assistant: Assistant) -> str | None:
        model = self._resolve_model(assistant)
        recent = [message for message in messages if message.content][-_TOPIC_CONTEXT_MESSAGES:]
        if not recent:
            return None
        conversation = build_conversation_block(
            [(message.role, message.content[:_TOPIC_MAX_CHARS]) for message in recent]
        )
        result = await self._client.complete_chat(
            [
                {"role": "system", "content": SUMMARIZE_TOPIC_PROMPT},
                {"role": "user", "content": conversation},
            ],
            model=model.id,
            temperature=0.3,
        )
        title = result.text.strip()
        return title or None

    async def summary_for_search(self, messages: Sequence[Message], assistant: Assistant) -> str | None:
        model = self._resolve_model(assistant)
        conversation = build_conversation_block([(message.role, message.content) for message in messages])
        result = await self._client.complete_chat(
            [
                {"role": "system", "content": assistant.prompt},
                {"role": "user", "content": conversation},
            ],
            model=model.id,
            temperature=0,
        )
        return result.text.strip() or None

    async def suggestions(self, messages: Sequence[Message], assistant: Assistant) -> list[Suggestion]:
        model = self._resolve_model(assistant)
        conversation = build_conversation_block([(message.role, message.content) for message in messages[-4:]])
        result = await self._client.complete_chat(
            [
                {"role": "system", "content": SUGGESTIONS_PROMPT},
                {"role": "user", "content": conversation},
            ],
            model=model.id,
            temperature=0.7,
        )
        return _parse_suggestions(result.text)

    async def generate_text(self, *, prompt: str, content: str) -> str:
        model = self.default_model()
        result = await self._client.complete_chat(
            [
                {"role": "system", "content": prompt},
                {"role": "user", "content": content},
            ],
            model=model.id if model else None,
        )
        return result.text

    async def models(self) -> list[Model]:
        identifiers = await self._client.list_models(force_refresh=True)
        return [Model(id=identifier, provider=self.provider.id, group=_model_group(identifier)) for identifier in identifiers]

    async def check(self, model: Model, stream: bool = False) -> CheckResult:
        probe = [{"role": "user", "content": "hi"}]
        try:
            if stream:
                async with aclosing(self._client.stream_chat(probe, model=model.id, max_tokens=5)) as events:
                    async for event in events:
                        if event.type in ("content.delta", "content.done"):
                            break
            else:
                await self._client.complete_chat(probe, model=model.id, max_tokens=5)
        except Exception as exc:
            if is_abort_error(exc):
                raise
            LOGGER.info("Provider check for %s/%s failed: %s", self.provider.id, model.id, exc)
            return CheckResult.failed(exc)
        return CheckResult.ok()

    async def aclose(self) -> None:
        await self._client.aclose()

    def _resolve_model(self, assistant: Assistant) -> Model:
        model = assistant.model or self.default_model()
        if model is None:
            raise ProviderDisabledError(f"Provider {self.provider.id} has no models configured")
        return model

    async def _stream_with_tools(
        self,
        chat_messages: List[Dict[str, Any]],
        *,
        model: Model,
        assistant: Assistant,
        tools: Sequence[MCPTool],
        on_chunk: ChunkCallback,
        extra_params: Mapping[str, Any],
    ) -> str:
        tool_params = [tool_to_param(tool) for tool in tools]
        tools_by_name = {tool.function_name: tool for tool in tools}
        full_text = ""

        for iteration in range(self._max_tool_iterations):
            text = ""
            tool_calls: list[_ToolCall] = []
            async for event in self._client.stream_chat(
                chat_messages,
                model=model.id,
                tools=tool_params or None,
                temperature=assistant.settings.temperature,
                max_tokens=assistant.settings.max_tokens,
                **extra_params,
            ):
                if event.type == "content.delta" and event.content:
                    text += event.content
                    on_chunk(Chunk(type=ChunkType.TEXT_DELTA, text=event.content))
                elif event.type == "tool_calls.function.arguments.done" and event.tool_name:
                    index = event.tool_index if event.tool_index is not None else len(tool_calls)
                    tool_calls.append(
                        _ToolCall(
                            call_id=event.tool_call_id or f"call_{iteration}_{index}",
                            name=event.tool_name,
                            arguments=event.tool_arguments or "{}",
                        )
                    )
            full_text += text
            if not tool_calls:
                break

            chat_messages.append(
                {
                    "role": "assistant",
                    "content": text,
                    "tool_calls": [
                        {
                            "id": call.call_id,
                            "type": "function",
                            "function": {"name": call.name, "arguments": call.arguments},
                        }
                        for call in tool_calls
                    ],
                }
            )
            for call in tool_calls:
                result_text = await self._run_tool_call(call, tools_by_name, on_chunk)
                chat_messages.append({"role": "tool", "tool_call_id": call.call_id, "content": result_text})
        else:
            LOGGER.warning("Stopped MCP tool loop after %d iteration(s)", self._max_tool_iterations)

        return full_text

    async def _run_tool_call(
        self,
        call: _ToolCall,
        tools_by_name: Mapping[str, MCPTool],
        on_chunk: ChunkCallback,
    ) -> str:
        tool = tools_by_name.get(call.name)
        if tool is None or self._mcp_client is None:
            LOGGER.warning("Model requested unknown tool %s", call.name)
            return f"Error: unknown tool {call.name}"
        try:
            arguments = json.loads(call.arguments) if call.arguments.strip() else {}
        except json.JSONDecodeError as exc:
            return f"Error: invalid JSON arguments ({exc.msg})"
        if not isinstance(arguments, dict):
            return "Error: tool arguments must be a JSON object"

        pending = ToolResponse(call_id=call.call_id, tool=tool, arguments=arguments)
        on_chunk(Chunk(type=ChunkType.MCP_TOOL_IN_PROGRESS, tool_responses=(pending,)))
        try:
            response = await self._mcp_client.call_tool(tool, arguments)
            status = "done"
        except Exception as exc:
            if is_abort_error(exc):
                raise
            LOGGER.warning("MCP tool %s failed: %s", tool.name, exc)
            response = f"Error: {exc}"
            status = "error"
        finished = ToolResponse(
            call_id=call.call_id, tool=tool, arguments=arguments, status=status, response=response
        )
        on_chunk(Chunk(type=ChunkType.MCP_TOOL_COMPLETE, tool_responses=(finished,)))
        if isinstance(response, str):
            return response
        try:
            return json.dumps(response, ensure_ascii=False, default=str)
        except (TypeError, ValueError):
            return str(response)


def _parse_suggestions(text: str) -> list[Suggestion]:
    body = text.strip()
    if body.startswith("```"):
        body = body.strip("`")
        body = body.split("\n", 1)[1] if "\n" in body else ""
    try:
        payload = json.loads(body)
    except json.JSONDecodeError:
        LOGGER.debug("Suggestions reply was not JSON: %r", text[:200])
        return []
    if not isinstance(payload, list):
        return []
    return [Suggestion(content=str(item).strip()) for item in payload if str(item).strip()]


def _model_group(identifier: str) -> str:
    base = identifier.split("/")[-1]
    return base.split("-")[0] if "-" in base else base
