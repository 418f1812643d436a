import json
import logging

import httpx

from tile_recommender.errors import LLMResponseError
from tile_recommender.models.llm import (
    LLMMessage,
    LLMTool,
    LLMTurnResult,
    ToolCall,
    ToolPropertySchema,
)
from tile_recommender.services.llm.base import LLMProvider

log = logging.getLogger(__name__)


class OllamaProvider(LLMProvider):
    """A local or self-hosted Ollama server's ``/api/chat`` endpoint."""

    name = "ollama"

    def __init__(
        self,
        base_url: str,
        model: str,
        client: httpx.AsyncClient | None = None,
        timeout: float = 60.0,
    ):
        super().__init__(model, client=client, timeout=timeout)
        self.url = f"{base_url.rstrip('/')}/api/chat"
        log.info("LLM_INIT | provider=ollama | model=%s | host=%s", model, base_url)

    async def chat(self, messages, system_prompt, tools=None) -> LLMTurnResult:
        payload: dict = {
            "model": self.model,
            "messages": [{"role": "system", "content": system_prompt}, *self._messages_to_ollama(messages)],
            "stream": False,
        }
        if tools:
            payload["tools"] = [self._tool_to_ollama(t) for t in tools]

        data = await self._post_json(self.url, payload)
        message = data.get("message")
        if not isinstance(message, dict):
            raise LLMResponseError("ollama response has no message")

        # -- Tool call response --
        tool_calls = message.get("tool_calls") or []
        if tool_calls:
            function = tool_calls[0]["function"]
            arguments = function.get("arguments") or {}
            # Some models hand back the arguments as a JSON string
            if isinstance(arguments, str):
                try:
                    arguments = json.loads(arguments)
                except json.JSONDecodeError as e:
                    raise LLMResponseError("ollama returned undecodable tool arguments") from e
            if not isinstance(arguments, dict):
                raise LLMResponseError("ollama tool arguments are not an object")

            tool_call = ToolCall(name=function["name"], arguments=arguments)
            log.info(
                "TOOL_CALL | provider=ollama | name=%s | args=%s",
                tool_call.name, json.dumps(arguments, ensure_ascii=False),
            )
            return LLMTurnResult(tool_call=tool_call, raw_message=LLMMessage(role="assistant", tool_call=tool_call))

        # -- Text response --
        text = message.get("content") or ""
        return LLMTurnResult(text=text, raw_message=LLMMessage.assistant(text))

    # -- Converters --

    def _messages_to_ollama(self, messages: list[LLMMessage]) -> list[dict]:
        result = []
        for msg in messages:
            if msg.role == "assistant" and msg.tool_call:
                result.append({
                    "role": "assistant",
                    "content": "",
                    "tool_calls": [{
                        "function": {"name": msg.tool_call.name, "arguments": msg.tool_call.arguments},
                    }],
                })
            elif msg.role == "assistant":
                result.append({"role": "assistant", "content": msg.text or ""})
            elif msg.role == "tool_result":
                result.append({"role": "tool", "content": json.dumps(msg.tool_result.result)})
            else:
                result.append({"role": "user", "content": msg.text or ""})
        return result

    def _tool_to_ollama(self, tool: LLMTool) -> dict:
        return {
            "type": "function",
            "function": {
                "name": tool.name,
                "description": tool.description,
                "parameters": {
                    "type": "object",
                    "required": [],
                    "properties": {k: self._convert_schema(v) for k, v in tool.parameters.properties.items()},
                },
            },
        }

    def _convert_schema(self, prop: ToolPropertySchema) -> dict:
        schema: dict = {"type": prop.type}
        if prop.description:
            schema["description"] = prop.description
        if prop.enum:
            schema["enum"] = prop.enum
        if prop.items:
            schema["items"] = self._convert_schema(prop.items)
        if prop.properties:
            schema["properties"] = {k: self._convert_schema(v) for k, v in prop.properties.items()}
        return schema
