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


class GroqProvider(LLMProvider):
    """Groq's OpenAI-compatible chat completions API."""

    name = "groq"

    def __init__(
        self,
        api_key: str,
        model: str,
        base_url: str = "https://api.groq.com/openai/v1",
        client: httpx.AsyncClient | None = None,
        timeout: float = 60.0,
    ):
        super().__init__(model, client=client, timeout=timeout)
        self.url = f"{base_url.rstrip('/')}/chat/completions"
        self.headers = {"Authorization": f"Bearer {api_key}", "Content-Type": "application/json"}
        log.info("LLM_INIT | provider=groq | model=%s", model)

    async def chat(self, messages, system_prompt, tools=None) -> LLMTurnResult:
        payload: dict = {
            "model": self.model,
            "messages": [{"role": "system", "content": system_prompt}, *self._messages_to_groq(messages)],
        }
        if tools:
            payload["tools"] = [self._tool_to_groq(t) for t in tools]
            payload["tool_choice"] = "auto"

        data = await self._post_json(self.url, payload, self.headers)
        try:
            message = data["choices"][0]["message"]
        except (KeyError, IndexError, TypeError) as e:
            raise LLMResponseError("groq response has no message") from e

        # -- Tool call response --
        tool_calls = message.get("tool_calls") or []
        if tool_calls:
            call = tool_calls[0]
            raw_args = call["function"].get("arguments") or "{}"
            try:
                arguments = json.loads(raw_args)
            except json.JSONDecodeError as e:
                raise LLMResponseError(f"groq returned undecodable tool arguments: {raw_args[:200]}") from e
            if not isinstance(arguments, dict):
                raise LLMResponseError("groq tool arguments are not an object")

            tool_call = ToolCall(name=call["function"]["name"], arguments=arguments)
            log.info("TOOL_CALL | provider=groq | name=%s | id=%s | args=%s", tool_call.name, call.get("id"), raw_args)
            return LLMTurnResult(
                tool_call=tool_call,
                raw_message=LLMMessage(role="assistant", tool_call=tool_call, tool_call_id=call.get("id")),
            )

        # -- Text response --
        text = message.get("content") or ""
        return LLMTurnResult(text=text, raw_message=LLMMessage.assistant(text))

    # -- Converters --

    def _messages_to_groq(self, messages: list[LLMMessage]) -> list[dict]:
        result = []
        for i, msg in enumerate(messages):
            if msg.role == "user":
                result.append({"role": "user", "content": msg.text or ""})
            elif msg.role == "assistant" and msg.tool_call:
                result.append({
                    "role": "assistant",
                    "content": None,
                    "tool_calls": [{
                        "id": msg.tool_call_id or f"call_{i}",
                        "type": "function",
                        "function": {
                            "name": msg.tool_call.name,
                            "arguments": json.dumps(msg.tool_call.arguments),
                        },
                    }],
                })
            elif msg.role == "assistant":
                result.append({"role": "assistant", "content": msg.text or ""})
            else:
                result.append({
                    "role": "tool",
                    "tool_call_id": self._preceding_call_id(messages, i),
                    "content": json.dumps(msg.tool_result.result),
                })
        return result

    def _preceding_call_id(self, messages: list[LLMMessage], index: int) -> str:
        """The id of the nearest assistant tool call before ``index``."""
        for j in range(index - 1, -1, -1):
            prev = messages[j]
            if prev.role == "assistant" and prev.tool_call:
                return prev.tool_call_id or f"call_{j}"
        return "call_0"

    def _tool_to_groq(self, tool: LLMTool) -> dict:
        return {
            "type": "function",
            "function": {
                "name": tool.name,
                "description": tool.description,
                "parameters": {
                    "type": "object",
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
