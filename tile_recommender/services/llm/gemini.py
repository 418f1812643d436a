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

TYPE_MAP = {
    "string": "STRING",
    "number": "NUMBER",
    "boolean": "BOOLEAN",
    "object": "OBJECT",
    "array": "ARRAY",
}


class GeminiProvider(LLMProvider):
    """Google Gemini over the ``generateContent`` REST endpoint."""

    name = "gemini"

    def __init__(
        self,
        api_key: str,
        model: str,
        base_url: str = "https://generativelanguage.googleapis.com/v1beta",
        client: httpx.AsyncClient | None = None,
        timeout: float = 60.0,
    ):
        super().__init__(model, client=client, timeout=timeout)
        self.url = f"{base_url.rstrip('/')}/models/{model}:generateContent"
        self.headers = {"x-goog-api-key": api_key, "Content-Type": "application/json"}
        log.info("LLM_INIT | provider=gemini | model=%s", model)

    async def chat(self, messages, system_prompt, tools=None) -> LLMTurnResult:
        payload: dict = {
            "systemInstruction": {"role": "system", "parts": [{"text": system_prompt}]},
            "contents": self._messages_to_contents(messages),
        }
        if tools:
            payload["tools"] = [{"functionDeclarations": [self._tool_to_declaration(t) for t in tools]}]

        data = await self._post_json(self.url, payload, self.headers)
        parts = self._first_candidate_parts(data)

        # -- Tool call response --
        for part in parts:
            call = part.get("functionCall")
            if call:
                tool_call = ToolCall(name=call["name"], arguments=call.get("args") or {})
                log.info(
                    "TOOL_CALL | provider=gemini | name=%s | args=%s",
                    tool_call.name, json.dumps(tool_call.arguments, ensure_ascii=False),
                )
                return LLMTurnResult(
                    tool_call=tool_call,
                    raw_message=LLMMessage(
                        role="assistant",
                        tool_call=tool_call,
                        thought_signature=part.get("thoughtSignature"),
                    ),
                )

        # -- Text response --
        texts = [p["text"] for p in parts if isinstance(p.get("text"), str) and not p.get("thought")]
        text = "".join(texts) if texts else None
        return LLMTurnResult(text=text, raw_message=LLMMessage.assistant(text or ""))

    # -- Converters --

    def _first_candidate_parts(self, data: dict) -> list[dict]:
        candidates = data.get("candidates")
        if candidates is None:
            raise LLMResponseError("gemini response has no candidates")
        if not candidates:
            return []
        content = candidates[0].get("content") or {}
        return content.get("parts") or []

    def _messages_to_contents(self, messages: list[LLMMessage]) -> list[dict]:
        contents = []
        for msg in messages:
            if msg.role == "assistant" and msg.tool_call:
                part: dict = {"functionCall": {"name": msg.tool_call.name, "args": msg.tool_call.arguments}}
                if msg.thought_signature:
                    part["thoughtSignature"] = msg.thought_signature
                contents.append({"role": "model", "parts": [part]})
            elif msg.role == "assistant":
                contents.append({"role": "model", "parts": [{"text": msg.text or ""}]})
            elif msg.role == "tool_result":
                result = msg.tool_result.result
                if not isinstance(result, dict):
                    result = {"result": result}
                contents.append({
                    "role": "user",
                    "parts": [{"functionResponse": {"name": msg.tool_result.name, "response": result}}],
                })
            else:
                contents.append({"role": "user", "parts": [{"text": msg.text or ""}]})
        return contents

    def _tool_to_declaration(self, tool: LLMTool) -> dict:
        return {
            "name": tool.name,
            "description": tool.description,
            "parameters": {
                "type": "OBJECT",
                "properties": {k: self._convert_schema(v) for k, v in tool.parameters.properties.items()},
            },
        }

    def _convert_schema(self, prop: ToolPropertySchema) -> dict:
        schema: dict = {"type": TYPE_MAP[prop.type]}
        if prop.description:
            schema["description"] = prop.description
        if prop.enum:
            schema["enum"] = prop.enum
        if prop.items:
            schema["items"] = self._convert_schema(prop.items)
        if prop.properties:
            schema["properties"] = {k: self._convert_schema(v) for k, v in prop.properties.items()}
        return schema
