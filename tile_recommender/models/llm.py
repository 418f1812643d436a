"""Provider-neutral conversation and tool types.

Every LLM adapter consumes and produces these; nothing outside
``services/llm`` ever sees a vendor payload.
"""
from typing import Any, Literal

from pydantic import BaseModel, Field, model_validator

PropertyType = Literal["string", "number", "boolean", "object", "array"]


# --- Tool schema ---

class ToolPropertySchema(BaseModel):
    type: PropertyType
    description: str | None = None
    enum: list[str] | None = None
    items: "ToolPropertySchema | None" = None
    properties: "dict[str, ToolPropertySchema] | None" = None


class ToolParameters(BaseModel):
    type: Literal["object"] = "object"
    properties: dict[str, ToolPropertySchema] = Field(default_factory=dict)


class LLMTool(BaseModel):
    name: str
    description: str
    parameters: ToolParameters


# --- Messages ---

class ToolCall(BaseModel):
    name: str
    arguments: dict[str, Any] = Field(default_factory=dict)


class ToolResult(BaseModel):
    name: str
    result: Any = None


class LLMMessage(BaseModel):
    role: Literal["user", "assistant", "tool_result"]
    text: str | None = None
    tool_call: ToolCall | None = None
    tool_result: ToolResult | None = None
    # Provider bookkeeping needed to rebuild the next outbound turn
    tool_call_id: str | None = None
    thought_signature: str | None = None

    @model_validator(mode="after")
    def _check_shape(self):
        if self.role == "assistant" and (self.text is None) == (self.tool_call is None):
            raise ValueError("assistant message needs exactly one of text or tool_call")
        if self.role == "user" and self.text is None:
            raise ValueError("user message needs text")
        if (self.role == "tool_result") != (self.tool_result is not None):
            raise ValueError("tool_result is required on, and only allowed on, tool_result messages")
        return self

    @classmethod
    def user(cls, text: str) -> "LLMMessage":
        return cls(role="user", text=text)

    @classmethod
    def assistant(cls, text: str) -> "LLMMessage":
        return cls(role="assistant", text=text)

    @classmethod
    def result(cls, name: str, result: Any) -> "LLMMessage":
        return cls(role="tool_result", tool_result=ToolResult(name=name, result=result))


class LLMTurnResult(BaseModel):
    """One inference call, classified.

    ``raw_message`` is what gets appended to history; it may carry bookkeeping
    (call ids, signatures) the next request has to send back.
    """

    text: str | None = None
    tool_call: ToolCall | None = None
    raw_message: LLMMessage


def dump_messages(messages: list[LLMMessage]) -> list[dict]:
    return [m.model_dump(mode="json", exclude_none=True) for m in messages]


def load_messages(raw: list[dict]) -> list[LLMMessage]:
    return [LLMMessage.model_validate(m) for m in raw]
