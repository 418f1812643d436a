import json

import httpx
import pytest

from tile_recommender.config import Settings
from tile_recommender.errors import (
    ConfigurationError,
    LLMProviderError,
    LLMRateLimitError,
    LLMResponseError,
)
from tile_recommender.models.llm import (
    LLMMessage,
    LLMTool,
    ToolCall,
    ToolParameters,
    ToolPropertySchema,
)
from tile_recommender.services.llm.factory import create_llm_provider
from tile_recommender.services.llm.gemini import GeminiProvider
from tile_recommender.services.llm.groq import GroqProvider
from tile_recommender.services.llm.ollama import OllamaProvider

TOOL = LLMTool(
    name="getProductRecommendations",
    description="search tiles",
    parameters=ToolParameters(properties={
        "color": ToolPropertySchema(
            type="array", items=ToolPropertySchema(type="string", enum=["Putih"]), description="warna",
        ),
        "size": ToolPropertySchema(
            type="array",
            items=ToolPropertySchema(type="object", properties={"width": ToolPropertySchema(type="number")}),
        ),
    }),
)


class Recorder:
    """httpx transport handler that records request bodies and replays a response."""

    def __init__(self, body: dict | None = None, status: int = 200):
        self.body = body or {}
        self.status = status
        self.requests: list[dict] = []

    def __call__(self, request: httpx.Request) -> httpx.Response:
        self.requests.append(json.loads(request.content))
        return httpx.Response(self.status, json=self.body)

    def client(self) -> httpx.AsyncClient:
        return httpx.AsyncClient(transport=httpx.MockTransport(self))


def tool_history(call_id: str | None = None) -> list[LLMMessage]:
    call = ToolCall(name="getProductRecommendations", arguments={"color": ["Putih"], "size": [{"width": 60}]})
    return [
        LLMMessage.user("keramik putih 60"),
        LLMMessage(role="assistant", tool_call=call, tool_call_id=call_id),
        LLMMessage.result("getProductRecommendations", {"status": "SUCCESS", "products": []}),
    ]


# --- Gemini ---

@pytest.mark.asyncio
async def test_gemini_declares_tools_with_upper_case_types():
    rec = Recorder({"candidates": [{"content": {"parts": [{"text": "Halo"}]}}]})
    provider = GeminiProvider("key", "gemini-2.5-flash", client=rec.client())

    result = await provider.chat([LLMMessage.user("hai")], "sistem", [TOOL])

    sent = rec.requests[0]
    assert sent["systemInstruction"]["parts"][0]["text"] == "sistem"
    decl = sent["tools"][0]["functionDeclarations"][0]
    assert decl["parameters"]["type"] == "OBJECT"
    assert decl["parameters"]["properties"]["color"] == {
        "type": "ARRAY", "description": "warna", "items": {"type": "STRING", "enum": ["Putih"]},
    }
    assert decl["parameters"]["properties"]["size"]["items"]["properties"]["width"] == {"type": "NUMBER"}
    assert result.text == "Halo"
    assert result.tool_call is None


@pytest.mark.asyncio
async def test_gemini_function_call_and_signature_round_trip():
    rec = Recorder({"candidates": [{"content": {"parts": [
        {"functionCall": {"name": "getProductRecommendations", "args": {"color": ["Putih"]}}, "thoughtSignature": "sig"},
    ]}}]})
    provider = GeminiProvider("key", "gemini-2.5-flash", client=rec.client())

    result = await provider.chat([LLMMessage.user("putih")], "sistem", [TOOL])
    assert result.tool_call.arguments == {"color": ["Putih"]}
    assert result.raw_message.thought_signature == "sig"

    history = [LLMMessage.user("putih"), result.raw_message,
               LLMMessage.result("getProductRecommendations", {"status": "SUCCESS"})]
    await provider.chat(history, "sistem", [TOOL])
    contents = rec.requests[1]["contents"]
    assert contents[1] == {"role": "model", "parts": [{
        "functionCall": {"name": "getProductRecommendations", "args": {"color": ["Putih"]}},
        "thoughtSignature": "sig",
    }]}
    assert contents[2]["parts"][0]["functionResponse"]["response"] == {"status": "SUCCESS"}


@pytest.mark.asyncio
async def test_gemini_without_text_or_tools():
    rec = Recorder({"candidates": [{"content": {"parts": []}}]})
    provider = GeminiProvider("key", "gemini-2.5-flash", client=rec.client())

    result = await provider.chat([LLMMessage.user("hai")], "sistem", [])
    assert "tools" not in rec.requests[0]
    assert result.text is None
    assert result.raw_message.text == ""


# --- Groq ---

@pytest.mark.asyncio
async def test_groq_decodes_json_arguments():
    rec = Recorder({"choices": [{"message": {"content": None, "tool_calls": [{
        "id": "call_abc", "type": "function",
        "function": {"name": "getProductRecommendations", "arguments": "{\"color\": [\"Putih\"]}"},
    }]}}]})
    provider = GroqProvider("key", "llama-3.1-8b-instant", client=rec.client())

    result = await provider.chat([LLMMessage.user("putih")], "sistem", [TOOL])

    assert result.tool_call.arguments == {"color": ["Putih"]}
    assert result.raw_message.tool_call_id == "call_abc"
    sent = rec.requests[0]
    assert sent["messages"][0] == {"role": "system", "content": "sistem"}
    assert sent["tool_choice"] == "auto"
    assert sent["tools"][0]["function"]["parameters"]["properties"]["color"]["items"]["type"] == "string"


@pytest.mark.asyncio
async def test_groq_threads_the_call_id_into_the_tool_message():
    rec = Recorder({"choices": [{"message": {"content": "Ini hasilnya"}}]})
    provider = GroqProvider("key", "llama-3.1-8b-instant", client=rec.client())

    result = await provider.chat(tool_history("call_xyz"), "sistem", [TOOL])

    messages = rec.requests[0]["messages"]
    assert messages[2]["tool_calls"][0]["id"] == "call_xyz"
    assert json.loads(messages[2]["tool_calls"][0]["function"]["arguments"])["color"] == ["Putih"]
    assert messages[3]["role"] == "tool"
    assert messages[3]["tool_call_id"] == "call_xyz"
    assert result.text == "Ini hasilnya"


@pytest.mark.asyncio
async def test_groq_falls_back_to_positional_call_ids():
    rec = Recorder({"choices": [{"message": {"content": None}}]})
    provider = GroqProvider("key", "llama-3.1-8b-instant", client=rec.client())

    result = await provider.chat(tool_history(None), "sistem", [TOOL])

    messages = rec.requests[0]["messages"]
    assert messages[2]["tool_calls"][0]["id"] == "call_1"
    assert messages[3]["tool_call_id"] == "call_1"
    assert result.text == ""


@pytest.mark.asyncio
async def test_groq_undecodable_arguments_raise():
    rec = Recorder({"choices": [{"message": {"tool_calls": [{
        "id": "call_1", "function": {"name": "getProductRecommendations", "arguments": "{color: Putih"},
    }]}}]})
    provider = GroqProvider("key", "llama-3.1-8b-instant", client=rec.client())

    with pytest.raises(LLMResponseError):
        await provider.chat([LLMMessage.user("putih")], "sistem", [TOOL])


# --- Ollama ---

@pytest.mark.asyncio
async def test_ollama_tool_call_with_structured_arguments():
    rec = Recorder({"message": {"role": "assistant", "content": "", "tool_calls": [{
        "function": {"name": "getProductRecommendations", "arguments": {"color": ["Putih"], "recommendedFor": ["Dapur"]}},
    }]}})
    provider = OllamaProvider("http://ollama:11434", "llama3.1:8b", client=rec.client())

    result = await provider.chat(tool_history(), "sistem", [TOOL])

    sent = rec.requests[0]
    assert sent["stream"] is False
    assert sent["tools"][0]["function"]["parameters"]["required"] == []
    assert sent["messages"][3] == {"role": "tool", "content": json.dumps({"status": "SUCCESS", "products": []})}
    assert result.tool_call.arguments == {"color": ["Putih"], "recommendedFor": ["Dapur"]}


@pytest.mark.asyncio
async def test_ollama_string_arguments_are_decoded():
    rec = Recorder({"message": {"content": "", "tool_calls": [{
        "function": {"name": "getProductRecommendations", "arguments": "{\"color\": [\"Putih\"]}"},
    }]}})
    provider = OllamaProvider("http://ollama:11434", "llama3.1:8b", client=rec.client())

    result = await provider.chat([LLMMessage.user("putih")], "sistem", [TOOL])
    assert result.tool_call.arguments == {"color": ["Putih"]}


@pytest.mark.asyncio
async def test_ollama_null_content_becomes_empty_text():
    rec = Recorder({"message": {"role": "assistant", "content": None}})
    provider = OllamaProvider("http://ollama:11434", "llama3.1:8b", client=rec.client())

    result = await provider.chat([LLMMessage.user("hai")], "sistem")
    assert result.text == ""
    assert result.raw_message.role == "assistant"
    assert result.raw_message.text == ""


# --- Shared error mapping ---

@pytest.mark.asyncio
async def test_rate_limit_maps_to_429_error():
    rec = Recorder({"error": "quota"}, status=429)
    provider = GroqProvider("key", "llama-3.1-8b-instant", client=rec.client())
    with pytest.raises(LLMRateLimitError) as exc:
        await provider.chat([LLMMessage.user("hai")], "sistem")
    assert exc.value.status_code == 429
    assert len(rec.requests) == 1


@pytest.mark.asyncio
async def test_server_error_is_not_retried():
    rec = Recorder({"error": "boom"}, status=500)
    provider = OllamaProvider("http://ollama:11434", "llama3.1:8b", client=rec.client())
    with pytest.raises(LLMProviderError):
        await provider.chat([LLMMessage.user("hai")], "sistem")
    assert len(rec.requests) == 1


# --- Provider selection ---

def test_factory_requires_a_gemini_key():
    with pytest.raises(ConfigurationError):
        create_llm_provider(Settings(LLM_PROVIDER="gemini", GOOGLE_API_KEY=""))


def test_factory_requires_a_groq_key():
    with pytest.raises(ConfigurationError):
        create_llm_provider(Settings(LLM_PROVIDER="groq", GROQ_API_KEY=""))


@pytest.mark.asyncio
async def test_factory_uses_default_and_explicit_models():
    ollama = create_llm_provider(Settings(LLM_PROVIDER="ollama", LLM_MODEL=None))
    assert isinstance(ollama, OllamaProvider)
    assert ollama.model == "llama3.1:8b"

    groq = create_llm_provider(Settings(LLM_PROVIDER="groq", GROQ_API_KEY="gsk", LLM_MODEL="llama-3.3-70b-versatile"))
    assert isinstance(groq, GroqProvider)
    assert groq.model == "llama-3.3-70b-versatile"

    await ollama.aclose()
    await groq.aclose()
