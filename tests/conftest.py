import asyncio
from datetime import datetime, timedelta, timezone

import pytest

from tile_recommender.models.database import init_db
from tile_recommender.models.llm import LLMMessage, LLMTurnResult, ToolCall
from tile_recommender.models.schemas import ProductCreate
from tile_recommender.services.catalog import CatalogService
from tile_recommender.services.llm.base import LLMProvider
from tile_recommender.services.recommendation import TOOL_NAME

SAMPLE_PRODUCTS = [
    {
        "name": "Arwana Putih Glossy",
        "description": "Keramik putih mengkilap untuk kamar mandi dan dapur.",
        "brand": "Arwana",
        "price": 120000,
        "discount": 10,
        "tiles_per_box": 6,
        "recommended": ["Kamar Mandi", "Dapur"],
        "specification": {
            "size": {"width": 40, "height": 40},
            "application": ["Lantai", "Dinding"],
            "design": "Minimalis",
            "color": ["Putih"],
            "finishing": "Polished",
            "texture": "Glossy",
            "is_water_resistant": True,
        },
    },
    {
        "name": "Roman Marmer Putih",
        "description": "Motif marmer putih keabuan.",
        "brand": "Roman",
        "price": 250000,
        "tiles_per_box": 4,
        "recommended": ["Ruang Tamu"],
        "specification": {
            "size": {"width": 60, "height": 60},
            "application": ["Lantai"],
            "design": "Modern",
            "color": ["Putih", "Abu-abu"],
            "finishing": "Unpolished",
            "texture": "Matte",
        },
    },
    {
        "name": "Platinum Kayu Coklat",
        "description": "Motif kayu hangat untuk teras.",
        "brand": "Platinum",
        "price": 180000,
        "tiles_per_box": 8,
        "is_best_seller": True,
        "recommended": ["Teras", "Ruang Tamu"],
        "specification": {
            "size": {"width": 20, "height": 60},
            "application": ["Lantai"],
            "design": "Rustic",
            "color": ["Coklat"],
            "finishing": "Unpolished",
            "texture": "Matte",
            "is_slip_resistant": True,
        },
    },
]


async def seed_products(db_path: str):
    catalog = CatalogService(db_path)
    for data in SAMPLE_PRODUCTS:
        await catalog.add_product(ProductCreate.model_validate(data))


@pytest.fixture
def db_path(tmp_path):
    path = str(tmp_path / "test.db")
    asyncio.run(init_db(path))
    return path


@pytest.fixture
def seeded_db_path(db_path):
    asyncio.run(seed_products(db_path))
    return db_path


# --- Scripted LLM ---

def tool_call(arguments: dict, name: str = TOOL_NAME) -> LLMTurnResult:
    call = ToolCall(name=name, arguments=arguments)
    return LLMTurnResult(tool_call=call, raw_message=LLMMessage(role="assistant", tool_call=call))


def text_reply(text: str) -> LLMTurnResult:
    return LLMTurnResult(text=text, raw_message=LLMMessage.assistant(text))


class ScriptedLLM(LLMProvider):
    """Replays canned turns and records every history it was sent."""

    name = "scripted"

    def __init__(self, responses: list[LLMTurnResult] | None = None, default: LLMTurnResult | None = None):
        self.model = "scripted"
        self.responses = list(responses or [])
        self.default = default
        self.calls: list[list[LLMMessage]] = []
        self.tools = []

    async def chat(self, messages, system_prompt, tools=None):
        self.calls.append(list(messages))
        self.tools.append(tools)
        if self.responses:
            return self.responses.pop(0)
        if self.default is not None:
            return self.default
        raise AssertionError("ScriptedLLM ran out of responses")

    async def aclose(self):
        pass


class RecordingCatalog(CatalogService):
    def __init__(self, db_path: str):
        super().__init__(db_path)
        self.search_calls = []

    async def search(self, filters, query=None, order_by=None, limit=None):
        self.search_calls.append((filters, limit))
        return await super().search(filters, query=query, order_by=order_by, limit=limit)


class FakeClock:
    def __init__(self, start: datetime | None = None):
        self.now = start or datetime(2026, 1, 5, 9, 0, tzinfo=timezone.utc)

    def __call__(self) -> datetime:
        return self.now

    def advance(self, **kwargs):
        self.now += timedelta(**kwargs)
