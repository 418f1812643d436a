"""Provider-agnostic recommendation engine.

Owns the system prompt, the product search tool and the function-calling loop.
LLM inference is delegated to whichever provider was configured at startup.
"""
import asyncio
import json
import logging
import random
from enum import Enum
from typing import Any

from pydantic import BaseModel
from pydantic import ValidationError as PydanticValidationError

from tile_recommender.errors import ToolArgumentsError, ToolLoopLimitError, ToolProtocolError
from tile_recommender.models.llm import (
    LLMMessage,
    LLMTool,
    LLMTurnResult,
    ToolParameters,
    ToolPropertySchema,
)
from tile_recommender.models.schemas import Product, ProductFilters
from tile_recommender.services.catalog import CatalogService
from tile_recommender.services.llm.base import LLMProvider

log = logging.getLogger(__name__)

TOOL_NAME = "getProductRecommendations"

SYSTEM_INSTRUCTION = """Kamu adalah asisten virtual dari toko "CV Aneka Keramik". Gaya bicaramu santai, fun, dan sopan. Tugasmu adalah memberikan rekomendasi produk keramik.
- JIKA user menyebutkan ciri-ciri produk (seperti warna, ukuran, desain, tekstur, harga, atau area penggunaan), SELALU panggil fungsi 'getProductRecommendations' untuk mencari data.
- JIKA user memberikan prompt yang terlalu umum atau tidak jelas (misal: "cariin keramik dong"), minta user untuk menjelaskan dengan detail yang lebih spesifik tentang keramik yang dicari.
- JIKA user tanya "Ada keramik apa saja?" jawab, silahkan cek langsung di katalog kami. Kamu hanya bisa berikan rekomendasi sesuai kebutuhan saja.
- JIKA kamu menerima hasil fungsi dengan status 'QUERY_TOO_BROAD', artinya permintaan user terlalu umum. Katakan bahwa permintaan terlalu umum dan minta user menjelaskan dengan detail spesifik.
- Setelah menerima daftar produk dari sistem, jelaskan produk tersebut kepada pelanggan dengan gaya bahasamu. Berikan alasan mengapa produk itu cocok. Bahas produk yang paling relevan, sisanya jadikan list honorable mention saja.
- JANGAN PERNAH menanyakan pertanyaan balik seperti "apakah mau mencari yang lain?". Cukup berikan jawaban final berdasarkan data yang kamu terima.
- Deskripsi seperti "desain modern dan material premium" tidak punya filter langsung, tapi tetap bisa diterjemahkan ke kombinasi filter (misal tekstur slightly textured, warna putih dan finishing matte). Selalu cari kombinasinya dan masukkan ke argumen.
- Berikan kombinasi ukuran jika permintaan ukuran tidak spesifik (misal "ukurannya besar")."""

GUARDED_MESSAGE = (
    "Maaf ya! Sepertinya kita belum bisa kasih rekomendasi nih. Coba deh jelaskan kebutuhanmu "
    "dengan cara lain, mungkin aku bisa bantu carikan alternatif terbaik dari CV Aneka Keramik!"
)

EMPTY_PRODUCT_MESSAGES = (
    "Waduh, maaf banget nih dari CV Aneka Keramik! Kayaknya produk yang kamu cari lagi sembunyi atau belum ada. Coba deh pakai kata kunci lain yang lebih umum, siapa tahu ketemu jodohnya! 😉",
    "Yah, sayang sekali! Produk dengan spek itu lagi kosong, nih. Tapi jangan khawatir, kami punya banyak koleksi lain yang nggak kalah keren. Coba cari dengan kata kunci berbeda, yuk!",
    "Hmm, sepertinya produk impianmu lagi nggak ada di stok kami. Maaf ya! Coba deh jelaskan kebutuhanmu dengan cara lain, mungkin aku bisa bantu carikan alternatif terbaik dari CV Aneka Keramik!",
    "Aduh, maaf ya, produk yang kamu maksud belum ketemu nih. Mungkin lagi di jalan atau speknya terlalu unik! Coba deh cari yang mirip-mirip, koleksi kami banyak banget lho!",
    "Maaf sekali dari CV Aneka Keramik, produknya belum tersedia saat ini. Tapi tenang, setiap hari ada aja yang baru di sini. Coba lagi dengan kata kunci lain atau cek lagi besok ya!",
)

# A call filtering on only one of these is too loose to search on
BROAD_FILTER_KEYS = frozenset({"design", "texture", "finishing", "color", "recommendedFor"})

# Tool argument name -> catalog field path for the live enumerations
ENUM_FIELDS = {
    "design": "specification.design",
    "texture": "specification.texture",
    "finishing": "specification.finishing",
    "color": "specification.color",
    "recommendedFor": "recommended",
}

LIST_ARGUMENTS = ("design", "texture", "finishing", "color", "recommendedFor", "size")


class EngineState(str, Enum):
    AWAITING_MODEL = "AWAITING_MODEL"
    TOOL_REQUESTED = "TOOL_REQUESTED"
    BROAD_QUERY_RETRY = "BROAD_QUERY_RETRY"
    EXECUTING_SEARCH = "EXECUTING_SEARCH"
    DONE = "DONE"
    DONE_EMPTY = "DONE_EMPTY"
    DONE_GUARDED = "DONE_GUARDED"


class RecommendationResult(BaseModel):
    message: str | None = None
    products: list[Product] | None = None
    # Full history after this turn; persist it to continue the conversation
    updated_messages: list[LLMMessage]
    state: EngineState


class RecommendationEngine:
    def __init__(
        self,
        llm: LLMProvider,
        catalog: CatalogService,
        max_iterations: int = 5,
        result_limit: int = 10,
        rng: random.Random | None = None,
    ):
        self.llm = llm
        self.catalog = catalog
        self.max_iterations = max_iterations
        self.result_limit = result_limit
        self._rng = rng or random.Random()

    async def build_product_tool(self) -> LLMTool:
        """Build the search tool with enumerations read live from the catalog."""
        values = await asyncio.gather(*(self.catalog.distinct_values(path) for path in ENUM_FIELDS.values()))
        enums = dict(zip(ENUM_FIELDS, values))

        def enum_list(key: str, description: str) -> ToolPropertySchema:
            return ToolPropertySchema(
                type="array",
                items=ToolPropertySchema(type="string", enum=enums[key] or None),
                description=description,
            )

        return LLMTool(
            name=TOOL_NAME,
            description="Mendapatkan daftar rekomendasi produk keramik berdasarkan kriteria filter dari database produk.",
            parameters=ToolParameters(properties={
                "design": enum_list("design", "Filter berdasarkan desain keramik, contoh: 'Modern', 'Minimalis'."),
                "texture": enum_list("texture", "Filter berdasarkan tekstur permukaan keramik, contoh: 'Glossy', 'Matte'."),
                "finishing": enum_list("finishing", "Filter berdasarkan finishing keramik, contoh: 'Polished', 'Unpolished'."),
                "color": enum_list("color", "Filter berdasarkan warna keramik, contoh: 'Putih', 'Abu-abu'."),
                "size": ToolPropertySchema(
                    type="array",
                    items=ToolPropertySchema(type="object", properties={
                        "width": ToolPropertySchema(type="number", description="Lebar keramik dalam cm."),
                        "height": ToolPropertySchema(type="number", description="Tinggi keramik dalam cm."),
                    }),
                    description="Filter berdasarkan ukuran keramik dalam sentimeter.",
                ),
                "recommendedFor": enum_list(
                    "recommendedFor", "Filter berdasarkan area aplikasi, contoh: 'Kamar Mandi', 'Dapur'."
                ),
                "price": ToolPropertySchema(
                    type="object",
                    properties={
                        "min": ToolPropertySchema(type="number", description="Harga minimal. Default 0."),
                        "max": ToolPropertySchema(type="number", description="Harga maksimal. Default 999999999999."),
                    },
                    description="Filter berdasarkan harga.",
                ),
            }),
        )

    async def recommend(self, prompt: str, existing_messages: list[LLMMessage] | None = None) -> RecommendationResult:
        """Run one recommendation turn on top of ``existing_messages``."""
        tool = await self.build_product_tool()
        messages = [*(existing_messages or []), LLMMessage.user(prompt)]
        products: list[Product] | None = None

        state = EngineState.AWAITING_MODEL
        response = await self._ask_model(messages, tool)
        iterations = 0

        while response.tool_call:
            iterations += 1
            if iterations > self.max_iterations:
                log.error("ENGINE_LOOP_LIMIT | iterations=%d", self.max_iterations)
                raise ToolLoopLimitError()

            state = EngineState.TOOL_REQUESTED
            name, args = response.tool_call.name, response.tool_call.arguments

            if name != TOOL_NAME:
                log.error("ENGINE_UNKNOWN_TOOL | name=%s", name)
                raise ToolProtocolError(f"Unknown tool: {name}")

            if not args:
                log.error("ENGINE_EMPTY_ARGS | model called %s without arguments", name)
                messages.append(LLMMessage.result(name, {"status": "EMPTY_ARGUMENTS", "products": []}))
                messages.append(LLMMessage.assistant(GUARDED_MESSAGE))
                return RecommendationResult(
                    message=GUARDED_MESSAGE,
                    products=[],
                    updated_messages=messages,
                    state=EngineState.DONE_GUARDED,
                )

            if len(args) == 1 and next(iter(args)) in BROAD_FILTER_KEYS:
                state = EngineState.BROAD_QUERY_RETRY
                log.warning("ENGINE_QUERY_TOO_BROAD | key=%s", next(iter(args)))
                messages.append(LLMMessage.result(name, {"status": "QUERY_TOO_BROAD", "products": []}))
                response = await self._ask_model(messages, tool)
                continue

            state = EngineState.EXECUTING_SEARCH
            filters = self._filters_from_arguments(args)
            products = await self.catalog.search(filters, limit=self.result_limit)
            log.info("ENGINE_SEARCH | hits=%d | args=%s", len(products), json.dumps(args, ensure_ascii=False))

            if not products:
                message = self._rng.choice(EMPTY_PRODUCT_MESSAGES)
                messages.append(LLMMessage.result(name, {"status": "NOT_FOUND", "products": []}))
                messages.append(LLMMessage.assistant(message))
                return RecommendationResult(
                    message=message,
                    products=[],
                    updated_messages=messages,
                    state=EngineState.DONE_EMPTY,
                )

            messages.append(LLMMessage.result(name, {
                "status": "SUCCESS",
                "products": [p.model_dump(mode="json") for p in products],
            }))
            response = await self._ask_model(messages, tool)

        log.info("ENGINE_DONE | last_state=%s | iterations=%d", state.value, iterations)
        return RecommendationResult(
            message=response.text,
            products=products,
            updated_messages=messages,
            state=EngineState.DONE,
        )

    async def _ask_model(self, messages: list[LLMMessage], tool: LLMTool) -> LLMTurnResult:
        response = await self.llm.chat(messages, SYSTEM_INSTRUCTION, [tool])
        messages.append(response.raw_message)
        return response

    def _filters_from_arguments(self, args: dict[str, Any]) -> ProductFilters:
        """Map tool arguments onto catalog filters."""
        normalized = dict(args)
        for key in LIST_ARGUMENTS:
            value = normalized.get(key)
            if value is not None and not isinstance(value, list):
                normalized[key] = [value]
        try:
            return ProductFilters(
                design=normalized.get("design"),
                texture=normalized.get("texture"),
                finishing=normalized.get("finishing"),
                color=normalized.get("color"),
                size=normalized.get("size"),
                recommended=normalized.get("recommendedFor"),
                price=normalized.get("price"),
            )
        except PydanticValidationError as e:
            log.error("ENGINE_BAD_ARGS | args=%s | error=%s", json.dumps(args, ensure_ascii=False), e)
            raise ToolArgumentsError() from e
