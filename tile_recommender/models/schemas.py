from datetime import datetime
from typing import Literal

from pydantic import BaseModel, ConfigDict, Field, field_validator
from pydantic.alias_generators import to_camel

from tile_recommender.models.llm import LLMMessage


class CamelModel(BaseModel):
    """Snake case in Python, camelCase on the wire."""

    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)


# --- Product schemas ---

class TileSize(CamelModel):
    width: float
    height: float


class PriceRange(CamelModel):
    min: float | None = None
    max: float | None = None


class Specification(CamelModel):
    size: TileSize
    application: list[str] = Field(default_factory=list)
    design: str
    color: list[str] = Field(default_factory=list)
    finishing: str
    texture: str
    is_water_resistant: bool = False
    is_slip_resistant: bool = False


class ProductCreate(CamelModel):
    name: str
    description: str | None = None
    specification: Specification
    brand: str
    price: float
    discount: float = 0
    tiles_per_box: int
    is_best_seller: bool = False
    is_new_arrivals: bool = False
    image: str | None = None
    recommended: list[str] = Field(default_factory=list)


class Product(ProductCreate):
    id: str
    final_price: float
    created_at: datetime
    updated_at: datetime


class ProductFilters(CamelModel):
    design: list[str] | None = None
    texture: list[str] | None = None
    finishing: list[str] | None = None
    color: list[str] | None = None
    application: list[str] | None = None
    size: list[TileSize] | None = None
    discounted: bool = False
    best_seller: bool = False
    new_arrivals: bool = False
    price: PriceRange | None = None
    recommended: list[str] | None = None


ProductOrderBy = Literal["price_asc", "price_desc", "name_asc", "name_desc"]


# --- Chat schemas ---

class ChatTurn(CamelModel):
    role: Literal["user", "assistant"]
    text: str
    products: list[Product] | None = None
    timestamp: datetime


class RecommendationRequest(CamelModel):
    prompt: str
    session_id: str | None = None

    @field_validator("prompt")
    @classmethod
    def prompt_not_blank(cls, value: str) -> str:
        value = value.strip()
        if not value:
            raise ValueError("Prompt is required.")
        return value


class RecommendationResponse(CamelModel):
    session_id: str
    message: str | None = None
    products: list[Product] | None = None
    history: list[ChatTurn]


class SessionHistory(CamelModel):
    session_id: str
    history: list[ChatTurn]
    last_products: list[Product]
    created_at: datetime
    updated_at: datetime


class DeleteSessionResponse(CamelModel):
    message: str


# --- Persisted session ---

class ChatSession(BaseModel):
    session_id: str
    messages: list[LLMMessage] = Field(default_factory=list)
    display_history: list[ChatTurn] = Field(default_factory=list)
    last_products: list[Product] = Field(default_factory=list)
    created_at: datetime
    updated_at: datetime
    expires_at: datetime
    version: int = 0

    def user_turn_count(self) -> int:
        return sum(1 for turn in self.display_history if turn.role == "user")
