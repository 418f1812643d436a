import json
import logging
import uuid
from datetime import datetime, timezone

import aiosqlite

from tile_recommender.models.database import to_db_time
from tile_recommender.models.schemas import (
    Product,
    ProductCreate,
    ProductFilters,
    ProductOrderBy,
)

log = logging.getLogger(__name__)

MAX_PRICE = 999999999999

FINAL_PRICE_SQL = "(price - price * COALESCE(discount, 0) / 100.0)"

# Field path -> (column, column holds a JSON array)
DISTINCT_FIELDS: dict[str, tuple[str, bool]] = {
    "specification.design": ("design", False),
    "specification.texture": ("texture", False),
    "specification.finishing": ("finishing", False),
    "specification.color": ("color", True),
    "specification.application": ("application", True),
    "recommended": ("recommended", True),
    "brand": ("brand", False),
}

ORDER_BY_SQL: dict[str, str] = {
    "price_asc": "final_price ASC",
    "price_desc": "final_price DESC",
    "name_asc": "name ASC",
    "name_desc": "name DESC",
}

SEARCHABLE_COLUMNS = (
    "design", "texture", "color", "finishing", "name", "brand", "description", "recommended",
)


def _placeholders(values: list) -> str:
    return ", ".join("?" for _ in values)


class CatalogService:
    """Read side of the product catalog, as the recommendation engine needs it."""

    def __init__(self, db_path: str):
        self.db_path = db_path

    # -- Queries --

    async def search(
        self,
        filters: ProductFilters,
        query: str | None = None,
        order_by: ProductOrderBy | None = None,
        limit: int | None = None,
    ) -> list[Product]:
        """Find products matching every filter, newest first unless ``order_by`` says otherwise."""
        where, params = self._build_where(filters, query)
        sql = f"SELECT *, {FINAL_PRICE_SQL} AS final_price FROM products"
        if where:
            sql += " WHERE " + " AND ".join(where)
        sql += " ORDER BY " + ORDER_BY_SQL.get(order_by or "", "created_at DESC")
        if limit:
            sql += " LIMIT ?"
            params.append(limit)

        async with aiosqlite.connect(self.db_path) as db:
            db.row_factory = aiosqlite.Row
            cursor = await db.execute(sql, params)
            rows = await cursor.fetchall()

        log.debug("CATALOG_SEARCH | clauses=%d | hits=%d", len(where), len(rows))
        return [self._parse_product(row) for row in rows]

    async def distinct_values(self, field_path: str) -> list[str]:
        """Every distinct value stored under ``field_path``, sorted."""
        if field_path not in DISTINCT_FIELDS:
            raise ValueError(f"Unsupported catalog field: {field_path}")
        column, is_array = DISTINCT_FIELDS[field_path]

        if is_array:
            sql = (
                f"SELECT DISTINCT j.value FROM products, json_each(products.{column}) AS j "
                "ORDER BY j.value"
            )
        else:
            sql = f"SELECT DISTINCT {column} FROM products ORDER BY {column}"

        async with aiosqlite.connect(self.db_path) as db:
            cursor = await db.execute(sql)
            rows = await cursor.fetchall()
        return [row[0] for row in rows if row[0] not in (None, "")]

    async def add_product(self, data: ProductCreate) -> Product:
        """Insert a product and return it as stored."""
        product_id = uuid.uuid4().hex
        now = to_db_time(datetime.now(timezone.utc))
        spec = data.specification
        async with aiosqlite.connect(self.db_path) as db:
            db.row_factory = aiosqlite.Row
            await db.execute(
                """
                INSERT INTO products
                    (id, name, description, brand, price, discount, tiles_per_box,
                     is_best_seller, is_new_arrivals, image, recommended,
                     width, height, application, design, color, finishing, texture,
                     is_water_resistant, is_slip_resistant, created_at, updated_at)
                VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?)
                """,
                (
                    product_id, data.name, data.description, data.brand, data.price,
                    data.discount, data.tiles_per_box, int(data.is_best_seller),
                    int(data.is_new_arrivals), data.image, json.dumps(data.recommended),
                    spec.size.width, spec.size.height, json.dumps(spec.application),
                    spec.design, json.dumps(spec.color), spec.finishing, spec.texture,
                    int(spec.is_water_resistant), int(spec.is_slip_resistant), now, now,
                ),
            )
            await db.commit()
            cursor = await db.execute(
                f"SELECT *, {FINAL_PRICE_SQL} AS final_price FROM products WHERE id = ?",
                (product_id,),
            )
            row = await cursor.fetchone()
        return self._parse_product(row)

    # -- Helpers --

    def _build_where(self, filters: ProductFilters, query: str | None) -> tuple[list[str], list]:
        where: list[str] = []
        params: list = []

        for column in ("design", "texture", "finishing"):
            values = getattr(filters, column)
            if values:
                where.append(f"{column} IN ({_placeholders(values)})")
                params.extend(values)

        for column in ("color", "application", "recommended"):
            values = getattr(filters, column)
            if values:
                where.append(
                    f"EXISTS (SELECT 1 FROM json_each(products.{column}) "
                    f"WHERE json_each.value IN ({_placeholders(values)}))"
                )
                params.extend(values)

        if filters.discounted:
            where.append("discount > 0")
        if filters.best_seller:
            where.append("is_best_seller = 1")
        if filters.new_arrivals:
            where.append("is_new_arrivals = 1")
        if filters.price:
            low = filters.price.min if filters.price.min is not None else 0
            high = filters.price.max if filters.price.max is not None else MAX_PRICE
            where.append("price BETWEEN ? AND ?")
            params.extend([low, high])

        # Sizes and the free-text query share one OR group
        any_of: list[str] = []
        for size in filters.size or []:
            any_of.append("(width = ? AND height = ?)")
            params.extend([size.width, size.height])
        if query:
            for column in SEARCHABLE_COLUMNS:
                any_of.append(f"{column} LIKE ?")
                params.append(f"%{query}%")
        if any_of:
            where.append("(" + " OR ".join(any_of) + ")")

        return where, params

    def _parse_product(self, row: aiosqlite.Row) -> Product:
        """Turn a products row into the nested Product shape."""
        return Product(
            id=row["id"],
            name=row["name"],
            description=row["description"],
            brand=row["brand"],
            price=row["price"],
            discount=row["discount"],
            final_price=row["final_price"],
            tiles_per_box=row["tiles_per_box"],
            is_best_seller=bool(row["is_best_seller"]),
            is_new_arrivals=bool(row["is_new_arrivals"]),
            image=row["image"],
            recommended=json.loads(row["recommended"]),
            specification={
                "size": {"width": row["width"], "height": row["height"]},
                "application": json.loads(row["application"]),
                "design": row["design"],
                "color": json.loads(row["color"]),
                "finishing": row["finishing"],
                "texture": row["texture"],
                "is_water_resistant": bool(row["is_water_resistant"]),
                "is_slip_resistant": bool(row["is_slip_resistant"]),
            },
            created_at=datetime.fromisoformat(row["created_at"]),
            updated_at=datetime.fromisoformat(row["updated_at"]),
        )
