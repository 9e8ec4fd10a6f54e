"""
catalog/store.py -- SQLAlchemy-backed persistence for the product catalog.

Uses SQLAlchemy Core (not ORM) so the dataclasses in catalog/models.py remain
the authoritative domain representation.

Pattern: Repository + Data Mapper. ProductStore is the repository,
_row_to_product the mapper. Route handlers never touch SQL directly.

Security: all queries use bound parameters. Sort columns are resolved through
a fixed whitelist, never interpolated.

Usage:
    store = ProductStore()
    store.create_product(Product(code="ABC-123", name="Widget", price=1500))
    page = store.list_products(ProductQuery(name="wid", limit=5))
    store.update_product("ABC-123", price=1750)
    store.delete_product("ABC-123")
    store.close()
"""

import math
from datetime import datetime, timezone
from typing import Optional

from sqlalchemy import Column, Integer, MetaData, String, Table, create_engine, event, func, select, text
from sqlalchemy.engine import Engine
from sqlalchemy.exc import SQLAlchemyError

from catalog.models import Product, ProductPage, ProductQuery

_DEFAULT_DB_URL = "sqlite:///tollgate.db"

# ---------------------------------------------------------------------------
# Schema
# ---------------------------------------------------------------------------

metadata = MetaData()

_products = Table(
    "products",
    metadata,
    Column("code", String(7), primary_key=True),
    Column("name", String(100), nullable=False),
    Column("price", Integer, nullable=False),
    Column("created_at", String(32), nullable=False),
    Column("updated_at", String(32), nullable=False),
)

_ORDER_COLUMNS = {
    "code": _products.c.code,
    "name": _products.c.name,
    "price": _products.c.price,
    "created_at": _products.c.created_at,
}

_UPDATABLE = {"name", "price"}


# ---------------------------------------------------------------------------
# Helpers
# ---------------------------------------------------------------------------


def _now_iso() -> str:
    return datetime.now(timezone.utc).isoformat()


def _set_wal_mode(dbapi_conn, connection_record) -> None:
    """Enable WAL journal mode for concurrent read safety."""
    dbapi_conn.execute("PRAGMA journal_mode=WAL")


def _filters(query: ProductQuery) -> list:
    clauses = [_products.c.price >= query.price_min]
    if query.price_max is not None:
        clauses.append(_products.c.price <= query.price_max)
    if query.code:
        clauses.append(_products.c.code.contains(query.code.upper(), autoescape=True))
    if query.name:
        clauses.append(_products.c.name.ilike(f"%{query.name}%"))
    return clauses


# ---------------------------------------------------------------------------
# Repository
# ---------------------------------------------------------------------------


class ProductStore:
    def __init__(self, db_url: str = _DEFAULT_DB_URL) -> None:
        connect_args: dict = {}
        if db_url.startswith("sqlite"):
            connect_args["check_same_thread"] = False
        self.engine: Engine = create_engine(db_url, connect_args=connect_args)
        if db_url.startswith("sqlite"):
            event.listen(self.engine, "connect", _set_wal_mode)
        metadata.create_all(self.engine)

    def create_product(self, product: Product) -> Product:
        """Insert a product. Raises IntegrityError if the code already exists."""
        now = _now_iso()
        with self.engine.connect() as conn:
            conn.execute(
                _products.insert().values(
                    code=product.code,
                    name=product.name,
                    price=product.price,
                    created_at=now,
                    updated_at=now,
                )
            )
            conn.commit()
        return Product(code=product.code, name=product.name, price=product.price, created_at=now, updated_at=now)

    def get_product(self, code: str) -> Optional[Product]:
        with self.engine.connect() as conn:
            row = conn.execute(_products.select().where(_products.c.code == code)).fetchone()
        return _row_to_product(row) if row is not None else None

    def list_products(self, query: ProductQuery) -> ProductPage:
        """Return one page of products matching query plus the total match count.

        max_page is the zero-based index of the last page; 0 when nothing matches.
        """
        clauses = _filters(query)
        order_col = _ORDER_COLUMNS.get(query.order_by, _products.c.created_at)
        order = order_col.asc() if query.sort == "asc" else order_col.desc()
        with self.engine.connect() as conn:
            rows = conn.execute(
                _products.select()
                .where(*clauses)
                .order_by(order, _products.c.code)
                .offset(query.page * query.limit)
                .limit(query.limit)
            ).fetchall()
            total = conn.execute(select(func.count()).select_from(_products).where(*clauses)).scalar() or 0
        max_page = max(math.ceil(total / query.limit) - 1, 0)
        return ProductPage(items=[_row_to_product(r) for r in rows], total=total, max_page=max_page)

    def update_product(self, code: str, **fields) -> Optional[Product]:
        """Update name and/or price. Returns the updated product, None if not found.

        Unknown field names raise ValueError rather than being silently ignored.
        """
        unknown = set(fields) - _UPDATABLE
        if unknown:
            raise ValueError(f"Unknown product fields: {unknown!r}")
        if fields:
            with self.engine.connect() as conn:
                result = conn.execute(
                    _products.update().where(_products.c.code == code).values(**fields, updated_at=_now_iso())
                )
                conn.commit()
            if result.rowcount == 0:
                return None
        return self.get_product(code)

    def delete_product(self, code: str) -> bool:
        """Delete a product. Returns True if a row was removed."""
        with self.engine.connect() as conn:
            result = conn.execute(_products.delete().where(_products.c.code == code))
            conn.commit()
        return result.rowcount > 0

    def ping(self) -> bool:
        try:
            with self.engine.connect() as conn:
                conn.execute(text("SELECT 1"))
        except SQLAlchemyError:
            return False
        return True

    def close(self) -> None:
        self.engine.dispose()


def _row_to_product(row) -> Product:
    return Product(
        code=row.code,
        name=row.name,
        price=row.price,
        created_at=row.created_at,
        updated_at=row.updated_at,
    )
