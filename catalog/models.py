"""
catalog/models.py -- Domain dataclasses for the product catalog.

Pure data containers. Persistence lives in catalog/store.py, caching of
listings in cache/queries.py.
"""

from dataclasses import dataclass, field
from typing import Optional


@dataclass
class Product:
    """A sellable product.

    code is the natural key: three upper-case letters, a dash, and three
    digits that are not all zero (e.g. "ABC-123"). price is in the smallest
    currency unit and is at least 1.
    """

    code: str
    name: str
    price: int
    created_at: str = ""  # ISO 8601, set by store on insert
    updated_at: str = ""


@dataclass
class ProductQuery:
    """Filter, sort and pagination parameters for listing products.

    Every field takes part in the cache key of the listing, so two queries
    that differ in any field are cached separately.
    """

    code: Optional[str] = None
    name: Optional[str] = None
    price_min: int = 0
    price_max: Optional[int] = None
    order_by: str = "created_at"  # "code" | "name" | "price" | "created_at"
    sort: str = "desc"  # "asc" | "desc"
    page: int = 0
    limit: int = 10


@dataclass
class ProductPage:
    items: list[Product] = field(default_factory=list)
    total: int = 0
    max_page: int = 0
