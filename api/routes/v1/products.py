"""
api/routes/v1/products.py -- Product catalog REST endpoints.

Routes:
  GET    /api/v1/products           -- filtered, sorted, paginated list (auth)
  GET    /api/v1/products/{code}    -- single product (auth)
  POST   /api/v1/products           -- create (admin + authorized CSRF)
  PATCH  /api/v1/products/{code}    -- update name/price (admin + authorized CSRF)
  DELETE /api/v1/products/{code}    -- delete (admin + authorized CSRF)

Caching:
  List results are cached under a key derived from every query parameter and
  registered in the "product:queries" group. Every mutation invalidates the
  whole group, so no listing survives a write. Single products are cached as
  "product:record:<code>" with the short record TTL and dropped on
  update/delete. Path codes must match the product code pattern.
  Cache trouble never fails a request here; reads fall back to the database.
"""

from __future__ import annotations

from typing import Optional

from fastapi import APIRouter, Depends, HTTPException, Path, Query, Request, Response
from sqlalchemy.exc import IntegrityError

from api.models import (
    PRODUCT_CODE_PATTERN,
    ProductCreate,
    ProductListResponse,
    ProductOrderEnum,
    ProductPatch,
    ProductResponse,
    SortEnum,
)
from auth.dependencies import Credential, require_access_token, require_admin, require_authorized_csrf
from cache.queries import QueryCache, query_key
from cache.registry import make_cache_key
from catalog.models import Product, ProductQuery
from catalog.store import ProductStore
from core.config import get_settings

# Auth policy:
# - GET    /products, /products/{code}: live access token
# - POST   /products:                   admin + authorized CSRF pair
# - PATCH  /products/{code}:            admin + authorized CSRF pair
# - DELETE /products/{code}:            admin + authorized CSRF pair
router = APIRouter()

ENTITY = "product"


# Record entries get their own namespace so no path value can address the
# group key ("product:queries") or a cached listing ("product:query:<digest>").
def _record_key(code: str) -> str:
    return make_cache_key(ENTITY, "record", code)


def _to_response(product: Product) -> ProductResponse:
    return ProductResponse(
        code=product.code,
        name=product.name,
        price=product.price,
        created_at=product.created_at,
        updated_at=product.updated_at,
    )


def _not_found(code: str) -> HTTPException:
    return HTTPException(status_code=404, detail={"code": "not_found", "message": f"Product {code} not found."})


async def _after_write(queries: QueryCache, code: str) -> None:
    await queries.invalidate(ENTITY)
    await queries.drop(_record_key(code))


# ---------------------------------------------------------------------------
# Reads
# ---------------------------------------------------------------------------


@router.get("/products", response_model=ProductListResponse)
async def list_products(
    request: Request,
    code: Optional[str] = Query(default=None, max_length=7),
    name: Optional[str] = Query(default=None, max_length=100),
    price_min: int = Query(default=0, ge=0),
    price_max: Optional[int] = Query(default=None, ge=1),
    order_by: ProductOrderEnum = Query(default=ProductOrderEnum.created_at),
    sort: SortEnum = Query(default=SortEnum.desc),
    page: int = Query(default=0, ge=0),
    limit: int = Query(default=10, ge=1, le=100),
    _access: Credential = Depends(require_access_token),
) -> ProductListResponse:
    """List products matching the filters.

    code and name match as substrings (name case-insensitively); price_min and
    price_max are inclusive. max_page in the response is zero-based.
    """
    query = ProductQuery(
        code=code,
        name=name,
        price_min=price_min,
        price_max=price_max,
        order_by=order_by.value,
        sort=sort.value,
        page=page,
        limit=limit,
    )
    queries: QueryCache = request.app.state.queries
    key = query_key(ENTITY, vars(query))

    cached = await queries.get(key, ENTITY)
    if cached is not None:
        return ProductListResponse(**cached)

    store: ProductStore = request.app.state.product_store
    result = store.list_products(query)
    body = ProductListResponse(
        items=[_to_response(p) for p in result.items],
        total=result.total,
        page=page,
        limit=limit,
        max_page=result.max_page,
    )
    await queries.put(ENTITY, key, body.model_dump())
    return body


@router.get("/products/{code}", response_model=ProductResponse)
async def get_product(
    request: Request,
    code: str = Path(pattern=PRODUCT_CODE_PATTERN),
    _access: Credential = Depends(require_access_token),
) -> ProductResponse:
    """Return a single product by code. 404 if not found."""
    queries: QueryCache = request.app.state.queries
    ttl = get_settings().record_cache_expire_seconds
    cached = await queries.get(_record_key(code), ttl_seconds=ttl)
    if cached is not None:
        return ProductResponse(**cached)

    product = request.app.state.product_store.get_product(code)
    if product is None:
        raise _not_found(code)
    body = _to_response(product)
    await queries.put(None, _record_key(code), body.model_dump(), ttl_seconds=ttl)
    return body


# ---------------------------------------------------------------------------
# Writes
# ---------------------------------------------------------------------------


@router.post("/products", response_model=ProductResponse, status_code=201)
async def create_product(
    request: Request,
    body: ProductCreate,
    _admin: Credential = Depends(require_admin),
    _csrf: Credential = Depends(require_authorized_csrf),
) -> ProductResponse:
    """Create a product. 409 if the code is already taken."""
    store: ProductStore = request.app.state.product_store
    try:
        product = store.create_product(Product(code=body.code, name=body.name, price=body.price))
    except IntegrityError:
        raise HTTPException(
            status_code=409,
            detail={"code": "product_exists", "message": f"Product {body.code} already exists."},
        )
    await _after_write(request.app.state.queries, product.code)
    return _to_response(product)


@router.patch("/products/{code}", response_model=ProductResponse)
async def update_product(
    request: Request,
    body: ProductPatch,
    code: str = Path(pattern=PRODUCT_CODE_PATTERN),
    _admin: Credential = Depends(require_admin),
    _csrf: Credential = Depends(require_authorized_csrf),
) -> ProductResponse:
    """Update a product's name and/or price. 404 if not found."""
    store: ProductStore = request.app.state.product_store
    product = store.update_product(code, **body.model_dump(exclude_none=True))
    if product is None:
        raise _not_found(code)
    await _after_write(request.app.state.queries, code)
    return _to_response(product)


@router.delete("/products/{code}", status_code=204)
async def delete_product(
    request: Request,
    code: str = Path(pattern=PRODUCT_CODE_PATTERN),
    _admin: Credential = Depends(require_admin),
    _csrf: Credential = Depends(require_authorized_csrf),
) -> Response:
    """Delete a product. 404 if not found."""
    store: ProductStore = request.app.state.product_store
    if not store.delete_product(code):
        raise _not_found(code)
    await _after_write(request.app.state.queries, code)
    return Response(status_code=204)
