"""Catalog module used by end-to-end tests: public reads, role-gated writes."""

from autoregistry.core.errors import NotFoundError

MODULE_CONFIG = {
    "router_name": "catalog",
    "version": "v1",
    "auth_required": True,
    "rate_limit": "100/minute",
    "methods": {
        "list": {"public": True},
        "get": {"public": True},
        "search": {"public": True, "rate_limit": "3/minute"},
        "explode": {"public": True},
        "create": {"roles": ["admin", "editor"]},
    },
}

PRODUCT_RULES = {
    "sku": {"required": True, "min_length": 3},
    "name": {"required": True, "max_length": 100},
    "price": {"type": "number", "min": 0},
}

CALLS = []


async def list(request, data, caps):
    CALLS.append("list")
    result = await caps.db.query(
        "SELECT id, sku, name, price FROM products ORDER BY id",
        cache_key="products:list",
    )
    return {"items": result.rows, "fromCache": result.from_cache, "_trace": "internal"}


async def get(request, data, caps):
    product = await caps.db.find_by_id("products", caps.util.parse_int(data.get("id")))
    if product is None:
        raise NotFoundError("Product not found", "PRODUCT_NOT_FOUND")
    return product


def search(request, data, caps):
    return {"query": caps.util.sanitize_string(data.get("q", ""))}


async def create(request, data, caps):
    CALLS.append("create")
    caps.util.validate(data, PRODUCT_RULES)
    return await caps.db.insert("products", {
        "sku": caps.util.sanitize_string(data["sku"]),
        "name": caps.util.sanitize_string(data["name"]),
        "price": data.get("price", 0),
        "owner_id": caps.context.principal.id,
    })


async def rename(request, data, caps):
    product = await caps.db.find_by_id("products", caps.util.parse_int(data.get("id")))
    if product is None:
        raise NotFoundError("Product not found", "PRODUCT_NOT_FOUND")
    caps.context.require_ownership(product["owner_id"])
    return await caps.db.update("products", product["id"], {"name": data["name"]})


async def explode(request, data, caps):
    raise RuntimeError("connection string postgres://admin:hunter2@db leaked")


def _format_price(value):
    return f"{value:.2f}"
