"""Module routes end to end: HTTP request -> pipeline -> module -> envelope.

Tests cover:
    - public cached read: success envelope, private keys stripped, fromCache on repeat
    - auth gate: module code never runs for a rejected request
    - store errors surface as typed envelopes (409 DUPLICATE_ENTRY) and are counted
    - rate limit 429 with Retry-After, then recovery after the window
    - unknown-error formatting with and without the debug block
    - configured response fields are redacted in success data
"""

from datetime import timedelta

import pytest
from httpx import ASGITransport, AsyncClient

from autoregistry.framework import Framework
from autoregistry.main import create_app


def _catalog(framework):
    return framework.registry.get("catalog").source


# ─── success path ────────────────────────────────────────────────

async def test_public_list_is_cached_and_stripped(client, seed_products):
    first = await client.get("/api/v1/catalog/list")
    assert first.status_code == 200
    body = first.json()
    assert body["success"] is True
    assert body["version"] == "v1"
    assert body["requestId"] == first.headers["X-Request-ID"]
    assert body["meta"]["responseTime"].endswith("ms")
    assert [item["sku"] for item in body["data"]["items"]] == ["SKU-1", "SKU-2"]
    assert body["data"]["fromCache"] is False
    assert "_trace" not in body["data"]

    second = await client.get("/api/v1/catalog/list")
    assert second.json()["data"]["fromCache"] is True
    assert second.json()["data"]["items"] == body["data"]["items"]


async def test_get_reads_query_string(client, seed_products):
    response = await client.get("/api/v1/catalog/get", params={"id": "2"})
    assert response.json()["data"]["name"] == "Desk"

    missing = await client.get("/api/v1/catalog/get", params={"id": "99"})
    assert missing.status_code == 404
    assert missing.json()["error"] == {"code": "PRODUCT_NOT_FOUND", "message": "Product not found"}


async def test_create_answers_201(client, auth_header):
    response = await client.post(
        "/api/v1/catalog/create",
        json={"sku": "SKU-3", "name": "<b>Chair</b>", "price": 5},
        headers=auth_header(user_id=4, roles=["editor"]),
    )
    assert response.status_code == 201
    data = response.json()["data"]
    assert data["name"] == "Chair"
    assert data["owner_id"] == 4


async def test_module_validation_errors_listed(client, auth_header):
    response = await client.post(
        "/api/v1/catalog/create", json={"sku": "A"}, headers=auth_header(roles=["admin"]),
    )
    assert response.status_code == 400
    error = response.json()["error"]
    assert error["code"] == "VALIDATION_ERROR"
    assert len(error["validationErrors"]) == 2


# ─── gates ───────────────────────────────────────────────────────

async def test_missing_token_never_reaches_module(client, framework):
    response = await client.post("/api/v1/catalog/create", json={"sku": "SKU-9", "name": "X"})
    assert response.status_code == 401
    assert response.json()["success"] is False
    assert response.json()["error"]["code"] == "MISSING_TOKEN"
    assert "create" not in _catalog(framework).CALLS


async def test_expired_token(client, auth_header):
    response = await client.post(
        "/api/v1/catalog/create", json={"sku": "SKU-9", "name": "X"},
        headers=auth_header(roles=["editor"], expires_in=timedelta(seconds=-10)),
    )
    assert response.status_code == 401
    assert response.json()["error"]["message"] == "Token expired"


async def test_missing_role_is_403(client, auth_header):
    response = await client.post(
        "/api/v1/catalog/create", json={"sku": "SKU-9", "name": "X"},
        headers=auth_header(roles=["viewer"]),
    )
    assert response.status_code == 403
    assert response.json()["error"]["requiredRoles"] == ["admin", "editor"]


async def test_search_rate_limited_then_recovers(client, clock):
    for _ in range(3):
        assert (await client.get("/api/v1/catalog/search", params={"q": "lamp"})).status_code == 200

    limited = await client.get("/api/v1/catalog/search", params={"q": "lamp"})
    assert limited.status_code == 429
    assert limited.headers["Retry-After"] == "60"
    assert limited.json()["error"]["retryAfter"] == 60

    clock.advance(60)
    recovered = await client.get("/api/v1/catalog/search", params={"q": "lamp"})
    assert recovered.status_code == 200
    assert recovered.json()["data"] == {"query": "lamp"}


@pytest.mark.parametrize("path,status,code", [
    ("/api/v1/catalog/_format_price", 404, "ROUTE_NOT_FOUND"),
    ("/api/v1/catalog/delete_everything", 404, "ROUTE_NOT_FOUND"),
    ("/api/v1/absent/list", 404, "ROUTE_NOT_FOUND"),
    ("/api/v1/catalog", 400, "MISSING_METHOD"),
])
async def test_routing_rejections(client, path, status, code):
    response = await client.get(path)
    assert response.status_code == status
    assert response.json()["error"]["code"] == code


async def test_post_without_json_body(client, auth_header):
    response = await client.post(
        "/api/v1/catalog/create", content=b"sku=1",
        headers={**auth_header(roles=["admin"]), "Content-Type": "text/plain"},
    )
    assert response.status_code == 400
    assert response.json()["error"]["code"] == "INVALID_CONTENT_TYPE"


# ─── module-raised errors ────────────────────────────────────────

async def test_duplicate_create_is_409_and_counted(client, framework, seed_products, auth_header):
    before = framework.data_access.counters.errors
    response = await client.post(
        "/api/v1/catalog/create", json={"sku": "SKU-1", "name": "Lamp again"},
        headers=auth_header(roles=["editor"]),
    )
    assert response.status_code == 409
    assert response.json()["error"]["code"] == "DUPLICATE_ENTRY"
    assert framework.data_access.counters.errors == before + 1


async def test_ownership_enforced_in_module(client, seed_products, auth_header):
    denied = await client.patch(
        "/api/v1/catalog/rename", json={"id": 2, "name": "Standing desk"},
        headers=auth_header(user_id=1),
    )
    assert denied.status_code == 403
    assert denied.json()["error"]["code"] == "OWNERSHIP_REQUIRED"

    allowed = await client.patch(
        "/api/v1/catalog/rename", json={"id": 2, "name": "Standing desk"},
        headers=auth_header(user_id=2),
    )
    assert allowed.status_code == 200
    assert allowed.json()["data"]["name"] == "Standing desk"


async def test_unknown_error_is_generic_with_debug(client, framework):
    response = await client.get("/api/v1/catalog/explode")
    body = response.json()
    assert response.status_code == 500
    assert body["error"]["code"] == "UNKNOWN_ERROR"
    assert "hunter2" not in body["error"]["message"]
    assert body["debug"]["name"] == "RuntimeError"
    assert framework.monitor.stats()["errorsByModule"] == {"catalog": 1}


async def test_production_hides_debug(settings, data_access, clock):
    production = settings.model_copy(update={"environment": "production"})
    framework = Framework.build(production, data_access, clock=clock)
    framework.discover_modules()
    app = create_app(production, framework)
    async with AsyncClient(transport=ASGITransport(app=app), base_url="http://test") as c:
        response = await c.get("/api/v1/catalog/explode")

    body = response.json()
    assert response.status_code == 500
    assert "debug" not in body
    assert body["error"]["message"] == "An unexpected error occurred. Please try again later."


# ─── core module ─────────────────────────────────────────────────

async def test_status_ping_is_public(client, framework):
    response = await client.get("/api/v1/status/ping")
    assert response.status_code == 200
    assert response.json()["data"]["instance"] == framework.instance_id
    assert response.headers["X-Instance-ID"] == framework.instance_id


async def test_status_whoami(client, auth_header):
    assert (await client.get("/api/v1/status/whoami")).status_code == 401

    response = await client.get(
        "/api/v1/status/whoami", headers=auth_header(user_id=9, roles=["admin"]),
    )
    assert response.json()["data"] == {
        "user": {"id": 9, "roles": ["admin"], "permissions": []},
        "isAdmin": True,
    }


async def test_configured_fields_are_redacted_in_success_data(settings, data_access, clock, seed_products):
    redacting = settings.model_copy(update={"response_redact_fields": ["OWNER_ID"]})
    framework = Framework.build(redacting, data_access, clock=clock)
    framework.discover_modules()
    app = create_app(redacting, framework)
    async with AsyncClient(transport=ASGITransport(app=app), base_url="http://test") as c:
        response = await c.get("/api/v1/catalog/get", params={"id": "2"})

    data = response.json()["data"]
    assert response.status_code == 200
    assert data["owner_id"] == "[REDACTED]"
    assert data["sku"] == "SKU-2"
