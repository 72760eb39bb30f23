"""HTTP API tests: status mapping, redirects and management endpoints."""

from unittest.mock import AsyncMock

import pytest
from fastapi import FastAPI
from httpx import AsyncClient

from shortener.errors import StoreError


async def _shorten(client: AsyncClient, **body) -> dict:
    response = await client.post("/api/shorten", json=body)
    assert response.status_code == 201, response.text
    return response.json()


# ============================================================================
# CREATE AND REDIRECT
# ============================================================================


@pytest.mark.asyncio
async def test_shorten_and_redirect(client: AsyncClient) -> None:
    data = await _shorten(client, url="https://www.python.org/downloads/")

    assert len(data["short_code"]) == 7
    assert data["short_url"] == f"http://test/{data['short_code']}"
    assert data["target_url"] == "https://www.python.org/downloads/"
    assert data["is_active"] is True

    response = await client.get(f"/{data['short_code']}", follow_redirects=False)
    assert response.status_code == 302
    assert response.headers["location"] == "https://www.python.org/downloads/"


@pytest.mark.asyncio
async def test_shorten_with_custom_code(client: AsyncClient) -> None:
    data = await _shorten(client, url="https://www.github.com", custom_code="ghub")
    assert data["short_code"] == "ghub"

    response = await client.get("/ghub", follow_redirects=False)
    assert response.status_code == 302
    assert response.headers["location"] == "https://www.github.com"


@pytest.mark.asyncio
@pytest.mark.parametrize(
    "body, error",
    [
        ({"url": ""}, "invalid_url"),
        ({"url": "not a url"}, "invalid_url"),
        ({"url": "https://example.com/" + "a" * 2100}, "url_too_long"),
        ({"url": "https://example.com/payload.exe"}, "malicious_url"),
        ({"url": "https://example.com", "custom_code": "x"}, "custom_code_too_short"),
        ({"url": "https://example.com", "custom_code": "y" * 51}, "custom_code_too_long"),
        ({"url": "https://example.com", "custom_code": "no/slash"}, "invalid_custom_code"),
    ],
)
async def test_shorten_rejects_invalid_input(client: AsyncClient, body: dict, error: str) -> None:
    response = await client.post("/api/shorten", json=body)

    assert response.status_code == 400
    assert response.json()["error"] == error
    assert response.json()["code"] == 400


@pytest.mark.asyncio
async def test_shorten_conflicts(client: AsyncClient) -> None:
    await _shorten(client, url="https://example.com", custom_code="taken")

    taken = await client.post("/api/shorten", json={"url": "https://example.org", "custom_code": "taken"})
    assert taken.status_code == 409
    assert taken.json()["error"] == "code_taken"

    reserved = await client.post("/api/shorten", json={"url": "https://example.org", "custom_code": "admin"})
    assert reserved.status_code == 409
    assert reserved.json()["error"] == "reserved_code"


@pytest.mark.asyncio
@pytest.mark.parametrize("code", ["health", "metrics", "docs", "redoc"])
async def test_shorten_refuses_fixed_route_codes(client: AsyncClient, code: str) -> None:
    response = await client.post("/api/shorten", json={"url": "https://example.org", "custom_code": code})

    assert response.status_code == 409
    assert response.json()["error"] == "reserved_code"

    availability = (await client.get(f"/api/validate/{code}")).json()
    assert availability["available"] is False


@pytest.mark.asyncio
async def test_shorten_exhausted_returns_503(app: FastAPI, client: AsyncClient, monkeypatch) -> None:
    store = app.state.container.url_store
    monkeypatch.setattr(store, "exists", AsyncMock(return_value=True))

    response = await client.post("/api/shorten", json={"url": "https://example.com"})

    assert response.status_code == 503
    assert response.json()["error"] == "too_many_retries"
    assert store.exists.await_count == 5


@pytest.mark.asyncio
async def test_redirect_not_found(client: AsyncClient) -> None:
    response = await client.get("/nonexistent", follow_redirects=False)
    assert response.status_code == 404
    assert response.json()["error"] == "not_found"


@pytest.mark.asyncio
async def test_redirect_invalid_code(client: AsyncClient) -> None:
    response = await client.get("/bad!code", follow_redirects=False)
    assert response.status_code == 400
    assert response.json()["error"] == "invalid_code"


@pytest.mark.asyncio
async def test_redirect_expired(client: AsyncClient) -> None:
    data = await _shorten(client, url="https://example.com", expires_at="2020-01-01T00:00:00Z")

    response = await client.get(f"/{data['short_code']}", follow_redirects=False)

    assert response.status_code == 410
    assert response.json()["error"] == "expired"


@pytest.mark.asyncio
async def test_redirect_inactive(client: AsyncClient) -> None:
    data = await _shorten(client, url="https://example.com")

    deleted = await client.delete(f"/api/urls/{data['short_code']}")
    assert deleted.status_code == 204

    response = await client.get(f"/{data['short_code']}", follow_redirects=False)
    assert response.status_code == 403
    assert response.json()["error"] == "inactive"


@pytest.mark.asyncio
async def test_store_failure_hides_details(app: FastAPI, client: AsyncClient, monkeypatch) -> None:
    store = app.state.container.url_store
    monkeypatch.setattr(store, "get_by_code", AsyncMock(side_effect=StoreError("connection refused by 10.0.0.5")))

    response = await client.get("/abc1234", follow_redirects=False)

    assert response.status_code == 500
    assert response.json()["message"] == "Internal server error"
    assert "10.0.0.5" not in response.text


# ============================================================================
# MANAGEMENT
# ============================================================================


@pytest.mark.asyncio
async def test_url_info_counts_clicks(app: FastAPI, client: AsyncClient) -> None:
    data = await _shorten(client, url="https://example.com")
    code = data["short_code"]

    for _ in range(3):
        await client.get(f"/{code}?utm_source=test", follow_redirects=False)
    await app.state.container.recorder.join()

    response = await client.get(f"/api/urls/{code}")

    assert response.status_code == 200
    info = response.json()
    assert info["short_code"] == code
    assert info["click_count"] == 3
    assert info["last_clicked"] is not None


@pytest.mark.asyncio
async def test_do_not_track_header_skips_click(app: FastAPI, client: AsyncClient) -> None:
    data = await _shorten(client, url="https://example.com")
    code = data["short_code"]

    response = await client.get(f"/{code}", headers={"DNT": "1"}, follow_redirects=False)
    assert response.status_code == 302
    await app.state.container.recorder.join()

    info = (await client.get(f"/api/urls/{code}")).json()
    assert info["click_count"] == 0


@pytest.mark.asyncio
async def test_url_info_not_found(client: AsyncClient) -> None:
    response = await client.get("/api/urls/missing")
    assert response.status_code == 404


@pytest.mark.asyncio
async def test_update_url(client: AsyncClient) -> None:
    data = await _shorten(client, url="https://example.com")
    code = data["short_code"]

    response = await client.put(f"/api/urls/{code}", json={"target_url": "https://Example.org/"})
    assert response.status_code == 200
    assert response.json()["target_url"] == "https://example.org"

    redirect = await client.get(f"/{code}", follow_redirects=False)
    assert redirect.headers["location"] == "https://example.org"

    invalid = await client.put(f"/api/urls/{code}", json={"target_url": "javascript:alert(1)"})
    assert invalid.status_code == 400

    missing = await client.put("/api/urls/missing", json={"is_active": False})
    assert missing.status_code == 404


@pytest.mark.asyncio
async def test_delete_missing(client: AsyncClient) -> None:
    response = await client.delete("/api/urls/missing")
    assert response.status_code == 404


@pytest.mark.asyncio
async def test_list_recent_urls(client: AsyncClient) -> None:
    codes = [(await _shorten(client, url=f"https://example.com/{n}"))["short_code"] for n in range(3)]

    response = await client.get("/api/urls", params={"limit": 2})

    assert response.status_code == 200
    assert [item["short_code"] for item in response.json()] == [codes[2], codes[1]]

    too_many = await client.get("/api/urls", params={"limit": 1000})
    assert too_many.status_code == 422


@pytest.mark.asyncio
async def test_validate_code(client: AsyncClient) -> None:
    await _shorten(client, url="https://example.com", custom_code="in-use")

    free = (await client.get("/api/validate/brand-new")).json()
    assert free == {"code": "brand-new", "available": True, "reason": None}

    taken = (await client.get("/api/validate/in-use")).json()
    assert taken["available"] is False
    assert "taken" in taken["reason"]

    reserved = (await client.get("/api/validate/api")).json()
    assert reserved["available"] is False


@pytest.mark.asyncio
async def test_metrics_endpoint(client: AsyncClient) -> None:
    response = await client.get("/metrics")
    assert response.status_code == 200
    assert "shortener_" in response.text
