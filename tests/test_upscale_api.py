"""HTTP tests for the upscale, credits and models endpoints."""

import pytest
from httpx import AsyncClient

from imagegate.gateway.provider import ProviderError
from imagegate.gateway.types import ProviderErrorKind

IMAGE = "A" * 200


def _guest_body(**overrides) -> dict:
    body = {"imageData": IMAGE, "mimeType": "image/png", "visitorId": "visitor-000001"}
    body.update(overrides)
    return body


def _upscale_body(**config) -> dict:
    return {"imageData": IMAGE, "mimeType": "image/png", "config": {"mode": "upscale", **config}}


def _user(user_id: str = "user-1", tier: str = "free") -> dict[str, str]:
    return {"X-User-Id": user_id, "X-Subscription-Tier": tier}


class TestGuestEndpoint:
    @pytest.mark.asyncio
    async def test_success(self, client: AsyncClient):
        resp = await client.post(
            "/api/v1/upscale/guest", json=_guest_body(), headers={"cf-connecting-ip": "203.0.113.7"}
        )
        assert resp.status_code == 200
        data = resp.json()
        assert data["success"] is True
        assert data["imageUrl"].startswith("https://")
        assert data["mimeType"] == "image/png"
        assert data["expiresAt"] > 0
        assert data["processing"]["modelUsed"] == "real-esrgan"
        assert data["processing"]["scale"] == 2

    @pytest.mark.asyncio
    async def test_validation_envelope(self, client: AsyncClient):
        resp = await client.post("/api/v1/upscale/guest", json=_guest_body(visitorId="short"))
        assert resp.status_code == 400
        data = resp.json()
        assert data["success"] is False
        assert data["error"]["code"] == "VALIDATION_ERROR"
        assert data["error"]["details"]["errors"][0]["field"] == "visitorId"

    @pytest.mark.asyncio
    async def test_unsupported_mime_type(self, client: AsyncClient):
        resp = await client.post("/api/v1/upscale/guest", json=_guest_body(mimeType="image/gif"))
        assert resp.status_code == 400

    @pytest.mark.asyncio
    async def test_hourly_limit_per_ip(self, client: AsyncClient):
        headers = {"x-forwarded-for": "198.51.100.9, 10.0.0.1"}
        for _ in range(10):
            resp = await client.post("/api/v1/upscale/guest", json=_guest_body(), headers=headers)
            assert resp.status_code == 200

        resp = await client.post("/api/v1/upscale/guest", json=_guest_body(), headers=headers)

        assert resp.status_code == 429
        error = resp.json()["error"]
        assert error["code"] == "RATE_LIMITED"
        assert error["details"] == {"reason": "IP_LIMIT", "upgradeUrl": "/?signup=1"}

    @pytest.mark.asyncio
    async def test_provider_failure_is_generic(self, client: AsyncClient, provider, admission):
        provider.outcomes = [ProviderError("CUDA out of memory")]

        resp = await client.post("/api/v1/upscale/guest", json=_guest_body())

        assert resp.status_code == 500
        assert resp.json()["error"] == {
            "code": "PROCESSING_FAILED",
            "message": "Processing failed. Please try again.",
        }
        assert (await admission.global_usage())["count"] == 0

    @pytest.mark.asyncio
    async def test_usage(self, client: AsyncClient):
        await client.post("/api/v1/upscale/guest", json=_guest_body())
        resp = await client.get("/api/v1/upscale/guest/usage")
        assert resp.json() == {"count": 1, "limit": 500}


class TestUpscaleEndpoint:
    @pytest.mark.asyncio
    async def test_requires_identity(self, client: AsyncClient):
        resp = await client.post("/api/v1/upscale", json=_upscale_body())
        assert resp.status_code == 401
        assert resp.json()["error"]["code"] == "UNAUTHORIZED"

    @pytest.mark.asyncio
    async def test_success(self, client: AsyncClient, credit_store):
        await credit_store.open_account("user-1", initial_balance=10)

        resp = await client.post("/api/v1/upscale", json=_upscale_body(), headers=_user())

        assert resp.status_code == 200
        data = resp.json()
        assert data["imageData"].startswith("https://")
        assert data["creditsRemaining"] == 9
        assert "X-Correlation-ID" in resp.headers

    @pytest.mark.asyncio
    async def test_insufficient_credits(self, client: AsyncClient, credit_store, provider):
        await credit_store.open_account("user-1", initial_balance=1)

        resp = await client.post("/api/v1/upscale", json=_upscale_body(mode="enhance"), headers=_user())

        assert resp.status_code == 402
        error = resp.json()["error"]
        assert error["code"] == "INSUFFICIENT_CREDITS"
        assert error["details"]["required"] == 2
        assert provider.calls == []

    @pytest.mark.asyncio
    async def test_tier_gate(self, client: AsyncClient, credit_store):
        await credit_store.open_account("user-1", initial_balance=50)

        resp = await client.post("/api/v1/upscale", json=_upscale_body(modelId="flux-2-pro"), headers=_user())
        assert resp.status_code == 403

        resp = await client.post(
            "/api/v1/upscale", json=_upscale_body(modelId="flux-2-pro"), headers=_user(tier="hobby")
        )
        assert resp.status_code == 200
        assert resp.json()["creditsRemaining"] == 42

    @pytest.mark.asyncio
    async def test_unknown_model_is_a_validation_error(self, client: AsyncClient, credit_store, ledger, provider):
        await credit_store.open_account("user-1", initial_balance=5)

        resp = await client.post("/api/v1/upscale", json=_upscale_body(modelId="nope"), headers=_user())

        assert resp.status_code == 400
        error = resp.json()["error"]
        assert error["code"] == "VALIDATION_ERROR"
        assert "Model not configured" not in resp.text
        assert error["details"]["errors"][0]["field"] == "config.modelId"
        assert await ledger.get_balance("user-1") == 5
        assert (await ledger.get_history("user-1"))[1] == 0
        assert provider.calls == []

    @pytest.mark.asyncio
    async def test_safety_rejection(self, client: AsyncClient, credit_store, provider):
        await credit_store.open_account("user-1", initial_balance=3)
        provider.outcomes = [ProviderError("NSFW content detected", kind=ProviderErrorKind.SAFETY)]

        resp = await client.post("/api/v1/upscale", json=_upscale_body(), headers=_user())

        assert resp.status_code == 422
        assert resp.json()["error"]["code"] == "INVALID_REQUEST"
        balance = await client.get("/api/v1/credits/balance", headers=_user())
        assert balance.json() == {"balance": 3}

    @pytest.mark.asyncio
    async def test_per_user_rate_limit(self, client: AsyncClient, credit_store):
        await credit_store.open_account("user-1", initial_balance=20)
        await credit_store.open_account("user-2", initial_balance=20)

        for _ in range(5):
            resp = await client.post("/api/v1/upscale", json=_upscale_body(), headers=_user())
            assert resp.status_code == 200

        resp = await client.post("/api/v1/upscale", json=_upscale_body(), headers=_user())
        assert resp.status_code == 429
        assert resp.json()["error"]["code"] == "RATE_LIMITED"

        other = await client.post("/api/v1/upscale", json=_upscale_body(), headers=_user("user-2"))
        assert other.status_code == 200


class TestCreditsEndpoints:
    @pytest.mark.asyncio
    async def test_balance_and_history(self, client: AsyncClient, credit_store, ledger):
        await credit_store.open_account("user-1", initial_balance=5)
        await ledger.adjust("user-1", -1, "upscale:real-esrgan")
        await ledger.adjust("user-1", 3, "purchase:pack-s")

        balance = await client.get("/api/v1/credits/balance", headers=_user())
        history = await client.get("/api/v1/credits/history?limit=1", headers=_user())

        assert balance.json() == {"balance": 7}
        data = history.json()
        assert data["total"] == 2
        assert data["limit"] == 1
        assert data["items"][0]["reason"] == "purchase:pack-s"
        assert data["items"][0]["balanceAfter"] == 7

    @pytest.mark.asyncio
    async def test_unknown_account(self, client: AsyncClient):
        resp = await client.get("/api/v1/credits/balance", headers=_user("nobody"))
        assert resp.status_code == 404
        assert resp.json()["error"]["code"] == "NOT_FOUND"


class TestModelsEndpoint:
    @pytest.mark.asyncio
    async def test_free_tier_view(self, client: AsyncClient):
        resp = await client.get("/api/v1/models")
        data = resp.json()
        assert data["tier"] == "free"
        accessible = {m["id"] for m in data["items"] if m["accessible"]}
        assert accessible == {"real-esrgan", "gfpgan"}

    @pytest.mark.asyncio
    async def test_hobby_tier_view(self, client: AsyncClient):
        resp = await client.get("/api/v1/models", headers={"X-Subscription-Tier": "hobby"})
        assert all(m["accessible"] for m in resp.json()["items"])


class TestMetrics:
    @pytest.mark.asyncio
    async def test_metrics_exposed(self, client: AsyncClient):
        await client.post("/api/v1/upscale/guest", json=_guest_body())
        resp = await client.get("/metrics")
        assert resp.status_code == 200
        assert "guest_admission_decisions_total" in resp.text
