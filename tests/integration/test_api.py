"""Integration tests for prismgen.api.main - FastAPI REST API endpoints.

All tests use the FastAPI TestClient with a registry that routes the test
model to the in-process fake adapter, so no provider is contacted.  Tests
cover every endpoint:

- ``GET /api/config`` - Configuration delivery.
- ``POST /api/validate`` and ``POST /api/estimate`` - Request checks.
- ``POST /api/generate`` - Generation, errors and quota.
- ``POST /api/generate/cancel`` and ``GET /api/generate/status``.
- ``GET /api/history`` and ``DELETE /api/history/{batch_id}``.
- ``POST /api/feedback`` - Like / dislike toggling.
- ``GET /api/adapters/status``, ``GET /api/usage``.
- ``GET /api/stats/prompts`` and ``GET /api/tags/recommended``.
"""

from __future__ import annotations

import time

import pytest
from fastapi.testclient import TestClient

from prismgen.api.main import create_app


@pytest.fixture
def app_config(test_config, models_file):
    return test_config.model_copy(update={"models_file": models_file})


@pytest.fixture
def test_client(app_config, registry):
    """TestClient running the full lifespan against the fake adapter."""
    with TestClient(create_app(app_config, registry=registry)) as client:
        yield client


def _payload(**overrides) -> dict:
    """Build a valid generate request payload with optional overrides."""
    payload = {"prompt": "a cat", "model": "fast-model", "num_outputs": 2}
    payload.update(overrides)
    return payload


def _wait_for(predicate, timeout: float = 2.0) -> None:
    """Poll until background statistics updates are visible."""
    deadline = time.monotonic() + timeout
    while not predicate() and time.monotonic() < deadline:
        time.sleep(0.02)


# ---------------------------------------------------------------------------
# Configuration endpoint tests.
# ---------------------------------------------------------------------------


@pytest.mark.integration
class TestGetConfig:
    """Test GET /api/config - application configuration."""

    def test_config_contents(self, test_client):
        resp = test_client.get("/api/config")
        assert resp.status_code == 200
        data = resp.json()
        assert data["default_model"] == "fast-model"
        assert [m["id"] for m in data["models"]] == ["fast-model"]
        assert "16:9" in data["aspect_ratios"]
        assert "webp" in data["output_formats"]
        assert set(data["tags"]) >= {"art_style", "mood", "technical"}
        assert data["quality_enhancement"]["label"] == "Quality Enhancement"


# ---------------------------------------------------------------------------
# Validation and estimate tests.
# ---------------------------------------------------------------------------


@pytest.mark.integration
class TestValidateAndEstimate:
    def test_valid_request(self, test_client):
        resp = test_client.post("/api/validate", json=_payload())
        assert resp.status_code == 200
        assert resp.json()["is_valid"] is True

    def test_invalid_steps(self, test_client):
        resp = test_client.post("/api/validate", json=_payload(num_inference_steps=50))
        data = resp.json()
        assert data["is_valid"] is False
        assert data["errors"] == ["Inference steps must be between 1 and 8"]

    def test_unknown_model_validate(self, test_client):
        resp = test_client.post("/api/validate", json=_payload(model="missing"))
        assert resp.status_code == 400

    def test_estimate(self, test_client):
        resp = test_client.post("/api/estimate", json=_payload())
        assert resp.status_code == 200
        data = resp.json()
        assert data["model"] == "fast-model"
        assert data["estimated_cost"] == pytest.approx(0.006)

    def test_unknown_model_estimate(self, test_client):
        resp = test_client.post("/api/estimate", json=_payload(model="missing"))
        assert resp.status_code == 400


# ---------------------------------------------------------------------------
# Generation endpoint tests.
# ---------------------------------------------------------------------------


@pytest.mark.integration
class TestGenerate:
    """Test POST /api/generate - image generation."""

    def test_generate_success(self, test_client):
        resp = test_client.post("/api/generate", json=_payload())
        assert resp.status_code == 200
        data = resp.json()
        assert data["success"] is True
        assert data["status"]["stage"] == "completed"
        assert data["status"]["progress"] == 100.0
        batch = data["batch"]
        assert len(batch["results"]) == 2
        assert batch["real_generation_id"] is not None
        assert data["status"]["batch_id"] == batch["id"]

    def test_generate_with_tags(self, test_client):
        payload = _payload(selected_tags={"mood": "serene"})
        batch = test_client.post("/api/generate", json=payload).json()["batch"]
        assert batch["prompt"] == "a cat, serene"
        assert batch["tags_used"][0]["category"] == "mood"

    def test_invalid_request_is_400(self, test_client):
        resp = test_client.post("/api/generate", json=_payload(num_inference_steps=50))
        assert resp.status_code == 400
        assert "Inference steps" in resp.json()["detail"]

        status = test_client.get("/api/generate/status").json()
        assert status["stage"] == "error"

    def test_missing_prompt_is_422(self, test_client):
        resp = test_client.post("/api/generate", json={"model": "fast-model"})
        assert resp.status_code == 422

    def test_quota_exhausted(self, app_config, registry):
        cfg = app_config.model_copy(update={"session_limit": 1})
        with TestClient(create_app(cfg, registry=registry)) as client:
            assert client.post("/api/generate", json=_payload()).status_code == 200
            resp = client.post("/api/generate", json=_payload())
            assert resp.status_code == 400
            assert "Session generation limit reached" in resp.json()["detail"]

            usage = client.get("/api/usage").json()
            assert usage["allowed"] is False
            assert usage["usage"]["session"]["used"] == 1

    def test_cancel_when_idle(self, test_client):
        resp = test_client.post("/api/generate/cancel")
        assert resp.status_code == 200
        assert resp.json()["cancelled"] is False
        assert resp.json()["status"]["stage"] == "idle"

    def test_status_initially_idle(self, test_client):
        data = test_client.get("/api/generate/status").json()
        assert data["stage"] == "idle"
        assert data["progress"] == 0.0
        assert data["error"] is None


# ---------------------------------------------------------------------------
# History and feedback tests.
# ---------------------------------------------------------------------------


@pytest.mark.integration
class TestHistory:
    def test_history_newest_first(self, test_client):
        test_client.post("/api/generate", json=_payload(prompt="first"))
        test_client.post("/api/generate", json=_payload(prompt="second"))

        data = test_client.get("/api/history").json()
        assert data["total"] == 2
        assert [b["prompt"] for b in data["batches"]] == ["second", "first"]

        limited = test_client.get("/api/history", params={"limit": 1}).json()
        assert len(limited["batches"]) == 1

    def test_delete_batch(self, test_client):
        batch_id = test_client.post("/api/generate", json=_payload()).json()["batch"]["id"]

        assert test_client.delete(f"/api/history/{batch_id}").status_code == 200
        assert test_client.get("/api/history").json()["total"] == 0
        assert test_client.delete(f"/api/history/{batch_id}").status_code == 404


@pytest.mark.integration
class TestFeedback:
    def test_like_then_toggle_off(self, test_client):
        batch_id = test_client.post("/api/generate", json=_payload()).json()["batch"]["id"]
        like = {"batch_id": batch_id, "feedback_type": "like"}

        resp = test_client.post("/api/feedback", json=like)
        assert resp.status_code == 200
        assert resp.json()["feedback_type"] == "like"

        batch = test_client.get("/api/history").json()["batches"][0]
        assert batch["feedback_type"] == "like"
        assert all(r["feedback"]["type"] == "like" for r in batch["results"])

        resp = test_client.post("/api/feedback", json=like)
        assert resp.json()["feedback_type"] is None

    def test_unknown_batch(self, test_client):
        resp = test_client.post("/api/feedback", json={"batch_id": "nope", "feedback_type": "like"})
        assert resp.status_code == 404

    def test_bad_type_is_422(self, test_client):
        resp = test_client.post("/api/feedback", json={"batch_id": "nope", "feedback_type": "love"})
        assert resp.status_code == 422


# ---------------------------------------------------------------------------
# Status and statistics tests.
# ---------------------------------------------------------------------------


@pytest.mark.integration
class TestStatusAndStats:
    def test_adapters_status(self, test_client):
        data = test_client.get("/api/adapters/status").json()
        assert data["adapters"] == {}
        assert "fake" in data["registered"]

        test_client.post("/api/generate", json=_payload())
        data = test_client.get("/api/adapters/status").json()
        assert data["adapters"]["fast-model"]["is_available"] is True

    def test_usage(self, test_client):
        data = test_client.get("/api/usage").json()
        assert data["enabled"] is True
        assert data["allowed"] is True
        assert data["usage"]["daily"]["limit"] == 100

    def test_popular_prompts_and_tags(self, test_client):
        test_client.post("/api/generate", json=_payload(selected_tags={"mood": "serene"}))
        test_client.post("/api/generate", json=_payload(selected_tags={"mood": "serene"}))

        def counted_twice() -> bool:
            prompts = test_client.get("/api/stats/prompts").json()["prompts"]
            return bool(prompts) and prompts[0]["usage_count"] == 2

        _wait_for(counted_twice)
        prompts = test_client.get("/api/stats/prompts").json()["prompts"]
        assert prompts[0]["prompt_text"] == "a cat, serene"
        assert prompts[0]["usage_count"] == 2

        def recommended() -> list:
            return test_client.get(
                "/api/tags/recommended", params={"category": "mood"}
            ).json()["recommendations"]

        _wait_for(lambda: bool(recommended()) and recommended()[0]["tag"]["usage_count"] == 2)
        recommendations = recommended()
        assert recommendations[0]["tag"]["category"] == "mood"

        excluded = test_client.get(
            "/api/tags/recommended",
            params={"exclude": [recommendations[0]["tag"]["tag_name"]]},
        ).json()["recommendations"]
        assert excluded == []
