"""Tests for the Replicate adapter.

Uses anyio for async test support and ``httpx.MockTransport`` in place of the
Replicate API.
"""

from __future__ import annotations

import json

import httpx
import pytest

from prismgen.core.adapters.replicate import DEFAULT_NEGATIVE_PROMPT, ReplicateAdapter
from prismgen.core.catalog import load_models
from prismgen.core.config import PrismConfig
from prismgen.core.errors import ProviderFailure
from prismgen.core.models import GenerationConfig

MODELS = load_models()


@pytest.fixture
def replicate_config(test_config: PrismConfig) -> PrismConfig:
    return test_config.model_copy(
        update={"replicate_api_token": "r8_test", "replicate_base_url": "https://replicate.test"}
    )


def make_adapter(model_id, cfg, handler) -> ReplicateAdapter:
    return ReplicateAdapter(MODELS[model_id], cfg, transport=httpx.MockTransport(handler))


def flux_config(**changes) -> GenerationConfig:
    values = dict(prompt="a cat", model="flux-schnell", num_outputs=2, num_inference_steps=4)
    values.update(changes)
    return GenerationConfig(**values)


@pytest.mark.unit
class TestStatus:
    @pytest.mark.anyio
    async def test_not_configured_without_token(self, test_config):
        def handler(request: httpx.Request) -> httpx.Response:
            raise AssertionError("no request expected")

        adapter = make_adapter("flux-schnell", test_config, handler)
        status = await adapter.get_status()
        assert status.is_configured is False
        assert status.is_available is False
        with pytest.raises(ProviderFailure, match="not configured"):
            await adapter.initialize()
        await adapter.close()

    @pytest.mark.anyio
    async def test_available_with_latency(self, replicate_config):
        seen = {}

        def handler(request: httpx.Request) -> httpx.Response:
            seen["auth"] = request.headers.get("authorization")
            assert request.url.path == "/v1/account"
            return httpx.Response(200, json={"username": "prism"})

        adapter = make_adapter("flux-schnell", replicate_config, handler)
        status = await adapter.get_status()
        assert status.is_available
        assert status.latency_ms is not None
        assert seen["auth"] == "Bearer r8_test"
        await adapter.close()

    @pytest.mark.anyio
    async def test_unauthorized_is_unavailable(self, replicate_config):
        def handler(request: httpx.Request) -> httpx.Response:
            return httpx.Response(401, json={"detail": "Unauthenticated"})

        adapter = make_adapter("flux-schnell", replicate_config, handler)
        status = await adapter.get_status()
        assert status.is_available is False
        assert status.last_error == "Replicate API returned 401"
        await adapter.close()

    @pytest.mark.anyio
    async def test_transport_error_is_unavailable(self, replicate_config):
        def handler(request: httpx.Request) -> httpx.Response:
            raise httpx.ConnectError("refused", request=request)

        adapter = make_adapter("flux-schnell", replicate_config, handler)
        status = await adapter.get_status()
        assert status.is_available is False
        assert "unreachable" in status.last_error
        await adapter.close()


@pytest.mark.unit
class TestBuildInput:
    def test_aspect_ratio_model(self, replicate_config):
        adapter = ReplicateAdapter(MODELS["flux-schnell"], replicate_config)
        payload = adapter.build_input(flux_config(aspect_ratio="16:9", seed=7))
        assert payload == {
            "prompt": "a cat",
            "num_outputs": 2,
            "output_format": "webp",
            "num_inference_steps": 4,
            "aspect_ratio": "16:9",
            "seed": 7,
        }

    def test_sdxl_lightning_defaults(self, replicate_config):
        adapter = ReplicateAdapter(MODELS["sdxl-lightning-4step"], replicate_config)
        payload = adapter.build_input(flux_config(model="sdxl-lightning-4step"))
        assert payload["width"] == payload["height"] == 1024
        assert payload["guidance_scale"] == 0
        assert payload["negative_prompt"] == DEFAULT_NEGATIVE_PROMPT
        assert 0 <= payload["seed"] <= 999_999
        assert "aspect_ratio" not in payload

    def test_stable_diffusion_guidance(self, replicate_config):
        adapter = ReplicateAdapter(MODELS["stable-diffusion"], replicate_config)
        payload = adapter.build_input(
            flux_config(model="stable-diffusion", num_inference_steps=20, output_format="png")
        )
        assert payload["guidance_scale"] == 7.5
        assert payload["output_format"] == "png"
        assert payload["scheduler"] == "K_EULER"
        assert "seed" not in payload


@pytest.mark.unit
class TestExtractUrls:
    def test_list_output(self):
        assert ReplicateAdapter.extract_urls(["u1", "", "u2"]) == ["u1", "u2"]

    def test_single_url_output(self):
        assert ReplicateAdapter.extract_urls("https://x.test/a.png") == ["https://x.test/a.png"]

    @pytest.mark.parametrize("output", [None, [], "  ", {"url": "x"}])
    def test_unusable_output(self, output):
        with pytest.raises(ProviderFailure):
            ReplicateAdapter.extract_urls(output)


@pytest.mark.unit
class TestGenerate:
    @pytest.mark.anyio
    async def test_model_endpoint_then_poll(self, replicate_config):
        requests = []

        def handler(request: httpx.Request) -> httpx.Response:
            requests.append((request.method, request.url.path))
            if request.method == "POST":
                body = json.loads(request.content)
                assert body["input"]["prompt"] == "a cat"
                return httpx.Response(201, json={"id": "p1", "status": "starting"})
            output = ["https://r.test/0.webp", "https://r.test/1.webp"]
            return httpx.Response(200, json={"id": "p1", "status": "succeeded", "output": output})

        adapter = make_adapter("flux-schnell", replicate_config, handler)
        results = await adapter.generate(flux_config())

        assert requests == [
            ("POST", "/v1/models/black-forest-labs/flux-schnell/predictions"),
            ("GET", "/v1/predictions/p1"),
        ]
        assert [r.image_url for r in results] == ["https://r.test/0.webp", "https://r.test/1.webp"]
        assert results[0].metadata["prediction_id"] == "p1"
        assert results[0].metadata["adapter"] == "replicate"
        await adapter.close()

    @pytest.mark.anyio
    async def test_pinned_version_uses_predictions_endpoint(self, replicate_config):
        bodies = []

        def handler(request: httpx.Request) -> httpx.Response:
            bodies.append((request.url.path, json.loads(request.content)))
            return httpx.Response(
                201, json={"id": "p2", "status": "succeeded", "output": ["https://r.test/sd.png"]}
            )

        adapter = make_adapter("stable-diffusion", replicate_config, handler)
        results = await adapter.generate(
            flux_config(model="stable-diffusion", num_outputs=1, num_inference_steps=20)
        )

        path, body = bodies[0]
        assert path == "/v1/predictions"
        assert body["version"] == MODELS["stable-diffusion"].version
        assert len(results) == 1
        await adapter.close()

    @pytest.mark.anyio
    async def test_failed_prediction(self, replicate_config):
        def handler(request: httpx.Request) -> httpx.Response:
            if request.method == "POST":
                return httpx.Response(201, json={"id": "p3", "status": "starting"})
            return httpx.Response(200, json={"id": "p3", "status": "failed", "error": "NSFW"})

        adapter = make_adapter("flux-schnell", replicate_config, handler)
        with pytest.raises(ProviderFailure, match="NSFW"):
            await adapter.generate(flux_config())
        await adapter.close()

    @pytest.mark.anyio
    async def test_create_rejected(self, replicate_config):
        def handler(request: httpx.Request) -> httpx.Response:
            return httpx.Response(422, json={"detail": "invalid input"})

        adapter = make_adapter("flux-schnell", replicate_config, handler)
        with pytest.raises(ProviderFailure) as exc_info:
            await adapter.generate(flux_config())
        assert exc_info.value.status_code == 422
        await adapter.close()

    @pytest.mark.anyio
    async def test_poll_timeout(self, replicate_config):
        def handler(request: httpx.Request) -> httpx.Response:
            status_code = 201 if request.method == "POST" else 200
            return httpx.Response(status_code, json={"id": "p4", "status": "processing"})

        adapter = make_adapter("flux-schnell", replicate_config, handler)
        with pytest.raises(ProviderFailure, match="timed out"):
            await adapter.generate(flux_config())
        await adapter.close()
