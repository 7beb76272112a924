"""Replicate provider adapter.

Generates images through the Replicate HTTP API:

1. Create a prediction. Pinned versions (``owner/name:hash``) go to
   ``POST /v1/predictions`` with ``{"version": ..., "input": ...}``; bare model
   references go to ``POST /v1/models/{owner}/{name}/predictions``.
2. Poll ``GET /v1/predictions/{id}`` every ``poll_interval`` seconds until the
   prediction succeeds, fails, is canceled or ``max_poll_attempts`` is reached.
3. Turn the output (a list of URLs, or a single URL for single-image models)
   into one :class:`GenerationResult` per image.

Provider URLs are ephemeral; the asset persistence pipeline migrates them to
durable storage after generation.

Input Shapes
------------
- ``aspect_ratio`` models (FLUX, Imagen) take the ratio directly
- ``fixed_size`` models (SDXL Lightning, Stable Diffusion) render 1024x1024
  and take scheduler and guidance parameters instead
"""

import asyncio
import logging
import random
import time
import uuid
from typing import Any

import httpx

from ..config import PrismConfig
from ..errors import ProviderFailure
from ..model_adapters import ProviderAdapter, measure_latency
from ..models import AdapterStatus, GenerationConfig, GenerationResult, ModelSpec, utcnow

logger = logging.getLogger(__name__)

FIXED_SIZE = 1024
DEFAULT_NEGATIVE_PROMPT = "worst quality, low quality"
TERMINAL_FAILURES = ("failed", "canceled")


class ReplicateAdapter(ProviderAdapter):
    """Adapter for models hosted on Replicate.

    Attributes
    ----------
    client : httpx.AsyncClient
        HTTP client bound to the Replicate base URL

    Notes
    -----
    - Without an API token the adapter reports ``is_configured=False`` and
      ``initialize`` fails, so the registry never caches it
    - Cancellation stops polling locally; the remote prediction is left to
      finish on its own
    """

    adapter_id = "replicate"
    name = "Replicate API Adapter"
    version = "1.0.0"
    description = "Replicate platform adapter for FLUX, Imagen, SDXL and Stable Diffusion"
    homepage = "https://replicate.com"
    supported_features = (
        "text-to-image",
        "aspect-ratio-control",
        "batch-generation",
        "negative-prompts",
        "format-selection",
        "step-control",
    )
    required_config = ("replicate_api_token",)

    def __init__(
        self,
        model: ModelSpec,
        config: PrismConfig,
        transport: httpx.AsyncBaseTransport | None = None,
    ) -> None:
        """Initialize the adapter.

        Args:
            model: Model this adapter generates with
            config: Application configuration (token, base URL, polling)
            transport: Optional httpx transport, used by tests
        """
        super().__init__(model, config)
        headers = {"Content-Type": "application/json"}
        if config.replicate_api_token:
            headers["Authorization"] = f"Bearer {config.replicate_api_token}"

        self.client = httpx.AsyncClient(
            base_url=config.replicate_base_url,
            headers=headers,
            timeout=config.request_timeout,
            transport=transport,
        )

    @property
    def is_configured(self) -> bool:
        return bool(self.config.replicate_api_token)

    async def initialize(self) -> None:
        """Check connectivity before the adapter is used.

        Raises
        ------
        ProviderFailure
            If the API is not configured or not reachable
        """
        status = await self.get_status()
        if not status.is_available:
            raise ProviderFailure(status.last_error or "Replicate API is not available")

    async def get_status(self) -> AdapterStatus:
        """Query the account endpoint and report latency.

        Returns
        -------
        AdapterStatus
            Unavailable when no token is configured or the check fails
        """
        if not self.is_configured:
            return AdapterStatus(
                is_available=False,
                is_configured=False,
                last_error="Replicate API token is not configured",
            )

        start = time.perf_counter()
        try:
            response = await self.client.get("/v1/account")
        except httpx.HTTPError as e:
            return AdapterStatus(
                is_available=False,
                is_configured=True,
                last_error=f"Replicate API unreachable: {e}",
            )

        latency = measure_latency(start)
        if response.status_code != 200:
            return AdapterStatus(
                is_available=False,
                is_configured=True,
                last_error=f"Replicate API returned {response.status_code}",
                latency_ms=latency,
            )
        return AdapterStatus(is_available=True, is_configured=True, latency_ms=latency)

    def build_input(self, config: GenerationConfig) -> dict[str, Any]:
        """Build the Replicate ``input`` payload for this model."""
        steps = min(config.num_inference_steps, self.model.capabilities.max_steps)

        if self.model.input_style == "fixed_size":
            payload: dict[str, Any] = {
                "prompt": config.prompt,
                "width": FIXED_SIZE,
                "height": FIXED_SIZE,
                "num_outputs": config.num_outputs,
                "num_inference_steps": steps,
                "scheduler": "K_EULER",
            }
            if self.model.id.startswith("sdxl-lightning"):
                payload["guidance_scale"] = 0
                payload["negative_prompt"] = config.negative_prompt or DEFAULT_NEGATIVE_PROMPT
                payload["seed"] = (
                    config.seed if config.seed is not None else random.randint(0, 999_999)
                )
            else:
                payload["guidance_scale"] = 7.5
                payload["output_format"] = config.output_format
                if config.negative_prompt:
                    payload["negative_prompt"] = config.negative_prompt
                if config.seed is not None:
                    payload["seed"] = config.seed
            return payload

        payload = {
            "prompt": config.prompt,
            "num_outputs": config.num_outputs,
            "output_format": config.output_format,
            "num_inference_steps": steps,
            "aspect_ratio": config.aspect_ratio,
        }
        if config.seed is not None:
            payload["seed"] = config.seed
        if config.negative_prompt:
            payload["negative_prompt"] = config.negative_prompt
        return payload

    async def _create_prediction(self, payload: dict[str, Any]) -> dict[str, Any]:
        reference = self.model.version or self.model.id
        if ":" in reference:
            response = await self.client.post(
                "/v1/predictions", json={"version": reference, "input": payload}
            )
        else:
            response = await self.client.post(
                f"/v1/models/{reference}/predictions", json={"input": payload}
            )

        if response.status_code not in (200, 201):
            raise ProviderFailure(
                f"Failed to create prediction ({response.status_code}): {response.text}",
                status_code=response.status_code,
            )
        return response.json()

    async def _poll_prediction(self, prediction: dict[str, Any]) -> dict[str, Any]:
        prediction_id = prediction.get("id")
        if prediction.get("status") == "succeeded":
            return prediction
        if not prediction_id:
            raise ProviderFailure("Replicate response is missing a prediction id")

        for attempt in range(1, self.config.max_poll_attempts + 1):
            await asyncio.sleep(self.config.poll_interval)
            response = await self.client.get(f"/v1/predictions/{prediction_id}")
            if response.status_code != 200:
                raise ProviderFailure(
                    f"Polling failed ({response.status_code})",
                    status_code=response.status_code,
                )

            prediction = response.json()
            status = prediction.get("status")
            logger.debug(f"Poll {attempt}/{self.config.max_poll_attempts}: {status}")

            if status == "succeeded":
                return prediction
            if status in TERMINAL_FAILURES:
                error = prediction.get("error") or "unknown error"
                raise ProviderFailure(f"Prediction {status}: {error}")

        raise ProviderFailure("Generation timed out waiting for Replicate")

    @staticmethod
    def extract_urls(output: Any) -> list[str]:
        """Normalize prediction output to a list of image URLs."""
        if isinstance(output, list):
            urls = [url for url in output if isinstance(url, str) and url]
        elif isinstance(output, str) and output.strip():
            urls = [output]
        else:
            raise ProviderFailure("Replicate returned no usable image output")

        if not urls:
            raise ProviderFailure("Replicate returned no images")
        return urls

    async def _generate(self, config: GenerationConfig) -> list[GenerationResult]:
        logger.info(
            f"Creating Replicate prediction for {self.model.id} "
            f"({config.num_outputs} outputs, {config.num_inference_steps} steps)"
        )
        prediction = await self._create_prediction(self.build_input(config))
        prediction = await self._poll_prediction(prediction)
        urls = self.extract_urls(prediction.get("output"))

        created_at = utcnow()
        base_id = uuid.uuid4().hex[:12]
        logger.info(f"Replicate returned {len(urls)} images for {self.model.id}")

        return [
            GenerationResult(
                id=f"{base_id}-{index}",
                image_url=url,
                prompt=config.prompt,
                config=config.copy(),
                created_at=created_at,
                status="completed",
                metadata={"prediction_id": prediction.get("id")},
            )
            for index, url in enumerate(urls)
        ]

    async def close(self) -> None:
        await self.client.aclose()
