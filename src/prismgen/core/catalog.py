"""Built-in model catalog.

The catalog lists the generation models the application offers out of the
box. Each entry is a :class:`ModelSpec` carrying the provider-side model
reference, the capability limits adapters validate against, the per-image base
cost and the default request parameters.

A JSON file can replace the catalog (``PRISM_MODELS_FILE``). The file holds
either a list of model objects or ``{"models": [...]}``; each object uses the
field names of :meth:`ModelSpec.to_dict`.
"""

import json
import logging
from pathlib import Path

from .models import ModelCapabilities, ModelSpec

logger = logging.getLogger(__name__)

BUILTIN_MODELS: tuple[ModelSpec, ...] = (
    ModelSpec(
        id="flux-schnell",
        name="FLUX Schnell",
        provider="replicate",
        description="Fast text-to-image model, good quality in 4 steps",
        version="black-forest-labs/flux-schnell",
        cost_per_generation=0.003,
        tags=["fast", "general"],
        default_config={
            "aspect_ratio": "1:1",
            "num_outputs": 4,
            "output_format": "webp",
            "num_inference_steps": 4,
        },
        capabilities=ModelCapabilities(
            supports_aspect_ratio=True,
            max_steps=8,
            max_outputs=4,
            supported_formats=("webp", "jpg", "png"),
        ),
        optimal_max_steps=4,
        input_style="aspect_ratio",
    ),
    ModelSpec(
        id="imagen-4-ultra",
        name="Imagen 4 Ultra",
        provider="replicate",
        description="High fidelity model with strong prompt adherence",
        version="google/imagen-4-ultra",
        cost_per_generation=0.055,
        tags=["quality", "photorealistic"],
        default_config={
            "aspect_ratio": "1:1",
            "num_outputs": 1,
            "output_format": "png",
            "num_inference_steps": 28,
        },
        capabilities=ModelCapabilities(
            supports_aspect_ratio=True,
            max_steps=50,
            max_outputs=1,
            supported_formats=("jpg", "png"),
        ),
        input_style="aspect_ratio",
    ),
    ModelSpec(
        id="sdxl-lightning-4step",
        name="SDXL Lightning",
        provider="replicate",
        description="Distilled SDXL, renders 1024px images in 4 steps",
        version=(
            "bytedance/sdxl-lightning-4step:"
            "6f7a773af6fc3e8de9d5a3c00be77c17308914bf67772726aff83496ba1e3bbe"
        ),
        cost_per_generation=0.004,
        tags=["fast", "sdxl"],
        default_config={
            "aspect_ratio": "1:1",
            "num_outputs": 4,
            "output_format": "webp",
            "num_inference_steps": 4,
        },
        capabilities=ModelCapabilities(
            supports_aspect_ratio=False,
            max_steps=8,
            max_outputs=4,
            supported_formats=("webp", "jpg", "png"),
        ),
        optimal_max_steps=8,
        input_style="fixed_size",
    ),
    ModelSpec(
        id="stable-diffusion",
        name="Stable Diffusion",
        provider="replicate",
        description="Classic latent diffusion model",
        version=(
            "stability-ai/stable-diffusion:"
            "ac732df83cea7fff18b8472768c88ad041fa750ff7682a21affe81863cbe77e4"
        ),
        cost_per_generation=0.0095,
        tags=["classic"],
        default_config={
            "aspect_ratio": "1:1",
            "num_outputs": 1,
            "output_format": "png",
            "num_inference_steps": 20,
        },
        capabilities=ModelCapabilities(
            supports_aspect_ratio=False,
            max_steps=50,
            max_outputs=4,
            supported_formats=("webp", "jpg", "png"),
        ),
        input_style="fixed_size",
    ),
)


def load_models(path: Path | None = None) -> dict[str, ModelSpec]:
    """Load the model catalog keyed by model id.

    Args:
        path: Optional JSON catalog replacing the built-in models

    Returns:
        Enabled models keyed by id, in catalog order

    Raises:
        FileNotFoundError: If ``path`` is given but does not exist
        ValueError: If the file is not a list of model objects
    """
    if path is None:
        specs = list(BUILTIN_MODELS)
    else:
        with open(path, encoding="utf-8") as f:
            data = json.load(f)
        if isinstance(data, dict):
            data = data.get("models")
        if not isinstance(data, list):
            raise ValueError(f"Model catalog {path} must contain a list of models")
        specs = [ModelSpec.from_dict(entry) for entry in data]
        logger.info(f"Loaded {len(specs)} models from {path}")

    return {spec.id: spec for spec in specs if spec.enabled}
