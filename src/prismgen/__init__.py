"""Prism Image Generator - prompt-to-image generation over pluggable providers."""

__version__ = "0.3.0"

from prismgen.core.config import PrismConfig, config
from prismgen.core.model_adapters import AdapterRegistry, ProviderAdapter

__all__ = [
    "AdapterRegistry",
    "ProviderAdapter",
    "PrismConfig",
    "config",
]
