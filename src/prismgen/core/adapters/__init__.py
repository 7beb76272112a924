"""Built-in provider adapters."""

from ..model_adapters import AdapterRegistry
from .replicate import ReplicateAdapter

BUILTIN_ADAPTERS = (ReplicateAdapter,)


def register_builtin_adapters(registry: AdapterRegistry) -> None:
    """Register every built-in adapter class with ``registry``."""
    for adapter_class in BUILTIN_ADAPTERS:
        registry.register(
            adapter_class.adapter_id,
            adapter_class,
            adapter_class.describe(),
            built_in=True,
        )


__all__ = ["BUILTIN_ADAPTERS", "ReplicateAdapter", "register_builtin_adapters"]
