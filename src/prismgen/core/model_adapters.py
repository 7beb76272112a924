"""Provider adapter interface and registry.

This module provides the foundation for supporting multiple image-generation
providers in Prism. Each provider (Replicate, or a plugin) has its own adapter
that implements a common interface while handling provider-specific
requirements.

Provider Adapter Pattern
------------------------
The orchestrator talks to every backend through :class:`ProviderAdapter`. An
adapter instance is bound to one :class:`ModelSpec` and encapsulates:

- Validation of a :class:`GenerationConfig` against the model's capabilities
- Provider-specific clamping of parameters (after validation)
- The network call itself, which is the only cancellable step
- Result post-processing (metadata tagging)
- Health reporting and cost estimation

Subclasses implement :meth:`ProviderAdapter.initialize`,
:meth:`ProviderAdapter.get_status` and :meth:`ProviderAdapter._generate`.
Everything else has a working default.

Registry
--------
:class:`AdapterRegistry` maps adapter ids to factories and model ids to live
adapter instances. Instances are created lazily by
:meth:`AdapterRegistry.create_adapter`; creation for one model id is a
critical section, so concurrent callers share a single instance.

Usage Example
-------------
    >>> registry = AdapterRegistry(config)
    >>> register_builtin_adapters(registry)
    >>> adapter = await registry.create_adapter(models["flux-schnell"])
    >>> result = adapter.validate(GenerationConfig(prompt="a cat", model="flux-schnell"))
    >>> images = await adapter.generate(config)

Plugins
-------
Extra adapters are registered at runtime with
``registry.load_adapter_plugin("my_package.adapters:MyAdapter")``. Plugin
registrations can be removed again; built-in registrations cannot.
"""

import asyncio
import importlib
import logging
import time
from abc import ABC, abstractmethod
from collections.abc import Callable
from dataclasses import dataclass
from typing import Any

from .config import PrismConfig
from .errors import (
    GenerationCancelledError,
    GenerationError,
    GenerationInProgressError,
    ProviderFailure,
    ValidationError,
)
from .models import (
    ASPECT_RATIOS,
    MAX_PROMPT_LENGTH,
    AdapterMetadata,
    AdapterStatus,
    GenerationConfig,
    GenerationResult,
    ModelSpec,
    ValidationResult,
    utcnow,
)

logger = logging.getLogger(__name__)

# Step count above which multi-image requests get a slowness warning
SLOW_STEPS_THRESHOLD = 25
SLOW_OUTPUTS_THRESHOLD = 2


class ProviderAdapter(ABC):
    """Abstract base class for all provider adapters.

    Adapters provide a unified interface for different generation backends,
    handling provider-specific requirements and parameters while presenting a
    consistent API to the orchestrator.

    Attributes
    ----------
    adapter_id : str
        Registry id of the adapter implementation (e.g., "replicate")
    name : str
        Human-readable adapter name
    supported_features : tuple[str, ...]
        Feature flags queried through :meth:`supports_feature`
    model : ModelSpec
        The model this instance generates with
    config : PrismConfig
        Application configuration

    Notes
    -----
    - ``validate`` is pure and synchronous; ``generate`` re-validates and never
      reaches the provider with an invalid config
    - Clamping happens in ``preprocess_config``, strictly after validation
    - ``cancel`` is synchronous and idempotent
    - Any exception escaping ``_generate`` that is not already a
      :class:`GenerationError` is wrapped in :class:`ProviderFailure`
    """

    adapter_id: str = "base"
    name: str = "Base Provider Adapter"
    version: str = "1.0.0"
    description: str = "Base class for provider adapters"
    author: str = "Prism"
    homepage: str | None = None
    supported_features: tuple[str, ...] = ()
    required_config: tuple[str, ...] = ()

    def __init__(self, model: ModelSpec, config: PrismConfig) -> None:
        """Initialize the adapter.

        Args:
            model: Model this adapter instance generates with
            config: Application configuration
        """
        self.model = model
        self.config = config
        self._inflight: asyncio.Future | None = None

        logger.info(f"Initialized {self.name} for model {model.id}")

    @classmethod
    def describe(cls) -> AdapterMetadata:
        """Metadata of the adapter implementation, available without an instance."""
        return AdapterMetadata(
            id=cls.adapter_id,
            name=cls.name,
            version=cls.version,
            description=cls.description,
            author=cls.author,
            homepage=cls.homepage,
            supported_features=list(cls.supported_features),
            required_config=list(cls.required_config),
        )

    def get_metadata(self) -> AdapterMetadata:
        """Get metadata about this adapter.

        Returns
        -------
        AdapterMetadata
            Id, name, version and supported features
        """
        return self.describe()

    @abstractmethod
    async def initialize(self) -> None:
        """Prepare the adapter for use.

        Called once by the registry before the instance is cached.

        Raises
        ------
        Exception
            If the adapter cannot be used (missing credentials, provider down)
        """
        pass

    @abstractmethod
    async def get_status(self) -> AdapterStatus:
        """Report adapter health.

        Performs at most a cheap connectivity check.

        Returns
        -------
        AdapterStatus
            Availability, configuration state, last error and latency
        """
        pass

    @abstractmethod
    async def _generate(self, config: GenerationConfig) -> list[GenerationResult]:
        """Run the provider call for an already validated and clamped config.

        Returns
        -------
        list[GenerationResult]
            One result per generated image
        """
        pass

    def validate(self, config: GenerationConfig) -> ValidationResult:
        """Validate a generation config against this model's capabilities.

        Args:
            config: Generation config to check

        Returns
        -------
        ValidationResult
            Blocking errors and advisory warnings
        """
        errors: list[str] = []
        caps = self.model.capabilities

        prompt = config.prompt or ""
        if not prompt.strip():
            errors.append("Prompt cannot be empty")
        elif len(prompt) > MAX_PROMPT_LENGTH:
            errors.append(f"Prompt cannot exceed {MAX_PROMPT_LENGTH} characters")

        if not 1 <= config.num_outputs <= caps.max_outputs:
            errors.append(f"Number of outputs must be between 1 and {caps.max_outputs}")

        if not 1 <= config.num_inference_steps <= caps.max_steps:
            errors.append(f"Inference steps must be between 1 and {caps.max_steps}")

        if config.aspect_ratio not in ASPECT_RATIOS:
            errors.append(f"Unsupported aspect ratio: {config.aspect_ratio}")

        if config.output_format not in caps.supported_formats:
            errors.append(f"Unsupported output format: {config.output_format}")

        return ValidationResult(
            is_valid=not errors,
            errors=errors,
            warnings=self.provider_warnings(config),
        )

    def provider_warnings(self, config: GenerationConfig) -> list[str]:
        """Advisory warnings for a config. Override to add provider-specific advice."""
        warnings = []
        optimal = self.model.optimal_max_steps
        if optimal is not None and config.num_inference_steps > optimal:
            warnings.append(
                f"{self.model.name} works best with {optimal} steps; "
                f"steps will be reduced to {optimal}"
            )
        if (
            config.num_outputs > SLOW_OUTPUTS_THRESHOLD
            and config.num_inference_steps > SLOW_STEPS_THRESHOLD
        ):
            warnings.append("Many outputs at a high step count may take a long time")
        return warnings

    def preprocess_config(self, config: GenerationConfig) -> GenerationConfig:
        """Provider-specific adjustments, applied after validation.

        Pins the model id and clamps fast models to their optimal step count.
        """
        processed = config.copy(model=self.model.id)
        optimal = self.model.optimal_max_steps
        if optimal is not None and processed.num_inference_steps > optimal:
            logger.debug(
                f"Clamping steps {processed.num_inference_steps} -> {optimal} "
                f"for {self.model.id}"
            )
            processed.num_inference_steps = optimal
        return processed

    def postprocess_results(
        self, results: list[GenerationResult], config: GenerationConfig
    ) -> list[GenerationResult]:
        """Tag every result with adapter metadata."""
        generated_at = utcnow().isoformat()
        for result in results:
            result.metadata.update(
                {
                    "adapter": self.adapter_id,
                    "model": self.model.id,
                    "provider": self.model.provider,
                    "generated_at": generated_at,
                }
            )
        return results

    async def generate(self, config: GenerationConfig) -> list[GenerationResult]:
        """Generate images for a config.

        Args:
            config: Generation config (validated again here)

        Returns
        -------
        list[GenerationResult]
            One result per image, each carrying a copy of the resolved config

        Raises
        ------
        ValidationError
            If the config is invalid (the provider is never called)
        GenerationCancelledError
            If :meth:`cancel` was called while the request was in flight
        ProviderFailure
            If the provider call failed
        GenerationInProgressError
            If this adapter already has a request in flight
        """
        validation = self.validate(config)
        if not validation.is_valid:
            raise ValidationError(validation.errors)
        for warning in validation.warnings:
            logger.info(f"{self.model.id}: {warning}")

        if self._inflight is not None and not self._inflight.done():
            raise GenerationInProgressError(f"{self.model.id} is already generating")

        processed = self.preprocess_config(config)
        task = asyncio.ensure_future(self._generate(processed))
        self._inflight = task

        try:
            results = await task
        except asyncio.CancelledError:
            # cancel() detaches the task it cancels
            if self._inflight is not task:
                logger.info(f"Generation cancelled for {self.model.id}")
                raise GenerationCancelledError("Generation was cancelled") from None
            raise
        except GenerationError:
            raise
        except Exception as e:
            logger.error(f"Generation failed for {self.model.id}: {e}", exc_info=True)
            raise ProviderFailure(f"Generation failed: {e}") from e
        finally:
            if self._inflight is task:
                self._inflight = None

        if not results:
            raise ProviderFailure("The provider returned no images")

        return self.postprocess_results(results, processed)

    def cancel(self) -> None:
        """Cancel the in-flight generation, if any. Safe to call repeatedly."""
        task = self._inflight
        if task is None or task.done():
            return
        self._inflight = None
        task.cancel()
        logger.info(f"Cancellation requested for {self.model.id}")

    @property
    def is_generating(self) -> bool:
        return self._inflight is not None and not self._inflight.done()

    def estimate_cost(self, config: GenerationConfig) -> float:
        """Estimate the cost of a request.

        Base cost per image, times the number of outputs, scaled by the
        requested steps relative to the model's default step count.

        Returns
        -------
        float
            Estimated cost in USD
        """
        base = self.model.cost_per_generation or 0.0
        step_multiplier = config.num_inference_steps / (self.model.default_steps or 4)
        return base * config.num_outputs * step_multiplier

    def get_default_config(self) -> dict[str, Any]:
        """Default request parameters for this model."""
        return {**self.model.default_config, "model": self.model.id}

    def supports_feature(self, feature: str) -> bool:
        return feature in self.supported_features

    async def close(self) -> None:
        """Release resources held by the adapter."""
        pass


AdapterFactory = Callable[[ModelSpec, PrismConfig], ProviderAdapter]

# provider name -> adapter id
DEFAULT_PROVIDER_MAP: dict[str, str] = {"replicate": "replicate"}
DEFAULT_ADAPTER_ID = "replicate"


@dataclass
class AdapterRegistration:
    """A registered adapter implementation."""

    id: str
    factory: AdapterFactory
    metadata: AdapterMetadata
    built_in: bool = True


class AdapterRegistry:
    """Registry of adapter implementations and live adapter instances.

    The registry maintains:
    - Registered adapter factories keyed by adapter id
    - A provider -> adapter id table with a default fallback
    - One live adapter instance per model id

    Notes
    -----
    - Built-in registrations are append-only; only plugins can be unregistered
    - An adapter whose ``initialize`` fails is closed and never cached
    - The registry is constructed explicitly and injected, never global
    """

    def __init__(self, config: PrismConfig) -> None:
        """Initialize the registry.

        Args:
            config: Configuration handed to every adapter factory
        """
        self.config = config
        self._registrations: dict[str, AdapterRegistration] = {}
        self._instances: dict[str, ProviderAdapter] = {}
        self._instance_owner: dict[str, str] = {}
        self._locks: dict[str, asyncio.Lock] = {}
        self._providers: dict[str, str] = dict(DEFAULT_PROVIDER_MAP)
        self.default_adapter_id = DEFAULT_ADAPTER_ID

    def register(
        self,
        adapter_id: str,
        factory: AdapterFactory,
        metadata: AdapterMetadata,
        built_in: bool = True,
    ) -> None:
        """Register an adapter factory.

        Args:
            adapter_id: Registry id of the adapter
            factory: Callable building an adapter for ``(model, config)``
            metadata: Descriptive metadata
            built_in: Whether the registration is permanent

        Raises
        ------
        ValueError
            If a built-in adapter with the same id is already registered
        """
        existing = self._registrations.get(adapter_id)
        if existing is not None:
            if existing.built_in:
                raise ValueError(f"Built-in adapter '{adapter_id}' cannot be replaced")
            logger.warning(f"Adapter '{adapter_id}' is already registered, overwriting")

        self._registrations[adapter_id] = AdapterRegistration(
            id=adapter_id, factory=factory, metadata=metadata, built_in=built_in
        )
        logger.info(f"Registered adapter: {adapter_id}")

    async def unregister(self, adapter_id: str) -> bool:
        """Remove a plugin registration and its live instances.

        Returns
        -------
        bool
            True if removed; False for unknown or built-in adapters
        """
        registration = self._registrations.get(adapter_id)
        if registration is None:
            return False
        if registration.built_in:
            logger.warning(f"Cannot unregister built-in adapter: {adapter_id}")
            return False

        owned = [mid for mid, owner in self._instance_owner.items() if owner == adapter_id]
        for model_id in owned:
            adapter = self._instances.pop(model_id)
            del self._instance_owner[model_id]
            adapter.cancel()
            await adapter.close()

        del self._registrations[adapter_id]
        logger.info(f"Unregistered adapter: {adapter_id}")
        return True

    def map_provider(self, provider: str, adapter_id: str) -> None:
        """Route models of ``provider`` to ``adapter_id``."""
        self._providers[provider] = adapter_id

    def select_adapter_id(self, model: ModelSpec) -> str:
        """Adapter id for a model's provider, falling back to the default."""
        return self._providers.get(model.provider, self.default_adapter_id)

    def list_registered(self) -> list[AdapterRegistration]:
        return list(self._registrations.values())

    def get_registration(self, adapter_id: str) -> AdapterRegistration | None:
        return self._registrations.get(adapter_id)

    def _registration_for(self, model: ModelSpec) -> AdapterRegistration:
        adapter_id = self.select_adapter_id(model)
        registration = self._registrations.get(adapter_id)
        if registration is None:
            available = ", ".join(self._registrations) or "none"
            raise KeyError(
                f"No adapter '{adapter_id}' for model '{model.id}'. "
                f"Available adapters: {available}"
            )
        return registration

    def build_adapter(self, model: ModelSpec) -> ProviderAdapter:
        """Build an adapter for a model without initializing or caching it.

        Used for pure operations (validation, cost estimates) that do not
        need a live provider connection. The caller closes the instance.

        Raises
        ------
        KeyError
            If no adapter is registered for the model's provider
        """
        return self._registration_for(model).factory(model, self.config)

    async def create_adapter(self, model: ModelSpec) -> ProviderAdapter:
        """Return the live adapter for a model, creating it if needed.

        Args:
            model: Model to get an adapter for

        Returns
        -------
        ProviderAdapter
            Cached or newly initialized adapter

        Raises
        ------
        KeyError
            If no adapter is registered for the model's provider
        Exception
            Whatever ``initialize`` raised; the instance is not cached
        """
        adapter_id = self._registration_for(model).id

        lock = self._locks.setdefault(model.id, asyncio.Lock())
        async with lock:
            existing = self._instances.get(model.id)
            if existing is not None:
                return existing

            adapter = self.build_adapter(model)
            try:
                await adapter.initialize()
            except Exception:
                logger.error(f"Adapter initialization failed for {model.id}", exc_info=True)
                await adapter.close()
                raise

            self._instances[model.id] = adapter
            self._instance_owner[model.id] = adapter_id
            logger.info(f"Created {adapter_id} adapter for model {model.id}")
            return adapter

    def get_active_adapter(self, model_id: str) -> ProviderAdapter | None:
        return self._instances.get(model_id)

    async def _check_status(self, model_id: str, adapter: ProviderAdapter) -> AdapterStatus:
        try:
            return await adapter.get_status()
        except Exception as e:
            logger.warning(f"Status check failed for {model_id}: {e}")
            return AdapterStatus(is_available=False, is_configured=False, last_error=str(e))

    async def check_all_status(self) -> dict[str, AdapterStatus]:
        """Poll every live adapter concurrently.

        Returns
        -------
        dict[str, AdapterStatus]
            Status per model id; a failing check is reported as unavailable
        """
        items = list(self._instances.items())
        statuses = await asyncio.gather(*(self._check_status(mid, a) for mid, a in items))
        return {model_id: status for (model_id, _), status in zip(items, statuses)}

    def load_adapter_plugin(self, target: str) -> str:
        """Import and register an adapter class given as ``"module:ClassName"``.

        Args:
            target: Import path of a :class:`ProviderAdapter` subclass

        Returns
        -------
        str
            The registered adapter id

        Raises
        ------
        ValueError
            If ``target`` is malformed
        TypeError
            If the target is not a ProviderAdapter subclass
        ImportError, AttributeError
            If the module or attribute cannot be found
        """
        module_name, sep, attr = target.partition(":")
        if not sep or not module_name or not attr:
            raise ValueError(f"Plugin target must look like 'module:ClassName', got {target!r}")

        try:
            module = importlib.import_module(module_name)
            adapter_class = getattr(module, attr)
        except (ImportError, AttributeError):
            logger.error(f"Failed to load adapter plugin {target}", exc_info=True)
            raise

        if not (isinstance(adapter_class, type) and issubclass(adapter_class, ProviderAdapter)):
            raise TypeError(f"{target} is not a ProviderAdapter subclass")

        metadata = adapter_class.describe()
        self.register(metadata.id, adapter_class, metadata, built_in=False)
        return metadata.id

    def get_statistics(self) -> dict[str, int]:
        registrations = list(self._registrations.values())
        return {
            "total_adapters": len(registrations),
            "active_adapters": len(self._instances),
            "built_in_adapters": sum(1 for r in registrations if r.built_in),
            "plugin_adapters": sum(1 for r in registrations if not r.built_in),
        }

    async def cleanup(self) -> None:
        """Cancel and close every live adapter, then forget them."""
        for model_id, adapter in list(self._instances.items()):
            adapter.cancel()
            try:
                await adapter.close()
            except Exception as e:
                logger.warning(f"Error closing adapter for {model_id}: {e}")

        self._instances.clear()
        self._instance_owner.clear()
        self._locks.clear()
        logger.info("Adapter registry cleaned up")


def measure_latency(start: float) -> float:
    """Milliseconds elapsed since ``start`` (a ``time.perf_counter`` value)."""
    return round((time.perf_counter() - start) * 1000, 2)
