"""Shared pytest fixtures for Prism tests."""

import asyncio
import json
import shutil
import tempfile
from pathlib import Path
from typing import Generator

import pytest

from prismgen.core.config import PrismConfig
from prismgen.core.model_adapters import AdapterRegistry, ProviderAdapter
from prismgen.core.models import (
    AdapterStatus,
    GenerationConfig,
    GenerationResult,
    ModelCapabilities,
    ModelSpec,
)


class FakeAdapter(ProviderAdapter):
    """In-process adapter that records calls instead of reaching a provider.

    Attributes
    ----------
    calls : list[GenerationConfig]
        Configs that reached ``_generate``
    gate : asyncio.Event | None
        When set, ``_generate`` waits on it before returning
    error : Exception | None
        Raised from ``_generate`` when set
    """

    adapter_id = "fake"
    name = "Fake Adapter"
    description = "Adapter used in tests"
    supported_features = ("text-to-image", "negative-prompt")

    init_error: Exception | None = None

    def __init__(self, model: ModelSpec, config: PrismConfig) -> None:
        super().__init__(model, config)
        self.calls: list[GenerationConfig] = []
        self.gate: asyncio.Event | None = None
        self.error: Exception | None = None
        self.initialized = 0
        self.closed = False
        self.status = AdapterStatus(is_available=True, is_configured=True, latency_ms=1.0)

    async def initialize(self) -> None:
        self.initialized += 1
        await asyncio.sleep(0)
        if self.init_error is not None:
            raise self.init_error

    async def get_status(self) -> AdapterStatus:
        return self.status

    async def _generate(self, config: GenerationConfig) -> list[GenerationResult]:
        self.calls.append(config)
        call = len(self.calls)
        if self.gate is not None:
            await self.gate.wait()
        if self.error is not None:
            raise self.error
        return [
            GenerationResult(
                id=f"fake-{call}-{index}",
                image_url=f"https://provider.test/{call}/{index}.webp",
                prompt=config.prompt,
                config=config.copy(),
            )
            for index in range(config.num_outputs)
        ]

    async def close(self) -> None:
        self.closed = True


@pytest.fixture
def anyio_backend() -> str:
    """Run ``@pytest.mark.anyio`` tests on asyncio only."""
    return "asyncio"


@pytest.fixture
def temp_dir() -> Generator[Path, None, None]:
    """Create a temporary directory for test files.

    Yields:
        Path to temporary directory

    Cleanup:
        Directory is removed after test completes
    """
    temp_path = Path(tempfile.mkdtemp())
    try:
        yield temp_path
    finally:
        shutil.rmtree(temp_path, ignore_errors=True)


@pytest.fixture
def test_config(temp_dir: Path) -> PrismConfig:
    """Create a test configuration with temporary paths and fast timings.

    Args:
        temp_dir: Temporary directory from fixture

    Returns:
        PrismConfig instance for testing
    """
    return PrismConfig(
        _env_file=None,
        data_dir=temp_dir / "data",
        replicate_api_token="",
        default_model="fast-model",
        poll_interval=0.01,
        max_poll_attempts=5,
        progress_interval=0.01,
        completion_grace_seconds=1.0,
        restore_history_limit=0,
        enable_usage_limits=True,
        daily_limit=100,
        hourly_limit=100,
        session_limit=100,
    )


@pytest.fixture
def fast_model() -> ModelSpec:
    """A fast model: at most 8 steps and 4 outputs, clamped to 4 steps."""
    return ModelSpec(
        id="fast-model",
        name="Fast Model",
        provider="fake",
        version="test/fast-model",
        cost_per_generation=0.003,
        default_config={"num_inference_steps": 4, "output_format": "webp"},
        capabilities=ModelCapabilities(
            max_steps=8,
            max_outputs=4,
            supported_formats=("webp", "jpg", "png"),
        ),
        optimal_max_steps=4,
    )


@pytest.fixture
def models(fast_model: ModelSpec) -> dict[str, ModelSpec]:
    return {fast_model.id: fast_model}


@pytest.fixture
def registry(test_config: PrismConfig) -> AdapterRegistry:
    """Registry routing the ``fake`` provider to :class:`FakeAdapter`."""
    registry = AdapterRegistry(test_config)
    registry.register(FakeAdapter.adapter_id, FakeAdapter, FakeAdapter.describe())
    registry.map_provider("fake", FakeAdapter.adapter_id)
    return registry


@pytest.fixture
def models_file(temp_dir: Path, fast_model: ModelSpec) -> Path:
    """JSON model catalog holding only the fast model."""
    path = temp_dir / "models.json"
    path.write_text(json.dumps({"models": [fast_model.to_dict()]}))
    return path


@pytest.fixture
def fake_adapter_class() -> type[FakeAdapter]:
    return FakeAdapter
