"""Generation orchestration state machine.

:class:`GenerationOrchestrator` drives one generation request at a time
through::

    idle -> processing -> completed | error
    processing -> idle            (cancel)

A new submission is accepted from ``idle``, ``completed`` or ``error``; while
``processing`` it is rejected with :class:`GenerationInProgressError`.

Processing
----------
1. The quota guard is consulted; exhaustion goes straight to ``error``
2. The model's adapter is obtained from the registry
3. The provider prompt is composed from the base prompt and tag selection,
   then validated by the adapter (an invalid config never reaches the provider)
4. While the adapter generates, a background task synthesizes progress on a
   fixed cadence in four phases that slow down as they approach 95%
5. When the adapter returns, the ticker is cancelled and progress snaps to 100
6. Persistence starts in the background; completion waits for it at most
   ``completion_grace_seconds``
7. The batch is added to session history and usage is recorded

Cancellation
------------
:meth:`GenerationOrchestrator.cancel` is synchronous. It stops the ticker,
forwards to the adapter and returns the machine to ``idle`` immediately; the
cancelled attempt never persists anything. Once finalization has begun the
attempt can no longer be cancelled.
"""

import asyncio
import logging
import random
from collections.abc import Callable
from dataclasses import asdict, dataclass, replace
from datetime import datetime
from typing import Any, Literal

from .config import PrismConfig
from .errors import GenerationCancelledError, GenerationError, GenerationInProgressError
from .history import SessionHistory
from .model_adapters import AdapterRegistry, ProviderAdapter
from .models import (
    GenerationBatch,
    GenerationConfig,
    ModelSpec,
    ValidationResult,
    new_batch_id,
    utcnow,
)
from .persistence import AssetPersistencePipeline
from .tags import build_prompt, extract_tags
from .tasks import TaskManager
from .usage import QuotaGuard

logger = logging.getLogger(__name__)

Stage = Literal["idle", "processing", "completed", "error"]

ESTIMATED_SECONDS = 30.0

# (ceiling, minimum step, random extra) per phase
PROGRESS_PHASES: tuple[tuple[float, float, float], ...] = (
    (15.0, 1.0, 3.0),
    (50.0, 0.5, 2.0),
    (85.0, 0.3, 1.5),
    (95.0, 0.2, 1.0),
)


def next_progress(current: float, rng: random.Random) -> float:
    """Next synthetic progress value; never decreases and never passes 95."""
    for ceiling, minimum, extra in PROGRESS_PHASES:
        if current < ceiling:
            return min(current + rng.random() * extra + minimum, ceiling)
    return current


@dataclass
class GenerationStatus:
    """Snapshot of the orchestrator state."""

    stage: Stage = "idle"
    progress: float = 0.0
    error: str | None = None
    started_at: datetime | None = None
    estimated_seconds: float | None = None
    batch_id: str | None = None

    def to_dict(self) -> dict[str, Any]:
        data = asdict(self)
        data["started_at"] = self.started_at.isoformat() if self.started_at else None
        return data


StatusListener = Callable[[GenerationStatus], None]


@dataclass
class _Attempt:
    config: GenerationConfig
    adapter: ProviderAdapter | None = None
    progress_task: asyncio.Task | None = None
    cancelled: bool = False
    finalizing: bool = False


class GenerationOrchestrator:
    """Run generation requests one at a time with live status.

    Args:
        registry: Adapter registry
        models: Model catalog keyed by id
        pipeline: Asset persistence pipeline
        quota: Quota guard checked before and recorded after each generation
        history: Session history receiving completed batches
        tasks: Task manager owning persistence tasks
        config: Application configuration (cadence, grace period)
        rng: Random source for progress synthesis
    """

    def __init__(
        self,
        registry: AdapterRegistry,
        models: dict[str, ModelSpec],
        pipeline: AssetPersistencePipeline,
        quota: QuotaGuard,
        history: SessionHistory,
        tasks: TaskManager,
        config: PrismConfig,
        rng: random.Random | None = None,
    ):
        self.registry = registry
        self.models = models
        self.pipeline = pipeline
        self.quota = quota
        self.history = history
        self.tasks = tasks
        self.config = config
        self._rng = rng or random.Random()
        self._status = GenerationStatus()
        self._attempt: _Attempt | None = None
        self._listeners: list[StatusListener] = []

    @property
    def status(self) -> GenerationStatus:
        return replace(self._status)

    @property
    def is_processing(self) -> bool:
        return self._attempt is not None

    def subscribe(self, listener: StatusListener) -> Callable[[], None]:
        """Call ``listener`` with every status change. Returns an unsubscribe function."""
        self._listeners.append(listener)

        def unsubscribe() -> None:
            if listener in self._listeners:
                self._listeners.remove(listener)

        return unsubscribe

    def _set_status(self, **changes: Any) -> None:
        self._status = replace(self._status, **changes)
        snapshot = self.status
        for listener in list(self._listeners):
            try:
                listener(snapshot)
            except Exception as e:
                logger.error(f"Status listener failed: {e}", exc_info=True)

    def get_model(self, model_id: str) -> ModelSpec:
        """Look up a model.

        Raises:
            KeyError: If the model is not in the catalog
        """
        model = self.models.get(model_id)
        if model is None:
            raise KeyError(f"Unknown model: {model_id}")
        return model

    @staticmethod
    def provider_config(config: GenerationConfig) -> GenerationConfig:
        """Config sent to the provider: the prompt composed with the tag selection."""
        return config.copy(prompt=build_prompt(config.prompt, config.selected_tags))

    async def _with_adapter(self, model: ModelSpec, action: Callable[[ProviderAdapter], Any]):
        adapter = self.registry.get_active_adapter(model.id)
        if adapter is not None:
            return action(adapter)
        adapter = self.registry.build_adapter(model)
        try:
            return action(adapter)
        finally:
            await adapter.close()

    async def validate(self, config: GenerationConfig) -> ValidationResult:
        """Validate a config the way a submission would, without generating.

        Raises:
            KeyError: If the model is unknown
        """
        model = self.get_model(config.model)
        return await self._with_adapter(
            model, lambda adapter: adapter.validate(self.provider_config(config))
        )

    async def estimate_cost(self, config: GenerationConfig) -> float:
        """Estimated cost of a config.

        Raises:
            KeyError: If the model is unknown
        """
        model = self.get_model(config.model)
        return await self._with_adapter(model, lambda adapter: adapter.estimate_cost(config))

    async def submit(self, config: GenerationConfig) -> GenerationBatch | None:
        """Run one generation.

        Args:
            config: Requested generation

        Returns:
            The completed batch; None when the attempt ended in ``error`` or
            was cancelled (see :attr:`status` for the message)

        Raises:
            GenerationInProgressError: If a generation is already processing
        """
        if self._attempt is not None:
            raise GenerationInProgressError("A generation is already in progress")

        usage = self.quota.can_use()
        if not usage.allowed:
            logger.info(f"Generation rejected by quota: {usage.reason}")
            self._set_status(
                stage="error",
                progress=0.0,
                error=usage.reason or "Usage limit reached",
                started_at=None,
                estimated_seconds=None,
                batch_id=None,
            )
            return None

        attempt = _Attempt(config=config)
        self._attempt = attempt
        self._set_status(
            stage="processing",
            progress=0.0,
            error=None,
            started_at=utcnow(),
            estimated_seconds=ESTIMATED_SECONDS,
            batch_id=None,
        )

        try:
            return await self._run(attempt)
        except asyncio.CancelledError:
            if self._attempt is attempt:
                self.cancel()
            raise
        except Exception as e:
            logger.error(f"Generation failed unexpectedly: {e}", exc_info=True)
            self._fail(attempt, f"Generation failed: {e}")
            raise
        finally:
            self._stop_progress(attempt)

    async def _run(self, attempt: _Attempt) -> GenerationBatch | None:
        config = attempt.config

        model = self.models.get(config.model)
        if model is None:
            return self._fail(attempt, f"Unknown model: {config.model}")

        try:
            adapter = await self.registry.create_adapter(model)
        except Exception as e:
            return self._fail(attempt, f"{model.name} is not available: {e}")
        if attempt.cancelled:
            return None
        attempt.adapter = adapter

        provider_config = self.provider_config(config)
        validation = adapter.validate(provider_config)
        if not validation.is_valid:
            return self._fail(attempt, "; ".join(validation.errors))

        attempt.progress_task = asyncio.create_task(
            self._tick_progress(attempt), name="generation-progress"
        )
        try:
            results = await adapter.generate(provider_config)
        except GenerationCancelledError:
            if self._attempt is attempt:
                self.cancel()
            return None
        except GenerationError as e:
            return self._fail(attempt, str(e))
        finally:
            self._stop_progress(attempt)

        if attempt.cancelled:
            return None

        attempt.finalizing = True
        self._set_status(progress=100.0)

        batch = GenerationBatch(
            id=new_batch_id(),
            prompt=provider_config.prompt,
            model=model.id,
            config=provider_config,
            results=results,
            tags_used=extract_tags(config.selected_tags),
        )
        cost = adapter.estimate_cost(provider_config)

        persist_task = self.tasks.create_task(
            self.pipeline.persist(batch, cost), name=f"persist-{batch.id}"
        )
        batch.persistence = persist_task
        done, _ = await asyncio.wait({persist_task}, timeout=self.config.completion_grace_seconds)
        if not done:
            logger.info(f"Persistence of {batch.id} continues in the background")

        self.history.add_batch(batch)
        self.quota.record_usage()
        self._attempt = None
        self._set_status(stage="completed", progress=100.0, error=None, batch_id=batch.id)
        logger.info(f"Generation completed: {batch.id} ({len(batch.results)} images)")
        return batch

    def _fail(self, attempt: _Attempt, message: str) -> None:
        if self._attempt is not attempt:
            return None
        logger.warning(f"Generation failed: {message}")
        self._stop_progress(attempt)
        self._attempt = None
        self._set_status(stage="error", error=message, estimated_seconds=None)
        return None

    async def _tick_progress(self, attempt: _Attempt) -> None:
        while True:
            await asyncio.sleep(self.config.progress_interval)
            if attempt is not self._attempt or attempt.finalizing:
                return
            current = self._status.progress
            progress = next_progress(current, self._rng)
            if progress > current:
                self._set_status(progress=progress)

    @staticmethod
    def _stop_progress(attempt: _Attempt) -> None:
        task = attempt.progress_task
        if task is not None and not task.done():
            task.cancel()

    def cancel(self) -> bool:
        """Cancel the processing generation.

        Returns:
            True if a generation was cancelled; False when nothing was
            processing or finalization had already started
        """
        attempt = self._attempt
        if attempt is None or attempt.finalizing:
            return False

        attempt.cancelled = True
        self._attempt = None
        self._stop_progress(attempt)
        if attempt.adapter is not None:
            attempt.adapter.cancel()

        self._set_status(
            stage="idle",
            progress=0.0,
            error=None,
            started_at=None,
            estimated_seconds=None,
            batch_id=None,
        )
        logger.info("Generation cancelled")
        return True

    async def aclose(self, timeout: float | None = None) -> None:
        """Cancel any processing generation and drain background persistence."""
        self.cancel()
        await self.tasks.drain(timeout=timeout)
