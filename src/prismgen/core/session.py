"""Explicit construction and teardown of a generation session.

Every component of the pipeline is built here and handed its collaborators;
nothing is a module-level singleton. The API layer keeps the resulting
:class:`SessionState` on ``app.state``; tests build their own sessions with
temporary paths.

Usage Example
-------------
    state = await initialize_session(PrismConfig(data_dir=tmp_path))
    try:
        batch = await state.orchestrator.submit(config)
    finally:
        await cleanup_session(state)
"""

import asyncio
import logging
from dataclasses import dataclass

from .adapters import register_builtin_adapters
from .catalog import load_models
from .config import PrismConfig
from .feedback import FeedbackCoordinator
from .history import SessionHistory, batches_from_records
from .model_adapters import AdapterRegistry
from .models import ModelSpec
from .orchestrator import GenerationOrchestrator
from .persistence import AssetPersistencePipeline
from .store import GenerationStore
from .tasks import TaskManager
from .uploader import HttpAssetUploader
from .usage import UsageTracker

logger = logging.getLogger(__name__)

SHUTDOWN_TIMEOUT = 10.0


@dataclass
class SessionState:
    """All live components of one session."""

    config: PrismConfig
    models: dict[str, ModelSpec]
    store: GenerationStore
    usage: UsageTracker
    registry: AdapterRegistry
    tasks: TaskManager
    history: SessionHistory
    pipeline: AssetPersistencePipeline
    orchestrator: GenerationOrchestrator
    feedback: FeedbackCoordinator
    uploader: HttpAssetUploader | None = None


async def initialize_session(
    config: PrismConfig,
    registry: AdapterRegistry | None = None,
    uploader: HttpAssetUploader | None = None,
) -> SessionState:
    """Build every component of a session.

    Args:
        config: Application configuration
        registry: Pre-built registry (tests inject one with fake adapters);
            by default a registry with the built-in adapters and the
            configured plugins
        uploader: Upload client; by default one is created when
            ``config.upload_endpoint`` is set

    Returns:
        The wired session

    Raises:
        ValueError: If the models file is invalid
    """
    models = load_models(config.models_file)
    logger.info(f"Loaded {len(models)} models")

    store = GenerationStore(config.database_path)
    usage = UsageTracker(
        config.usage_file,
        daily_limit=config.daily_limit,
        hourly_limit=config.hourly_limit,
        session_limit=config.session_limit,
        enabled=config.enable_usage_limits,
    )

    if registry is None:
        registry = AdapterRegistry(config)
        register_builtin_adapters(registry)
        for target in config.adapter_plugins:
            adapter_id = registry.load_adapter_plugin(target)
            logger.info(f"Registered adapter plugin {adapter_id} from {target}")

    if uploader is None and config.upload_endpoint:
        uploader = HttpAssetUploader(config.upload_endpoint, timeout=config.upload_timeout)
    if uploader is None:
        logger.info("No upload endpoint configured; provider URLs are kept")

    tasks = TaskManager()
    history = SessionHistory()
    if config.restore_history_limit:
        records = await asyncio.to_thread(store.list_generations, config.restore_history_limit)
        history.extend(batches_from_records(records))

    pipeline = AssetPersistencePipeline(
        generations=store,
        statistics=store,
        tasks=tasks,
        uploader=uploader,
        is_public=config.publish_generations,
    )
    orchestrator = GenerationOrchestrator(
        registry=registry,
        models=models,
        pipeline=pipeline,
        quota=usage,
        history=history,
        tasks=tasks,
        config=config,
    )
    feedback = FeedbackCoordinator(history, store, tasks)

    logger.info("Session initialized")
    return SessionState(
        config=config,
        models=models,
        store=store,
        usage=usage,
        registry=registry,
        tasks=tasks,
        history=history,
        pipeline=pipeline,
        orchestrator=orchestrator,
        feedback=feedback,
        uploader=uploader,
    )


async def cleanup_session(state: SessionState, timeout: float = SHUTDOWN_TIMEOUT) -> None:
    """Cancel in-flight work, drain background tasks and release clients."""
    await state.orchestrator.aclose(timeout=timeout)
    await state.feedback.wait_pending()
    await state.tasks.drain(timeout=timeout)
    await state.tasks.cancel_all()
    await state.registry.cleanup()
    if state.uploader is not None:
        await state.uploader.close()
    logger.info("Session cleaned up")
