"""Core functionality for image generation.

This module provides the core components of the Prism image generator:

- **Provider adapters**: one interface over heterogeneous generation backends
- **AdapterRegistry**: adapter id -> factory table and live adapter cache
- **GenerationOrchestrator**: state machine driving one request with progress
- **AssetPersistencePipeline**: ephemeral provider URLs -> durable storage
- **FeedbackCoordinator**: optimistic like/dislike with rollback
- **PrismConfig**: configuration management using Pydantic Settings

Architecture Overview
---------------------
1. **Configuration Layer** (config.py):
   - Environment-based configuration using Pydantic Settings
   - All settings prefixed with PRISM_ in .env files

2. **Adapter Layer** (model_adapters.py, adapters/):
   - Unified interface, validation against model capabilities
   - Replicate implementation and dynamically loaded plugins

3. **Orchestration Layer** (orchestrator.py, persistence.py, feedback.py):
   - One generation in flight per session
   - Persistence and feedback commits run as background tasks (tasks.py)

4. **Collaborators**:
   - store.py: SQLite generation records, feedback and statistics
   - uploader.py: grouped HTTP upload of generated images
   - usage.py: daily, hourly and session quotas
   - tags.py: tag taxonomy and prompt composition

Components are wired explicitly by ``session.initialize_session``.

Usage Example
-------------
    from prismgen.core import PrismConfig, initialize_session, cleanup_session
    from prismgen.core.models import GenerationConfig

    state = await initialize_session(PrismConfig())
    batch = await state.orchestrator.submit(
        GenerationConfig(prompt="a lighthouse at dusk", model="flux-schnell")
    )
    await cleanup_session(state)
"""

from prismgen.core.config import PrismConfig, config
from prismgen.core.model_adapters import AdapterRegistry, ProviderAdapter
from prismgen.core.orchestrator import GenerationOrchestrator
from prismgen.core.session import SessionState, cleanup_session, initialize_session

__all__ = [
    "AdapterRegistry",
    "GenerationOrchestrator",
    "PrismConfig",
    "ProviderAdapter",
    "SessionState",
    "cleanup_session",
    "config",
    "initialize_session",
]
