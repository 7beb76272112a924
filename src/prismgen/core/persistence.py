"""Asset persistence pipeline.

After a generation completes, its images only exist at ephemeral provider
URLs. :class:`AssetPersistencePipeline` makes the batch durable in three
steps, none of which can fail the generation:

1. **Upload**: all batch URLs go to the upload service in one request.
   Images that were stored get their URL rewritten (the provider URL is kept
   as ``original_image_url``); images that failed keep the provider URL. A
   failed or missing uploader leaves every URL as it was.
2. **Record**: the generation record is written to the repository. On success
   the batch gets its ``real_generation_id``; on failure the error is logged
   and the batch simply stays without one.
3. **Statistics**: prompt and tag usage counters are updated in background
   tasks. Each update fails independently and only logs.

Repositories are synchronous, so they run in worker threads.
"""

import asyncio
import logging
from collections.abc import Callable
from dataclasses import dataclass
from typing import Any, Protocol

from .models import GenerationBatch, GenerationRecord, StoredAsset, TagUsage
from .tasks import TaskManager

logger = logging.getLogger(__name__)


class AssetUploader(Protocol):
    async def upload(
        self, image_urls: list[str], prompt: str, batch_id: str
    ) -> list[StoredAsset | None]: ...


class GenerationRepository(Protocol):
    def save_generation(self, record: GenerationRecord) -> str: ...


class StatisticsRepository(Protocol):
    def update_prompt_stats(self, prompt: str) -> None: ...

    def update_tag_stats(self, tags: list[TagUsage]) -> None: ...


@dataclass
class PersistenceOutcome:
    """What the pipeline managed to do for one batch."""

    uploaded: int = 0
    failed: int = 0
    generation_id: str | None = None


class AssetPersistencePipeline:
    """Upload, record and count a finished batch without ever raising.

    Args:
        generations: Repository receiving the generation record
        statistics: Repository receiving prompt and tag counters
        tasks: Task manager owning the statistics updates
        uploader: Upload service client (None keeps provider URLs)
        is_public: Visibility flag written to the record
    """

    def __init__(
        self,
        generations: GenerationRepository,
        statistics: StatisticsRepository,
        tasks: TaskManager,
        uploader: AssetUploader | None = None,
        is_public: bool = True,
    ):
        self.generations = generations
        self.statistics = statistics
        self.tasks = tasks
        self.uploader = uploader
        self.is_public = is_public

    async def persist(self, batch: GenerationBatch, cost: float) -> PersistenceOutcome:
        """Make a batch durable.

        Mutates the batch in place: result URLs are rewritten for uploaded
        images and ``real_generation_id`` is set once the record is saved.

        Args:
            batch: Finished batch
            cost: Estimated cost written to the record

        Returns:
            Counts of uploaded and failed images, and the record id if saved
        """
        outcome = PersistenceOutcome()

        await self._upload(batch, outcome)

        record = GenerationRecord(
            prompt=batch.prompt,
            model=batch.model,
            cost=cost,
            image_urls=batch.image_urls,
            status="completed",
            is_public=self.is_public,
            tags_used=list(batch.tags_used),
            original_urls=[r.original_image_url or r.image_url for r in batch.results],
            storage_keys=[r.stored_asset.key if r.stored_asset else None for r in batch.results],
        )
        try:
            generation_id = await asyncio.to_thread(self.generations.save_generation, record)
        except Exception as e:
            logger.error(f"Failed to save generation record for {batch.id}: {e}", exc_info=True)
        else:
            batch.real_generation_id = generation_id
            outcome.generation_id = generation_id

        self._schedule(
            f"prompt-stats-{batch.id}", self.statistics.update_prompt_stats, batch.prompt
        )
        if batch.tags_used:
            self._schedule(
                f"tag-stats-{batch.id}", self.statistics.update_tag_stats, list(batch.tags_used)
            )

        logger.info(
            f"Persisted batch {batch.id}: {outcome.uploaded} uploaded, "
            f"{outcome.failed} kept provider URLs, record={outcome.generation_id}"
        )
        return outcome

    async def _upload(self, batch: GenerationBatch, outcome: PersistenceOutcome) -> None:
        if self.uploader is None:
            outcome.failed = len(batch.results)
            return

        try:
            assets = await self.uploader.upload(batch.image_urls, batch.prompt, batch.id)
        except Exception as e:
            logger.error(f"Upload failed for batch {batch.id}: {e}", exc_info=True)
            outcome.failed = len(batch.results)
            return

        for index, result in enumerate(batch.results):
            asset = assets[index] if index < len(assets) else None
            if asset is None:
                outcome.failed += 1
                continue
            result.apply_stored_asset(asset)
            outcome.uploaded += 1

        if outcome.failed:
            logger.warning(
                f"{outcome.failed}/{len(batch.results)} images of batch {batch.id} "
                "were not uploaded and keep their provider URLs"
            )

    def _schedule(self, name: str, func: Callable[..., Any], *args: Any) -> None:
        self.tasks.create_task(self._run_quietly(name, func, *args), name=name)

    @staticmethod
    async def _run_quietly(name: str, func: Callable[..., Any], *args: Any) -> None:
        try:
            await asyncio.to_thread(func, *args)
        except Exception as e:
            logger.error(f"Statistics update {name} failed: {e}", exc_info=True)
