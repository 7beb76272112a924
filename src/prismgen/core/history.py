"""In-memory session history of generated batches.

Batches are kept newest first. At startup the history can be seeded from
stored generation records; records that share prompt, model and minute are
regrouped into one batch, the same unit feedback is given on.
"""

import logging
from datetime import datetime
from typing import Any

from .models import (
    GenerationBatch,
    GenerationConfig,
    GenerationResult,
    StoredAsset,
    TagUsage,
    time_bucket,
)

logger = logging.getLogger(__name__)


class SessionHistory:
    """Ordered collection of the session's batches."""

    def __init__(self, max_batches: int | None = None):
        self.max_batches = max_batches
        self._batches: list[GenerationBatch] = []

    @property
    def batches(self) -> list[GenerationBatch]:
        return list(self._batches)

    @property
    def results(self) -> list[GenerationResult]:
        return [result for batch in self._batches for result in batch.results]

    def __len__(self) -> int:
        return len(self._batches)

    def add_batch(self, batch: GenerationBatch) -> None:
        self._batches.insert(0, batch)
        if self.max_batches is not None and len(self._batches) > self.max_batches:
            dropped = self._batches[self.max_batches :]
            del self._batches[self.max_batches :]
            logger.debug(f"History full, dropped {len(dropped)} oldest batches")

    def extend(self, batches: list[GenerationBatch]) -> None:
        """Append older batches after the current ones."""
        self._batches.extend(batches)

    def get_batch(self, batch_id: str) -> GenerationBatch | None:
        for batch in self._batches:
            if batch.id == batch_id:
                return batch
        return None

    def remove_batch(self, batch_id: str) -> bool:
        for index, batch in enumerate(self._batches):
            if batch.id == batch_id:
                del self._batches[index]
                return True
        return False

    def clear(self) -> None:
        self._batches.clear()


def _parse_time(value: str) -> datetime:
    return datetime.fromisoformat(value)


def _record_results(record: dict[str, Any], config: GenerationConfig) -> list[GenerationResult]:
    created_at = _parse_time(record["created_at"])
    originals = record.get("original_urls") or []
    keys = record.get("storage_keys") or []

    results = []
    for index, url in enumerate(record["image_urls"]):
        original = originals[index] if index < len(originals) else None
        key = keys[index] if index < len(keys) else None
        result = GenerationResult(
            id=f"{record['id']}-{index}",
            image_url=url,
            prompt=record["prompt"],
            config=config.copy(),
            created_at=created_at,
            status=record.get("status") or "completed",
            original_image_url=original if original and original != url else None,
            stored_asset=StoredAsset(key=key, url=url) if key else None,
            metadata={"model": record["model"], "generation_id": record["id"], "restored": True},
        )
        results.append(result)
    return results


def batches_from_records(records: list[dict[str, Any]]) -> list[GenerationBatch]:
    """Rebuild session batches from stored generation records.

    Args:
        records: Rows from ``GenerationStore.list_generations``, newest first

    Returns:
        Batches newest first. Records with the same prompt, model and minute
        share a batch; its durable id is the newest record's id and
        ``generation_ids`` lists every merged record.
    """
    grouped: dict[tuple[str, str, str], GenerationBatch] = {}

    for record in records:
        created_at = _parse_time(record["created_at"])
        key = (record["prompt"], record["model"], time_bucket(created_at))
        tags = [TagUsage(**tag) for tag in record.get("tags_used") or []]
        config = GenerationConfig(
            prompt=record["prompt"],
            model=record["model"],
            num_outputs=len(record["image_urls"]) or 1,
        )
        results = _record_results(record, config)

        batch = grouped.get(key)
        if batch is None:
            batch = GenerationBatch(
                id=f"batch_{record['id']}",
                prompt=record["prompt"],
                model=record["model"],
                config=config,
                results=[],
                created_at=created_at,
                real_generation_id=record["id"],
                tags_used=tags,
                committed_feedback=record.get("feedback_type"),
            )
            grouped[key] = batch
        batch.results.extend(results)
        batch.generation_ids.append(record["id"])

    for batch in grouped.values():
        if batch.committed_feedback:
            batch.apply_feedback(batch.committed_feedback)

    logger.info(f"Restored {len(grouped)} batches from {len(records)} records")
    return list(grouped.values())
