"""Optimistic like/dislike feedback.

:meth:`FeedbackCoordinator.set_feedback` changes the visible feedback of a
batch immediately and commits it to the backend in the background. The change
is a compensating transaction: the value visible right before the mutation is
kept, and re-applied to every result if the commit fails.

Rules
-----
- Choosing the type the batch already has toggles it off (None)
- Commits for one batch run one at a time, in submission order
- A commit whose value was replaced locally before it ran is skipped; the
  newer commit carries the state
- A failed commit rolls back only if its value is still the visible one
- Nothing is sent when the value equals the last state the backend confirmed
  (including clearing feedback that was never recorded)
- A commit waits for the batch's record to be written first; batches that
  end up without a durable record keep their feedback locally only
- Restored batches merging several stored records commit to each of them
"""

import asyncio
import logging
from typing import Protocol

from .history import SessionHistory
from .models import FEEDBACK_TYPES, FeedbackRecord, FeedbackType, GenerationBatch
from .tasks import TaskManager

logger = logging.getLogger(__name__)


class FeedbackBackend(Protocol):
    def submit_feedback(self, record: FeedbackRecord) -> None: ...


class FeedbackCoordinator:
    """Apply feedback locally at once and commit it asynchronously.

    Args:
        history: Session history holding the batches
        backend: Durable feedback store (synchronous, run in a worker thread)
        tasks: Task manager owning the commit tasks
    """

    def __init__(self, history: SessionHistory, backend: FeedbackBackend, tasks: TaskManager):
        self.history = history
        self.backend = backend
        self.tasks = tasks
        self._locks: dict[str, asyncio.Lock] = {}
        self._pending: set[asyncio.Task] = set()

    def set_feedback(
        self, batch_id: str, feedback_type: FeedbackType | None
    ) -> FeedbackType | None:
        """Set (or toggle off) the feedback of a batch.

        Every result of the batch shows the new value before this method
        returns; the backend commit is only scheduled.

        Args:
            batch_id: Session batch id
            feedback_type: "like", "dislike", or None to clear

        Returns:
            The feedback value now visible on the batch

        Raises:
            KeyError: If the batch is not in the session history
            ValueError: If ``feedback_type`` is not a known type
        """
        if feedback_type is not None and feedback_type not in FEEDBACK_TYPES:
            raise ValueError(f"Unknown feedback type: {feedback_type}")

        batch = self.history.get_batch(batch_id)
        if batch is None:
            raise KeyError(f"Batch '{batch_id}' not found")

        previous = batch.feedback_type
        target = None if feedback_type == previous else feedback_type
        batch.apply_feedback(target)
        logger.debug(f"Batch {batch_id} feedback {previous} -> {target}")

        task = self.tasks.create_task(
            self._commit(batch, previous, target), name=f"feedback-{batch_id}"
        )
        self._pending.add(task)
        task.add_done_callback(self._pending.discard)
        return target

    async def _commit(
        self,
        batch: GenerationBatch,
        previous: FeedbackType | None,
        attempted: FeedbackType | None,
    ) -> None:
        lock = self._locks.setdefault(batch.id, asyncio.Lock())
        async with lock:
            if batch.persistence is not None and not batch.persistence.done():
                logger.debug(f"Waiting for the record of {batch.id} before committing feedback")
                await asyncio.wait({batch.persistence})

            if batch.feedback_type != attempted:
                logger.debug(f"Feedback {attempted} for {batch.id} superseded, skipping")
                return

            if attempted == batch.committed_feedback:
                logger.debug(f"Feedback for {batch.id} already {attempted}, nothing to send")
                return

            generation_ids = batch.record_ids
            if not generation_ids:
                logger.warning(
                    f"Batch {batch.id} has no stored record; feedback kept locally only"
                )
                return

            records = [
                FeedbackRecord(
                    generation_id=generation_id,
                    feedback_type=attempted,
                    image_urls=batch.image_urls_for(generation_id),
                    tags_used=[tag.name for tag in batch.tags_used],
                    model_used=batch.model,
                )
                for generation_id in generation_ids
            ]
            try:
                for record in records:
                    await asyncio.to_thread(self.backend.submit_feedback, record)
            except Exception as e:
                logger.error(f"Failed to commit feedback for {batch.id}: {e}", exc_info=True)
                if batch.feedback_type == attempted:
                    batch.apply_feedback(previous)
                    logger.info(f"Rolled back feedback of {batch.id} to {previous}")
                return

            batch.committed_feedback = attempted
            logger.info(f"Committed feedback {attempted} for {batch.id}")

    @property
    def pending(self) -> int:
        return len(self._pending)

    async def wait_pending(self) -> None:
        """Wait until every scheduled commit has finished."""
        while self._pending:
            await asyncio.gather(*list(self._pending), return_exceptions=True)
