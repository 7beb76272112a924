"""SQLite store for generation records, feedback and usage statistics.

:class:`GenerationStore` is the durable collaborator of the pipeline. It
implements the repository protocols used by the asset persistence pipeline
(generation records, prompt and tag counters) and the feedback backend
protocol used by the feedback coordinator.

Tables
------
- ``generations``: one row per persisted batch
- ``feedback``: at most one row per (generation, client)
- ``prompt_stats``: usage counter per prompt text
- ``tag_stats``: usage counter and feedback success rate per tag

The store is synchronous (each call opens its own connection), so async
callers run it in a worker thread with ``asyncio.to_thread``.
"""

import json
import logging
import sqlite3
import uuid
from pathlib import Path
from typing import Any

from .models import FeedbackRecord, FeedbackType, GenerationRecord, TagUsage, utcnow

logger = logging.getLogger(__name__)

DEFAULT_CLIENT_ID = "local"
HIGH_SUCCESS_RATE = 0.7
HIGH_RATING = 4.0


class GenerationStore:
    """Manage generations, feedback and statistics using SQLite.

    Args:
        db_path: Path to the SQLite database file
        client_id: Identity feedback rows are recorded under
    """

    def __init__(self, db_path: Path, client_id: str = DEFAULT_CLIENT_ID):
        self.db_path = Path(db_path)
        self.client_id = client_id
        self.db_path.parent.mkdir(parents=True, exist_ok=True)
        self._initialize_db()
        logger.info(f"Initialized generation store at {self.db_path}")

    def _connect(self) -> sqlite3.Connection:
        conn = sqlite3.connect(self.db_path)
        conn.row_factory = sqlite3.Row
        return conn

    def _initialize_db(self) -> None:
        """Create database schema if it doesn't exist."""
        with self._connect() as conn:
            cursor = conn.cursor()

            cursor.execute("""
                CREATE TABLE IF NOT EXISTS generations (
                    id TEXT PRIMARY KEY,
                    prompt TEXT NOT NULL,
                    model TEXT NOT NULL,
                    cost REAL NOT NULL DEFAULT 0,
                    image_urls TEXT NOT NULL,
                    original_urls TEXT NOT NULL DEFAULT '[]',
                    storage_keys TEXT NOT NULL DEFAULT '[]',
                    status TEXT NOT NULL,
                    is_public INTEGER NOT NULL DEFAULT 1,
                    tags_used TEXT NOT NULL DEFAULT '[]',
                    created_at TIMESTAMP NOT NULL
                )
                """)
            cursor.execute("""
                CREATE INDEX IF NOT EXISTS idx_generations_created_at
                ON generations(created_at DESC)
                """)

            cursor.execute("""
                CREATE TABLE IF NOT EXISTS feedback (
                    id TEXT PRIMARY KEY,
                    generation_id TEXT NOT NULL,
                    client_id TEXT NOT NULL,
                    feedback_type TEXT NOT NULL,
                    image_urls TEXT NOT NULL DEFAULT '[]',
                    tags_used TEXT NOT NULL DEFAULT '[]',
                    model_used TEXT NOT NULL DEFAULT '',
                    created_at TIMESTAMP NOT NULL,
                    updated_at TIMESTAMP NOT NULL,
                    UNIQUE(generation_id, client_id)
                )
                """)

            cursor.execute("""
                CREATE TABLE IF NOT EXISTS prompt_stats (
                    prompt_text TEXT PRIMARY KEY,
                    usage_count INTEGER NOT NULL DEFAULT 0,
                    last_used TIMESTAMP NOT NULL
                )
                """)

            cursor.execute("""
                CREATE TABLE IF NOT EXISTS tag_stats (
                    tag_name TEXT PRIMARY KEY,
                    category TEXT NOT NULL,
                    tag_value TEXT NOT NULL,
                    usage_count INTEGER NOT NULL DEFAULT 0,
                    success_rate REAL NOT NULL DEFAULT 0,
                    average_rating REAL NOT NULL DEFAULT 0,
                    last_used TIMESTAMP NOT NULL
                )
                """)

            conn.commit()

    # Generations

    def save_generation(self, record: GenerationRecord) -> str:
        """Insert a generation record.

        Returns:
            The new record id

        Raises:
            sqlite3.Error: If the insert fails
        """
        generation_id = uuid.uuid4().hex
        with self._connect() as conn:
            conn.execute(
                """
                INSERT INTO generations (
                    id, prompt, model, cost, image_urls, original_urls, storage_keys,
                    status, is_public, tags_used, created_at
                ) VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?)
                """,
                (
                    generation_id,
                    record.prompt,
                    record.model,
                    record.cost,
                    json.dumps(record.image_urls),
                    json.dumps(record.original_urls),
                    json.dumps(record.storage_keys),
                    record.status,
                    int(record.is_public),
                    json.dumps([tag.to_dict() for tag in record.tags_used]),
                    utcnow().isoformat(),
                ),
            )
            conn.commit()

        logger.info(f"Saved generation {generation_id} ({len(record.image_urls)} images)")
        return generation_id

    @staticmethod
    def _generation_row(row: sqlite3.Row) -> dict[str, Any]:
        data = dict(row)
        for key in ("image_urls", "original_urls", "storage_keys", "tags_used"):
            data[key] = json.loads(data[key])
        data["is_public"] = bool(data["is_public"])
        return data

    def get_generation(self, generation_id: str) -> dict[str, Any] | None:
        with self._connect() as conn:
            row = conn.execute(
                "SELECT * FROM generations WHERE id = ?", (generation_id,)
            ).fetchone()
        return self._generation_row(row) if row else None

    def list_generations(self, limit: int = 50) -> list[dict[str, Any]]:
        """Most recent generation records first, with this client's feedback."""
        with self._connect() as conn:
            rows = conn.execute(
                """
                SELECT g.*, f.feedback_type
                FROM generations g
                LEFT JOIN feedback f
                    ON f.generation_id = g.id AND f.client_id = ?
                ORDER BY g.created_at DESC
                LIMIT ?
                """,
                (self.client_id, limit),
            ).fetchall()
        return [self._generation_row(row) for row in rows]

    # Statistics

    def update_prompt_stats(self, prompt: str) -> None:
        """Increment the usage counter of a prompt."""
        with self._connect() as conn:
            conn.execute(
                """
                INSERT INTO prompt_stats (prompt_text, usage_count, last_used)
                VALUES (?, 1, ?)
                ON CONFLICT(prompt_text) DO UPDATE SET
                    usage_count = usage_count + 1,
                    last_used = excluded.last_used
                """,
                (prompt, utcnow().isoformat()),
            )
            conn.commit()

    def update_tag_stats(self, tags: list[TagUsage]) -> None:
        """Increment usage counters of every tag in one transaction."""
        if not tags:
            return
        now = utcnow().isoformat()
        with self._connect() as conn:
            conn.executemany(
                """
                INSERT INTO tag_stats (tag_name, category, tag_value, usage_count, last_used)
                VALUES (?, ?, ?, 1, ?)
                ON CONFLICT(tag_name) DO UPDATE SET
                    usage_count = usage_count + 1,
                    last_used = excluded.last_used
                """,
                [(tag.name, tag.category, tag.value, now) for tag in tags],
            )
            conn.commit()

    def popular_prompts(self, limit: int = 10) -> list[dict[str, Any]]:
        with self._connect() as conn:
            rows = conn.execute(
                """
                SELECT prompt_text, usage_count, last_used FROM prompt_stats
                ORDER BY usage_count DESC, last_used DESC
                LIMIT ?
                """,
                (limit,),
            ).fetchall()
        return [dict(row) for row in rows]

    def get_tag_stats(self, tag_name: str) -> dict[str, Any] | None:
        with self._connect() as conn:
            row = conn.execute(
                "SELECT * FROM tag_stats WHERE tag_name = ?", (tag_name,)
            ).fetchone()
        return dict(row) if row else None

    def recommended_tags(
        self,
        category: str | None = None,
        exclude: list[str] | None = None,
        limit: int = 5,
    ) -> list[dict[str, Any]]:
        """Tags ranked by usage, boosted by success rate and rating.

        Args:
            category: Restrict to one tag category
            exclude: Tag names already in use
            limit: Maximum number of recommendations

        Returns:
            ``{"tag", "score", "reason"}`` entries, best first
        """
        query = "SELECT * FROM tag_stats"
        params: list[Any] = []
        if category:
            query += " WHERE category = ?"
            params.append(category)
        query += " ORDER BY usage_count DESC"

        with self._connect() as conn:
            rows = [dict(row) for row in conn.execute(query, params).fetchall()]

        excluded = set(exclude or [])
        recommendations = []
        for tag in rows:
            if tag["tag_name"] in excluded:
                continue
            score = float(tag["usage_count"])
            reason = f"Popular tag ({tag['usage_count']} uses)"
            if tag["success_rate"] > HIGH_SUCCESS_RATE:
                score *= 1.2
                reason += ", high success rate"
            if tag["average_rating"] > HIGH_RATING:
                score *= 1.1
                reason += ", highly rated"
            recommendations.append({"tag": tag, "score": round(score), "reason": reason})

        recommendations.sort(key=lambda r: r["score"], reverse=True)
        return recommendations[:limit]

    # Feedback

    def get_feedback(self, generation_id: str) -> FeedbackType | None:
        with self._connect() as conn:
            row = conn.execute(
                "SELECT feedback_type FROM feedback WHERE generation_id = ? AND client_id = ?",
                (generation_id, self.client_id),
            ).fetchone()
        return row["feedback_type"] if row else None

    def submit_feedback(self, record: FeedbackRecord) -> None:
        """Create, update or (for a None type) delete this client's feedback.

        Afterwards the success rates of the record's tags are recomputed.

        Raises:
            sqlite3.Error: If the write fails
        """
        now = utcnow().isoformat()
        with self._connect() as conn:
            existing = conn.execute(
                "SELECT id FROM feedback WHERE generation_id = ? AND client_id = ?",
                (record.generation_id, self.client_id),
            ).fetchone()

            if record.feedback_type is None:
                if existing is None:
                    return
                conn.execute("DELETE FROM feedback WHERE id = ?", (existing["id"],))
                logger.info(f"Removed feedback for generation {record.generation_id}")
            elif existing is None:
                conn.execute(
                    """
                    INSERT INTO feedback (
                        id, generation_id, client_id, feedback_type, image_urls,
                        tags_used, model_used, created_at, updated_at
                    ) VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?)
                    """,
                    (
                        uuid.uuid4().hex,
                        record.generation_id,
                        self.client_id,
                        record.feedback_type,
                        json.dumps(record.image_urls),
                        json.dumps(record.tags_used),
                        record.model_used,
                        now,
                        now,
                    ),
                )
                logger.info(
                    f"Recorded {record.feedback_type} for generation {record.generation_id}"
                )
            else:
                conn.execute(
                    """
                    UPDATE feedback SET feedback_type = ?, image_urls = ?, tags_used = ?,
                        model_used = ?, updated_at = ?
                    WHERE id = ?
                    """,
                    (
                        record.feedback_type,
                        json.dumps(record.image_urls),
                        json.dumps(record.tags_used),
                        record.model_used,
                        now,
                        existing["id"],
                    ),
                )
                logger.info(
                    f"Updated feedback to {record.feedback_type} "
                    f"for generation {record.generation_id}"
                )
            conn.commit()

        self.update_tag_success_rates(record.tags_used)

    def update_tag_success_rates(self, tag_names: list[str]) -> None:
        """Recompute success rate and rating of the given tags from all feedback.

        Each feedback row counts once per image; likes are successes. Tags
        without any feedback keep their current values.
        """
        if not tag_names:
            return

        counts = {name: {"likes": 0, "total": 0} for name in tag_names}
        with self._connect() as conn:
            rows = conn.execute("SELECT feedback_type, image_urls, tags_used FROM feedback")
            for row in rows:
                image_count = len(json.loads(row["image_urls"])) or 1
                for name in json.loads(row["tags_used"]):
                    if name in counts:
                        counts[name]["total"] += image_count
                        if row["feedback_type"] == "like":
                            counts[name]["likes"] += image_count

            updates = []
            for name, stats in counts.items():
                if stats["total"] == 0:
                    continue
                rate = stats["likes"] / stats["total"]
                updates.append((rate, rate * 5, name))

            conn.executemany(
                "UPDATE tag_stats SET success_rate = ?, average_rating = ? WHERE tag_name = ?",
                updates,
            )
            conn.commit()

        logger.debug(f"Updated success rates for {len(updates)} tags")
