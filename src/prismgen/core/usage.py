"""Generation quota tracking.

:class:`UsageTracker` enforces three limits before each generation:

- **daily**: generations per calendar day
- **hourly**: generations per clock hour
- **session**: generations since the process (session) started

Daily and hourly counters are persisted to a JSON file so they survive
restarts; the session counter lives in memory. Day entries older than
:data:`USAGE_RETENTION_DAYS` and hour entries older than a day are pruned on
every write.

File layout::

    {"daily": {"2025-01-31": 3}, "hourly": {"2025-01-31T14": 2}}
"""

import json
import logging
from collections.abc import Callable
from dataclasses import dataclass
from datetime import datetime, timedelta
from pathlib import Path
from typing import Protocol

logger = logging.getLogger(__name__)

USAGE_RETENTION_DAYS = 7


@dataclass
class UsageCheck:
    """Result of a quota check; ``reason`` is set when not allowed."""

    allowed: bool
    reason: str | None = None


class QuotaGuard(Protocol):
    """Quota collaborator consulted by the orchestrator."""

    def can_use(self) -> UsageCheck: ...

    def record_usage(self) -> None: ...


class UsageTracker:
    """Daily, hourly and per-session generation limits persisted to JSON.

    Args:
        usage_file: JSON file holding daily and hourly counters
        daily_limit: Generations allowed per day
        hourly_limit: Generations allowed per clock hour
        session_limit: Generations allowed in this session
        enabled: When False every check passes (usage is still recorded)
        now: Clock, injectable for tests
    """

    def __init__(
        self,
        usage_file: Path,
        daily_limit: int = 20,
        hourly_limit: int = 10,
        session_limit: int = 5,
        enabled: bool = True,
        now: Callable[[], datetime] = datetime.now,
    ):
        self.usage_file = Path(usage_file)
        self.limits = {"daily": daily_limit, "hourly": hourly_limit, "session": session_limit}
        self.enabled = enabled
        self._now = now
        self._session_used = 0
        self._data: dict[str, dict[str, int]] = {"daily": {}, "hourly": {}}
        self._load()

    def _day_key(self) -> str:
        return self._now().date().isoformat()

    def _hour_key(self) -> str:
        return self._now().strftime("%Y-%m-%dT%H")

    def _load(self) -> None:
        if not self.usage_file.exists():
            return
        try:
            with open(self.usage_file, encoding="utf-8") as f:
                data = json.load(f)
        except (OSError, json.JSONDecodeError) as e:
            logger.error(f"Failed to load usage data from {self.usage_file}: {e}")
            return

        self._data = {
            "daily": {k: int(v) for k, v in (data.get("daily") or {}).items()},
            "hourly": {k: int(v) for k, v in (data.get("hourly") or {}).items()},
        }
        self._prune()

    def _prune(self) -> None:
        now = self._now()
        oldest_day = (now - timedelta(days=USAGE_RETENTION_DAYS)).date().isoformat()
        oldest_hour = (now - timedelta(hours=24)).strftime("%Y-%m-%dT%H")
        self._data["daily"] = {k: v for k, v in self._data["daily"].items() if k >= oldest_day}
        self._data["hourly"] = {
            k: v for k, v in self._data["hourly"].items() if k >= oldest_hour
        }

    def _save(self) -> None:
        try:
            self.usage_file.parent.mkdir(parents=True, exist_ok=True)
            with open(self.usage_file, "w", encoding="utf-8") as f:
                json.dump(self._data, f, indent=2)
        except OSError as e:
            logger.error(f"Failed to save usage data to {self.usage_file}: {e}")

    def get_usage_stats(self) -> dict[str, dict[str, int]]:
        """Used, limit and remaining count per window."""
        used = {
            "daily": self._data["daily"].get(self._day_key(), 0),
            "hourly": self._data["hourly"].get(self._hour_key(), 0),
            "session": self._session_used,
        }
        return {
            window: {
                "used": used[window],
                "limit": limit,
                "remaining": max(0, limit - used[window]),
            }
            for window, limit in self.limits.items()
        }

    def can_use(self) -> UsageCheck:
        """Check every window; the first exhausted one gives the reason."""
        if not self.enabled:
            return UsageCheck(allowed=True)

        stats = self.get_usage_stats()
        if stats["daily"]["remaining"] <= 0:
            return UsageCheck(
                allowed=False,
                reason=(
                    f"Daily generation limit reached ({self.limits['daily']}). "
                    "Please come back tomorrow."
                ),
            )
        if stats["hourly"]["remaining"] <= 0:
            return UsageCheck(
                allowed=False,
                reason=(
                    f"Hourly generation limit reached ({self.limits['hourly']}). "
                    "Please try again in an hour."
                ),
            )
        if stats["session"]["remaining"] <= 0:
            return UsageCheck(
                allowed=False,
                reason=(
                    f"Session generation limit reached ({self.limits['session']}). "
                    "Start a new session to continue."
                ),
            )
        return UsageCheck(allowed=True)

    def record_usage(self) -> None:
        """Count one generation in every window and persist."""
        day, hour = self._day_key(), self._hour_key()
        self._data["daily"][day] = self._data["daily"].get(day, 0) + 1
        self._data["hourly"][hour] = self._data["hourly"].get(hour, 0) + 1
        self._session_used += 1
        self._prune()
        self._save()
