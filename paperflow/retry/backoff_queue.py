"""Persisted retry bookkeeping with a capped backoff schedule."""

from datetime import timedelta

from paperflow.database.models import BackoffEntry
from paperflow.database.repositories.backoff_repository import BackoffRepository
from paperflow.logging.logger import Log

BACKOFF_SCHEDULE: tuple[timedelta, ...] = (
    timedelta(minutes=1),
    timedelta(minutes=5),
    timedelta(minutes=15),
)


def backoff_delay(attempts: int) -> timedelta:
    """Delay before the next try after ``attempts`` recorded failures.

    Grows per attempt until the last slot of the schedule, then stays flat.
    """
    index = min(max(attempts, 1) - 1, len(BACKOFF_SCHEDULE) - 1)
    return BACKOFF_SCHEDULE[index]


def format_delay(delay: timedelta) -> str:
    seconds = int(delay.total_seconds())
    if seconds >= 60:
        return f"{round(seconds / 60)}min"
    return f"{seconds}s"


class BackoffQueue:
    """Failed documents waiting for another attempt, keyed by document id."""

    def __init__(self, repository: BackoffRepository, max_retries: int = 3) -> None:
        self._repo = repository
        self._max_retries = max_retries

    @property
    def max_retries(self) -> int:
        return self._max_retries

    async def add(self, document_id: int, error: str) -> int:
        """Record a failure and return the attempt count after it."""
        entry = await self._repo.record_failure(
            document_id,
            error,
            lambda attempts: backoff_delay(attempts).total_seconds(),
        )
        Log.warning(
            f"[doc:{document_id}] failed (attempt {entry.attempts}/{self._max_retries}), "
            f"next retry in {format_delay(backoff_delay(entry.attempts))}"
        )
        return entry.attempts

    async def get_ready_for_retry(self) -> list[BackoffEntry]:
        return await self._repo.list_ready()

    async def should_give_up(self, document_id: int) -> bool:
        entry = await self._repo.find(document_id)
        if entry is None:
            return False
        return entry.attempts >= self._max_retries

    async def get_attempts(self, document_id: int) -> int:
        entry = await self._repo.find(document_id)
        return entry.attempts if entry is not None else 0

    async def has(self, document_id: int) -> bool:
        return await self._repo.find(document_id) is not None

    async def remove(self, document_id: int) -> None:
        """Drop the entry for a document. Missing entries are ignored."""
        await self._repo.delete(document_id)

    async def size(self) -> int:
        return await self._repo.count()

    async def get_all(self) -> list[BackoffEntry]:
        return await self._repo.list_all()

    async def retry_all(self) -> int:
        """Make every entry due now with its attempts reset."""
        count = await self._repo.reset_all()
        Log.info(f"Reset {count} queued documents for immediate retry")
        return count

    async def clear(self) -> int:
        count = await self._repo.delete_all()
        Log.info(f"Cleared {count} documents from the backoff queue")
        return count

    async def log_stats(self) -> None:
        total = await self._repo.count()
        ready = await self._repo.list_ready()
        Log.info(f"Backoff queue: {total} documents queued, {len(ready)} ready for retry")
