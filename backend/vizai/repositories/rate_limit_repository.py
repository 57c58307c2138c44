"""Rate-limit record repository with optimistic concurrency."""

from datetime import datetime

from sqlalchemy import update
from sqlalchemy.exc import IntegrityError

from ..models import RateLimitRecord
from ..exceptions import RateLimitNotFoundError
from .base import BaseRepository, storage_errors


class RateLimitRepository(BaseRepository[RateLimitRecord]):
    """Keyed access to per-user counters.

    Writes go through ``compare_and_set`` which only succeeds while the row
    still carries the version the caller read.
    """

    model_class = RateLimitRecord
    id_column = "user_id"
    not_found_error = RateLimitNotFoundError

    def get_or_create(self, user_id: str, now: datetime, daily_reset_at: datetime) -> RateLimitRecord:
        record = self.get_by_id_optional(user_id)
        if record is not None:
            return record
        record = RateLimitRecord(
            user_id=user_id,
            requests_this_minute=0,
            minute_window_start=now.replace(second=0, microsecond=0),
            daily_cost_usd=0.0,
            daily_reset_at=daily_reset_at,
            budget_blocked=False,
            reserved_cost_usd=0.0,
            version=1,
        )
        self.db.add(record)
        try:
            self.commit("create rate limit record")
        except IntegrityError:
            # Another worker inserted the row first; use theirs.
            return self.reload(user_id)
        return record

    def compare_and_set(self, user_id: str, expected_version: int, **fields) -> bool:
        """Write *fields* and bump the version iff the row is still at *expected_version*."""
        stmt = (
            update(RateLimitRecord)
            .where(
                RateLimitRecord.user_id == user_id,
                RateLimitRecord.version == expected_version,
            )
            .values(version=expected_version + 1, **fields)
            .execution_options(synchronize_session=False)
        )
        with storage_errors(self.db, "rate limit update"):
            result = self.db.execute(stmt)
            self.db.commit()
        self.db.expire_all()
        return result.rowcount == 1

    def reload(self, user_id: str) -> RateLimitRecord:
        self.db.expire_all()
        return self.get_by_id(user_id)
