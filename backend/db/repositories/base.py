"""Base repository class with shared SQLAlchemy session helpers.

All repository classes inherit from BaseRepository to get access to
the Flask-SQLAlchemy scoped session and common helpers.
"""

import json
from contextlib import contextmanager
from datetime import UTC, datetime

from extensions import db

_BATCH_DEPTH = "prunarr_batch_depth"


class BaseRepository:
    """Base class for all repository classes.

    Provides access to the Flask-SQLAlchemy session and common helpers
    for commit, dict conversion, pagination and timestamp generation.

    Batch mode is tracked on the session rather than on the repository,
    so several repositories can take part in one transaction:

        with candidates.batch():
            candidates.transition(...)
            job_repo.insert(...)      # not committed yet
    """

    @property
    def session(self):
        """Return the Flask-SQLAlchemy scoped session."""
        return db.session

    def _in_batch(self) -> bool:
        return bool(self.session().info.get(_BATCH_DEPTH))

    def _commit(self):
        """Commit the current session (no-op in batch mode)."""
        if self._in_batch():
            self.session.flush()
        else:
            self.session.commit()

    @contextmanager
    def batch(self):
        """Group operations in a single transaction; nested batches join the outer one."""
        info = self.session().info
        depth = info.get(_BATCH_DEPTH, 0)
        info[_BATCH_DEPTH] = depth + 1
        try:
            yield self
            if depth == 0:
                self.session.commit()
        except Exception:
            if depth == 0:
                self.session.rollback()
            raise
        finally:
            info[_BATCH_DEPTH] = depth

    def _to_dict(self, model_instance, columns=None):
        """Convert a SQLAlchemy model instance to a dict.

        Args:
            model_instance: ORM model instance to convert.
            columns: Optional list of column names. If None, uses all
                     columns from the model's __table__.
        """
        if model_instance is None:
            return None
        if columns is None:
            columns = [c.key for c in model_instance.__table__.columns]
        return {col: getattr(model_instance, col) for col in columns}

    def _paginate(self, stmt, count_stmt, page: int, per_page: int) -> dict:
        """Run a paged select and return the standard page envelope."""
        page = max(1, int(page))
        per_page = max(1, int(per_page))
        total = self.session.execute(count_stmt).scalar() or 0
        rows = self.session.execute(
            stmt.offset((page - 1) * per_page).limit(per_page)
        ).scalars().all()
        total_pages = (total + per_page - 1) // per_page if total else 0
        return {
            "items": [self._to_dict(r) for r in rows],
            "total": total,
            "page": page,
            "per_page": per_page,
            "total_pages": total_pages,
            "has_next_page": page < total_pages,
            "has_previous_page": page > 1,
        }

    @staticmethod
    def _loads(value, default=None):
        if not value:
            return default
        try:
            return json.loads(value)
        except (TypeError, ValueError):
            return default

    def _now(self) -> str:
        """Return current UTC time as ISO format string."""
        return datetime.now(UTC).isoformat()
