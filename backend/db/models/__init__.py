"""SQLAlchemy ORM models for the Prunarr database.

All models use Flask-SQLAlchemy's db.Model as the base class.
Import all models from here to ensure Alembic autogenerate detects them.
"""

from db.models.maintenance import (
    ActionType,
    MaintenanceCandidate,
    MaintenanceDeletionLog,
    MaintenanceRule,
    MaintenanceScan,
    MarkType,
    MediaType,
    ReviewStatus,
    ScanStatus,
    UserMediaMark,
)
from db.models.queue import QueueJob

__all__ = [
    # maintenance
    "MaintenanceRule",
    "MaintenanceScan",
    "MaintenanceCandidate",
    "MaintenanceDeletionLog",
    "UserMediaMark",
    # queue
    "QueueJob",
    # enums
    "MediaType",
    "ActionType",
    "ScanStatus",
    "ReviewStatus",
    "MarkType",
]
