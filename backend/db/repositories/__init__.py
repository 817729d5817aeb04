"""Repository classes for Prunarr database operations using SQLAlchemy ORM.

Each repository wraps one table family and works on the Flask-SQLAlchemy
session, so it must be used inside an application context.
"""

from db.repositories.base import BaseRepository
from db.repositories.candidates import CandidateRepository
from db.repositories.deletions import DeletionLogRepository
from db.repositories.feedback import FeedbackRepository
from db.repositories.queue import QueueRepository
from db.repositories.rules import RuleRepository
from db.repositories.scans import ScanRepository

__all__ = [
    "BaseRepository",
    "RuleRepository",
    "ScanRepository",
    "CandidateRepository",
    "DeletionLogRepository",
    "FeedbackRepository",
    "QueueRepository",
]
