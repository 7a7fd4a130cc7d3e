"""Persistence module.

Provides:
- DocumentStore: SQLite-backed document store (get / query / add / upsert)
- LearnerRepository: learner-scoped access to profiles, plans and progress
"""

from studycoach.db.document_store import DocumentStore
from studycoach.db.repositories import LearnerRepository

__all__ = ["DocumentStore", "LearnerRepository"]
