"""
Organization module for file relocation operations.

This module handles sorting files into a chronological directory structure,
moving and deleting files, with collision-safe naming, post-transfer
verification and rollback capability.
"""

from .file_organizer import FileOrganizer
from .strategy import OrganizationStrategy, candidate_names, reserve_target_path
from .transaction import TransactionLog, TransactionOperation, TransactionStatus

__all__ = [
    "FileOrganizer",
    "OrganizationStrategy",
    "candidate_names",
    "reserve_target_path",
    "TransactionLog",
    "TransactionOperation",
    "TransactionStatus",
]
