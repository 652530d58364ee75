"""Checkpoint engine for Agent History

This module provides a git-compatible checkpoint system with:
- Ignore-aware working-directory scanning
- Stat-cached change detection with byte-level verification
- Snapshot commits written as standard git objects
- History listing and commit lookup
- Soft or hard restore to any checkpoint
"""

from .repository import HistoryRepository
from .results import (
    ChangesResult,
    CommitInfo,
    CommitResult,
    Err,
    HeadResult,
    InitResult,
    LogResult,
    Ok,
    RestoreResult,
    Result,
    SaveResult,
    Signature,
)

__all__ = [
    "HistoryRepository",
    "Ok",
    "Err",
    "Result",
    "InitResult",
    "SaveResult",
    "HeadResult",
    "Signature",
    "CommitInfo",
    "CommitResult",
    "LogResult",
    "ChangesResult",
    "RestoreResult",
]
