"""Change detection against the last checkpoint"""

import os
import stat
from dataclasses import dataclass, field
from enum import Enum
from pathlib import Path
from typing import Dict, Iterable, List, Optional

import aiofiles
import aiofiles.os

from .ignore import IgnoreResolver
from .objects import IndexRecord, ObjectDatabase, TreeEntry, file_mode
from ..utils.errors import HistoryError
from ..utils.logging import get_logger

logger = get_logger(__name__)


class FileStatus(Enum):
    """Result of the cheap status check for one path"""
    ABSENT_AT_HEAD = "absent_at_head"
    DELETED = "deleted"
    MODIFIED = "modified"
    UNMODIFIED = "unmodified"
    STALE = "stale"


@dataclass
class ChangeSet:
    """Paths that differ from HEAD, plus stat records for those that do not"""
    changed: List[str] = field(default_factory=list)
    deleted: List[str] = field(default_factory=list)
    unchanged: Dict[str, Optional[IndexRecord]] = field(default_factory=dict)

    @property
    def is_empty(self) -> bool:
        return not self.changed and not self.deleted


class ChangeDetector:
    """Decides whether working-directory files differ from the HEAD tree

    The staging index acts as a stat cache. When it cannot vouch for a
    file, the file bytes are compared with the blob recorded at HEAD, and
    that comparison is authoritative.
    """

    def __init__(
        self,
        root: Path,
        resolver: IgnoreResolver,
        db: ObjectDatabase,
        head_files: Dict[str, TreeEntry],
        index: Dict[str, IndexRecord],
        index_mtime_ns: Optional[int] = None,
    ):
        self.root = Path(root)
        self.resolver = resolver
        self.db = db
        self.head_files = head_files
        self.index = index
        self.index_mtime_ns = index_mtime_ns

    @classmethod
    async def for_head(
        cls,
        root: Path,
        resolver: IgnoreResolver,
        db: ObjectDatabase,
        head_tree: Optional[str],
    ) -> "ChangeDetector":
        """Build a detector for the given HEAD tree (None for an unborn branch)."""
        head_files = await db.flatten_tree(head_tree) if head_tree else {}
        index = await db.read_index()
        index_mtime_ns = await db.index_mtime_ns()
        return cls(root, resolver, db, head_files, index, index_mtime_ns)

    def status(self, path: str, st: Optional[os.stat_result]) -> FileStatus:
        """Cheap status check from HEAD tree, index and stat data"""
        head = self.head_files.get(path)
        if head is None:
            return FileStatus.ABSENT_AT_HEAD
        if st is None:
            return FileStatus.DELETED

        record = self.index.get(path)
        if record is None or record.oid != head.oid:
            return FileStatus.STALE
        if record.size != st.st_size & 0xFFFFFFFF:
            return FileStatus.MODIFIED
        if record.mode != file_mode(st) or record.mtime_ns != st.st_mtime_ns:
            return FileStatus.STALE
        if self.index_mtime_ns is None or record.mtime_ns >= self.index_mtime_ns:
            # Racy: the file may have changed within the index write granularity
            return FileStatus.STALE
        return FileStatus.UNMODIFIED

    async def _stat(self, path: str) -> Optional[os.stat_result]:
        """Stat a regular file; None if it is gone or not a regular file."""
        try:
            st = await aiofiles.os.stat(self.root / path, follow_symlinks=False)
        except FileNotFoundError:
            return None
        if not stat.S_ISREG(st.st_mode):
            return None
        return st

    async def _content_matches(self, path: str, head: TreeEntry) -> bool:
        async with aiofiles.open(self.root / path, "rb") as f:
            data = await f.read()
        return data == await self.db.read_blob(head.oid)

    async def _classify(self, path: str, changes: ChangeSet) -> None:
        try:
            st = await self._stat(path)
        except OSError as e:
            logger.warning("stat_failed", path=path, error=str(e))
            changes.unchanged[path] = None
            return

        status = self.status(path, st)
        if status is FileStatus.ABSENT_AT_HEAD:
            if st is not None:
                changes.changed.append(path)
        elif status is FileStatus.DELETED:
            changes.deleted.append(path)
        elif status is FileStatus.MODIFIED:
            changes.changed.append(path)
        elif status is FileStatus.UNMODIFIED:
            changes.unchanged[path] = self.index[path]
        else:
            head = self.head_files[path]
            try:
                same = await self._content_matches(path, head)
            except (OSError, HistoryError) as e:
                logger.warning("content_compare_failed", path=path, error=str(e))
                changes.unchanged[path] = None
                return
            if same and file_mode(st) == head.mode:
                changes.unchanged[path] = IndexRecord(
                    oid=head.oid,
                    mode=head.mode,
                    size=st.st_size & 0xFFFFFFFF,
                    mtime_ns=st.st_mtime_ns,
                )
            else:
                changes.changed.append(path)

    async def has_changed(self, path: str) -> bool:
        """
        Check a single path against HEAD.

        Excluded paths and paths that cannot be read report False.
        """
        if self.resolver.is_excluded(path):
            return False
        changes = ChangeSet()
        await self._classify(path, changes)
        return not changes.is_empty

    async def detect(self, paths: Iterable[str], unreadable: Iterable[str] = ()) -> ChangeSet:
        """
        Classify the scanned file set against HEAD.

        Files recorded at HEAD but absent from ``paths`` are reported as
        deleted, unless they lie under one of the ``unreadable`` directories
        ("" meaning the whole root); those keep their HEAD entry.
        """
        changes = ChangeSet()
        seen = set()
        for path in paths:
            seen.add(path)
            if self.resolver.is_excluded(path):
                continue
            await self._classify(path, changes)

        prefixes = list(unreadable)
        kept: List[str] = []
        for path in sorted(self.head_files):
            if path in seen:
                continue
            if _under_any(path, prefixes):
                changes.unchanged[path] = None
                kept.append(path)
            else:
                changes.deleted.append(path)

        if kept:
            logger.warning("unreadable_paths_kept", count=len(kept), directories=prefixes)
        changes.deleted.sort()
        logger.debug(
            "changes_detected",
            changed=len(changes.changed),
            deleted=len(changes.deleted),
            unchanged=len(changes.unchanged),
        )
        return changes


def _under_any(path: str, prefixes: List[str]) -> bool:
    return any(not p or path == p or path.startswith(p + "/") for p in prefixes)


__all__ = ["FileStatus", "ChangeSet", "ChangeDetector"]
