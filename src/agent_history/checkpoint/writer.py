"""Checkpoint creation"""

from datetime import datetime, timezone
from pathlib import Path
from typing import Dict, List, Optional, Tuple

import aiofiles
import aiofiles.os

from .detector import ChangeDetector
from .ignore import IgnoreResolver
from .objects import IndexRecord, ObjectDatabase, TreeEntry, file_mode
from .results import STATUS_NO_CHANGES, STATUS_SUCCESS, SaveResult
from .scanner import TreeScanner
from ..utils.config import HistoryConfig
from ..utils.errors import HistoryError
from ..utils.logging import get_logger

logger = get_logger(__name__)


def default_message(prefix: str, now: Optional[datetime] = None) -> str:
    """``<prefix> - <ISO-8601 UTC with milliseconds>``"""
    now = now or datetime.now(timezone.utc)
    stamp = now.astimezone(timezone.utc).isoformat(timespec="milliseconds").replace("+00:00", "Z")
    return f"{prefix} - {stamp}"


class SnapshotWriter:
    """Stages changed files and commits the complete working tree

    The branch ref update is the commit point: objects written before a
    failed ref update are unreachable but harmless.
    """

    def __init__(
        self,
        root: Path,
        db: ObjectDatabase,
        resolver: IgnoreResolver,
        config: HistoryConfig,
    ):
        self.root = Path(root)
        self.db = db
        self.resolver = resolver
        self.config = config
        self.scanner = TreeScanner(self.root, resolver)

    async def _stage(self, path: str) -> Optional[Tuple[TreeEntry, IndexRecord]]:
        """Write one file as a blob; None if it cannot be read."""
        abs_path = self.root / path
        try:
            st = await aiofiles.os.stat(abs_path, follow_symlinks=False)
            async with aiofiles.open(abs_path, "rb") as f:
                data = await f.read()
        except OSError as e:
            logger.warning("stage_failed", path=path, error=str(e))
            return None

        oid = await self.db.write_blob(data)
        mode = file_mode(st)
        return (
            TreeEntry(path, oid, mode),
            IndexRecord(oid=oid, mode=mode, size=len(data) & 0xFFFFFFFF, mtime_ns=st.st_mtime_ns),
        )

    async def save(self, message: Optional[str] = None) -> SaveResult:
        """
        Commit the working directory if anything changed since HEAD.

        Args:
            message: Commit message; defaults to the configured prefix plus
                a timestamp

        Returns:
            SaveResult with status ``success`` or ``no_changes``

        Raises:
            RefUpdateConflictError: If another writer advanced the branch
        """
        expected_head = await self.db.refs.read_ref()
        head_commit = await self.db.read_commit(expected_head) if expected_head else None
        detector = await ChangeDetector.for_head(
            self.root, self.resolver, self.db, head_commit.tree if head_commit else None
        )

        paths = await self.scanner.list_trackable_files()
        changes = await detector.detect(paths, self.scanner.skipped_dirs)
        if changes.is_empty:
            logger.info("save_skipped_no_changes", root=str(self.root), head=expected_head)
            return SaveResult(status=STATUS_NO_CHANGES)

        entries: Dict[str, TreeEntry] = {}
        records: Dict[str, IndexRecord] = {}
        for path, record in changes.unchanged.items():
            head_entry = detector.head_files.get(path)
            if head_entry is None:
                continue
            entries[path] = head_entry
            if record is not None:
                records[path] = record

        staged: List[str] = []
        for path in changes.changed:
            result = await self._stage(path)
            if result is None:
                if path in detector.head_files:
                    entries[path] = detector.head_files[path]
                continue
            entries[path], records[path] = result
            staged.append(path)

        if not staged and not changes.deleted:
            logger.info("save_skipped_unreadable", root=str(self.root), attempted=len(changes.changed))
            return SaveResult(status=STATUS_NO_CHANGES)

        tree_oid = await self.db.write_tree(entries.values())
        oid = await self.db.write_commit(
            tree_oid,
            [expected_head] if expected_head else [],
            message if message is not None else default_message(self.config.message_prefix),
            self.config.author,
        )
        await self.db.refs.write_ref(oid, expected_head)

        try:
            await self.db.write_index(records)
        except HistoryError as e:
            # The commit stands; a missing index only disables the fast path
            logger.warning("index_refresh_failed", error=str(e))
            await self.db.refs.clear_index()

        logger.info(
            "snapshot_committed",
            oid=oid,
            parent=expected_head,
            files=len(staged),
            deleted=len(changes.deleted),
            tracked=len(entries),
        )
        return SaveResult(
            status=STATUS_SUCCESS,
            oid=oid,
            files=sorted(staged),
            deleted_files=list(changes.deleted),
        )


__all__ = ["SnapshotWriter", "default_message"]
