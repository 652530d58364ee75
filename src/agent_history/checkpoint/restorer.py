"""Rewinding the branch and the working directory to a prior checkpoint"""

import asyncio
import os
import stat
from pathlib import Path, PurePosixPath
from typing import Dict, List, Optional, Tuple

import aiofiles
import aiofiles.os

from .history import HistoryReader
from .ignore import IgnoreResolver
from .objects import ObjectDatabase, TreeEntry
from .results import RestoreResult
from ..utils.errors import HistoryError, ObjectStoreIOError, error_context
from ..utils.logging import get_logger

logger = get_logger(__name__)

RESTORE_SOFT = "soft"
RESTORE_HARD = "hard"


def _set_executable(path: Path, executable: bool) -> None:
    mode = os.stat(path).st_mode
    if executable:
        # Grant execute wherever read is granted
        new_mode = mode | ((mode & 0o444) >> 2)
    else:
        new_mode = mode & ~0o111
    if new_mode != mode:
        os.chmod(path, stat.S_IMODE(new_mode))


class CheckpointRestorer:
    """Moves the branch to a target commit and rewrites tracked files

    In ``soft`` mode files absent from the target tree are left alone. In
    ``hard`` mode files tracked at the previous HEAD but absent from the
    target are deleted. Untracked files are never touched.
    """

    def __init__(
        self,
        root: Path,
        db: ObjectDatabase,
        resolver: IgnoreResolver,
        mode: str = RESTORE_SOFT,
    ):
        self.root = Path(root)
        self.db = db
        self.resolver = resolver
        self.reader = HistoryReader(db)
        self.mode = mode

    async def count_removed(self, previous: Optional[str], target: str) -> int:
        """Commits on the previous HEAD chain that are not ancestors of target.

        Returns 0 if the history cannot be walked.
        """
        if previous is None or previous == target:
            return 0
        try:
            target_ancestors = await self.reader.ancestors(target)
            removed = 0
            for commit in await self.reader.log(start_ref=previous):
                if commit.oid in target_ancestors:
                    break
                removed += 1
            return removed
        except HistoryError as e:
            logger.warning("commit_count_failed", previous=previous, target=target, error=str(e))
            return 0

    def _is_safe(self, rel: str) -> bool:
        parts = PurePosixPath(rel).parts
        if not parts or rel.startswith("/") or ".." in parts:
            return False
        return not self.resolver.is_fixed_exclusion(rel)

    async def _inside_root(self, directory: Path) -> bool:
        """Whether a directory, with symlinks resolved, stays under the project root."""
        root = await asyncio.to_thread(self.root.resolve)
        resolved = await asyncio.to_thread(directory.resolve)
        return resolved == root or root in resolved.parents

    async def _write_file(self, entry: TreeEntry) -> bool:
        target = self.root / entry.path
        if not await self._inside_root(target.parent):
            logger.warning("restore_path_skipped", path=entry.path, reason="parent_outside_root")
            return False
        data = await self.db.read_blob(entry.oid)
        with error_context("restorer", "write_file", path=entry.path):
            await aiofiles.os.makedirs(target.parent, exist_ok=True)
            if await aiofiles.os.path.islink(target):
                await aiofiles.os.remove(target)
            async with aiofiles.open(target, "wb") as f:
                await f.write(data)
            await asyncio.to_thread(_set_executable, target, entry.executable)
        return True

    async def restore_tree(self, tree_oid: str) -> Tuple[Dict[str, TreeEntry], int]:
        """Write every file of a tree into the working directory

        Returns the flattened tree and the number of files written.
        """
        files = await self.db.flatten_tree(tree_oid)
        written = 0
        for rel in sorted(files):
            if not self._is_safe(rel):
                logger.warning("restore_path_skipped", path=rel)
                continue
            if await self._write_file(files[rel]):
                written += 1
        return files, written

    async def _delete_extras(self, previous: Dict[str, TreeEntry], target: Dict[str, TreeEntry]) -> List[str]:
        deleted: List[str] = []
        for rel in sorted(set(previous) - set(target)):
            if not self._is_safe(rel):
                continue
            path = self.root / rel
            if not await self._inside_root(path.parent):
                logger.warning("restore_delete_skipped", path=rel, reason="parent_outside_root")
                continue
            try:
                if await aiofiles.os.path.islink(path) or not await aiofiles.os.path.isfile(path):
                    continue
                await aiofiles.os.remove(path)
                deleted.append(rel)
            except OSError as e:
                logger.warning("restore_delete_failed", path=rel, error=str(e))
                continue
            await self._prune_empty_dirs(path.parent)
        return deleted

    async def _prune_empty_dirs(self, directory: Path) -> None:
        while directory != self.root and self.root in directory.parents:
            try:
                if await aiofiles.os.listdir(directory):
                    return
                await aiofiles.os.rmdir(directory)
            except OSError:
                return
            directory = directory.parent

    async def restore(self, target_oid: str, mode: Optional[str] = None) -> RestoreResult:
        """
        Reset the branch and working directory to a commit.

        Args:
            target_oid: Commit to restore
            mode: ``soft`` or ``hard`` (defaults to the restorer's mode)

        Returns:
            RestoreResult describing the rewind

        Raises:
            CommitNotFoundError: If target_oid is not a commit
        """
        mode = mode or self.mode
        target = await self.db.read_commit(target_oid)
        previous = await self.db.refs.read_ref()
        commits_removed = await self.count_removed(previous, target.oid)

        previous_files: Dict[str, TreeEntry] = {}
        if mode == RESTORE_HARD and previous is not None:
            try:
                previous_commit = await self.db.read_commit(previous)
                previous_files = await self.db.flatten_tree(previous_commit.tree)
            except HistoryError as e:
                logger.warning("previous_tree_unavailable", previous=previous, error=str(e))

        await self.db.refs.force_ref(target.oid)
        await self.db.refs.clear_index()
        logger.info("branch_rewound", target=target.oid, previous=previous, commits_removed=commits_removed)

        try:
            target_files, written = await self.restore_tree(target.tree)
        except ObjectStoreIOError as e:
            logger.error("restore_files_failed", target=target.oid, error=str(e))
            raise

        deleted: List[str] = []
        if mode == RESTORE_HARD:
            deleted = await self._delete_extras(previous_files, target_files)

        logger.info(
            "checkpoint_restored",
            target=target.oid,
            previous=previous,
            mode=mode,
            files=written,
            deleted=len(deleted),
        )
        return RestoreResult(
            target_oid=target.oid,
            previous_head_oid=previous,
            commits_removed=commits_removed,
            mode=mode,
            files_restored=written,
            files_deleted=deleted,
        )


__all__ = ["CheckpointRestorer", "RESTORE_SOFT", "RESTORE_HARD"]
