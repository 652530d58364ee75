"""Working-directory enumeration"""

import asyncio
import os
from pathlib import Path
from typing import List

from .ignore import IgnoreResolver
from ..utils.logging import get_logger

logger = get_logger(__name__)


def _list_dir(path: Path) -> List[os.DirEntry]:
    with os.scandir(path) as it:
        return list(it)


class TreeScanner:
    """Lists trackable files under a project root

    Excluded directories are pruned without being descended into and
    symbolic links are never followed. Directories that cannot be listed
    are recorded in ``skipped_dirs`` ("" for the root itself) so callers
    can tell an unreadable subtree from a deleted one.
    """

    def __init__(self, root: Path, resolver: IgnoreResolver):
        self.root = Path(root)
        self.resolver = resolver
        self.skipped_dirs: List[str] = []

    async def list_trackable_files(self) -> List[str]:
        """Sorted relative POSIX paths of every non-excluded regular file."""
        files: List[str] = []
        skipped: List[str] = []
        stack = [""]
        while stack:
            rel_dir = stack.pop()
            abs_dir = self.root / rel_dir if rel_dir else self.root
            try:
                entries = await asyncio.to_thread(_list_dir, abs_dir)
            except OSError as e:
                skipped.append(rel_dir)
                logger.warning("directory_skipped", path=rel_dir or ".", error=str(e))
                continue

            for entry in sorted(entries, key=lambda e: e.name, reverse=True):
                rel = f"{rel_dir}/{entry.name}" if rel_dir else entry.name
                try:
                    if entry.is_dir(follow_symlinks=False):
                        if not self.resolver.is_excluded(rel, is_dir=True):
                            stack.append(rel)
                    elif entry.is_file(follow_symlinks=False):
                        if not self.resolver.is_excluded(rel):
                            files.append(rel)
                except OSError as e:
                    skipped.append(rel)
                    logger.warning("entry_skipped", path=rel, error=str(e))

        files.sort()
        self.skipped_dirs = sorted(skipped)
        logger.debug(
            "scan_complete",
            root=str(self.root),
            files=len(files),
            skipped_dirs=len(self.skipped_dirs),
        )
        return files


__all__ = ["TreeScanner"]
