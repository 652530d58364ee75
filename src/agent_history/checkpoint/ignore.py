"""Ignore rules for tracked paths.

Paths are project-relative POSIX strings. Fixed exclusions (the object
store and VCS metadata directories) always win over ignore-file rules.
"""

from pathlib import Path
from typing import Iterable, List, Optional, Sequence

import aiofiles
import aiofiles.os
import pathspec

from ..utils.logging import get_logger

logger = get_logger(__name__)

IGNORE_FILE = ".gitignore"
DEFAULT_VCS_DIRS = (".git", ".hg", ".svn", ".bzr")


def _normalize(path: str) -> str:
    return path.replace("\\", "/").strip("/")


class IgnoreResolver:
    """Decides whether a project-relative path is excluded from tracking.

    Args:
        store_dir: Object store directory, relative to the project root
        patterns: gitignore-style patterns
        vcs_dirs: Directory names excluded at any depth
    """

    def __init__(
        self,
        store_dir: str,
        patterns: Optional[Iterable[str]] = None,
        vcs_dirs: Sequence[str] = DEFAULT_VCS_DIRS,
    ):
        self.store_dir = _normalize(store_dir)
        self.vcs_dirs = frozenset(vcs_dirs)
        self.patterns: List[str] = list(patterns or [])
        self._spec = pathspec.GitIgnoreSpec.from_lines(self.patterns)

    @classmethod
    async def load(
        cls,
        root: Path,
        store_dir: str,
        extra_patterns: Optional[Iterable[str]] = None,
        vcs_dirs: Sequence[str] = DEFAULT_VCS_DIRS,
    ) -> "IgnoreResolver":
        """Build a resolver from the root ignore file plus extra patterns.

        An unreadable ignore file contributes no rules.
        """
        patterns: List[str] = []
        ignore_path = Path(root) / IGNORE_FILE
        if await aiofiles.os.path.isfile(ignore_path):
            try:
                async with aiofiles.open(ignore_path, "r", encoding="utf-8", errors="replace") as f:
                    patterns.extend((await f.read()).splitlines())
            except OSError as e:
                logger.warning("ignore_file_unreadable", path=str(ignore_path), error=str(e))

        patterns.extend(extra_patterns or [])
        return cls(store_dir, patterns, vcs_dirs)

    def is_fixed_exclusion(self, path: str) -> bool:
        """Store subtree or VCS metadata; not overridable by patterns."""
        rel = _normalize(path)
        if rel == self.store_dir or rel.startswith(self.store_dir + "/"):
            return True
        return any(part in self.vcs_dirs for part in rel.split("/"))

    def is_excluded(self, path: str, is_dir: bool = False) -> bool:
        """
        Check whether a path is excluded from tracking.

        Args:
            path: Project-relative path
            is_dir: Whether the path names a directory

        Returns:
            True if the path must not be tracked
        """
        rel = _normalize(path)
        if not rel:
            return False
        if self.is_fixed_exclusion(rel):
            return True
        if rel == IGNORE_FILE:
            return False

        # A file below an excluded directory cannot be re-included
        parts = rel.split("/")
        for i in range(1, len(parts)):
            if self._spec.match_file("/".join(parts[:i]) + "/"):
                return True

        return self._spec.match_file(rel + "/" if is_dir else rel)


async def ensure_ignore_entry(root: Path, entry: str) -> bool:
    """
    Append an entry to the project's ignore file if it is not present.

    Existing lines are kept in order. The file is created when missing.

    Args:
        root: Project root
        entry: Ignore-file line to ensure

    Returns:
        True if the file was written
    """
    ignore_path = Path(root) / IGNORE_FILE
    content = ""
    if await aiofiles.os.path.exists(ignore_path):
        async with aiofiles.open(ignore_path, "r", encoding="utf-8", errors="replace") as f:
            content = await f.read()

    wanted = {entry.strip(), entry.strip().rstrip("/"), "/" + entry.strip()}
    if any(line.strip() in wanted for line in content.splitlines()):
        logger.debug("ignore_entry_present", path=str(ignore_path), entry=entry)
        return False

    body = content.rstrip()
    new_content = f"{body}\n{entry}\n" if body else f"{entry}\n"
    async with aiofiles.open(ignore_path, "w", encoding="utf-8") as f:
        await f.write(new_content)

    logger.info("ignore_entry_added", path=str(ignore_path), entry=entry)
    return True


__all__ = [
    "IGNORE_FILE",
    "DEFAULT_VCS_DIRS",
    "IgnoreResolver",
    "ensure_ignore_entry",
]
