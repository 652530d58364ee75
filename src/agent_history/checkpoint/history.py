"""History traversal: HEAD resolution, commit lookup and log walking"""

from typing import List, Optional, Set

from .objects import ObjectDatabase
from .results import CommitInfo
from ..utils.errors import CommitNotFoundError, NoHeadError
from ..utils.logging import get_logger
from ..utils.validators import normalize_oid, validate_depth

logger = get_logger(__name__)


class HistoryReader:
    """Read-only view over the branch history of one repository"""

    def __init__(self, db: ObjectDatabase):
        self.db = db

    async def head_oid(self) -> str:
        """
        OID the branch currently points at.

        Raises:
            NoHeadError: If nothing has been committed yet
        """
        oid = await self.db.refs.read_ref()
        if oid is None:
            raise NoHeadError(
                f"Branch {self.db.branch} has no commits",
                branch=self.db.branch,
            )
        return oid

    async def last_commit(self) -> Optional[CommitInfo]:
        """HEAD commit, or None for an unborn branch."""
        oid = await self.db.refs.read_ref()
        if oid is None:
            return None
        return await self.db.read_commit(oid)

    async def commit(self, oid: str) -> CommitInfo:
        return await self.db.read_commit(oid)

    async def resolve(self, ref: Optional[str] = None) -> Optional[str]:
        """
        Resolve a starting point for a history walk.

        Accepts ``HEAD`` (or None), a branch name, a full ref name or a
        commit OID. Returns None only for an unborn HEAD.

        Raises:
            CommitNotFoundError: If the name resolves to nothing
        """
        if ref is None or ref == "HEAD":
            return await self.db.refs.read_ref()

        oid = normalize_oid(ref)
        if oid is not None:
            return oid

        candidates = [ref] if ref.startswith("refs/") else [f"refs/heads/{ref}", f"refs/tags/{ref}"]
        for name in candidates:
            resolved = await self.db.resolve_ref(name)
            if resolved is not None:
                return resolved

        raise CommitNotFoundError(f"Unknown ref: {ref}", ref=ref)

    async def log(self, depth: Optional[int] = None, start_ref: Optional[str] = None) -> List[CommitInfo]:
        """
        Walk first-parent links from a starting point, newest first.

        Args:
            depth: Maximum number of commits to return
            start_ref: Where to start (defaults to HEAD)

        Returns:
            Commits in order; empty for an unborn HEAD
        """
        depth = validate_depth(depth)
        current = await self.resolve(start_ref)

        commits: List[CommitInfo] = []
        seen: Set[str] = set()
        while current is not None and current not in seen:
            if depth is not None and len(commits) >= depth:
                break
            seen.add(current)
            info = await self.db.read_commit(current)
            commits.append(info)
            current = info.parents[0] if info.parents else None

        logger.debug("log_walked", start=start_ref or "HEAD", commits=len(commits), depth=depth)
        return commits

    async def ancestors(self, oid: str) -> Set[str]:
        """OIDs reachable from oid through first parents, oid included"""
        return {c.oid for c in await self.log(start_ref=oid)}


__all__ = ["HistoryReader"]
