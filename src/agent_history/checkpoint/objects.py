"""Git object database and ref store backed by dulwich.

The store directory is a bare-format repository, so external tools can
inspect it with ``git --git-dir=<store>``. All dulwich calls are blocking
and run in worker threads.
"""

import asyncio
import os
import stat
import struct
import time
import zlib
from abc import ABC, abstractmethod
from dataclasses import dataclass
from pathlib import Path
from typing import Dict, Iterable, List, Optional, Tuple

import aiofiles.os
from dulwich.errors import NotGitRepository, ObjectFormatException
from dulwich.file import FileLocked
from dulwich.index import Index, IndexEntry, commit_tree
from dulwich.objects import Blob, Commit, Tree
from dulwich.repo import Repo

from .results import CommitInfo, Signature
from ..utils.errors import (
    CommitNotFoundError,
    ObjectStoreIOError,
    RefUpdateConflictError,
    RepositoryNotInitializedError,
    error_context,
)
from ..utils.logging import get_logger
from ..utils.validators import normalize_oid

logger = get_logger(__name__)

MODE_FILE = 0o100644
MODE_EXECUTABLE = 0o100755
INDEX_FILE = "index"

_CORRUPT_OBJECT_ERRORS = (ObjectFormatException, zlib.error)
# dulwich rejects a bad index header with AssertionError
_CORRUPT_INDEX_ERRORS = (AssertionError, ValueError, struct.error)


@dataclass(frozen=True)
class TreeEntry:
    """A file recorded in a tree, keyed by its project-relative path"""
    path: str
    oid: str
    mode: int = MODE_FILE

    @property
    def executable(self) -> bool:
        return self.mode == MODE_EXECUTABLE


@dataclass(frozen=True)
class IndexRecord:
    """Stat cache for one tracked file"""
    oid: str
    mode: int
    size: int
    mtime_ns: int


def file_mode(st: os.stat_result) -> int:
    """Git mode for a regular file."""
    return MODE_EXECUTABLE if st.st_mode & stat.S_IXUSR else MODE_FILE


def _mtime_ns(value) -> int:
    # Index entries carry (sec, nsec) tuples or plain numbers depending on origin
    if isinstance(value, tuple):
        return int(value[0]) * 1_000_000_000 + int(value[1])
    return int(float(value) * 1_000_000_000)


class RefStore(ABC):
    """Persistence of the single branch pointer and the staging state"""

    @abstractmethod
    async def read_ref(self) -> Optional[str]:
        """Current branch OID, or None when the branch is unborn."""

    @abstractmethod
    async def write_ref(self, new_oid: str, expected_oid: Optional[str]) -> None:
        """Compare-and-swap the branch pointer.

        Raises:
            RefUpdateConflictError: If the branch no longer points at expected_oid
        """

    @abstractmethod
    async def force_ref(self, new_oid: str) -> None:
        """Point the branch at new_oid unconditionally."""

    @abstractmethod
    async def clear_index(self) -> None:
        """Drop any staged-but-uncommitted state."""


class DulwichRefStore(RefStore):
    """Ref store over a dulwich disk refs container"""

    def __init__(self, repo: Repo, ref_name: bytes, index_path: Path):
        self._repo = repo
        self.ref_name = ref_name
        self.index_path = index_path

    async def read_ref(self) -> Optional[str]:
        with error_context("ref_store", "read_ref", ref=self.ref_name.decode()):
            value = await asyncio.to_thread(self._repo.refs.read_ref, self.ref_name)
        if value is None:
            return None
        return normalize_oid(value.decode("ascii", errors="replace").strip())

    async def write_ref(self, new_oid: str, expected_oid: Optional[str]) -> None:
        new = new_oid.encode("ascii")

        def _swap() -> bool:
            if expected_oid is None:
                return self._repo.refs.add_if_new(self.ref_name, new)
            return self._repo.refs.set_if_equals(
                self.ref_name, expected_oid.encode("ascii"), new
            )

        try:
            with error_context("ref_store", "write_ref", ref=self.ref_name.decode()):
                updated = await asyncio.to_thread(_swap)
        except FileLocked as e:
            raise RefUpdateConflictError(
                f"Branch {self.ref_name.decode()} is locked by another writer",
                cause=e,
                expected=expected_oid,
            ) from e

        if not updated:
            current = await self.read_ref()
            logger.warning(
                "ref_update_conflict",
                ref=self.ref_name.decode(),
                expected=expected_oid,
                current=current,
            )
            raise RefUpdateConflictError(
                f"Branch {self.ref_name.decode()} moved from {expected_oid} to {current}",
                expected=expected_oid,
                current=current,
            )

    async def force_ref(self, new_oid: str) -> None:
        def _set() -> None:
            self._repo.refs[self.ref_name] = new_oid.encode("ascii")

        try:
            with error_context("ref_store", "force_ref", ref=self.ref_name.decode()):
                await asyncio.to_thread(_set)
        except FileLocked as e:
            raise RefUpdateConflictError(
                f"Branch {self.ref_name.decode()} is locked by another writer",
                cause=e,
            ) from e

    async def clear_index(self) -> None:
        with error_context("ref_store", "clear_index"):
            if await aiofiles.os.path.exists(self.index_path):
                await aiofiles.os.remove(self.index_path)
                logger.debug("index_cleared", path=str(self.index_path))


class ObjectDatabase:
    """Blob, tree and commit storage for one history repository

    Args:
        repo: Open dulwich repository on the store directory
        branch: Name of the tracked branch
    """

    def __init__(self, repo: Repo, branch: str = "main"):
        self._repo = repo
        self.store_path = Path(repo.path)
        self.branch = branch
        self.ref_name = f"refs/heads/{branch}".encode("utf-8")
        self.index_path = self.store_path / INDEX_FILE
        self.refs: RefStore = DulwichRefStore(repo, self.ref_name, self.index_path)

    @classmethod
    async def create(cls, store_path: Path, branch: str = "main") -> "ObjectDatabase":
        """Create an empty bare repository with HEAD on the given branch"""
        store_path = Path(store_path)

        def _init() -> Repo:
            os.makedirs(store_path, exist_ok=True)
            repo = Repo.init_bare(str(store_path))
            repo.refs.set_symbolic_ref(b"HEAD", f"refs/heads/{branch}".encode("utf-8"))
            return repo

        with error_context("object_database", "create", path=str(store_path)):
            repo = await asyncio.to_thread(_init)

        logger.info("object_store_created", path=str(store_path), branch=branch)
        return cls(repo, branch)

    @classmethod
    async def open(cls, store_path: Path, branch: str = "main") -> "ObjectDatabase":
        """
        Open an existing repository.

        Raises:
            RepositoryNotInitializedError: If the store is missing, is not a
                repository, or has no symbolic HEAD
        """
        store_path = Path(store_path)

        def _open() -> Repo:
            repo = Repo(str(store_path))
            head = repo.refs.read_ref(b"HEAD")
            if head is None or not head.startswith(b"ref: "):
                repo.close()
                raise RepositoryNotInitializedError(
                    f"History repository at {store_path} has no symbolic HEAD",
                    path=str(store_path),
                )
            return repo

        if not await aiofiles.os.path.isdir(store_path):
            raise RepositoryNotInitializedError(
                f"History repository not found at {store_path}",
                path=str(store_path),
            )
        try:
            with error_context("object_database", "open", path=str(store_path)):
                repo = await asyncio.to_thread(_open)
        except NotGitRepository as e:
            raise RepositoryNotInitializedError(
                f"{store_path} is not a history repository",
                cause=e,
                path=str(store_path),
            ) from e

        return cls(repo, branch)

    def close(self) -> None:
        self._repo.close()

    # Blobs

    async def write_blob(self, data: bytes) -> str:
        def _write() -> str:
            blob = Blob.from_string(data)
            self._repo.object_store.add_object(blob)
            return blob.id.decode("ascii")

        with error_context("object_database", "write_blob", size=len(data)):
            return await asyncio.to_thread(_write)

    async def read_blob(self, oid: str) -> bytes:
        """Raw content of a blob.

        Raises:
            ObjectStoreIOError: If the blob is missing or unreadable
        """
        def _read() -> bytes:
            obj = self._repo.object_store[oid.encode("ascii")]
            if not isinstance(obj, Blob):
                raise ObjectStoreIOError(f"Object {oid} is not a blob", oid=oid)
            return obj.as_raw_string()

        try:
            with error_context("object_database", "read_blob", oid=oid):
                return await asyncio.to_thread(_read)
        except KeyError as e:
            raise ObjectStoreIOError(f"Blob {oid} is missing from the object store", cause=e, oid=oid) from e
        except _CORRUPT_OBJECT_ERRORS as e:
            raise ObjectStoreIOError(f"Blob {oid} is corrupt", cause=e, oid=oid) from e

    # Trees

    async def write_tree(self, entries: Iterable[TreeEntry]) -> str:
        """Write nested trees for a flat set of file entries; returns the root tree OID"""
        blobs = [
            (os.fsencode(e.path), e.oid.encode("ascii"), e.mode)
            for e in entries
        ]

        def _write() -> str:
            if not blobs:
                tree = Tree()
                self._repo.object_store.add_object(tree)
                return tree.id.decode("ascii")
            return commit_tree(self._repo.object_store, blobs).decode("ascii")

        with error_context("object_database", "write_tree", entries=len(blobs)):
            return await asyncio.to_thread(_write)

    async def flatten_tree(self, tree_oid: str) -> Dict[str, TreeEntry]:
        """
        Map every file path in a tree to its entry.

        Subtrees are walked with an explicit stack. Submodule entries are
        skipped.
        """
        def _walk() -> Dict[str, TreeEntry]:
            files: Dict[str, TreeEntry] = {}
            stack: List[Tuple[bytes, bytes]] = [(b"", tree_oid.encode("ascii"))]
            while stack:
                prefix, sha = stack.pop()
                tree = self._repo.object_store[sha]
                if not isinstance(tree, Tree):
                    raise ObjectStoreIOError(f"Object {sha.decode()} is not a tree")
                for item in tree.items():
                    path = prefix + item.path
                    if stat.S_ISDIR(item.mode):
                        stack.append((path + b"/", item.sha))
                    elif stat.S_ISREG(item.mode):
                        rel = os.fsdecode(path)
                        files[rel] = TreeEntry(rel, item.sha.decode("ascii"), item.mode)
            return files

        try:
            with error_context("object_database", "flatten_tree", tree=tree_oid):
                return await asyncio.to_thread(_walk)
        except KeyError as e:
            raise ObjectStoreIOError(f"Tree {tree_oid} is incomplete", cause=e, tree=tree_oid) from e
        except _CORRUPT_OBJECT_ERRORS as e:
            raise ObjectStoreIOError(f"Tree {tree_oid} is corrupt", cause=e, tree=tree_oid) from e

    # Commits

    async def write_commit(
        self,
        tree_oid: str,
        parents: List[str],
        message: str,
        author: str,
        timestamp: Optional[int] = None,
    ) -> str:
        """
        Write a commit object.

        Args:
            tree_oid: Root tree
            parents: Parent commit OIDs (zero or one)
            message: Commit message, stored verbatim
            author: ``Name <email>`` used for author and committer
            timestamp: Seconds since epoch (defaults to now)

        Returns:
            New commit OID
        """
        when = int(time.time()) if timestamp is None else int(timestamp)

        def _write() -> str:
            commit = Commit()
            commit.tree = tree_oid.encode("ascii")
            commit.parents = [p.encode("ascii") for p in parents]
            commit.author = commit.committer = author.encode("utf-8")
            commit.author_time = commit.commit_time = when
            commit.author_timezone = commit.commit_timezone = 0
            commit.message = message.encode("utf-8")
            self._repo.object_store.add_object(commit)
            return commit.id.decode("ascii")

        with error_context("object_database", "write_commit", tree=tree_oid):
            return await asyncio.to_thread(_write)

    async def read_commit(self, oid: str) -> CommitInfo:
        """
        Decode a commit.

        Raises:
            CommitNotFoundError: If oid is malformed, missing, or names a
                non-commit object
        """
        normalized = normalize_oid(oid)
        if normalized is None:
            raise CommitNotFoundError(f"Invalid commit id: {oid!r}", oid=oid)

        def _read() -> Commit:
            return self._repo.object_store[normalized.encode("ascii")]

        try:
            with error_context("object_database", "read_commit", oid=normalized):
                obj = await asyncio.to_thread(_read)
        except KeyError as e:
            raise CommitNotFoundError(f"Commit {normalized} not found", cause=e, oid=normalized) from e
        except _CORRUPT_OBJECT_ERRORS as e:
            raise ObjectStoreIOError(f"Object {normalized} is corrupt", cause=e, oid=normalized) from e

        if not isinstance(obj, Commit):
            raise CommitNotFoundError(
                f"Object {normalized} is a {obj.type_name.decode()}, not a commit",
                oid=normalized,
            )

        return CommitInfo(
            oid=normalized,
            tree=obj.tree.decode("ascii"),
            parents=[p.decode("ascii") for p in obj.parents],
            message=obj.message.decode("utf-8", errors="replace"),
            author=Signature.parse(obj.author, obj.author_time, obj.author_timezone),
            committer=Signature.parse(obj.committer, obj.commit_time, obj.commit_timezone),
        )

    async def resolve_ref(self, name: str) -> Optional[str]:
        """Follow a full ref name (symbolic refs included) to an OID, or None"""
        def _resolve() -> Optional[bytes]:
            try:
                return self._repo.refs[name.encode("utf-8")]
            except KeyError:
                return None

        with error_context("object_database", "resolve_ref", ref=name):
            value = await asyncio.to_thread(_resolve)
        return normalize_oid(value.decode("ascii")) if value else None

    # Staging index

    async def read_index(self) -> Dict[str, IndexRecord]:
        """Stat cache keyed by path; empty when no index exists"""
        if not await aiofiles.os.path.exists(self.index_path):
            return {}

        def _read() -> Dict[str, IndexRecord]:
            records: Dict[str, IndexRecord] = {}
            index = Index(str(self.index_path))
            for path, entry in index.items():
                sha = getattr(entry, "sha", None)
                if sha is None:
                    continue
                records[os.fsdecode(path)] = IndexRecord(
                    oid=sha.decode("ascii"),
                    mode=entry.mode,
                    size=entry.size,
                    mtime_ns=_mtime_ns(entry.mtime),
                )
            return records

        try:
            with error_context("object_database", "read_index"):
                return await asyncio.to_thread(_read)
        except ObjectStoreIOError as e:
            # A damaged stat cache only costs the fast path
            logger.warning("index_unreadable", path=str(self.index_path), error=str(e.cause or e))
            return {}
        except _CORRUPT_INDEX_ERRORS as e:
            logger.warning("index_corrupt", path=str(self.index_path), error=str(e))
            return {}

    async def write_index(self, records: Dict[str, IndexRecord]) -> None:
        """Replace the staging index with exactly the given records"""
        def _write() -> None:
            index = Index(str(self.index_path), read=False)
            for path, record in records.items():
                mtime = divmod(record.mtime_ns, 1_000_000_000)
                index[os.fsencode(path)] = IndexEntry(
                    ctime=mtime,
                    mtime=mtime,
                    dev=0,
                    ino=0,
                    mode=record.mode,
                    uid=0,
                    gid=0,
                    size=record.size & 0xFFFFFFFF,
                    sha=record.oid.encode("ascii"),
                    flags=0,
                    extended_flags=0,
                )
            index.write()

        with error_context("object_database", "write_index", entries=len(records)):
            await asyncio.to_thread(_write)

    async def index_mtime_ns(self) -> Optional[int]:
        """Modification time of the index file itself"""
        try:
            st = await aiofiles.os.stat(self.index_path)
        except FileNotFoundError:
            return None
        return st.st_mtime_ns


__all__ = [
    "MODE_FILE",
    "MODE_EXECUTABLE",
    "TreeEntry",
    "IndexRecord",
    "file_mode",
    "RefStore",
    "DulwichRefStore",
    "ObjectDatabase",
]
