"""Per-project handle over the checkpoint engine.

Every public coroutine returns ``Ok(value)`` or ``Err(kind, error)``;
``HistoryError`` raised by the components is converted at this boundary.
Callers must serialize ``save`` and ``restore`` on the same root; a lost
race surfaces as ``REF_UPDATE_CONFLICT``.
"""

from contextlib import asynccontextmanager
from pathlib import Path
from typing import AsyncIterator, Awaitable, Callable, Optional, TypeVar, Union

from .detector import ChangeDetector
from .history import HistoryReader
from .ignore import IgnoreResolver, ensure_ignore_entry
from .objects import ObjectDatabase
from .restorer import RESTORE_HARD, RESTORE_SOFT, CheckpointRestorer
from .results import (
    STATUS_NO_COMMITS,
    STATUS_SKIPPED,
    STATUS_SUCCESS,
    ChangesResult,
    CommitResult,
    Err,
    HeadResult,
    InitResult,
    LogResult,
    Ok,
    RestoreResult,
    Result,
    SaveResult,
)
from .scanner import TreeScanner
from .writer import SnapshotWriter
from ..utils.config import HistoryConfig
from ..utils.errors import (
    ErrorKind,
    HistoryError,
    InvalidArgumentError,
    error_context,
)
from ..utils.logging import get_logger
from ..utils.validators import validate_working_dir

logger = get_logger(__name__)
T = TypeVar("T")

_EXPECTED_KINDS = frozenset((
    ErrorKind.REPOSITORY_NOT_INITIALIZED,
    ErrorKind.COMMIT_NOT_FOUND,
    ErrorKind.NO_HEAD,
    ErrorKind.INVALID_ARGUMENT,
))


class HistoryRepository:
    """Checkpoint history for one project root

    Args:
        root: Project working directory
        config: Engine configuration (defaults apply when omitted)
    """

    def __init__(self, root: Union[str, Path], config: Optional[HistoryConfig] = None):
        self.root = Path(root).expanduser()
        self.config = config or HistoryConfig()

    @property
    def store_path(self) -> Path:
        return self.root / self.config.store_dir

    async def _run(self, operation: str, fn: Callable[[], Awaitable[T]]) -> Result:
        try:
            return Ok(await fn())
        except HistoryError as e:
            log = logger.info if e.kind in _EXPECTED_KINDS else logger.error
            log(
                "history_operation_failed",
                operation=operation,
                root=str(self.root),
                kind=e.kind.value,
                error=e.message,
            )
            return Err.from_error(e)

    async def _load_resolver(self, root: Path) -> IgnoreResolver:
        return await IgnoreResolver.load(
            root,
            self.config.store_dir,
            extra_patterns=self.config.extra_excludes,
            vcs_dirs=self.config.vcs_dirs,
        )

    @asynccontextmanager
    async def _open(self) -> AsyncIterator[ObjectDatabase]:
        validate_working_dir(self.root)
        db = await ObjectDatabase.open(self.store_path, self.config.branch)
        try:
            yield db
        finally:
            db.close()

    async def is_initialized(self) -> bool:
        """Whether the store exists and has a valid HEAD."""
        try:
            async with self._open():
                return True
        except HistoryError:
            return False

    async def initialize(self) -> Result:
        """
        Create the history store for this project.

        Appends the store entry to the project ignore file and commits the
        existing files when there are any. An initialized repository is
        left untouched.
        """
        async def _initialize() -> InitResult:
            root = validate_working_dir(self.root)
            if await self.is_initialized():
                logger.info("history_already_initialized", root=str(root))
                return InitResult(status=STATUS_SKIPPED, store_path=str(self.store_path))

            resolver = await self._load_resolver(root)
            existing = await TreeScanner(root, resolver).list_trackable_files()

            db = await ObjectDatabase.create(self.store_path, self.config.branch)
            try:
                with error_context("repository", "update_ignore_file", root=str(root)):
                    ignore_updated = await ensure_ignore_entry(root, self.config.effective_ignore_entry)

                initial_oid = None
                if existing:
                    resolver = await self._load_resolver(root)
                    writer = SnapshotWriter(root, db, resolver, self.config)
                    saved = await writer.save(self.config.initial_message)
                    initial_oid = saved.oid
            finally:
                db.close()

            logger.info(
                "history_initialized",
                root=str(root),
                ignore_updated=ignore_updated,
                initial_commit=initial_oid,
            )
            return InitResult(
                status=STATUS_SUCCESS,
                ignore_file_updated=ignore_updated,
                initial_commit_oid=initial_oid,
                store_path=str(self.store_path),
            )

        return await self._run("initialize", _initialize)

    async def save(self, message: Optional[str] = None) -> Result:
        """Commit the working directory; ``no_changes`` when nothing differs from HEAD."""
        async def _save() -> SaveResult:
            async with self._open() as db:
                resolver = await self._load_resolver(self.root)
                return await SnapshotWriter(self.root, db, resolver, self.config).save(message)

        return await self._run("save", _save)

    async def head_oid(self) -> Result:
        async def _head() -> HeadResult:
            async with self._open() as db:
                return HeadResult(oid=await HistoryReader(db).head_oid())

        return await self._run("head_oid", _head)

    async def last_commit(self) -> Result:
        async def _last() -> CommitResult:
            async with self._open() as db:
                info = await HistoryReader(db).last_commit()
            if info is None:
                return CommitResult(status=STATUS_NO_COMMITS)
            return CommitResult(status=STATUS_SUCCESS, commit=info)

        return await self._run("last_commit", _last)

    async def log(self, depth: Optional[int] = None, ref: Optional[str] = None) -> Result:
        """
        List commits newest first.

        Args:
            depth: Maximum number of commits
            ref: Starting point (HEAD, branch, full ref or OID)
        """
        async def _log() -> LogResult:
            async with self._open() as db:
                commits = await HistoryReader(db).log(depth=depth, start_ref=ref)
            return LogResult(status=STATUS_SUCCESS if commits else STATUS_NO_COMMITS, commits=commits)

        return await self._run("log", _log)

    async def commit(self, oid: str) -> Result:
        async def _commit() -> CommitResult:
            async with self._open() as db:
                info = await HistoryReader(db).commit(oid)
            return CommitResult(status=STATUS_SUCCESS, commit=info)

        return await self._run("commit", _commit)

    async def has_changes(self) -> Result:
        """Report files that differ from HEAD without committing."""
        async def _has_changes() -> ChangesResult:
            async with self._open() as db:
                resolver = await self._load_resolver(self.root)
                head = await HistoryReader(db).last_commit()
                detector = await ChangeDetector.for_head(
                    self.root, resolver, db, head.tree if head else None
                )
                scanner = TreeScanner(self.root, resolver)
                paths = await scanner.list_trackable_files()
                changes = await detector.detect(paths, scanner.skipped_dirs)
            return ChangesResult(changed_files=sorted(changes.changed), deleted_files=changes.deleted)

        return await self._run("has_changes", _has_changes)

    async def restore(self, target_oid: str, mode: Optional[str] = None) -> Result:
        """
        Rewind the branch and working directory to a checkpoint.

        Args:
            target_oid: Commit to restore
            mode: ``soft`` or ``hard``; defaults to the configured restore mode
        """
        async def _restore() -> RestoreResult:
            if mode is not None and mode not in (RESTORE_SOFT, RESTORE_HARD):
                raise InvalidArgumentError(f"Invalid restore mode: {mode}", mode=mode)
            async with self._open() as db:
                resolver = await self._load_resolver(self.root)
                restorer = CheckpointRestorer(self.root, db, resolver, self.config.restore_mode)
                return await restorer.restore(target_oid, mode)

        return await self._run("restore", _restore)


__all__ = ["HistoryRepository"]
