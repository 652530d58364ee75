"""Result values returned by the history repository.

Every public operation returns ``Ok(value)`` or ``Err(kind, error)``.
Values serialize to camelCase dictionaries for the tool layer.
"""

from dataclasses import dataclass, field
from datetime import datetime, timezone, timedelta
from typing import Any, Dict, Generic, List, Optional, TypeVar, Union

from ..utils.errors import ErrorKind, HistoryError

T = TypeVar("T")

STATUS_SUCCESS = "success"
STATUS_SKIPPED = "skipped"
STATUS_NO_CHANGES = "no_changes"
STATUS_NO_COMMITS = "no_commits"


@dataclass
class Ok(Generic[T]):
    """Successful outcome carrying a value."""
    value: T

    @property
    def ok(self) -> bool:
        return True

    def unwrap(self) -> T:
        return self.value

    def to_dict(self) -> Dict[str, Any]:
        data = self.value.to_dict() if hasattr(self.value, "to_dict") else {"value": self.value}
        return {"ok": True, **data}


@dataclass
class Err:
    """Failed outcome carrying the error kind and the raised error."""
    kind: ErrorKind
    error: HistoryError

    @classmethod
    def from_error(cls, error: HistoryError) -> "Err":
        return cls(kind=error.kind, error=error)

    @property
    def ok(self) -> bool:
        return False

    def unwrap(self) -> Any:
        raise self.error

    def to_dict(self) -> Dict[str, Any]:
        return {
            "ok": False,
            "status": self.kind.value,
            "error": self.error.to_dict(),
        }


Result = Union[Ok[T], Err]


@dataclass
class InitResult:
    """Outcome of initializing a project."""
    status: str
    ignore_file_updated: bool = False
    initial_commit_oid: Optional[str] = None
    store_path: Optional[str] = None

    def to_dict(self) -> Dict[str, Any]:
        return {
            "status": self.status,
            "ignoreFileUpdated": self.ignore_file_updated,
            "initialCommitOid": self.initial_commit_oid,
            "storePath": self.store_path,
        }


@dataclass
class SaveResult:
    """Outcome of a save."""
    status: str
    oid: Optional[str] = None
    files: List[str] = field(default_factory=list)
    deleted_files: List[str] = field(default_factory=list)

    @property
    def committed(self) -> bool:
        return self.status == STATUS_SUCCESS

    @property
    def files_processed(self) -> int:
        return len(self.files) + len(self.deleted_files)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "status": self.status,
            "committed": self.committed,
            "oid": self.oid,
            "filesProcessed": self.files_processed,
            "files": list(self.files),
            "deletedFiles": list(self.deleted_files),
        }


@dataclass
class HeadResult:
    oid: str

    def to_dict(self) -> Dict[str, Any]:
        return {"oid": self.oid}


@dataclass
class Signature:
    """Author or committer of a commit."""
    name: str
    email: str
    timestamp: int
    timezone_offset: int = 0

    @classmethod
    def parse(cls, identity: bytes, timestamp: int, tz_offset: int) -> "Signature":
        """Split a raw ``Name <email>`` identity."""
        text = identity.decode("utf-8", errors="replace")
        name, _, rest = text.partition("<")
        return cls(
            name=name.strip(),
            email=rest.rstrip(">").strip(),
            timestamp=timestamp,
            timezone_offset=tz_offset,
        )

    @property
    def datetime(self) -> datetime:
        tz = timezone(timedelta(seconds=self.timezone_offset))
        return datetime.fromtimestamp(self.timestamp, tz)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "name": self.name,
            "email": self.email,
            "timestamp": self.timestamp,
            "timezoneOffset": self.timezone_offset,
        }


@dataclass
class CommitInfo:
    """A decoded commit object."""
    oid: str
    tree: str
    parents: List[str]
    message: str
    author: Signature
    committer: Signature

    def to_dict(self) -> Dict[str, Any]:
        return {
            "oid": self.oid,
            "tree": self.tree,
            "parents": list(self.parents),
            "message": self.message,
            "author": self.author.to_dict(),
            "committer": self.committer.to_dict(),
        }


@dataclass
class CommitResult:
    """A single commit lookup; ``commit`` is None only for ``no_commits``."""
    status: str
    commit: Optional[CommitInfo] = None

    def to_dict(self) -> Dict[str, Any]:
        return {
            "status": self.status,
            "commit": self.commit.to_dict() if self.commit else None,
        }


@dataclass
class LogResult:
    status: str
    commits: List[CommitInfo] = field(default_factory=list)

    @property
    def total_count(self) -> int:
        return len(self.commits)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "status": self.status,
            "commits": [c.to_dict() for c in self.commits],
            "totalCount": self.total_count,
        }


@dataclass
class ChangesResult:
    changed_files: List[str] = field(default_factory=list)
    deleted_files: List[str] = field(default_factory=list)

    @property
    def has_changes(self) -> bool:
        return bool(self.changed_files or self.deleted_files)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "hasChanges": self.has_changes,
            "changedFiles": list(self.changed_files),
            "deletedFiles": list(self.deleted_files),
        }


@dataclass
class RestoreResult:
    """Outcome of moving the branch to an earlier checkpoint."""
    target_oid: str
    previous_head_oid: Optional[str]
    commits_removed: int
    mode: str = "soft"
    files_restored: int = 0
    files_deleted: List[str] = field(default_factory=list)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "status": STATUS_SUCCESS,
            "targetOid": self.target_oid,
            "previousHeadOid": self.previous_head_oid,
            "commitsRemoved": self.commits_removed,
            "mode": self.mode,
            "filesRestored": self.files_restored,
            "filesDeleted": list(self.files_deleted),
        }


__all__ = [
    "STATUS_SUCCESS",
    "STATUS_SKIPPED",
    "STATUS_NO_CHANGES",
    "STATUS_NO_COMMITS",
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
