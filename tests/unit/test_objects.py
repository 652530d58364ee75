"""
Unit tests for the git object database and ref store.
"""

import hashlib
import os

import pytest
from dulwich.repo import Repo

from agent_history.checkpoint.objects import (
    MODE_EXECUTABLE,
    MODE_FILE,
    IndexRecord,
    ObjectDatabase,
    TreeEntry,
)
from agent_history.utils.errors import (
    CommitNotFoundError,
    ObjectStoreIOError,
    RefUpdateConflictError,
    RepositoryNotInitializedError,
)

EMPTY_TREE = "4b825dc642cb6eb9a060e54bf8d69288fbee4904"
AUTHOR = "Agent History <history@agent-history.local>"


@pytest.fixture
async def db(tmp_path):
    database = await ObjectDatabase.create(tmp_path / ".agent" / "history")
    yield database
    database.close()


class TestRepositoryLifecycle:
    """Test creating and opening stores."""

    @pytest.mark.asyncio
    async def test_create_sets_symbolic_head(self, tmp_path):
        store = tmp_path / "store"
        db = await ObjectDatabase.create(store, branch="main")
        db.close()

        assert (store / "objects").is_dir()
        assert (store / "HEAD").read_text().strip() == "ref: refs/heads/main"

    @pytest.mark.asyncio
    async def test_open_existing(self, tmp_path):
        store = tmp_path / "store"
        (await ObjectDatabase.create(store)).close()

        db = await ObjectDatabase.open(store)
        try:
            assert db.ref_name == b"refs/heads/main"
            assert await db.refs.read_ref() is None
        finally:
            db.close()

    @pytest.mark.asyncio
    async def test_open_missing_directory(self, tmp_path):
        with pytest.raises(RepositoryNotInitializedError):
            await ObjectDatabase.open(tmp_path / "nope")

    @pytest.mark.asyncio
    async def test_open_plain_directory(self, tmp_path):
        (tmp_path / "plain").mkdir()

        with pytest.raises(RepositoryNotInitializedError) as exc_info:
            await ObjectDatabase.open(tmp_path / "plain")
        assert exc_info.value.cause is not None


class TestObjects:
    """Test blob, tree and commit storage."""

    @pytest.mark.asyncio
    async def test_blob_id_matches_git(self, db):
        oid = await db.write_blob(b"hello")

        assert oid == hashlib.sha1(b"blob 5\x00hello").hexdigest()
        assert await db.read_blob(oid) == b"hello"

    @pytest.mark.asyncio
    async def test_empty_and_binary_blobs(self, db):
        payload = bytes(range(256)) * 3

        empty = await db.write_blob(b"")
        binary = await db.write_blob(payload)

        assert await db.read_blob(empty) == b""
        assert await db.read_blob(binary) == payload

    @pytest.mark.asyncio
    async def test_read_missing_blob(self, db):
        with pytest.raises(ObjectStoreIOError):
            await db.read_blob("0" * 40)

    @pytest.mark.asyncio
    async def test_empty_tree(self, db):
        assert await db.write_tree([]) == EMPTY_TREE
        assert await db.flatten_tree(EMPTY_TREE) == {}

    @pytest.mark.asyncio
    async def test_nested_tree_round_trip(self, db):
        a = await db.write_blob(b"a")
        b = await db.write_blob(b"b")
        entries = [
            TreeEntry("top.txt", a),
            TreeEntry("src/pkg/mod.py", b),
            TreeEntry("src/run.sh", a, MODE_EXECUTABLE),
            TreeEntry("données/été.txt", b),
        ]

        tree = await db.write_tree(entries)
        files = await db.flatten_tree(tree)

        assert set(files) == {"top.txt", "src/pkg/mod.py", "src/run.sh", "données/été.txt"}
        assert files["src/run.sh"].mode == MODE_EXECUTABLE
        assert files["src/run.sh"].executable
        assert files["top.txt"].mode == MODE_FILE
        assert files["src/pkg/mod.py"].oid == b

    @pytest.mark.asyncio
    async def test_tree_id_is_content_addressed(self, db):
        a = await db.write_blob(b"a")

        first = await db.write_tree([TreeEntry("x/y.txt", a)])
        second = await db.write_tree([TreeEntry("x/y.txt", a)])

        assert first == second

    @pytest.mark.asyncio
    async def test_commit_round_trip(self, db):
        blob = await db.write_blob(b"content")
        tree = await db.write_tree([TreeEntry("f.txt", blob)])

        root = await db.write_commit(tree, [], "first", AUTHOR, timestamp=1700000000)
        child = await db.write_commit(tree, [root], "second ✓", AUTHOR, timestamp=1700000100)
        info = await db.read_commit(child)

        assert info.oid == child
        assert info.tree == tree
        assert info.parents == [root]
        assert info.message == "second ✓"
        assert info.author.name == "Agent History"
        assert info.author.email == "history@agent-history.local"
        assert info.author.timestamp == 1700000100
        assert info.committer.timezone_offset == 0
        assert (await db.read_commit(root)).parents == []

    @pytest.mark.asyncio
    async def test_read_commit_accepts_uppercase(self, db):
        tree = await db.write_tree([])
        oid = await db.write_commit(tree, [], "msg", AUTHOR)

        assert (await db.read_commit(oid.upper())).oid == oid

    @pytest.mark.asyncio
    @pytest.mark.parametrize("bad", ["", "abc", "z" * 40, "0" * 40])
    async def test_read_commit_not_found(self, db, bad):
        with pytest.raises(CommitNotFoundError):
            await db.read_commit(bad)

    @pytest.mark.asyncio
    async def test_read_commit_rejects_non_commit(self, db):
        blob = await db.write_blob(b"not a commit")

        with pytest.raises(CommitNotFoundError):
            await db.read_commit(blob)

    @pytest.mark.asyncio
    async def test_objects_readable_by_dulwich(self, db):
        blob = await db.write_blob(b"interop")
        tree = await db.write_tree([TreeEntry("dir/file.txt", blob)])
        oid = await db.write_commit(tree, [], "interop", AUTHOR)
        await db.refs.write_ref(oid, None)

        repo = Repo(str(db.store_path))
        try:
            assert repo.head() == oid.encode()
            commit = repo[oid.encode()]
            assert commit.author == AUTHOR.encode()
            assert commit.tree == tree.encode()
        finally:
            repo.close()


class TestRefStore:
    """Test branch pointer updates."""

    @pytest.mark.asyncio
    async def test_first_write_requires_unborn_branch(self, db):
        tree = await db.write_tree([])
        first = await db.write_commit(tree, [], "one", AUTHOR)
        second = await db.write_commit(tree, [first], "two", AUTHOR)

        await db.refs.write_ref(first, None)
        assert await db.refs.read_ref() == first

        with pytest.raises(RefUpdateConflictError):
            await db.refs.write_ref(second, None)

    @pytest.mark.asyncio
    async def test_compare_and_swap(self, db):
        tree = await db.write_tree([])
        first = await db.write_commit(tree, [], "one", AUTHOR)
        second = await db.write_commit(tree, [first], "two", AUTHOR)
        third = await db.write_commit(tree, [first], "three", AUTHOR)

        await db.refs.write_ref(first, None)
        await db.refs.write_ref(second, first)

        with pytest.raises(RefUpdateConflictError) as exc_info:
            await db.refs.write_ref(third, first)
        assert exc_info.value.is_retryable
        assert await db.refs.read_ref() == second

    @pytest.mark.asyncio
    async def test_force_ref(self, db):
        tree = await db.write_tree([])
        first = await db.write_commit(tree, [], "one", AUTHOR)
        second = await db.write_commit(tree, [first], "two", AUTHOR)
        await db.refs.write_ref(second, None)

        await db.refs.force_ref(first)

        assert await db.refs.read_ref() == first
        assert (db.store_path / "refs" / "heads" / "main").read_text().strip() == first

    @pytest.mark.asyncio
    async def test_resolve_ref(self, db):
        tree = await db.write_tree([])
        oid = await db.write_commit(tree, [], "one", AUTHOR)
        await db.refs.write_ref(oid, None)

        assert await db.resolve_ref("refs/heads/main") == oid
        assert await db.resolve_ref("HEAD") == oid
        assert await db.resolve_ref("refs/heads/other") is None


class TestIndex:
    """Test the staging index stat cache."""

    @pytest.mark.asyncio
    async def test_missing_index_reads_empty(self, db):
        assert await db.read_index() == {}
        assert await db.index_mtime_ns() is None

    @pytest.mark.asyncio
    async def test_index_round_trip(self, db):
        oid = await db.write_blob(b"abc")
        records = {
            "a.txt": IndexRecord(oid=oid, mode=MODE_FILE, size=3, mtime_ns=1_700_000_000_123_456_789),
            "bin/tool": IndexRecord(oid=oid, mode=MODE_EXECUTABLE, size=3, mtime_ns=1_700_000_001_000_000_000),
            "naïve.txt": IndexRecord(oid=oid, mode=MODE_FILE, size=3, mtime_ns=5),
        }

        await db.write_index(records)

        assert await db.read_index() == records
        assert await db.index_mtime_ns() is not None

    @pytest.mark.asyncio
    async def test_corrupt_index_reads_empty(self, db):
        db.index_path.write_bytes(b"not an index file")

        assert await db.read_index() == {}

    @pytest.mark.asyncio
    async def test_clear_index(self, db):
        oid = await db.write_blob(b"abc")
        await db.write_index({"a.txt": IndexRecord(oid, MODE_FILE, 3, 1)})

        await db.refs.clear_index()
        await db.refs.clear_index()

        assert not os.path.exists(db.index_path)
        assert await db.read_index() == {}
