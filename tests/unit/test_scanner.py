"""
Unit tests for working-directory scanning.
"""

import os

import pytest

from agent_history.checkpoint.ignore import IgnoreResolver
from agent_history.checkpoint import scanner as scanner_module
from agent_history.checkpoint.scanner import TreeScanner

from tests.fixtures.files import write_file


@pytest.fixture
def resolver():
    return IgnoreResolver(".agent/history", ["*.log", "build/"])


class TestTreeScanner:
    """Test trackable file enumeration."""

    @pytest.mark.asyncio
    async def test_lists_nested_files(self, tmp_path, resolver):
        write_file(tmp_path, "a.txt", "a")
        write_file(tmp_path, "src/pkg/mod.py", "x = 1")
        write_file(tmp_path, "src/README", "readme")

        files = await TreeScanner(tmp_path, resolver).list_trackable_files()

        assert files == ["a.txt", "src/README", "src/pkg/mod.py"]

    @pytest.mark.asyncio
    async def test_skips_store_and_vcs_metadata(self, tmp_path, resolver):
        write_file(tmp_path, "keep.txt", "k")
        write_file(tmp_path, ".agent/history/HEAD", "ref: refs/heads/main\n")
        write_file(tmp_path, ".git/config", "[core]")
        write_file(tmp_path, "lib/.svn/entries", "x")

        files = await TreeScanner(tmp_path, resolver).list_trackable_files()

        assert files == ["keep.txt"]

    @pytest.mark.asyncio
    async def test_applies_ignore_patterns(self, tmp_path, resolver):
        write_file(tmp_path, "app.py", "print()")
        write_file(tmp_path, "debug.log", "noise")
        write_file(tmp_path, "build/out.bin", b"\x00")

        files = await TreeScanner(tmp_path, resolver).list_trackable_files()

        assert files == ["app.py"]

    @pytest.mark.asyncio
    async def test_does_not_descend_into_excluded_directory(self, tmp_path, monkeypatch):
        write_file(tmp_path, "build/deep/file.txt", "x")
        write_file(tmp_path, "src/file.txt", "y")
        resolver = IgnoreResolver(".agent/history", ["build/"])
        checked = []
        original = resolver.is_excluded

        def spy(path, is_dir=False):
            checked.append(path)
            return original(path, is_dir)

        monkeypatch.setattr(resolver, "is_excluded", spy)

        files = await TreeScanner(tmp_path, resolver).list_trackable_files()

        assert files == ["src/file.txt"]
        assert not any(p.startswith("build/") for p in checked)

    @pytest.mark.asyncio
    async def test_skips_symlinks(self, tmp_path, resolver):
        write_file(tmp_path, "real.txt", "data")
        os.symlink(tmp_path / "real.txt", tmp_path / "link.txt")
        os.symlink(tmp_path / "src", tmp_path / "linked_dir")
        write_file(tmp_path, "src/inner.txt", "i")

        files = await TreeScanner(tmp_path, resolver).list_trackable_files()

        assert files == ["real.txt", "src/inner.txt"]

    @pytest.mark.asyncio
    async def test_non_ascii_names(self, tmp_path, resolver):
        write_file(tmp_path, "données/été.txt", "chaud")
        write_file(tmp_path, "日本語.md", "テキスト")

        files = await TreeScanner(tmp_path, resolver).list_trackable_files()

        assert files == ["données/été.txt", "日本語.md"]

    @pytest.mark.asyncio
    @pytest.mark.skipif(os.name != "posix" or os.geteuid() == 0, reason="permissions are not enforced")
    async def test_unreadable_directory_is_skipped(self, tmp_path, resolver):
        write_file(tmp_path, "ok.txt", "ok")
        locked = tmp_path / "locked"
        write_file(tmp_path, "locked/secret.txt", "s")
        locked.chmod(0)
        try:
            files = await TreeScanner(tmp_path, resolver).list_trackable_files()
        finally:
            locked.chmod(0o755)

        assert files == ["ok.txt"]

    @pytest.mark.asyncio
    async def test_failed_listing_is_recorded(self, tmp_path, resolver, monkeypatch):
        write_file(tmp_path, "ok.txt", "ok")
        write_file(tmp_path, "locked/secret.txt", "s")
        write_file(tmp_path, "locked/inner/deep.txt", "d")
        original = scanner_module._list_dir

        def failing(path):
            if path == tmp_path / "locked":
                raise PermissionError(13, "Permission denied", str(path))
            return original(path)

        monkeypatch.setattr(scanner_module, "_list_dir", failing)
        scanner = TreeScanner(tmp_path, resolver)

        files = await scanner.list_trackable_files()

        assert files == ["ok.txt"]
        assert scanner.skipped_dirs == ["locked"]

    @pytest.mark.asyncio
    async def test_unreadable_root_is_recorded(self, tmp_path, resolver, monkeypatch):
        write_file(tmp_path, "a.txt", "a")

        def failing(path):
            raise PermissionError(13, "Permission denied", str(path))

        monkeypatch.setattr(scanner_module, "_list_dir", failing)
        scanner = TreeScanner(tmp_path, resolver)

        assert await scanner.list_trackable_files() == []
        assert scanner.skipped_dirs == [""]

    @pytest.mark.asyncio
    async def test_skipped_dirs_reset_between_scans(self, tmp_path, resolver):
        write_file(tmp_path, "a.txt", "a")
        scanner = TreeScanner(tmp_path, resolver)
        scanner.skipped_dirs = ["stale"]

        await scanner.list_trackable_files()

        assert scanner.skipped_dirs == []

    @pytest.mark.asyncio
    async def test_empty_directory(self, tmp_path, resolver):
        (tmp_path / "empty").mkdir()

        assert await TreeScanner(tmp_path, resolver).list_trackable_files() == []
