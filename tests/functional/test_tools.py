"""
Functional tests for the agent-facing tools and server configuration.
"""

import json

import pytest

from agent_history import server, tools
from agent_history.utils.config import HistoryConfig

from tests.fixtures.files import write_file


@pytest.fixture(autouse=True)
def reset_tools():
    tools.configure_tools(None)
    yield
    tools.configure_tools(None)


class TestTools:
    """Test tool outputs as plain dictionaries."""

    @pytest.mark.asyncio
    async def test_checkpoint_workflow(self, project_dir):
        wd = str(project_dir)

        init = await tools.init_history(wd)
        assert init["ok"] is True
        assert init["status"] == "success"
        assert init["ignoreFileUpdated"] is True
        assert init["initialCommitOid"] is None

        write_file(project_dir, "main.py", "print(1)\n")
        changes = await tools.check_changes(wd)
        assert changes["hasChanges"] is True
        assert changes["changedFiles"] == [".gitignore", "main.py"]

        first = await tools.save_to_history(wd, "first checkpoint")
        assert first["committed"] is True
        assert first["filesProcessed"] == 2

        write_file(project_dir, "main.py", "print(2)\n")
        second = await tools.save_to_history(wd)
        assert second["files"] == ["main.py"]

        head = await tools.get_head(wd)
        assert head == {"ok": True, "oid": second["oid"]}

        history = await tools.get_history(wd, depth=5)
        assert history["totalCount"] == 2
        assert history["commits"][1]["message"] == "first checkpoint"

        commit = await tools.get_commit(first["oid"], wd)
        assert commit["commit"]["oid"] == first["oid"]

        reset = await tools.reset_to_commit(first["oid"], wd)
        assert reset["ok"] is True
        assert reset["commitsRemoved"] == 1
        assert (project_dir / "main.py").read_text() == "print(1)\n"

        last = await tools.get_last_commit(wd)
        assert last["commit"]["oid"] == first["oid"]
        json.dumps(last)

    @pytest.mark.asyncio
    async def test_errors_are_returned(self, project_dir):
        wd = str(project_dir)

        save = await tools.save_to_history(wd)
        assert save["ok"] is False
        assert save["status"] == "repository_not_initialized"
        assert save["error"]["code"] == "REPOSITORY_NOT_INITIALIZED"

        await tools.init_history(wd)
        head = await tools.get_head(wd)
        assert head["status"] == "no_head"
        history = await tools.get_history(wd)
        assert history == {"ok": True, "status": "no_commits", "commits": [], "totalCount": 0}
        missing = await tools.reset_to_commit("0" * 40, wd)
        assert missing["status"] == "commit_not_found"
        bad_depth = await tools.get_history(wd, depth=-2)
        assert bad_depth["status"] == "invalid_argument"

    @pytest.mark.asyncio
    async def test_defaults_to_current_directory(self, project_dir, monkeypatch):
        monkeypatch.chdir(project_dir)

        init = await tools.init_history()

        assert init["ok"] is True
        assert (project_dir / ".agent" / "history").is_dir()

    @pytest.mark.asyncio
    async def test_configured_history_settings(self, project_dir):
        tools.configure_tools(HistoryConfig(message_prefix="Checkpoint"))
        wd = str(project_dir)
        await tools.init_history(wd)
        write_file(project_dir, "a.txt", "a")

        saved = await tools.save_to_history(wd)
        commit = await tools.get_commit(saved["oid"], wd)

        assert commit["commit"]["message"].startswith("Checkpoint - ")


class TestServerConfiguration:
    """Test loading server configuration into the tools."""

    def test_configure_applies_history_settings(self, tmp_path, monkeypatch):
        calls = {}
        monkeypatch.setattr(server, "setup_logging", lambda *args, **kwargs: calls.update(kwargs))
        config_path = tmp_path / "agent-history.json"
        config_path.write_text(json.dumps({
            "debug": True,
            "history": {"store_dir": ".checkpoints", "restore_mode": "hard"},
            "logging": {"directory": str(tmp_path / "logs")},
        }))

        config = server._configure(str(config_path))

        assert config.history.store_dir == ".checkpoints"
        assert tools._history_config is config.history
        assert calls["log_level"] == "DEBUG"
        assert calls["log_dir"] == tmp_path / "logs"

    def test_command_line(self):
        args = server.build_parser().parse_args(["--transport", "sse", "--port", "9100", "--debug"])

        assert args.transport == "sse"
        assert args.port == 9100
        assert args.debug is True
        assert server.build_parser().parse_args([]).transport == "stdio"

    def test_tools_registered(self):
        assert len(tools.TOOLS) == 8
        assert {t.__name__ for t in tools.TOOLS} >= {"init_history", "save_to_history", "reset_to_commit"}
