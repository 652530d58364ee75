"""
Agent-facing tool functions for Agent History.

Each tool takes an optional working directory (defaulting to the process
working directory) and returns a JSON-ready dictionary with an ``ok`` flag.
Failures are reported in the returned dictionary, never raised.
"""

import os
from pathlib import Path
from typing import Any, Dict, Optional

from .checkpoint.repository import HistoryRepository
from .utils.config import HistoryConfig
from .utils.logging import get_logger

logger = get_logger("agent-history.tools")

_history_config: Optional[HistoryConfig] = None


def configure_tools(config: Optional[HistoryConfig]) -> None:
    """Set the engine configuration used by every tool call."""
    global _history_config
    _history_config = config


def _repository(working_dir: Optional[str]) -> HistoryRepository:
    root = Path(working_dir) if working_dir else Path(os.getcwd())
    return HistoryRepository(root, _history_config)


async def init_history(working_dir: Optional[str] = None) -> Dict[str, Any]:
    """
    Initialize checkpoint history for a project.

    Creates the history store, adds it to .gitignore and commits any
    existing files.

    Args:
        working_dir: Project directory (defaults to the current directory)
    """
    result = await _repository(working_dir).initialize()
    logger.debug("tool_init_history", working_dir=working_dir, ok=result.ok)
    return result.to_dict()


async def save_to_history(
    working_dir: Optional[str] = None,
    commit_message: Optional[str] = None,
) -> Dict[str, Any]:
    """
    Save all changes to the checkpoint history.

    Commits every added, modified or deleted file while respecting
    .gitignore rules and excluding the history store itself.

    Args:
        working_dir: Project directory (defaults to the current directory)
        commit_message: Custom message (defaults to a timestamped message)
    """
    result = await _repository(working_dir).save(commit_message)
    logger.debug("tool_save_to_history", working_dir=working_dir, ok=result.ok)
    return result.to_dict()


async def get_head(working_dir: Optional[str] = None) -> Dict[str, Any]:
    """Return the commit id the history currently points at."""
    return (await _repository(working_dir).head_oid()).to_dict()


async def get_last_commit(working_dir: Optional[str] = None) -> Dict[str, Any]:
    """Return the most recent checkpoint, or status ``no_commits``."""
    return (await _repository(working_dir).last_commit()).to_dict()


async def get_history(
    working_dir: Optional[str] = None,
    depth: Optional[int] = None,
    ref: Optional[str] = None,
) -> Dict[str, Any]:
    """
    List checkpoints, most recent first.

    Args:
        working_dir: Project directory (defaults to the current directory)
        depth: Maximum number of checkpoints to return
        ref: Starting point (HEAD, branch name or commit id)
    """
    return (await _repository(working_dir).log(depth=depth, ref=ref)).to_dict()


async def get_commit(oid: str, working_dir: Optional[str] = None) -> Dict[str, Any]:
    """Return one checkpoint by its commit id."""
    return (await _repository(working_dir).commit(oid)).to_dict()


async def check_changes(working_dir: Optional[str] = None) -> Dict[str, Any]:
    """Report files that changed since the last checkpoint without saving."""
    return (await _repository(working_dir).has_changes()).to_dict()


async def reset_to_commit(
    oid: str,
    working_dir: Optional[str] = None,
    mode: Optional[str] = None,
) -> Dict[str, Any]:
    """
    Restore the project to a previous checkpoint.

    Moves history back to the given commit and rewrites tracked files. In
    ``hard`` mode files added after that checkpoint are also deleted.

    Args:
        oid: Commit id to restore
        working_dir: Project directory (defaults to the current directory)
        mode: ``soft`` or ``hard`` (defaults to the configured mode)
    """
    result = await _repository(working_dir).restore(oid, mode)
    logger.info("tool_reset_to_commit", working_dir=working_dir, oid=oid, ok=result.ok)
    return result.to_dict()


TOOLS = (
    init_history,
    save_to_history,
    get_head,
    get_last_commit,
    get_history,
    get_commit,
    check_changes,
    reset_to_commit,
)


__all__ = [
    "configure_tools",
    "init_history",
    "save_to_history",
    "get_head",
    "get_last_commit",
    "get_history",
    "get_commit",
    "check_changes",
    "reset_to_commit",
    "TOOLS",
]
