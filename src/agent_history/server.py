"""
Agent History Server - FastMCP tool server for checkpoint history.

Exposes the checkpoint tools to agent runtimes over stdio or SSE.
"""

import argparse
import os
import sys
from contextlib import asynccontextmanager
from pathlib import Path
from typing import Any, List, Optional

from fastmcp import FastMCP

from . import __version__
from .tools import TOOLS, configure_tools
from .utils.config import AppConfig, load_config
from .utils.errors import ConfigurationError
from .utils.logging import get_logger, setup_logging

logger = get_logger("agent-history.server")


class ServerState:
    """Configuration shared by the tool handlers for the server lifetime."""

    def __init__(self):
        self.config: Optional[AppConfig] = None
        self.initialized = False


state = ServerState()


def _configure(config_path: Optional[str] = None) -> AppConfig:
    paths = [config_path] if config_path else None
    config = load_config(config_paths=paths)

    setup_logging(
        config.app_name,
        log_level="DEBUG" if config.debug else config.logging.level,
        log_dir=Path(config.logging.directory),
        enable_json=config.logging.format == "json",
        max_bytes=config.logging.max_size,
        backup_count=config.logging.backup_count,
    )
    configure_tools(config.history)
    return config


@asynccontextmanager
async def lifespan(app: Any):
    """Load configuration before the first tool call."""
    try:
        state.config = _configure(os.environ.get("AGENT_HISTORY_CONFIG_PATH"))
        state.initialized = True
        logger.info("server_initialized", store_dir=state.config.history.store_dir)
    except ConfigurationError as e:
        logger.error("server_initialization_failed", error=e.message)
        raise

    try:
        yield
    finally:
        state.initialized = False
        configure_tools(None)


mcp_server = FastMCP(
    name="Agent History",
    instructions="""Local checkpoint history for agent-driven edits.

Call init_history once per project, then save_to_history after edits.
Use get_history, get_last_commit and get_commit to inspect checkpoints,
check_changes to see pending edits, and reset_to_commit to roll back.
History is stored as a git repository under .agent/history.""",
    lifespan=lifespan,
)

for _tool in TOOLS:
    mcp_server.tool()(_tool)


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="agent-history",
        description="Serve checkpoint history tools for coding agents",
    )
    parser.add_argument("--version", action="version", version=f"%(prog)s {__version__}")
    parser.add_argument("--config", metavar="PATH",
                        help="YAML, JSON or TOML configuration file")
    parser.add_argument("--debug", action="store_true",
                        help="Log at DEBUG level")
    parser.add_argument("--transport", choices=("stdio", "sse"), default="stdio",
                        help="Protocol transport (default: stdio)")
    parser.add_argument("--port", type=int, default=8000,
                        help="Listening port for the sse transport")
    return parser


def main(argv: Optional[List[str]] = None):
    """Run the Agent History server."""
    args = build_parser().parse_args(argv)

    if args.config:
        os.environ['AGENT_HISTORY_CONFIG_PATH'] = args.config

    if args.debug:
        os.environ['AGENT_HISTORY_DEBUG'] = 'true'

    # Console logging would corrupt the stdio protocol stream
    if args.transport == "stdio":
        os.environ['AGENT_HISTORY_MODE'] = 'stdio'

    try:
        logger.info(
            "server_starting",
            version=__version__,
            transport=args.transport,
            debug=args.debug
        )

        if args.transport == "stdio":
            mcp_server.run(show_banner=False)
        elif args.transport == "sse":
            mcp_server.run(transport="sse", port=args.port)

    except KeyboardInterrupt:
        logger.info("server_stopped_by_user")
    except ConfigurationError as e:
        print(f"Configuration error: {e.message}", file=sys.stderr)
        sys.exit(1)


if __name__ == "__main__":
    main()
