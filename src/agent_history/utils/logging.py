"""
Logging for Agent History.

Events are emitted through structlog (``logger.info("snapshot_committed",
oid=...)``) and routed over the stdlib root logger to a rich console
handler and two rotating files: the full log and an error-only log. When
the server speaks a tool protocol over stdio nothing is written to the
terminal.
"""

import io
import json
import logging
import logging.handlers
import os
import sys
from datetime import datetime, timezone
from pathlib import Path
from typing import Any, Dict, List, Optional

import structlog
from rich.console import Console
from rich.logging import RichHandler
from rich.traceback import install as install_rich_traceback


STDIO_MODE_ENV = 'AGENT_HISTORY_MODE'
DEFAULT_LOG_DIR = Path.home() / ".agent-history" / "logs"
TEXT_FORMAT = '%(asctime)s %(levelname)-8s %(name)s: %(message)s'

console = Console(file=sys.stderr)

_RECORD_ATTRIBUTES = frozenset(vars(logging.makeLogRecord({}))) | {'message', 'taskName'}


class JSONFormatter(logging.Formatter):
    """One JSON object per line.

    Messages rendered by structlog's JSONRenderer are merged into the
    record instead of being nested as a string.
    """

    def format(self, record: logging.LogRecord) -> str:
        entry: Dict[str, Any] = {
            'ts': datetime.fromtimestamp(record.created, timezone.utc).isoformat(),
            'level': record.levelname,
            'logger': record.name,
            'pid': record.process,
            'where': f"{record.module}.{record.funcName}:{record.lineno}",
        }

        message = record.getMessage()
        event = _as_event(message)
        if event is None:
            entry['message'] = message
        else:
            entry.update({k: v for k, v in event.items() if k not in ('level', 'logger')})

        extras = {k: v for k, v in vars(record).items() if k not in _RECORD_ATTRIBUTES}
        for key, value in extras.items():
            entry[key] = value if _serializable(value) else repr(value)

        if record.exc_info:
            entry['exception'] = self.formatException(record.exc_info)
        return json.dumps(entry, default=str)


def _as_event(message: str) -> Optional[Dict[str, Any]]:
    if not message.startswith('{'):
        return None
    try:
        parsed = json.loads(message)
    except ValueError:
        return None
    return parsed if isinstance(parsed, dict) else None


def _serializable(value: Any) -> bool:
    try:
        json.dumps(value)
    except (TypeError, ValueError):
        return False
    return True


def is_stdio_mode() -> bool:
    """Whether the process serves a tool protocol over stdio."""
    return os.environ.get(STDIO_MODE_ENV) == 'stdio'


def _processors(enable_json: bool) -> List[Any]:
    renderer = structlog.processors.JSONRenderer() if enable_json else structlog.dev.ConsoleRenderer(colors=False)
    return [
        structlog.stdlib.filter_by_level,
        structlog.stdlib.add_logger_name,
        structlog.stdlib.add_log_level,
        structlog.processors.TimeStamper(fmt="iso", utc=True),
        structlog.processors.StackInfoRenderer(),
        structlog.processors.format_exc_info,
        renderer,
    ]


def _rotating_handler(
    path: Path,
    level: int,
    formatter: logging.Formatter,
    max_bytes: int,
    backup_count: int,
) -> logging.Handler:
    handler = logging.handlers.RotatingFileHandler(
        path, maxBytes=max_bytes, backupCount=backup_count, encoding='utf-8'
    )
    handler.setLevel(level)
    handler.setFormatter(formatter)
    return handler


def _console_handler(target: Console) -> logging.Handler:
    handler = RichHandler(
        console=target,
        show_path=False,
        markup=False,
        rich_tracebacks=True,
        tracebacks_suppress=["asyncio", "structlog"],
    )
    handler.setLevel(logging.INFO)
    return handler


def setup_logging(
    app_name: str = "agent-history",
    log_level: str = "INFO",
    log_dir: Optional[Path] = None,
    enable_json: bool = True,
    max_bytes: int = 10 * 1024 * 1024,
    backup_count: int = 10,
) -> Dict[str, Any]:
    """
    Configure structlog and the root logger.

    Args:
        app_name: Name used for the log files and the main logger
        log_level: Root level (DEBUG, INFO, WARNING, ERROR, CRITICAL)
        log_dir: Directory for log files (defaults to ~/.agent-history/logs)
        enable_json: JSON file records instead of plain text
        max_bytes: Size at which log files rotate
        backup_count: Rotated files kept for the full log

    Returns:
        Dictionary with the main logger, log directory, console and the
        effective settings
    """
    global console
    stdio_mode = is_stdio_mode()
    if stdio_mode:
        console = Console(file=io.StringIO(), force_terminal=False)
    else:
        install_rich_traceback(console=console, suppress=[structlog])

    log_dir = Path(log_dir) if log_dir is not None else DEFAULT_LOG_DIR
    log_dir.mkdir(parents=True, exist_ok=True)

    structlog.configure(
        processors=_processors(enable_json or stdio_mode),
        context_class=dict,
        logger_factory=structlog.stdlib.LoggerFactory(),
        wrapper_class=structlog.stdlib.BoundLogger,
        cache_logger_on_first_use=True,
    )

    root = logging.getLogger()
    for existing in root.handlers[:]:
        root.removeHandler(existing)
    root.setLevel(getattr(logging, log_level.upper()))

    root.addHandler(logging.NullHandler() if stdio_mode else _console_handler(console))

    formatter = JSONFormatter() if enable_json else logging.Formatter(TEXT_FORMAT)
    root.addHandler(_rotating_handler(
        log_dir / f"{app_name}.log", logging.DEBUG, formatter, max_bytes, backup_count
    ))
    root.addHandler(_rotating_handler(
        log_dir / f"{app_name}-errors.log", logging.ERROR, formatter, max_bytes, max(1, backup_count // 2)
    ))

    settings = {
        'app_name': app_name,
        'log_level': log_level.upper(),
        'enable_json': enable_json,
        'stdio_mode': stdio_mode,
    }
    main_logger = structlog.get_logger(app_name)
    main_logger.info("logging_initialized", log_dir=str(log_dir), pid=os.getpid(), **settings)

    return {
        'logger': main_logger,
        'log_dir': log_dir,
        'console': console,
        'config': settings,
    }


def get_logger(name: str) -> structlog.stdlib.BoundLogger:
    return structlog.get_logger(name)


__all__ = [
    'setup_logging',
    'get_logger',
    'is_stdio_mode',
    'JSONFormatter',
]
