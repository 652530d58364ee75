"""
Configuration loader for Agent History.

This module provides configuration management with:
- Multiple configuration sources (JSON, YAML, TOML files and dicts)
- Environment variable overrides
- Schema validation and type coercion through pydantic
- Priority-ordered deep merging
"""

import json
import os
from pathlib import Path
from typing import Optional, Dict, Any, List, Union

import toml
import yaml
from pydantic import BaseModel, Field, field_validator, ValidationError, ConfigDict

from .logging import get_logger
from .errors import ConfigurationError


logger = get_logger("agent-history.config")

ENV_PREFIX = "AGENT_HISTORY_"
ENV_NESTING = "__"
RESERVED_ENV_NAMES = frozenset(("MODE", "CONFIG_PATH"))


class ConfigSource(BaseModel):
    """Configuration source definition."""
    path: Optional[Path] = None
    data: Dict[str, Any] = Field(default_factory=dict)
    priority: int = 0
    source_type: str = "dict"

    model_config = ConfigDict(arbitrary_types_allowed=True)


class LoggingConfig(BaseModel):
    """Logging configuration."""
    level: str = "INFO"
    format: str = "json"
    directory: Path = Field(default_factory=lambda: Path.home() / ".agent-history" / "logs")
    max_size: int = 10 * 1024 * 1024  # 10MB
    backup_count: int = 10

    @field_validator('level')
    @classmethod
    def validate_level(cls, v):
        """Validate log level."""
        valid_levels = ["DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"]
        if v.upper() not in valid_levels:
            raise ValueError(f"Invalid log level: {v}")
        return v.upper()

    @field_validator('format')
    @classmethod
    def validate_format(cls, v):
        if v not in ("json", "text"):
            raise ValueError(f"Invalid log format: {v}")
        return v


class HistoryConfig(BaseModel):
    """Checkpoint engine configuration."""
    store_dir: str = ".agent/history"
    branch: str = "main"
    ignore_entry: Optional[str] = None
    author_name: str = "Agent History"
    author_email: str = "history@agent-history.local"
    message_prefix: str = "Save changes"
    initial_message: str = "Initial commit - history repository initialized"
    extra_excludes: List[str] = Field(default_factory=list)
    vcs_dirs: List[str] = Field(default_factory=lambda: [".git", ".hg", ".svn", ".bzr"])
    restore_mode: str = "soft"

    @field_validator('store_dir')
    @classmethod
    def validate_store_dir(cls, v):
        """Store directory must be a relative path inside the project."""
        normalized = v.replace("\\", "/").strip("/")
        parts = [p for p in normalized.split("/") if p not in ("", ".")]
        if not parts or ".." in parts or Path(v).is_absolute():
            raise ValueError(f"store_dir must be a relative path inside the project: {v}")
        return "/".join(parts)

    @field_validator('branch')
    @classmethod
    def validate_branch(cls, v):
        if not v or v.startswith("/") or v.endswith("/") or ".." in v or " " in v:
            raise ValueError(f"Invalid branch name: {v}")
        return v

    @field_validator('restore_mode')
    @classmethod
    def validate_restore_mode(cls, v):
        if v.lower() not in ("soft", "hard"):
            raise ValueError(f"Invalid restore mode: {v}")
        return v.lower()

    @field_validator('extra_excludes', 'vcs_dirs', mode='before')
    @classmethod
    def split_comma_list(cls, v):
        if isinstance(v, str):
            return [item.strip() for item in v.split(",") if item.strip()]
        return v

    @property
    def effective_ignore_entry(self) -> str:
        """Ignore-file line excluding the store; defaults to its top-level directory."""
        if self.ignore_entry:
            return self.ignore_entry
        return self.store_dir.split("/")[0] + "/"

    @property
    def author(self) -> str:
        return f"{self.author_name} <{self.author_email}>"


class AppConfig(BaseModel):
    """Main Agent History configuration."""
    app_name: str = "agent-history"
    debug: bool = False

    history: HistoryConfig = Field(default_factory=HistoryConfig)
    logging: LoggingConfig = Field(default_factory=LoggingConfig)

    model_config = ConfigDict(
        arbitrary_types_allowed=True,
        validate_assignment=True
    )


_SUFFIX_TYPES = {
    ".json": "json",
    ".yaml": "yaml",
    ".yml": "yaml",
    ".toml": "toml",
}

_PARSERS = {
    "json": json.loads,
    "yaml": lambda text: yaml.safe_load(text) or {},
    "toml": toml.loads,
}

_TRUE_WORDS = frozenset(("true", "yes", "on"))
_FALSE_WORDS = frozenset(("false", "no", "off"))


def _merge(base: Dict[str, Any], overlay: Dict[str, Any]) -> Dict[str, Any]:
    """Recursive dict merge; overlay values win, nested mappings are merged."""
    merged = dict(base)
    for key, value in overlay.items():
        current = merged.get(key)
        merged[key] = _merge(current, value) if isinstance(current, dict) and isinstance(value, dict) else value
    return merged


def _coerce(raw: str) -> Any:
    """Environment strings to bool, int or an expanded path."""
    word = raw.strip().lower()
    if word in _TRUE_WORDS:
        return True
    if word in _FALSE_WORDS:
        return False
    if word.lstrip("-").isdigit():
        return int(word)
    return str(Path(raw).expanduser()) if raw.startswith("~") else raw


def _env_overrides(prefix: str) -> Dict[str, Any]:
    """Nested overrides from environment variables.

    ``AGENT_HISTORY_HISTORY__RESTORE_MODE=hard`` maps to
    ``{"history": {"restore_mode": "hard"}}``.
    """
    overrides: Dict[str, Any] = {}
    for key in sorted(os.environ):
        if not key.startswith(prefix):
            continue
        name = key[len(prefix):]
        # Process switches read by the server and logging setup
        if not name or name in RESERVED_ENV_NAMES:
            continue
        *parents, leaf = name.lower().split(ENV_NESTING)
        node = overrides
        for part in parents:
            node = node.setdefault(part, {})
        node[leaf] = _coerce(os.environ[key])
    return overrides


class ConfigLoader:
    """
    Merges configuration sources into an ``AppConfig``.

    Sources are applied in ascending priority so the highest priority wins;
    ``AGENT_HISTORY_*`` environment variables are applied after all of them.
    """

    def __init__(self, env_prefix: str = ENV_PREFIX):
        self._sources: List[ConfigSource] = []
        self._config: Optional[AppConfig] = None
        self._env_prefix = env_prefix

    def add_source(
        self,
        source: Union[str, Path, Dict[str, Any]],
        priority: int = 0,
        source_type: Optional[str] = None
    ) -> None:
        """
        Register a file path or a mapping.

        Args:
            source: Path to a JSON/YAML/TOML file, or a dict
            priority: Higher priority sources override lower ones
            source_type: Parser name; inferred from the file suffix if omitted
        """
        if isinstance(source, dict):
            entry = ConfigSource(data=source, priority=priority)
        else:
            path = Path(source)
            entry = ConfigSource(
                path=path,
                priority=priority,
                source_type=source_type or self._detect_source_type(path),
            )
        self._sources.append(entry)
        self._sources.sort(key=lambda s: s.priority)

    @staticmethod
    def _detect_source_type(path: Path) -> str:
        source_type = _SUFFIX_TYPES.get(path.suffix.lower())
        if source_type is None:
            raise ConfigurationError(
                f"Unsupported config file type '{path.suffix}' for {path}",
                path=str(path),
            )
        return source_type

    def _read(self, source: ConfigSource) -> Dict[str, Any]:
        if source.path is None:
            return source.data
        if not source.path.is_file():
            logger.warning("config_file_not_found", path=str(source.path))
            return {}

        parser = _PARSERS.get(source.source_type)
        if parser is None:
            raise ConfigurationError(f"No parser for source type '{source.source_type}'")

        try:
            data = parser(source.path.read_text(encoding="utf-8"))
        except (OSError, ValueError, yaml.YAMLError) as e:
            logger.error("config_source_unreadable", path=str(source.path), error=str(e))
            raise ConfigurationError(
                f"Cannot read configuration from {source.path}: {e}",
                cause=e,
                path=str(source.path),
            ) from e

        if not isinstance(data, dict):
            raise ConfigurationError(
                f"Configuration in {source.path} must be a mapping, got {type(data).__name__}",
                path=str(source.path),
            )
        return data

    def load(self) -> AppConfig:
        """
        Merge every source plus environment overrides and validate.

        Raises:
            ConfigurationError: If a source cannot be parsed or the merged
                data fails validation
        """
        merged: Dict[str, Any] = {}
        for source in self._sources:
            merged = _merge(merged, self._read(source))
        merged = _merge(merged, _env_overrides(self._env_prefix))

        try:
            config = AppConfig.model_validate(merged)
        except ValidationError as e:
            problems = "; ".join(
                f"{'.'.join(str(part) for part in err['loc'])}: {err['msg']}"
                for err in e.errors()
            )
            raise ConfigurationError(f"Invalid configuration: {problems}", cause=e) from e

        self._config = config
        logger.info(
            "configuration_loaded",
            sources=[str(s.path) if s.path else "dict" for s in self._sources],
            store_dir=config.history.store_dir,
            restore_mode=config.history.restore_mode,
        )
        return config

    def get_config(self) -> AppConfig:
        """Configuration produced by the last ``load()``."""
        if self._config is None:
            raise ConfigurationError("Configuration has not been loaded")
        return self._config


def default_config_paths() -> List[Path]:
    """User-level then project-level config files; later entries override earlier ones."""
    user_dir = Path.home() / ".agent-history"
    return [
        user_dir / "config.yaml",
        user_dir / "config.json",
        Path("agent-history.yaml"),
        Path("agent-history.toml"),
    ]


def load_config(
    config_paths: Optional[List[Union[str, Path]]] = None,
    extra_config: Optional[Dict[str, Any]] = None
) -> AppConfig:
    """
    Load configuration from the default locations plus explicit sources.

    Explicit paths override the defaults (later paths win) and
    ``extra_config`` overrides both.
    """
    loader = ConfigLoader()
    for path in default_config_paths():
        if path.is_file():
            loader.add_source(path, priority=10)
    for offset, path in enumerate(config_paths or ()):
        loader.add_source(path, priority=20 + offset)
    if extra_config:
        loader.add_source(extra_config, priority=100)
    return loader.load()


__all__ = [
    'AppConfig',
    'HistoryConfig',
    'LoggingConfig',
    'ConfigLoader',
    'load_config',
    'ENV_PREFIX',
]
