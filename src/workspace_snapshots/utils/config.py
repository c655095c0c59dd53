"""
Configuration loader for Workspace Snapshots.

This module provides configuration management with:
- Multiple configuration sources (files, dicts, env vars)
- Schema validation through pydantic
- Configuration merging
- Hot reloading through watchdog
"""

import os
import json
import yaml
from pathlib import Path
from typing import Optional, Dict, Any, List, Union, Callable
import toml
from pydantic import BaseModel, Field, field_validator, ValidationError, ConfigDict
from pydantic.alias_generators import to_camel
from watchdog.observers import Observer
from watchdog.events import FileSystemEventHandler, FileSystemEvent
import asyncio

from .logging import get_logger, setup_logging
from .errors import ConfigurationError


logger = get_logger("workspace-snapshots.config")

ENV_PREFIX = "WORKSPACE_SNAPSHOTS_"
ENV_NESTING = "__"

DEFAULT_METADATA_DIR = ".workspace-snapshots"

DEFAULT_IGNORE_PATTERNS = [
    ".git/",
    ".claude/",
    ".claude-snapshots/",
    ".claude-checkpoints/",
    ".worktrees/",
    "node_modules/",
    ".DS_Store",
    ".nuxt/",
    ".output/",
    "dist/",
    "build/",
    "__pycache__/",
]


class ConfigSource(BaseModel):
    """Configuration source definition."""
    path: Optional[Path] = None
    data: Dict[str, Any] = Field(default_factory=dict)
    priority: int = 0
    source_type: str = "dict"


class RetentionConfig(BaseModel):
    """Retention limits and automatic capture triggers."""
    max_snapshots: int = 50
    max_size_mb: float = 100
    auto_cleanup_days: float = 30
    auto_snapshot_interval: Optional[float] = None  # seconds
    enable_auto_snapshots: bool = False
    enable_claude_prompt_snapshots: bool = False

    model_config = ConfigDict(
        alias_generator=to_camel,
        populate_by_name=True,
        validate_assignment=True
    )

    @field_validator('auto_snapshot_interval')
    @classmethod
    def validate_interval(cls, v):
        if v is not None and v <= 0:
            raise ValueError("auto_snapshot_interval must be positive")
        return v

    def to_file_dict(self) -> Dict[str, Any]:
        """camelCase form written to config.json."""
        return self.model_dump(by_alias=True)


class StorageConfig(BaseModel):
    """Snapshot storage configuration."""
    metadata_dir: str = DEFAULT_METADATA_DIR
    compression_level: int = 3
    max_file_size: int = 1024 * 1024  # 1MiB
    ignore_patterns: List[str] = Field(default_factory=lambda: list(DEFAULT_IGNORE_PATTERNS))
    respect_gitignore: bool = True
    manage_gitignore: bool = False
    capture_concurrency: int = 8

    @field_validator('compression_level')
    @classmethod
    def validate_compression_level(cls, v):
        if not 1 <= v <= 22:
            raise ValueError(f"Invalid zstd compression level: {v}")
        return v

    @field_validator('capture_concurrency')
    @classmethod
    def validate_concurrency(cls, v):
        if v < 1:
            raise ValueError("capture_concurrency must be at least 1")
        return v

    @field_validator('metadata_dir')
    @classmethod
    def validate_metadata_dir(cls, v):
        if not v or Path(v).is_absolute() or ".." in Path(v).parts:
            raise ValueError("metadata_dir must be a relative directory name")
        return v


class LoggingConfig(BaseModel):
    """Logging configuration."""
    level: str = "INFO"
    format: str = "json"
    directory: Path = Field(default_factory=lambda: Path.home() / ".workspace-snapshots" / "logs")

    @field_validator('level')
    @classmethod
    def validate_level(cls, v):
        """Validate log level."""
        valid_levels = ["DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"]
        if v.upper() not in valid_levels:
            raise ValueError(f"Invalid log level: {v}")
        return v.upper()


class SnapshotSettings(BaseModel):
    """Root settings for a snapshot manager."""
    default_branch: str = "main"
    retention: RetentionConfig = Field(default_factory=RetentionConfig)
    storage: StorageConfig = Field(default_factory=StorageConfig)
    logging: LoggingConfig = Field(default_factory=LoggingConfig)
    enable_hot_reload: bool = False

    model_config = ConfigDict(validate_assignment=True)


def configure_logging(config: LoggingConfig, enable_console: bool = True) -> Dict[str, Any]:
    """Apply a LoggingConfig through setup_logging."""
    return setup_logging(
        log_level=config.level,
        log_dir=config.directory,
        enable_json=config.format == "json",
        enable_console=enable_console,
    )


def validate_retention(data: Union[RetentionConfig, Dict[str, Any]]) -> RetentionConfig:
    """Build a RetentionConfig, reporting failures as ConfigurationError."""
    if isinstance(data, RetentionConfig):
        return data
    try:
        return RetentionConfig.model_validate(data)
    except ValidationError as e:
        raise ConfigurationError(
            f"Retention config validation failed: {_format_errors(e)}"
        ) from e


def _format_errors(e: ValidationError) -> str:
    errors = []
    for error in e.errors():
        field = ".".join(str(x) for x in error["loc"])
        errors.append(f"{field}: {error['msg']}")
    return "; ".join(errors)


ConfigCallback = Callable[[SnapshotSettings], Any]


class ConfigLoader:
    """Configuration loader with multiple source support."""

    def __init__(self):
        self._sources: List[ConfigSource] = []
        self._config: Optional[SnapshotSettings] = None
        self._observers: List[Observer] = []
        self._callbacks: List[ConfigCallback] = []
        self._lock = asyncio.Lock()
        self._loop: Optional[asyncio.AbstractEventLoop] = None

    def add_source(
        self,
        source: Union[str, Path, Dict[str, Any]],
        priority: int = 0,
        source_type: Optional[str] = None
    ) -> None:
        """
        Add configuration source.

        Args:
            source: Configuration source (file path or dict)
            priority: Source priority (higher wins)
            source_type: Source type (auto-detected if None)
        """
        if isinstance(source, (str, Path)):
            path = Path(source)
            if not source_type:
                source_type = self._detect_source_type(path)

            self._sources.append(ConfigSource(
                path=path,
                priority=priority,
                source_type=source_type
            ))
        else:
            self._sources.append(ConfigSource(
                data=source,
                priority=priority,
                source_type="dict"
            ))

        self._sources.sort(key=lambda s: s.priority)

    def _detect_source_type(self, path: Path) -> str:
        suffix = path.suffix.lower()
        if suffix == ".json":
            return "json"
        elif suffix in (".yaml", ".yml"):
            return "yaml"
        elif suffix == ".toml":
            return "toml"
        else:
            raise ConfigurationError(f"Unknown config file type: {suffix}")

    async def load(self) -> SnapshotSettings:
        """
        Load configuration from all sources.

        Sources merge lowest priority first; environment variables are
        applied last.

        Returns:
            Merged configuration
        """
        async with self._lock:
            merged_data: Dict[str, Any] = {}

            for source in self._sources:
                try:
                    data = await self._load_source(source)
                except (OSError, ValueError, yaml.YAMLError) as e:
                    raise ConfigurationError(
                        f"Failed to load config source {source.path or 'dict'}: {e}",
                        cause=e
                    ) from e
                merged_data = self._deep_merge(merged_data, data)

            merged_data = self._deep_merge(merged_data, self._load_env_vars())

            try:
                config = SnapshotSettings.model_validate(merged_data)
            except ValidationError as e:
                raise ConfigurationError(
                    f"Configuration validation failed: {_format_errors(e)}"
                ) from e

            self._config = config
            logger.info("configuration_loaded", sources=len(self._sources))

            if config.enable_hot_reload and not self._observers:
                self._setup_hot_reload()

            return config

    async def _load_source(self, source: ConfigSource) -> Dict[str, Any]:
        if source.path is None:
            return source.data

        if not source.path.exists():
            logger.warning("config_file_not_found", path=str(source.path))
            return {}

        content = await asyncio.to_thread(source.path.read_text)

        if source.source_type == "json":
            return json.loads(content)
        elif source.source_type == "yaml":
            return yaml.safe_load(content) or {}
        elif source.source_type == "toml":
            return toml.loads(content)
        else:
            raise ConfigurationError(f"Unknown source type: {source.source_type}")

    def _load_env_vars(self) -> Dict[str, Any]:
        """Load WORKSPACE_SNAPSHOTS_SECTION__FIELD style variables."""
        result: Dict[str, Any] = {}

        for key, value in os.environ.items():
            if not key.startswith(ENV_PREFIX):
                continue

            parts = key[len(ENV_PREFIX):].lower().split(ENV_NESTING)
            current = result
            for part in parts[:-1]:
                current = current.setdefault(part, {})
            current[parts[-1]] = self._convert_value(value)

        return result

    def _convert_value(self, value: str) -> Any:
        """Convert string value to appropriate type."""
        if value.lower() in ("true", "yes", "on"):
            return True
        elif value.lower() in ("false", "no", "off"):
            return False

        try:
            if "." in value:
                return float(value)
            else:
                return int(value)
        except ValueError:
            pass

        if "," in value:
            return [v.strip() for v in value.split(",")]

        return value

    def _deep_merge(self, base: Dict[str, Any], update: Dict[str, Any]) -> Dict[str, Any]:
        """Deep merge two dictionaries."""
        result = base.copy()

        for key, value in update.items():
            if key in result and isinstance(result[key], dict) and isinstance(value, dict):
                result[key] = self._deep_merge(result[key], value)
            else:
                result[key] = value

        return result

    def _setup_hot_reload(self) -> None:
        self._loop = asyncio.get_running_loop()
        for source in self._sources:
            if source.path and source.path.exists():
                observer = Observer()
                handler = ConfigFileHandler(self, source.path.resolve())
                observer.schedule(handler, str(source.path.resolve().parent), recursive=False)
                observer.start()
                self._observers.append(observer)

                logger.info("hot_reload_enabled", path=str(source.path))

    def register_callback(self, callback: ConfigCallback) -> None:
        """Register configuration change callback."""
        self._callbacks.append(callback)

    def unregister_callback(self, callback: ConfigCallback) -> None:
        if callback in self._callbacks:
            self._callbacks.remove(callback)

    async def reload(self) -> Optional[SnapshotSettings]:
        """Reload configuration and notify callbacks when it changed."""
        logger.info("reloading_configuration")

        old_config = self._config
        try:
            new_config = await self.load()
        except ConfigurationError as e:
            logger.error("reload_failed", error=e.message)
            return None

        if old_config != new_config:
            for callback in list(self._callbacks):
                try:
                    result = callback(new_config)
                    if asyncio.iscoroutine(result):
                        await result
                except Exception as e:
                    logger.error(
                        "callback_error",
                        callback=getattr(callback, '__name__', str(callback)),
                        error=str(e),
                        exc_info=True
                    )

        return new_config

    def schedule_reload(self) -> None:
        """Thread-safe reload trigger used by the file watcher."""
        if self._loop is not None and not self._loop.is_closed():
            asyncio.run_coroutine_threadsafe(self.reload(), self._loop)

    def get_config(self) -> SnapshotSettings:
        """Get current configuration."""
        if self._config is None:
            raise ConfigurationError("Configuration not loaded")
        return self._config

    def shutdown(self) -> None:
        """Stop file watchers."""
        for observer in self._observers:
            observer.stop()
            observer.join()
        self._observers.clear()


class ConfigFileHandler(FileSystemEventHandler):
    """File system event handler for configuration files."""

    def __init__(self, loader: ConfigLoader, path: Path):
        self.loader = loader
        self.path = path

    def on_modified(self, event: FileSystemEvent) -> None:
        if not event.is_directory and Path(event.src_path) == self.path:
            logger.info("config_file_modified", path=event.src_path)
            self.loader.schedule_reload()


async def load_config(
    config_paths: Optional[List[Union[str, Path]]] = None,
    extra_config: Optional[Dict[str, Any]] = None,
    loader: Optional[ConfigLoader] = None
) -> SnapshotSettings:
    """
    Load settings from standard locations.

    Args:
        config_paths: Additional configuration paths
        extra_config: Extra configuration merged above every file
        loader: Loader to populate (a new one if None)
    """
    loader = loader or ConfigLoader()

    default_paths = [
        Path.home() / ".workspace-snapshots" / "config.yaml",
        Path.home() / ".workspace-snapshots" / "config.toml",
        Path("./workspace-snapshots.yaml"),
        Path("./workspace-snapshots.toml"),
    ]

    for path in default_paths:
        if path.exists():
            loader.add_source(path, priority=10)

    if config_paths:
        for i, path in enumerate(config_paths):
            loader.add_source(path, priority=20 + i)

    if extra_config:
        loader.add_source(extra_config, priority=100)

    return await loader.load()


__all__ = [
    'SnapshotSettings',
    'RetentionConfig',
    'StorageConfig',
    'LoggingConfig',
    'ConfigLoader',
    'ConfigFileHandler',
    'DEFAULT_IGNORE_PATTERNS',
    'DEFAULT_METADATA_DIR',
    'validate_retention',
    'configure_logging',
    'load_config',
]
