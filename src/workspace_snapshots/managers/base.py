"""
Base manager class for Workspace Snapshots.

This module provides the foundation for manager components with:
- Lifecycle management (initialize/start/stop)
- Tracked background tasks
- Health checking
"""

from abc import ABC, abstractmethod
from typing import Optional, Dict, Any, List, Coroutine
import asyncio
from dataclasses import dataclass, field
from datetime import datetime, timezone
from enum import Enum

from ..utils.logging import get_logger
from ..utils.errors import SnapshotError, ErrorCategory


class ManagerState(Enum):
    """Manager lifecycle states."""
    UNINITIALIZED = "uninitialized"
    INITIALIZING = "initializing"
    READY = "ready"
    STARTING = "starting"
    RUNNING = "running"
    STOPPING = "stopping"
    STOPPED = "stopped"
    ERROR = "error"


class ManagerError(SnapshotError):
    """Lifecycle errors."""
    code = "MANAGER_ERROR"
    default_message = "Manager lifecycle error"
    category = ErrorCategory.INTERNAL


class ManagerNotReadyError(ManagerError):
    """Raised when an operation is called before initialization."""
    code = "MANAGER_NOT_READY"


@dataclass
class ManagerConfig:
    """Base configuration for managers."""
    name: str
    health_check_interval: int = 0  # seconds, 0 disables
    custom_config: Dict[str, Any] = field(default_factory=dict)


@dataclass
class HealthStatus:
    """Health status information."""
    healthy: bool
    last_check: datetime
    details: Dict[str, Any] = field(default_factory=dict)
    error: Optional[str] = None


class BaseManager(ABC):
    """
    Abstract base class for manager components.

    Subclasses implement _initialize, _start, _stop and _health_check.
    Background work started through spawn() is cancelled on stop().
    """

    def __init__(self, config: ManagerConfig):
        self.config = config
        self.logger = get_logger(f"workspace-snapshots.managers.{config.name}")
        self.state = ManagerState.UNINITIALIZED
        self._health_status = HealthStatus(healthy=True, last_check=datetime.now(timezone.utc))
        self._health_task: Optional[asyncio.Task] = None
        self._tasks: List[asyncio.Task] = []

    @property
    def is_ready(self) -> bool:
        return self.state in (ManagerState.READY, ManagerState.RUNNING)

    @property
    def is_running(self) -> bool:
        return self.state == ManagerState.RUNNING

    def _require_ready(self) -> None:
        if not self.is_ready:
            raise ManagerNotReadyError(
                f"Manager {self.config.name} is {self.state.value}, not ready"
            )

    async def initialize(self) -> None:
        """Set up resources and transition to READY."""
        if self.state not in (ManagerState.UNINITIALIZED, ManagerState.STOPPED):
            raise ManagerError(f"Cannot initialize from state: {self.state.value}")

        self.state = ManagerState.INITIALIZING
        self.logger.info("initializing_manager", manager=self.config.name)

        try:
            await self._initialize()
        except SnapshotError:
            self.state = ManagerState.ERROR
            raise
        except Exception as e:
            self.state = ManagerState.ERROR
            self.logger.error("initialization_failed", error=str(e), exc_info=True)
            raise ManagerError(f"Failed to initialize {self.config.name}: {e}", cause=e) from e

        self.state = ManagerState.READY
        self.logger.info("manager_initialized", manager=self.config.name)

    async def start(self) -> None:
        """Begin background operations."""
        if self.state == ManagerState.UNINITIALIZED:
            await self.initialize()
        self._require_ready()
        if self.is_running:
            return

        self.state = ManagerState.STARTING
        try:
            await self._start()
        except Exception as e:
            self.state = ManagerState.ERROR
            self.logger.error("start_failed", error=str(e), exc_info=True)
            raise

        if self.config.health_check_interval > 0:
            self._health_task = self.spawn(self._health_monitor(), name="health-monitor")

        self.state = ManagerState.RUNNING
        self.logger.info("manager_started", manager=self.config.name)

    async def stop(self) -> None:
        """Cancel background tasks and release resources."""
        if not self.is_ready:
            self.logger.debug("stop_called_when_not_ready", state=self.state.value)
            return

        self.state = ManagerState.STOPPING
        self.logger.info("stopping_manager", manager=self.config.name)

        try:
            await self.cancel_tasks()
            await self._stop()
        except Exception as e:
            self.state = ManagerState.ERROR
            self.logger.error("stop_failed", error=str(e), exc_info=True)
            raise

        self.state = ManagerState.STOPPED
        self.logger.info("manager_stopped", manager=self.config.name)

    def spawn(self, coro: Coroutine, name: Optional[str] = None) -> asyncio.Task:
        """Run a coroutine as a tracked background task."""
        task = asyncio.create_task(coro, name=name)
        self._tasks.append(task)
        task.add_done_callback(self._task_done)
        return task

    def _task_done(self, task: asyncio.Task) -> None:
        if task in self._tasks:
            self._tasks.remove(task)
        if task.cancelled():
            return
        error = task.exception()
        if error is not None:
            self.logger.error(
                "background_task_failed",
                task=task.get_name(),
                error=str(error),
                error_type=type(error).__name__
            )

    async def wait_for_tasks(self) -> None:
        """Wait for tracked tasks other than the health monitor."""
        pending = [t for t in self._tasks if t is not self._health_task and not t.done()]
        if pending:
            await asyncio.gather(*pending, return_exceptions=True)

    async def cancel_tasks(self) -> None:
        for task in list(self._tasks):
            if not task.done():
                task.cancel()
                try:
                    await task
                except asyncio.CancelledError:
                    pass
                except Exception:
                    # Already logged by _task_done.
                    pass
        self._tasks.clear()
        self._health_task = None

    async def health_check(self) -> HealthStatus:
        try:
            details = await self._health_check()
            self._health_status = HealthStatus(
                healthy=True,
                last_check=datetime.now(timezone.utc),
                details=details
            )
        except Exception as e:
            self._health_status = HealthStatus(
                healthy=False,
                last_check=datetime.now(timezone.utc),
                error=str(e)
            )
            self.logger.error("health_check_failed", error=str(e))

        return self._health_status

    async def _health_monitor(self) -> None:
        while self.is_running:
            await asyncio.sleep(self.config.health_check_interval)
            await self.health_check()

    @abstractmethod
    async def _initialize(self) -> None:
        """Component-specific initialization logic."""

    @abstractmethod
    async def _start(self) -> None:
        """Component-specific start logic."""

    @abstractmethod
    async def _stop(self) -> None:
        """Component-specific stop logic."""

    @abstractmethod
    async def _health_check(self) -> Dict[str, Any]:
        """Component-specific health check logic."""


__all__ = [
    'BaseManager',
    'ManagerConfig',
    'ManagerState',
    'ManagerError',
    'ManagerNotReadyError',
    'HealthStatus',
]
