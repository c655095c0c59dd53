"""
Notification system for Workspace Snapshots.

Each manager owns an EventBus; there is no process-wide broadcast.
Events are typed dataclasses, queued on emit and dispatched to matching
subscribers by a background task.
"""

from typing import Optional, Dict, Any, List, Callable, Set, Type, Union, Iterable
from dataclasses import dataclass, field, asdict
from datetime import datetime, timezone
import asyncio

from .logging import get_logger


logger = get_logger("workspace-snapshots.notifications")


@dataclass(kw_only=True)
class Event:
    """Base event."""
    project_path: str = ""
    timestamp: datetime = field(default_factory=lambda: datetime.now(timezone.utc))

    @property
    def name(self) -> str:
        return type(self).__name__

    def to_dict(self) -> Dict[str, Any]:
        """Convert to dictionary."""
        data = asdict(self)
        data["name"] = self.name
        data["timestamp"] = self.timestamp.isoformat()
        return data


@dataclass
class SnapshotCreated(Event):
    snapshot_id: str
    branch: str
    created_by: str
    files_changed: int
    incomplete: bool = False


@dataclass
class SnapshotRestored(Event):
    snapshot_id: Optional[str]
    mode: str
    applied: int
    failed: int


@dataclass
class SnapshotDeleted(Event):
    snapshot_id: str
    reason: str = "manual"


@dataclass
class RetentionCompleted(Event):
    evicted: List[str] = field(default_factory=list)
    remaining: int = 0


@dataclass
class GarbageCollected(Event):
    objects_removed: int = 0
    diffs_removed: int = 0
    bytes_freed: int = 0


@dataclass
class CaptureCancelled(Event):
    message: str = ""
    trigger: str = ""


@dataclass
class ConfigUpdated(Event):
    config: Dict[str, Any] = field(default_factory=dict)


EventHandler = Callable[[Event], Any]


@dataclass
class Subscription:
    """Event subscription."""
    handler: EventHandler
    event_types: Optional[Set[Type[Event]]] = None
    is_async: bool = True
    filter_func: Optional[Callable[[Event], bool]] = None

    def matches(self, event: Event) -> bool:
        """Check if subscription matches event."""
        if self.event_types and not isinstance(event, tuple(self.event_types)):
            return False

        if self.filter_func and not self.filter_func(event):
            return False

        return True


class EventBus:
    """Per-manager event bus."""

    def __init__(self, max_history: int = 1000):
        self._subscriptions: List[Subscription] = []
        self._event_queue: asyncio.Queue[Event] = asyncio.Queue()
        self._processing = False
        self._processor_task: Optional[asyncio.Task] = None
        self._event_history: List[Event] = []
        self._max_history = max_history

    def subscribe(
        self,
        handler: EventHandler,
        event_types: Optional[Union[Type[Event], Iterable[Type[Event]]]] = None,
        filter_func: Optional[Callable[[Event], bool]] = None,
        is_async: Optional[bool] = None
    ) -> Subscription:
        """
        Subscribe to events.

        Args:
            handler: Event handler, sync or async
            event_types: Event classes to receive (all events if None)
            filter_func: Custom filter function
            is_async: Whether handler is async (auto-detected if None)

        Returns:
            Subscription object
        """
        types: Optional[Set[Type[Event]]]
        if event_types is None:
            types = None
        elif isinstance(event_types, type):
            types = {event_types}
        else:
            types = set(event_types)

        if is_async is None:
            is_async = asyncio.iscoroutinefunction(handler)

        subscription = Subscription(
            handler=handler,
            event_types=types,
            is_async=is_async,
            filter_func=filter_func
        )
        self._subscriptions.append(subscription)

        logger.debug(
            "subscription_added",
            event_types=[t.__name__ for t in types] if types else None,
            handler=getattr(handler, '__name__', str(handler))
        )
        return subscription

    def unsubscribe(self, subscription: Subscription) -> bool:
        """Remove a subscription. Returns False if it was not registered."""
        try:
            self._subscriptions.remove(subscription)
            logger.debug("subscription_removed")
            return True
        except ValueError:
            return False

    async def emit(self, event: Event) -> None:
        """Queue an event for dispatch."""
        self._add_to_history(event)
        await self._event_queue.put(event)

        if not self._processing:
            self._processing = True
            self._processor_task = asyncio.create_task(self._process_events())

        logger.debug(
            "event_emitted",
            event_name=event.name,
            queue_size=self._event_queue.qsize()
        )

    async def flush(self) -> None:
        """Wait until every queued event has been dispatched."""
        await self._event_queue.join()

    async def _process_events(self) -> None:
        self._processing = True

        try:
            while True:
                try:
                    event = await asyncio.wait_for(
                        self._event_queue.get(),
                        timeout=1.0
                    )
                except asyncio.TimeoutError:
                    if self._event_queue.empty():
                        break
                    continue

                try:
                    await self._dispatch_event(event)
                except Exception as e:
                    logger.error(
                        "event_processing_error",
                        event_name=event.name,
                        error=str(e),
                        exc_info=True
                    )
                finally:
                    self._event_queue.task_done()
        finally:
            self._processing = False

    async def _dispatch_event(self, event: Event) -> None:
        subscriptions = [s for s in self._subscriptions if s.matches(event)]

        if not subscriptions:
            logger.debug("no_subscribers", event_name=event.name)
            return

        tasks = []
        for subscription in subscriptions:
            if subscription.is_async:
                tasks.append(asyncio.create_task(
                    self._call_async_handler(subscription.handler, event)
                ))
            else:
                self._call_sync_handler(subscription.handler, event)

        if tasks:
            await asyncio.gather(*tasks, return_exceptions=True)

    async def _call_async_handler(self, handler: EventHandler, event: Event) -> None:
        try:
            await handler(event)
        except Exception as e:
            logger.error(
                "async_handler_error",
                handler=getattr(handler, '__name__', 'unknown'),
                event_name=event.name,
                error=str(e),
                exc_info=True
            )

    def _call_sync_handler(self, handler: EventHandler, event: Event) -> None:
        try:
            handler(event)
        except Exception as e:
            logger.error(
                "sync_handler_error",
                handler=getattr(handler, '__name__', 'unknown'),
                event_name=event.name,
                error=str(e),
                exc_info=True
            )

    def _add_to_history(self, event: Event) -> None:
        self._event_history.append(event)
        if len(self._event_history) > self._max_history:
            self._event_history = self._event_history[-self._max_history:]

    def get_history(
        self,
        event_type: Optional[Type[Event]] = None,
        since: Optional[datetime] = None,
        limit: Optional[int] = None
    ) -> List[Event]:
        """
        Get event history, oldest first.

        Args:
            event_type: Filter by event class
            since: Filter by timestamp
            limit: Maximum events to return (most recent kept)
        """
        events = self._event_history

        if event_type:
            events = [e for e in events if isinstance(e, event_type)]

        if since:
            events = [e for e in events if e.timestamp >= since]

        if limit:
            events = events[-limit:]

        return list(events)

    async def wait_for(
        self,
        event_type: Type[Event],
        timeout: Optional[float] = None,
        filter_func: Optional[Callable[[Event], bool]] = None
    ) -> Optional[Event]:
        """
        Wait for the next event of a type.

        Returns:
            Event if received, None on timeout
        """
        future: asyncio.Future[Event] = asyncio.get_running_loop().create_future()

        def handler(event: Event) -> None:
            if not future.done():
                future.set_result(event)

        subscription = self.subscribe(
            handler=handler,
            event_types=event_type,
            filter_func=filter_func,
            is_async=False
        )

        try:
            return await asyncio.wait_for(future, timeout=timeout)
        except asyncio.TimeoutError:
            return None
        finally:
            self.unsubscribe(subscription)

    async def shutdown(self) -> None:
        """Stop dispatching and drop subscriptions and history."""
        if self._processor_task:
            self._processor_task.cancel()
            try:
                await self._processor_task
            except asyncio.CancelledError:
                pass
            self._processor_task = None

        while not self._event_queue.empty():
            self._event_queue.get_nowait()
            self._event_queue.task_done()

        self._subscriptions.clear()
        self._event_history.clear()

        logger.info("event_bus_shutdown")


__all__ = [
    'Event',
    'SnapshotCreated',
    'SnapshotRestored',
    'SnapshotDeleted',
    'RetentionCompleted',
    'GarbageCollected',
    'CaptureCancelled',
    'ConfigUpdated',
    'EventBus',
    'EventHandler',
    'Subscription',
]
