"""In-process instrumentation event bus."""
from dataclasses import dataclass
from typing import Any, Callable, Dict, Hashable, List, Mapping, Optional, Sequence, Tuple, Union
import logging
import threading

logger = logging.getLogger(__name__)

EventName = Tuple[str, ...]
HandlerFunction = Callable[[EventName, Mapping[str, Any], Mapping[str, Any], Any], None]


def normalize_event_name(event_name: Union[str, Sequence[str]]) -> EventName:
    """Accept "a.b.c" or ("a", "b", "c")."""
    if isinstance(event_name, str):
        return tuple(event_name.split("."))
    return tuple(str(segment) for segment in event_name)


@dataclass(frozen=True)
class Handler:
    """An attached event handler."""
    handler_id: Hashable
    event_name: EventName
    function: HandlerFunction
    config: Any = None


class EventBus:
    """
    Synchronous publish/subscribe for instrumentation events.

    Handlers run in the thread that calls ``execute``. Attach and detach
    swap in a fresh handler table under a lock, so ``execute`` reads the
    current table without taking any lock.
    """

    def __init__(self):
        self._table: Dict[EventName, Tuple[Handler, ...]] = {}
        self._ids: Dict[Hashable, EventName] = {}
        self._lock = threading.Lock()

    def attach(
        self,
        handler_id: Hashable,
        event_name: Union[str, Sequence[str]],
        function: HandlerFunction,
        config: Any = None
    ):
        """Attach a handler to one event. Handler ids must be unique."""
        name = normalize_event_name(event_name)
        handler = Handler(handler_id, name, function, config)

        with self._lock:
            if handler_id in self._ids:
                raise ValueError(f"Handler {handler_id!r} is already attached")

            table = dict(self._table)
            table[name] = table.get(name, ()) + (handler,)
            self._table = table
            self._ids[handler_id] = name

        logger.debug(f"Attached handler {handler_id!r} to {'.'.join(name)}")

    def detach(self, handler_id: Hashable) -> bool:
        """Detach a handler. Returns False if it was not attached."""
        with self._lock:
            name = self._ids.pop(handler_id, None)
            if name is None:
                return False

            table = dict(self._table)
            remaining = tuple(h for h in table.get(name, ()) if h.handler_id != handler_id)
            if remaining:
                table[name] = remaining
            else:
                table.pop(name, None)
            self._table = table

        logger.debug(f"Detached handler {handler_id!r} from {'.'.join(name)}")
        return True

    def list_handlers(self, event_name: Union[str, Sequence[str]]) -> List[Handler]:
        return list(self._table.get(normalize_event_name(event_name), ()))

    def execute(
        self,
        event_name: Union[str, Sequence[str]],
        measurements: Mapping[str, Any],
        metadata: Optional[Mapping[str, Any]] = None
    ):
        """Deliver an event to every handler attached to it."""
        name = normalize_event_name(event_name)
        metadata = metadata if metadata is not None else {}

        for handler in self._table.get(name, ()):
            try:
                handler.function(name, measurements, metadata, handler.config)
            except Exception as e:
                logger.error(
                    f"Handler {handler.handler_id!r} failed on {'.'.join(name)}, detaching: {e}",
                    exc_info=True
                )
                self.detach(handler.handler_id)


default_bus = EventBus()


def attach(handler_id, event_name, function, config=None):
    default_bus.attach(handler_id, event_name, function, config)


def detach(handler_id) -> bool:
    return default_bus.detach(handler_id)


def execute(event_name, measurements, metadata=None):
    default_bus.execute(event_name, measurements, metadata)
