import asyncio
import logging
from dataclasses import dataclass
from typing import Any, AsyncIterator, Callable, List, Optional, Union

log = logging.getLogger(__name__)


@dataclass(frozen=True)
class Progress:
    done: int
    total: int
    label: Optional[str] = None


@dataclass(frozen=True)
class Check:
    done: int
    total: int
    label: str


@dataclass(frozen=True)
class Speed:
    bytes_per_second: float


@dataclass(frozen=True)
class Estimated:
    seconds: float


@dataclass(frozen=True)
class Extract:
    message: str


@dataclass(frozen=True)
class Patch:
    text: str


@dataclass(frozen=True)
class Error:
    detail: Any
    terminal: bool = False


@dataclass(frozen=True)
class Cancelled:
    reason: str


@dataclass(frozen=True)
class Finished:
    result: Any


Event = Union[Progress, Check, Speed, Estimated, Extract, Patch, Error, Cancelled, Finished]


def is_terminal(event: Event) -> bool:
    if isinstance(event, (Cancelled, Finished)):
        return True
    return isinstance(event, Error) and event.terminal


class EventBus:
    """
    Explicit observer channel shared by every component of one run.

    Components publish typed events with emit(); callers either subscribe a
    callback or iterate stream(). Download and processor errors are plain
    Error events, only the orchestrator emits Error(terminal=True).
    """

    def __init__(self) -> None:
        self._observers: List[Callable[[Event], None]] = []

    def subscribe(self, observer: Callable[[Event], None]) -> Callable[[], None]:
        self._observers.append(observer)

        def unsubscribe() -> None:
            if observer in self._observers:
                self._observers.remove(observer)

        return unsubscribe

    def emit(self, event: Event) -> None:
        for observer in list(self._observers):
            try:
                observer(event)
            except Exception:
                log.exception(f"Event observer failed while handling {type(event).__name__}")

    async def stream(self) -> AsyncIterator[Event]:
        """Yields events until the first terminal event (inclusive)."""
        queue: "asyncio.Queue[Event]" = asyncio.Queue()
        unsubscribe = self.subscribe(queue.put_nowait)
        try:
            while True:
                event = await queue.get()
                yield event
                if is_terminal(event):
                    return
        finally:
            unsubscribe()
