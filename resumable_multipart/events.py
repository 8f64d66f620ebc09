"""Events published by the uploader and the notifier that delivers them."""

import logging
from dataclasses import dataclass
from enum import Enum
from typing import Any, Callable, ClassVar, Optional

from resumable_multipart.models import Checkpoint, Token, UploadFile

logger = logging.getLogger(__name__)


class EventKind(Enum):
    BEGIN = "begin"
    PREPARE = "prepare"
    BEFORE_GET_TOKEN = "beforeGetToken"
    AFTER_GET_TOKEN = "afterGetToken"
    PROGRESS = "progress"
    DONE = "done"
    FAIL = "fail"
    BEFORE_RETRY = "beforeRetry"
    IS_PAUSED_CHANGED = "isPausedChanged"
    END = "end"


@dataclass
class UploadEvent:
    """Base of every uploader event."""

    kind: ClassVar[EventKind]

    file: Optional[UploadFile]


@dataclass
class BeginEvent(UploadEvent):
    kind: ClassVar[EventKind] = EventKind.BEGIN


@dataclass
class PrepareEvent(UploadEvent):
    """Fired right before the transfer starts splitting the file."""

    kind: ClassVar[EventKind] = EventKind.PREPARE


@dataclass
class BeforeGetTokenEvent(UploadEvent):
    kind: ClassVar[EventKind] = EventKind.BEFORE_GET_TOKEN


@dataclass
class AfterGetTokenEvent(UploadEvent):
    kind: ClassVar[EventKind] = EventKind.AFTER_GET_TOKEN

    token: Token


@dataclass
class ProgressEvent(UploadEvent):
    """Progress of the transfer.

    Attributes:
        percent: Progress percentage, 0 ~ 100
        checkpoint: Checkpoint reported with this progress tick
    """

    kind: ClassVar[EventKind] = EventKind.PROGRESS

    percent: float
    checkpoint: Optional[Checkpoint]


@dataclass
class DoneEvent(UploadEvent):
    """Upload succeeded.

    Attributes:
        url: Public URL of the uploaded object
        result: Raw result returned by the transfer
    """

    kind: ClassVar[EventKind] = EventKind.DONE

    url: str
    result: Any


@dataclass
class FailEvent(UploadEvent):
    kind: ClassVar[EventKind] = EventKind.FAIL

    exception: BaseException


@dataclass
class BeforeRetryEvent(UploadEvent):
    """About to retry. Set ``canceled`` to stop the retry chain.

    Attributes:
        try_count: Number of the upcoming retry; the first attempt is 0
        max_try_count: Maximum number of retries
        canceled: Set by an observer to veto the retry
    """

    kind: ClassVar[EventKind] = EventKind.BEFORE_RETRY

    try_count: int
    max_try_count: int
    canceled: bool = False


@dataclass
class PausedChangedEvent(UploadEvent):
    kind: ClassVar[EventKind] = EventKind.IS_PAUSED_CHANGED

    is_paused: bool


@dataclass
class EndEvent(UploadEvent):
    """Fired once when an upload chain finishes, whatever the outcome."""

    kind: ClassVar[EventKind] = EventKind.END


EventHandler = Callable[[UploadEvent], Any]


class EventNotifier:
    """Delivers uploader events to any number of handlers.

    Handlers run synchronously in subscription order. A ``monitor`` notifier,
    if given, receives every event after the local handlers.

    Example:
        >>> notifier = EventNotifier()
        >>> unsubscribe = notifier.subscribe(print, EventKind.PROGRESS)
    """

    def __init__(self, monitor: Optional["EventNotifier"] = None):
        self.monitor = monitor
        self._handlers: list[tuple[Optional[EventKind], EventHandler]] = []

    def subscribe(
        self, handler: EventHandler, kind: Optional[EventKind] = None
    ) -> Callable[[], None]:
        """Register a handler.

        Args:
            handler: Callable receiving the event
            kind: Only deliver events of this kind (default: all events)

        Returns:
            Callable that removes the subscription
        """
        entry = (kind, handler)
        self._handlers.append(entry)

        def unsubscribe() -> None:
            if entry in self._handlers:
                self._handlers.remove(entry)

        return unsubscribe

    def notify(self, event: UploadEvent) -> None:
        for kind, handler in list(self._handlers):
            if kind is not None and kind is not event.kind:
                continue
            try:
                handler(event)
            except Exception:
                logger.exception(f"Handler for {event.kind.value} event raised")
        if self.monitor is not None:
            self.monitor.notify(event)
