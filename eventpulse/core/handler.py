"""The contract every event handler implements."""

from abc import ABC, abstractmethod
from typing import Awaitable, ClassVar

from eventpulse.core.event import Event


class Handler(ABC):
    """Performs the side effects of an event.

    ``EventService`` calls ``handle`` once per attempt for every handler bound
    to the event's type. Returning normally counts as success; raising marks
    the attempt failed. An event is PROCESSED only when all of its handlers
    succeed. Otherwise it goes back to FAILED and every handler runs again on
    the next attempt, including the ones that already succeeded, so ``handle``
    must tolerate seeing the same event id twice.

    ``handle`` may be a coroutine function or a plain function. Coroutines
    run on the worker's event loop; plain functions run in a worker thread so
    blocking I/O does not stall the process and cleanup loops. Either way the
    call is cut off after ``handler_timeout`` seconds and reported as a
    failure. A timed-out thread cannot be interrupted and finishes in the
    background, which is another reason to keep ``handle`` idempotent.

    Attributes:
        listens_to: Event types picked up by ``HandlerRegistry.register``.
            Use ``HandlerRegistry.register_handler`` to bind a type directly.
        name: Shown in logs and in the ``last_error`` of failed events.
    """

    listens_to: ClassVar[list[str]] = []

    def __init__(self, name: str | None = None) -> None:
        self.name = name or type(self).__name__

    @abstractmethod
    def handle(self, event: Event) -> None | Awaitable[None]:
        """Apply ``event``; ``event.data`` is the validated payload model."""
