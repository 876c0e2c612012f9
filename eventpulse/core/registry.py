"""Process-local registry mapping event types to handlers.

The registry may be initialized from more than one entry point (the HTTP app
factory and the worker both call ``initialize()``). Installers run exactly
once per registry, guarded by a lock rather than a bare module-level flag.
"""

import threading
from collections.abc import Callable, Iterable

from eventpulse.core.handler import Handler
from eventpulse.core.logging import get_logger

Installer = Callable[["HandlerRegistry"], None]


class RegistryError(Exception):
    """Raised when a handler is registered incorrectly."""


class HandlerRegistry:
    """Idempotent event type -> handlers map.

    Args:
        installers: Callables that register the known (type, handler) pairs.
            They run on the first ``initialize()`` call only.
    """

    def __init__(self, installers: Iterable[Installer] = ()) -> None:
        self._installers: list[Installer] = list(installers)
        self._handlers: dict[str, list[Handler]] = {}
        self._lock = threading.RLock()
        self._initialized = False
        self._log = get_logger("registry")

    @property
    def is_initialized(self) -> bool:
        return self._initialized

    def add_installer(self, installer: Installer) -> None:
        with self._lock:
            if self._initialized:
                raise RegistryError("Cannot add an installer to an initialized registry")
            self._installers.append(installer)

    def initialize(self) -> bool:
        """Run all installers once.

        Returns:
            True if this call performed the initialization, False if the
            registry was already initialized.
        """
        if self._initialized:
            return False
        with self._lock:
            if self._initialized:
                return False
            self._log.info("Initializing event handlers")
            snapshot = {event_type: list(bound) for event_type, bound in self._handlers.items()}
            try:
                for installer in self._installers:
                    installer(self)
            except Exception:
                # Drop partial registrations so a retry cannot bind a handler twice
                self._handlers = snapshot
                raise
            self._initialized = True
        self._log.info(
            "Event handlers initialized",
            extra={"event_types": self.event_types(), "handler_count": self.handler_count()},
        )
        return True

    def register_handler(self, event_type: str, handler: Handler) -> bool:
        """Bind a handler to an event type.

        Registering the same (type, handler) pair again is a no-op.

        Returns:
            True if the handler was added, False if it was already registered.

        Raises:
            RegistryError: If the type is not a non-empty string or the handler
                has no callable ``handle``.
        """
        if not isinstance(event_type, str) or not event_type.strip():
            raise RegistryError(f"event type must be a non-empty string, got {event_type!r}")
        if not callable(getattr(handler, "handle", None)):
            raise RegistryError(
                f"handler for {event_type!r} must define handle(event), "
                f"got {type(handler).__name__}"
            )

        event_type = event_type.strip()
        with self._lock:
            bound = self._handlers.setdefault(event_type, [])
            if any(existing is handler for existing in bound):
                return False
            bound.append(handler)

        self._log.debug(
            f"Handler registered for {event_type}",
            extra={"event_type": event_type, "handler": _handler_name(handler)},
        )
        return True

    def register(self, handler: Handler) -> None:
        """Register a handler for every type in its ``listens_to``."""
        listens_to = getattr(handler, "listens_to", None)
        if not isinstance(listens_to, list):
            raise RegistryError(
                f"{_handler_name(handler)}.listens_to must be a list[str], "
                f"got {type(listens_to).__name__}"
            )
        for event_type in listens_to:
            if not isinstance(event_type, str):
                raise RegistryError(
                    f"{_handler_name(handler)}.listens_to must contain only strings, "
                    f"found {type(event_type).__name__}: {event_type!r}"
                )
            self.register_handler(event_type, handler)

    def resolve(self, event_type: str) -> list[Handler]:
        """Return the handlers for a type in registration order.

        An empty list is a normal result: events whose handler has not been
        deployed yet are not an error.
        """
        with self._lock:
            return list(self._handlers.get(event_type, ()))

    def event_types(self) -> list[str]:
        with self._lock:
            return sorted(self._handlers)

    def handler_count(self) -> int:
        with self._lock:
            return sum(len(bound) for bound in self._handlers.values())


def _handler_name(handler: object) -> str:
    return getattr(handler, "name", None) or type(handler).__name__
