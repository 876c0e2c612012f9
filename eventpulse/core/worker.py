"""Long-running worker that drives the EventService.

Two independent asyncio tasks run side by side: a short-interval process loop
and a long-interval cleanup loop. Each cycle runs inside an error boundary, so
a failing store only costs one cycle. Shutdown is cooperative: loops observe
the stop flag between cycles and sleeping loops are woken immediately.
"""

import asyncio
import signal
from enum import Enum
from typing import TYPE_CHECKING

from eventpulse.core.logging import get_logger
from eventpulse.core.registry import HandlerRegistry
from eventpulse.core.service import EventService

if TYPE_CHECKING:
    from eventpulse.core.settings import WorkerSettings

_SIGNALS = (signal.SIGINT, signal.SIGTERM)


class WorkerState(Enum):
    STOPPED = "stopped"
    RUNNING = "running"
    DRAINING = "draining"


class EventWorker:
    """Polls for pending events and sweeps old ones until told to stop.

    Args:
        service: The EventService to drive.
        registry: Registry to initialize on start. Defaults to the service's.
        process_interval: Seconds to wait between processing batches.
        cleanup_interval: Seconds to wait between retention sweeps.
        batch_size: Events per processing batch.
        retention_days: Age passed to ``cleanup_processed_events``.
        shutdown_grace_period: Seconds in-flight cycles get to finish once
            shutdown begins. Whatever is still running afterwards is
            cancelled; an event caught mid-dispatch stays PROCESSING and is
            reclaimed by a later batch once its lock has expired.
        install_signal_handlers: Hook SIGINT/SIGTERM to ``shutdown()``.
    """

    def __init__(
        self,
        service: EventService,
        registry: HandlerRegistry | None = None,
        *,
        process_interval: float = 5.0,
        cleanup_interval: float = 3600.0,
        batch_size: int = 50,
        retention_days: float = 7,
        shutdown_grace_period: float = 2.0,
        install_signal_handlers: bool = True,
    ) -> None:
        self.service = service
        self.registry = registry or service.registry
        self.process_interval = process_interval
        self.cleanup_interval = cleanup_interval
        self.batch_size = batch_size
        self.retention_days = retention_days
        self.shutdown_grace_period = shutdown_grace_period
        self.install_signal_handlers = install_signal_handlers
        self._log = get_logger("worker")
        self._state = WorkerState.STOPPED
        self._running = False
        self._wakeup = asyncio.Event()
        self._stopped = asyncio.Event()
        self._stopped.set()
        self._tasks: list[asyncio.Task] = []
        self._shutdown_task: asyncio.Task | None = None
        self._signals_installed: list[signal.Signals] = []
        self.process_cycles = 0
        self.cleanup_cycles = 0

    @classmethod
    def from_settings(
        cls, settings: "WorkerSettings", service: EventService, **kwargs
    ) -> "EventWorker":
        return cls(
            service,
            process_interval=settings.process_interval,
            cleanup_interval=settings.cleanup_interval,
            batch_size=settings.batch_size,
            retention_days=settings.retention_days,
            shutdown_grace_period=settings.shutdown_grace_period,
            **kwargs,
        )

    @property
    def state(self) -> WorkerState:
        return self._state

    @property
    def running(self) -> bool:
        return self._running

    async def start(self) -> None:
        """Initialize handlers and launch both loops.

        Raises:
            RuntimeError: If the worker is not STOPPED.
            RegistryError: If handler installation fails.
        """
        if self._state is not WorkerState.STOPPED:
            raise RuntimeError(f"Cannot start worker in state {self._state.value}")

        self._log.info("Starting event worker")
        self.registry.initialize()

        self._running = True
        self._state = WorkerState.RUNNING
        self._wakeup.clear()
        self._stopped.clear()
        self.process_cycles = 0
        self.cleanup_cycles = 0
        self._tasks = [
            asyncio.create_task(self._process_loop(), name="eventpulse-process-loop"),
            asyncio.create_task(self._cleanup_loop(), name="eventpulse-cleanup-loop"),
        ]
        if self.install_signal_handlers:
            self._add_signal_handlers()

        self._log.info(
            "Event worker started",
            extra={
                "process_interval": self.process_interval,
                "cleanup_interval": self.cleanup_interval,
                "batch_size": self.batch_size,
            },
        )

    async def run(self) -> None:
        """Start the worker and block until it has fully stopped."""
        await self.start()
        await self._stopped.wait()

    async def wait_stopped(self) -> None:
        await self._stopped.wait()

    async def shutdown(self) -> None:
        """Stop both loops, giving in-flight cycles the grace period to finish.

        Calling shutdown on a worker that is not RUNNING is a no-op.
        """
        if self._state is not WorkerState.RUNNING:
            return

        self._log.info("Shutting down event worker")
        self._running = False
        self._state = WorkerState.DRAINING
        self._wakeup.set()

        _, pending = await asyncio.wait(self._tasks, timeout=self.shutdown_grace_period)
        for task in pending:
            task.cancel()
        if pending:
            await asyncio.gather(*pending, return_exceptions=True)
            self._log.warning(
                "Abandoned in-flight work after grace period",
                extra={"tasks": [task.get_name() for task in pending]},
            )

        self._remove_signal_handlers()
        self._tasks = []
        self._state = WorkerState.STOPPED
        self._stopped.set()
        self._log.info("Event worker stopped")

    async def _sleep(self, seconds: float) -> None:
        """Sleep, returning early if shutdown starts."""
        try:
            await asyncio.wait_for(self._wakeup.wait(), timeout=seconds)
        except TimeoutError:
            pass

    async def _process_loop(self) -> None:
        while self._running:
            try:
                self._log.debug("Processing pending events")
                result = await self.service.process_pending_events(self.batch_size)
                if result.processed > 0 or result.failed > 0:
                    self._log.info(
                        "Event processing batch completed",
                        extra={"processed": result.processed, "failed": result.failed},
                    )
            except Exception as e:
                self._log.error(
                    f"Error in event processing loop: {e}",
                    extra={"error": str(e)},
                    exc_info=True,
                )
            finally:
                self.process_cycles += 1

            await self._sleep(self.process_interval)

    async def _cleanup_loop(self) -> None:
        while self._running:
            try:
                self._log.debug("Running event cleanup")
                result = await self.service.cleanup_processed_events(self.retention_days)
                if result.deleted > 0:
                    self._log.info("Event cleanup completed", extra={"deleted": result.deleted})
            except Exception as e:
                self._log.error(
                    f"Error in cleanup loop: {e}",
                    extra={"error": str(e)},
                    exc_info=True,
                )
            finally:
                self.cleanup_cycles += 1

            await self._sleep(self.cleanup_interval)

    def _on_signal(self, sig: signal.Signals) -> None:
        self._log.info(f"Received {sig.name}, shutting down")
        if self._shutdown_task is None or self._shutdown_task.done():
            self._shutdown_task = asyncio.create_task(self.shutdown())

    def _add_signal_handlers(self) -> None:
        loop = asyncio.get_running_loop()
        for sig in _SIGNALS:
            try:
                loop.add_signal_handler(sig, self._on_signal, sig)
            except (NotImplementedError, RuntimeError):
                # Not supported on this platform or outside the main thread
                self._log.debug(f"Could not install handler for {sig.name}")
                continue
            self._signals_installed.append(sig)

    def _remove_signal_handlers(self) -> None:
        loop = asyncio.get_running_loop()
        for sig in self._signals_installed:
            loop.remove_signal_handler(sig)
        self._signals_installed = []
