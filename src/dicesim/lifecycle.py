"""
Startup/shutdown coordination for the generator's concurrent tasks.

The coordinator runs each registered task in its own thread alongside a
termination listener. Shutdown is requested either by calling ``cancel()``
or by an interrupt (SIGINT); the listener treats both the same way and runs
the teardown handles exactly once, in registration order.
"""

import logging
import signal
import threading
from collections.abc import Callable
from enum import Enum
from typing import Any

logger = logging.getLogger(__name__)

Task = Callable[["CancellationToken"], Any]


class CancellationToken:
    """One-shot shutdown signal shared by every task. Never reset."""

    def __init__(self) -> None:
        self._event = threading.Event()

    def cancel(self) -> None:
        """Fire the signal; calling it again has no effect."""
        self._event.set()

    @property
    def cancelled(self) -> bool:
        return self._event.is_set()

    def wait(self, timeout: float | None = None) -> bool:
        """Block until cancelled or ``timeout`` elapses; True if cancelled."""
        return self._event.wait(timeout)


class Teardown:
    """Ordered shutdown handles run at most once as a whole."""

    def __init__(self) -> None:
        self._handles: list[tuple[str, Callable[[], Any]]] = []
        self._lock = threading.Lock()
        self._done = False

    def add(self, name: str, handle: Callable[[], Any]) -> None:
        self._handles.append((name, handle))

    @property
    def names(self) -> list[str]:
        return [name for name, _ in self._handles]

    @property
    def done(self) -> bool:
        return self._done

    def run(self) -> list[tuple[str, Exception]]:
        """
        Invoke each handle in registration order.

        A failing handle is logged and collected; the rest still run. Only the
        first call does any work, later calls return an empty list.

        Returns:
            (name, exception) for every handle that raised
        """
        with self._lock:
            if self._done:
                return []
            self._done = True

            failures: list[tuple[str, Exception]] = []
            for name, handle in self._handles:
                try:
                    handle()
                except Exception as e:
                    logger.error("Teardown of %s failed: %s", name, e)
                    failures.append((name, e))
            return failures


class LifecycleState(Enum):
    RUNNING = "running"
    SHUTTING_DOWN = "shutting_down"
    TERMINATED = "terminated"


class LifecycleCoordinator:
    """Run tasks concurrently and shut them down in a single pass."""

    def __init__(self, poll_interval: float = 0.1):
        self.token = CancellationToken()
        self.teardown = Teardown()
        self.poll_interval = poll_interval
        self.state = LifecycleState.RUNNING
        self._tasks: list[tuple[str, Task]] = []
        self._interrupted = threading.Event()
        self._state_lock = threading.Lock()

    def add_task(self, name: str, task: Task) -> None:
        """Register a task; it receives the shared token and should return once it is cancelled."""
        self._tasks.append((name, task))

    def cancel(self) -> None:
        """Request shutdown from outside (e.g. a test harness)."""
        self.token.cancel()

    def interrupt(self) -> None:
        """Record an OS interrupt; the termination listener turns it into cancellation."""
        self._interrupted.set()

    def _set_state(self, state: LifecycleState) -> None:
        with self._state_lock:
            if self.state != state:
                logger.debug("Lifecycle %s -> %s", self.state.value, state.value)
                self.state = state

    def _handle_termination(self, token: CancellationToken) -> None:
        """Wait for cancellation or an interrupt, then tear down."""
        while not token.wait(self.poll_interval):
            if self._interrupted.is_set():
                logger.info("Interrupt received, shutting down")
                token.cancel()

        self._set_state(LifecycleState.SHUTTING_DOWN)
        self.teardown.run()

    def _run_task(self, name: str, task: Task) -> None:
        try:
            task(self.token)
        except Exception:
            logger.exception("Task %s failed", name)

    def _install_signal_handler(self) -> Any:
        if threading.current_thread() is not threading.main_thread():
            return None
        return signal.signal(signal.SIGINT, lambda signum, frame: self.interrupt())

    def run(self) -> None:
        """Start every task plus the termination listener and block until all return."""
        previous = self._install_signal_handler()

        threads = [
            threading.Thread(target=self._run_task, args=(name, task), name=name, daemon=True)
            for name, task in [*self._tasks, ("termination", self._handle_termination)]
        ]
        try:
            for thread in threads:
                thread.start()
            for thread in threads:
                # Join in slices so the main thread keeps servicing signal handlers.
                while thread.is_alive():
                    thread.join(self.poll_interval)
        finally:
            if previous is not None:
                signal.signal(signal.SIGINT, previous)

        self._set_state(LifecycleState.TERMINATED)
