"""
Cleanup Guarantor

A per-invocation stack of teardown actions that runs on every exit path:
normal return, exceptions, SIGINT/SIGTERM/SIGHUP and interpreter exit.

Usage:
    with CleanupGuarantor() as cleanup:
        path = create_artifact()
        cleanup.register(partial(remove_artifact, path), label=str(path))
        run_child()
    # every registered action has run exactly once here
"""

import atexit
import logging
import signal
import threading
from pathlib import Path
from typing import Callable, Dict, List, Optional, Tuple

from .errors import CleanupFailed, SupervisorInterrupted

logger = logging.getLogger(__name__)

HANDLED_SIGNALS = tuple(
    getattr(signal, name) for name in ("SIGINT", "SIGTERM", "SIGHUP") if hasattr(signal, name)
)


def remove_artifact(path: Path) -> None:
    """Delete a file if it still exists. Idempotent."""
    Path(path).unlink(missing_ok=True)


class CleanupGuarantor:
    """
    Stack of teardown actions for one invocation.

    Each action is popped before it runs, so it executes at most once no
    matter how many times run_all() is reached. Actions must themselves be
    idempotent.

    As a context manager it installs signal handlers (main thread only)
    and an atexit hook, and always runs the stack on exit.
    """

    def __init__(self, signals: Tuple[int, ...] = HANDLED_SIGNALS):
        self._actions: List[Tuple[str, Callable[[], None]]] = []
        self._signals = signals
        self._previous_handlers: Dict[int, object] = {}
        self._running = False
        self._pending_signal: Optional[int] = None
        self._installed = False

    def register(self, teardown: Callable[[], None], label: str = "") -> None:
        """Push a teardown action. Runs in reverse order of registration."""
        self._actions.append((label or getattr(teardown, "__name__", "teardown"), teardown))

    def __len__(self) -> int:
        return len(self._actions)

    def run_all(self) -> None:
        """
        Run every registered action, newest first.

        A failing action is logged and the rest still run.

        Raises:
            CleanupFailed: After all actions ran, if any of them raised
        """
        if self._running:
            return
        self._running = True
        failed = []
        try:
            while self._actions:
                label, action = self._actions.pop()
                try:
                    action()
                    logger.debug(f"Teardown done: {label}")
                except Exception as e:
                    logger.error(f"❌ Teardown failed for {label}: {e}")
                    failed.append(label)
        finally:
            self._running = False

        if failed:
            raise CleanupFailed(failed)

    # =========================================================================
    # SIGNALS / EXIT HOOKS
    # =========================================================================

    def _handle_signal(self, signum, frame) -> None:
        if self._running:
            # Teardown already in progress; re-raised once it finishes.
            self._pending_signal = signum
            return

        logger.warning(f"Received signal {signum}, tearing down scope")
        try:
            self.run_all()
        except CleanupFailed as e:
            logger.error(str(e))
        raise SupervisorInterrupted(signum)

    def _run_at_exit(self) -> None:
        try:
            self.run_all()
        except CleanupFailed as e:
            logger.error(str(e))

    def install(self) -> None:
        """Route interruption signals and interpreter exit through run_all."""
        if self._installed:
            return
        atexit.register(self._run_at_exit)
        if threading.current_thread() is threading.main_thread():
            for signum in self._signals:
                self._previous_handlers[signum] = signal.signal(signum, self._handle_signal)
        else:
            logger.debug("Not on the main thread; signal handlers not installed")
        self._installed = True

    def uninstall(self) -> None:
        if not self._installed:
            return
        for signum, previous in self._previous_handlers.items():
            signal.signal(signum, previous)
        self._previous_handlers.clear()
        atexit.unregister(self._run_at_exit)
        self._installed = False

    def __enter__(self) -> "CleanupGuarantor":
        self.install()
        return self

    def __exit__(self, exc_type, exc, tb) -> None:
        try:
            self.run_all()
        except CleanupFailed as e:
            if exc_type is None:
                raise
            logger.error(str(e))
        finally:
            self.uninstall()

        if self._pending_signal is not None and exc_type is None:
            signum, self._pending_signal = self._pending_signal, None
            raise SupervisorInterrupted(signum)
