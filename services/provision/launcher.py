"""Launch the provisioned binary and mirror its lifetime on the wrapper."""

from __future__ import annotations

import logging
import os
import signal
import subprocess
import sys
from dataclasses import dataclass
from enum import Enum
from pathlib import Path
from typing import Any, Callable, Protocol, Sequence

from services.provision.cancellation import CancelToken
from services.provision.models import ProvisionError

_LOGGER = logging.getLogger(__name__)

__all__ = [
    "ChildProcess",
    "LaunchOutcome",
    "LaunchState",
    "ProcessLauncher",
    "SignalRelay",
]

SignalHandler = Callable[[int, Any], None]


class ChildProcess(Protocol):
    """Subset of :class:`subprocess.Popen` used by the launcher."""

    pid: int
    returncode: int | None

    def send_signal(self, sig: int) -> None:
        ...

    def wait(self, timeout: float | None = None) -> int:
        ...


class LaunchState(str, Enum):
    RUNNING = "running"
    INTERRUPT_RECEIVED = "interrupt_received"
    TERMINATE_SENT = "terminate_sent"
    EXITED = "exited"


@dataclass(frozen=True)
class LaunchOutcome:
    """How the child process finished.

    ``signal`` is set when the child was killed by a signal; ``returncode`` is
    the exit status otherwise (``None`` when it could not be determined).
    """

    returncode: int | None
    signal: int | None = None

    @property
    def exit_code(self) -> int:
        if self.signal is not None:
            return 128 + self.signal
        if self.returncode is None:
            return 1
        return self.returncode


class SignalRelay:
    """Forward parent signals to a child and track the relay state.

    RUNNING -> INTERRUPT_RECEIVED -> TERMINATE_SENT on an interrupt, straight to
    TERMINATE_SENT on a terminate request, and EXITED once the child is reaped.
    """

    def __init__(self, child: ChildProcess, cancel_token: CancelToken | None = None) -> None:
        self._child = child
        self._cancel_token = cancel_token
        self.state = LaunchState.RUNNING
        self.forwarded: list[int] = []

    def on_interrupt(self) -> None:
        if self.state is LaunchState.EXITED:
            return
        self.state = LaunchState.INTERRUPT_RECEIVED
        _LOGGER.debug("Interrupt received; forwarding to child %s", self._child.pid)
        self._forward(signal.SIGINT)
        # Escalate right away in case the child ignores the interrupt.
        self._forward(signal.SIGTERM)
        self.state = LaunchState.TERMINATE_SENT
        if self._cancel_token is not None:
            self._cancel_token.cancel("Interrupted")

    def on_terminate(self) -> None:
        if self.state is LaunchState.EXITED:
            return
        _LOGGER.debug("Terminate received; forwarding to child %s", self._child.pid)
        self._forward(signal.SIGTERM)
        self.state = LaunchState.TERMINATE_SENT
        if self._cancel_token is not None:
            self._cancel_token.cancel("Terminated")

    def on_exit(self, returncode: int | None) -> LaunchOutcome:
        self.state = LaunchState.EXITED
        if returncode is not None and returncode < 0 and os.name != "nt":
            return LaunchOutcome(returncode=None, signal=-returncode)
        return LaunchOutcome(returncode=returncode)

    def _forward(self, sig: int) -> None:
        try:
            self._child.send_signal(sig)
        except ProcessLookupError:
            _LOGGER.debug("Child %s already exited; signal %s dropped", self._child.pid, sig)
            return
        except (OSError, ValueError) as exc:
            # Windows only accepts SIGTERM and console control events.
            _LOGGER.debug("Unable to forward signal %s: %s", sig, exc)
            return
        self.forwarded.append(sig)


class ProcessLauncher:
    """Spawn the binary with inherited stdio and relay signals to it."""

    def __init__(
        self,
        *,
        cancel_token: CancelToken | None = None,
        spawn: Callable[..., ChildProcess] = subprocess.Popen,
        install_handler: Callable[[int, Any], Any] = signal.signal,
        kill: Callable[[int, int], None] = os.kill,
        exit_process: Callable[[int], Any] = sys.exit,
    ) -> None:
        self._cancel_token = cancel_token
        self._spawn = spawn
        self._install_handler = install_handler
        self._kill = kill
        self._exit_process = exit_process

    def run(self, path: Path, args: Sequence[str]) -> LaunchOutcome:
        """Run ``path`` with ``args`` until it exits and return the outcome."""

        command = [str(path), *args]
        _LOGGER.info("Running nonodo binary: %s", path)
        try:
            child = self._spawn(command)
        except OSError as exc:
            raise ProvisionError(f"Failed to launch {path}: {exc}") from exc

        relay = SignalRelay(child, self._cancel_token)
        previous = self._register(relay)
        try:
            returncode = child.wait()
        finally:
            self._restore(previous)
        outcome = relay.on_exit(returncode)
        _LOGGER.debug("Child %s finished: %s", child.pid, outcome)
        return outcome

    def launch(self, path: Path, args: Sequence[str]) -> None:
        """Run the binary then exit the wrapper the same way the child did."""

        outcome = self.run(path, args)
        self.mirror_exit(outcome)

    def mirror_exit(self, outcome: LaunchOutcome) -> None:
        if outcome.signal is not None:
            # The wrapper's own handler is gone, so the default disposition applies.
            try:
                self._install_handler(outcome.signal, signal.SIG_DFL)
            except (OSError, ValueError) as exc:
                # SIGKILL and SIGSTOP cannot be handled and are always fatal.
                _LOGGER.debug("Unable to reset handler for signal %s: %s", outcome.signal, exc)
            self._kill(os.getpid(), outcome.signal)
        self._exit_process(outcome.exit_code)

    def _register(self, relay: SignalRelay) -> dict[int, Any]:
        handlers: dict[int, SignalHandler] = {
            signal.SIGINT: lambda signum, frame: relay.on_interrupt(),
            signal.SIGTERM: lambda signum, frame: relay.on_terminate(),
        }
        previous: dict[int, Any] = {}
        for signum, handler in handlers.items():
            try:
                previous[signum] = self._install_handler(signum, handler)
            except (OSError, ValueError) as exc:
                # signal.signal only works from the main thread.
                _LOGGER.debug("Unable to install handler for signal %s: %s", signum, exc)
        return previous

    def _restore(self, previous: dict[int, Any]) -> None:
        for signum, handler in previous.items():
            try:
                self._install_handler(signum, handler if handler is not None else signal.SIG_DFL)
            except (OSError, ValueError) as exc:
                _LOGGER.debug("Unable to restore handler for signal %s: %s", signum, exc)
