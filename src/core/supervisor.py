"""
Process Supervisor
Starts auxiliary services as child processes whose combined output is
inherited by this process, and stops them on request.
"""
import os
import subprocess
import threading
from dataclasses import dataclass
from typing import Callable, Dict, List, Mapping, Optional, Sequence

from rich.console import Console

from .errors import ServiceAlreadyRunning
from ..utils.logger import get_logger

logger = get_logger(__name__)


@dataclass
class SupervisedProcess:
    """A started auxiliary service"""
    name: str
    process: subprocess.Popen
    stop_requested: bool = False

    @property
    def is_alive(self) -> bool:
        return self.process.poll() is None

    @property
    def pid(self) -> Optional[int]:
        return getattr(self.process, "pid", None)


class ProcessSupervisor:
    """
    Tracks at most one process per logical service name.

    Every read or mutation of the tracked set holds a re-entrant lock: the
    shutdown handler may run from a signal handler on the main thread while
    start() is inside its critical section.
    """

    def __init__(
        self,
        popen_factory: Callable[..., subprocess.Popen] = subprocess.Popen,
        console: Optional[Console] = None,
    ):
        self._popen_factory = popen_factory
        self._console = console or Console()
        self._lock = threading.RLock()
        self._processes: Dict[str, SupervisedProcess] = {}

    @property
    def processes(self) -> List[SupervisedProcess]:
        """Snapshot of tracked processes in start order"""
        with self._lock:
            return list(self._processes.values())

    def get(self, name: str) -> Optional[SupervisedProcess]:
        with self._lock:
            return self._processes.get(name)

    def start(
        self,
        name: str,
        command: Sequence[str],
        env_overlay: Optional[Mapping[str, str]] = None,
    ) -> SupervisedProcess:
        """
        Launch a child process without waiting for it

        Args:
            name: Logical service name
            command: Argument vector, executable first
            env_overlay: Variables added on top of the inherited environment

        Raises:
            ServiceAlreadyRunning: a process with this name is tracked
        """
        env = os.environ.copy()
        if env_overlay:
            env.update(env_overlay)

        with self._lock:
            if name in self._processes:
                raise ServiceAlreadyRunning(name)

            logger.debug(f"Spawning {name}: {' '.join(command)}")
            process = self._popen_factory(
                list(command),
                env=env,
                stdout=None,
                stderr=subprocess.STDOUT,
            )
            handle = SupervisedProcess(name=name, process=process)
            self._processes[name] = handle

        logger.info(f"{name} started")
        return handle

    def stop(self, handle: Optional[SupervisedProcess]) -> None:
        """Ask a process to terminate (SIGTERM) and stop tracking it; does not wait"""
        if handle is None:
            return

        with self._lock:
            if self._processes.get(handle.name) is handle:
                del self._processes[handle.name]

            if handle.stop_requested or not handle.is_alive:
                return
            handle.stop_requested = True
            try:
                handle.process.terminate()
            except ProcessLookupError:
                # exited between poll() and terminate()
                return

        self._console.print(f"[bold red]{handle.name} stopped[/bold red]")
        logger.debug(f"Sent SIGTERM to {handle.name} (pid={handle.pid})")

    def stop_all(self) -> None:
        """Stop every tracked process in start order"""
        with self._lock:
            for handle in list(self._processes.values()):
                self.stop(handle)
