"""
Bootstrap Sequencer
Resolves the environment, starts the auxiliary services, arms the shutdown
hook, waits out the readiness window and then hands control to the primary
application.

Stages: INIT -> ENV_RESOLVED -> AUX_STARTING -> AUX_STARTED ->
SHUTDOWN_ARMED -> READINESS_WAIT -> DELEGATED, or FAILED from any of them.
"""
import atexit
import importlib
import signal
import sys
import threading
import time
from dataclasses import dataclass
from enum import Enum
from pathlib import Path
from typing import Any, Callable, Mapping, Optional, Tuple, Union

from rich.console import Console

from config import Config
from .artifacts import ArtifactCache
from .environment import EffectiveConfig, resolve
from .errors import DelegationFailure, MissingAuxConfig
from .services import (
    HY2,
    NEZHA,
    build_hy2_command,
    build_nezha_command,
    hy2_descriptor,
    nezha_descriptor,
    nezha_settings,
)
from .supervisor import ProcessSupervisor
from ..utils.logger import get_logger

logger = get_logger(__name__)

EntryPoint = Callable[[Any], Any]


class BootstrapStage(str, Enum):
    INIT = "init"
    ENV_RESOLVED = "env_resolved"
    AUX_STARTING = "aux_starting"
    AUX_STARTED = "aux_started"
    SHUTDOWN_ARMED = "shutdown_armed"
    READINESS_WAIT = "readiness_wait"
    DELEGATED = "delegated"
    FAILED = "failed"


@dataclass(frozen=True)
class BootstrapOutcome:
    """Terminal result of one bootstrap attempt"""
    delegated: bool
    stage: BootstrapStage
    cause: Optional[str] = None

    @classmethod
    def ok(cls) -> "BootstrapOutcome":
        return cls(delegated=True, stage=BootstrapStage.DELEGATED)

    @classmethod
    def failed(cls, cause: str) -> "BootstrapOutcome":
        return cls(delegated=False, stage=BootstrapStage.FAILED, cause=cause)


class BootstrapState:
    """
    State shared between the main sequence and the shutdown handler.

    shutdown() is idempotent and may be called from a signal handler,
    from atexit, or several times in a row.
    """

    def __init__(self, supervisor: ProcessSupervisor):
        self.supervisor = supervisor
        self.stage = BootstrapStage.INIT
        self.running = True
        self.shutdown_armed = False
        self._lock = threading.RLock()

    def advance(self, stage: BootstrapStage) -> None:
        with self._lock:
            self.stage = stage
        logger.debug(f"Bootstrap stage -> {stage.value}")

    def shutdown(self) -> None:
        with self._lock:
            self.running = False
            self.supervisor.stop_all()


def register_shutdown_hook(callback: Callable[[], None]) -> None:
    """
    Run callback when the interpreter exits, and on SIGTERM

    The SIGTERM handler exits with 128 + signum after the callback, so the
    process still terminates. Signal handlers can only be installed from the
    main thread; elsewhere only the atexit hook is registered.
    """
    atexit.register(callback)

    if threading.current_thread() is not threading.main_thread():
        logger.debug("Not on the main thread, SIGTERM handler not installed")
        return

    def _handle_sigterm(signum, frame):
        logger.info(f"Received signal {signum}, stopping auxiliary services...")
        callback()
        sys.exit(128 + signum)

    signal.signal(signal.SIGTERM, _handle_sigterm)


def check_interpreter(
    minimum: Tuple[int, int] = Config.MIN_PYTHON,
    console: Optional[Console] = None,
) -> None:
    """Exit with status 1 when running on an interpreter older than minimum"""
    if tuple(sys.version_info[:2]) < tuple(minimum):
        (console or Console(stderr=True)).print("[bold red]ERROR: Python version too low![/bold red]")
        raise SystemExit(1)


def load_entry_point(reference: str) -> EntryPoint:
    """
    Resolve "package.module:callable" to the callable it names

    Raises:
        DelegationFailure: reference is malformed, unimportable or not callable
    """
    module_name, sep, attr_path = (reference or "").partition(":")
    if not sep or not module_name or not attr_path:
        raise DelegationFailure(f"Invalid entry point {reference!r}, expected 'module:callable'")

    try:
        target = importlib.import_module(module_name)
    except ImportError as e:
        raise DelegationFailure(f"Cannot import {module_name}: {e}") from e

    for attr in attr_path.split("."):
        try:
            target = getattr(target, attr)
        except AttributeError as e:
            raise DelegationFailure(f"{module_name} has no attribute {attr_path}") from e

    if not callable(target):
        raise DelegationFailure(f"Entry point {reference} is not callable")
    return target


class Bootstrapper:
    """Runs the bootstrap sequence once and delegates to the primary entry point"""

    def __init__(
        self,
        entry_point: Union[str, EntryPoint],
        *,
        cache: Optional[ArtifactCache] = None,
        supervisor: Optional[ProcessSupervisor] = None,
        ready_wait: Optional[float] = None,
        cache_dir: Optional[Union[str, Path]] = None,
        app_name: Optional[str] = None,
        environ: Optional[Mapping[str, str]] = None,
        sleep: Callable[[float], None] = time.sleep,
        register_hook: Callable[[Callable[[], None]], None] = register_shutdown_hook,
        console: Optional[Console] = None,
        err_console: Optional[Console] = None,
    ):
        self.entry_point = entry_point
        self.console = console or Console()
        self.err_console = err_console or Console(stderr=True)
        self.cache = cache or ArtifactCache(timeout=Config.fetch_timeout())
        self.supervisor = supervisor or ProcessSupervisor(console=self.console)
        self.ready_wait = Config.READY_WAIT_SECONDS if ready_wait is None else ready_wait
        self.cache_dir = cache_dir if cache_dir is not None else Config.CACHE_DIR
        self.app_name = app_name or Config.APP_NAME
        self.environ = environ
        self._sleep = sleep
        self._register_hook = register_hook
        self.state = BootstrapState(self.supervisor)
        self.config: Optional[EffectiveConfig] = None

    def boot(self, options: Any = None) -> BootstrapOutcome:
        """
        Run the sequence and call the primary entry point with options

        Returns the FAILED outcome if anything goes wrong before delegation.
        Once delegated, exceptions from the primary application propagate.
        """
        try:
            self.config = resolve(self.environ)
            self.state.advance(BootstrapStage.ENV_RESOLVED)

            self.state.advance(BootstrapStage.AUX_STARTING)
            self._start_hy2(self.config)
            nezha_started = self._start_nezha(self.config)
            self.state.advance(BootstrapStage.AUX_STARTED)

            self._register_hook(self.state.shutdown)
            self.state.shutdown_armed = True
            self.state.advance(BootstrapStage.SHUTDOWN_ARMED)

            self.state.advance(BootstrapStage.READINESS_WAIT)
            logger.debug(f"Waiting {self.ready_wait}s for auxiliary services")
            self._sleep(self.ready_wait)

            if nezha_started:
                self.console.print(f"[bold green]{HY2} + {NEZHA} running[/bold green]")
            else:
                self.console.print(f"[bold green]{HY2} running ({NEZHA} skipped)[/bold green]")

            entry = self._resolve_entry_point()
            self.console.print(f"[bold green]Starting {self.app_name}...[/bold green]")
        except Exception as e:
            self.state.advance(BootstrapStage.FAILED)
            self.err_console.print(f"Bootstrap error: {e}", style="bold red", markup=False)
            self.err_console.print_exception()
            return BootstrapOutcome.failed(str(e))

        self.state.advance(BootstrapStage.DELEGATED)
        entry(options)
        return BootstrapOutcome.ok()

    def _start_hy2(self, config: EffectiveConfig) -> None:
        path = self.cache.ensure_local(hy2_descriptor(self.cache_dir))
        self.supervisor.start(HY2, build_hy2_command(path), env_overlay=dict(config))

    def _start_nezha(self, config: EffectiveConfig) -> bool:
        try:
            endpoint, secret, tls = nezha_settings(config)
        except MissingAuxConfig as e:
            logger.warning(f"{e}, skip")
            return False

        path = self.cache.ensure_local(nezha_descriptor(self.cache_dir))
        self.supervisor.start(NEZHA, build_nezha_command(path, endpoint, secret, tls))
        return True

    def _resolve_entry_point(self) -> EntryPoint:
        if callable(self.entry_point):
            return self.entry_point
        return load_entry_point(self.entry_point)
