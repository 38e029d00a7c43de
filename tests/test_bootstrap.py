"""
Tests for the Bootstrap Sequencer

The full sequence runs against fakes: FakeSession for downloads,
FakePopenFactory for child processes, and a recording sleep/hook pair so
that ordering can be asserted without waiting.
"""
import io
import os
import signal
import sys
import threading
import types
from unittest.mock import MagicMock, patch

import pytest
import requests
from rich.console import Console

sys.path.insert(0, os.path.join(os.path.dirname(__file__), '..'))

from src.core import environment
from src.core.artifacts import ArtifactCache
from src.core.bootstrap import (
    Bootstrapper,
    BootstrapStage,
    check_interpreter,
    load_entry_point,
    register_shutdown_hook,
)
from src.core.errors import DelegationFailure
from src.core.supervisor import ProcessSupervisor
from tests.fakes import FakePopenFactory, FakeSession


class Recorder:
    """Records hook registration, sleeps and the delegated call, in order"""

    def __init__(self):
        self.events = []
        self.hooks = []
        self.options = []

    def register_hook(self, callback):
        self.events.append("hook")
        self.hooks.append(callback)

    def sleep(self, seconds):
        self.events.append(("sleep", seconds))

    def entry(self, options):
        self.events.append("delegate")
        self.options.append(options)


@pytest.fixture
def recorder():
    return Recorder()


@pytest.fixture
def popen():
    return FakePopenFactory()


@pytest.fixture
def session():
    return FakeSession()


@pytest.fixture
def err_output():
    return io.StringIO()


@pytest.fixture
def make_bootstrapper(tmp_path, recorder, popen, session, err_output):
    def _make(arch="amd64", environ=None, entry_point=None, cache_dir=tmp_path):
        output = Console(file=io.StringIO())
        return Bootstrapper(
            entry_point or recorder.entry,
            cache=ArtifactCache(session=session, arch=arch),
            supervisor=ProcessSupervisor(popen_factory=popen, console=output),
            ready_wait=8,
            cache_dir=cache_dir,
            app_name="Paper",
            environ={} if environ is None else environ,
            sleep=recorder.sleep,
            register_hook=recorder.register_hook,
            console=output,
            err_console=Console(file=err_output),
        )
    return _make


@pytest.fixture
def cached_artifacts(tmp_path):
    (tmp_path / "sbx").write_bytes(b"sbx")
    (tmp_path / "nezha-agent").write_bytes(b"agent")
    return tmp_path


def test_end_to_end_with_cached_artifacts(make_bootstrapper, cached_artifacts, recorder, popen, session):
    bootstrapper = make_bootstrapper()
    options = object()

    outcome = bootstrapper.boot(options)

    assert outcome.delegated
    assert outcome.stage is BootstrapStage.DELEGATED
    assert bootstrapper.state.stage is BootstrapStage.DELEGATED
    assert session.calls == []
    assert recorder.options == [options]
    assert recorder.events == ["hook", ("sleep", 8), "delegate"]

    (hy2_command, hy2_kwargs), (nezha_command, nezha_kwargs) = popen.calls
    assert hy2_command == [str(cached_artifacts / "sbx")]
    for key, value in environment.DEFAULTS.items():
        assert hy2_kwargs["env"][key] == value

    assert nezha_command == [
        str(cached_artifacts / "nezha-agent"),
        "-s", environment.DEFAULTS["NEZHA_SERVER"],
        "-p", environment.DEFAULTS["NEZHA_KEY"],
    ]


def test_environment_overrides_reach_services(make_bootstrapper, cached_artifacts, popen):
    environ = {"HY2_PORT": "4000", "NEZHA_SERVER": "host:80", "NEZHA_KEY": "abc", "NEZHA_TLS": "true"}

    make_bootstrapper(environ=environ).boot(None)

    (_, hy2_kwargs), (nezha_command, _) = popen.calls
    assert hy2_kwargs["env"]["HY2_PORT"] == "4000"
    assert nezha_command[1:] == ["-s", "host:80", "-p", "abc", "--tls"]


def test_missing_artifacts_are_downloaded(make_bootstrapper, recorder, session, tmp_path):
    outcome = make_bootstrapper().boot(None)

    assert outcome.delegated
    assert len(session.calls) == 2
    assert session.calls[0][0] == "https://amd64.ssss.nyc.mn/s-box"
    assert (tmp_path / "sbx").exists()
    assert (tmp_path / "nezha-agent").exists()


@pytest.mark.parametrize("key", ["NEZHA_SERVER", "NEZHA_KEY"])
def test_nezha_skipped_when_config_missing(key, make_bootstrapper, cached_artifacts, recorder, popen, monkeypatch):
    monkeypatch.setitem(environment.DEFAULTS, key, "")

    bootstrapper = make_bootstrapper()
    outcome = bootstrapper.boot("opts")

    assert outcome.delegated
    assert len(popen.calls) == 1
    assert popen.calls[0][0] == [str(cached_artifacts / "sbx")]
    assert bootstrapper.supervisor.get("Nezha Agent") is None
    assert recorder.options == ["opts"]


def test_shutdown_handler_can_run_twice(make_bootstrapper, cached_artifacts, recorder):
    bootstrapper = make_bootstrapper()
    bootstrapper.boot(None)
    processes = [handle.process for handle in bootstrapper.supervisor.processes]

    shutdown = recorder.hooks[0]
    shutdown()
    shutdown()

    assert bootstrapper.state.running is False
    assert [process.terminate_calls for process in processes] == [1, 1]
    assert bootstrapper.supervisor.processes == []


def test_concurrent_shutdowns_terminate_each_process_once(make_bootstrapper, cached_artifacts):
    bootstrapper = make_bootstrapper()
    bootstrapper.boot(None)
    processes = [handle.process for handle in bootstrapper.supervisor.processes]
    barrier = threading.Barrier(8)
    errors = []

    def shutdown_together():
        barrier.wait()
        try:
            bootstrapper.state.shutdown()
        except Exception as e:
            errors.append(e)

    threads = [threading.Thread(target=shutdown_together) for _ in range(8)]
    for thread in threads:
        thread.start()
    for thread in threads:
        thread.join(timeout=5)

    assert errors == []
    assert len(processes) == 2
    assert [process.terminate_calls for process in processes] == [1, 1]
    assert bootstrapper.supervisor.processes == []


def test_shutdown_during_readiness_wait(make_bootstrapper, cached_artifacts, recorder):
    bootstrapper = make_bootstrapper()
    stopped = []

    def interrupted_sleep(seconds):
        stopped.extend(handle.process for handle in bootstrapper.supervisor.processes)
        recorder.hooks[0]()

    bootstrapper._sleep = interrupted_sleep

    outcome = bootstrapper.boot(None)

    assert outcome.delegated
    assert bootstrapper.state.running is False
    assert len(stopped) == 2
    assert [process.terminate_calls for process in stopped] == [1, 1]
    assert bootstrapper.supervisor.processes == []


def test_unsupported_platform_fails_before_delegation(make_bootstrapper, recorder, session, err_output):
    outcome = make_bootstrapper(arch="riscv64").boot(None)

    assert not outcome.delegated
    assert outcome.stage is BootstrapStage.FAILED
    assert "riscv64" in outcome.cause
    assert session.calls == []
    assert recorder.events == []
    assert "Bootstrap error: Unsupported arch: riscv64" in err_output.getvalue()
    assert "Traceback" in err_output.getvalue()


def test_fetch_failure_for_second_service_aborts(make_bootstrapper, tmp_path, recorder, popen):
    (tmp_path / "sbx").write_bytes(b"sbx")
    bootstrapper = make_bootstrapper()
    bootstrapper.cache.session = FakeSession(error=requests.exceptions.Timeout("timed out"))

    outcome = bootstrapper.boot(None)

    assert not outcome.delegated
    assert "nezha-agent" in outcome.cause
    assert len(popen.calls) == 1
    assert "delegate" not in recorder.events
    assert "hook" not in recorder.events


def test_bad_entry_point_fails_after_hook_armed(make_bootstrapper, cached_artifacts, recorder, err_output):
    bootstrapper = make_bootstrapper(entry_point="not_a_reference")

    outcome = bootstrapper.boot(None)

    assert not outcome.delegated
    assert bootstrapper.state.shutdown_armed
    assert "Invalid entry point" in err_output.getvalue()

    # the armed hook still cleans up on exit
    recorder.hooks[0]()
    assert bootstrapper.supervisor.processes == []


def test_entry_point_reference_is_resolved(make_bootstrapper, cached_artifacts, monkeypatch):
    app_module = types.ModuleType("fake_primary_app")
    app_module.main = MagicMock()
    monkeypatch.setitem(sys.modules, "fake_primary_app", app_module)

    outcome = make_bootstrapper(entry_point="fake_primary_app:main").boot(("--nogui",))

    assert outcome.delegated
    app_module.main.assert_called_once_with(("--nogui",))


def test_primary_application_errors_propagate(make_bootstrapper, cached_artifacts):
    def crashing_app(options):
        raise RuntimeError("server crashed")

    bootstrapper = make_bootstrapper(entry_point=crashing_app)

    with pytest.raises(RuntimeError, match="server crashed"):
        bootstrapper.boot(None)
    assert bootstrapper.state.stage is BootstrapStage.DELEGATED


def test_load_entry_point_resolves_dotted_attribute():
    assert load_entry_point("os:path.join") is os.path.join


@pytest.mark.parametrize("reference", ["", "os", ":join", "os:", "no_such_module_xyz:main", "os:no_such_attr", "os:sep"])
def test_load_entry_point_rejects_bad_references(reference):
    with pytest.raises(DelegationFailure):
        load_entry_point(reference)


def test_check_interpreter_exits_when_too_old():
    console = Console(file=io.StringIO())

    with pytest.raises(SystemExit) as exc_info:
        check_interpreter(minimum=(99, 0), console=console)

    assert exc_info.value.code == 1
    assert "Python version too low" in console.file.getvalue()


def test_check_interpreter_accepts_current():
    check_interpreter(minimum=(3, 0))


def test_register_shutdown_hook_installs_atexit_and_sigterm():
    calls = []

    with patch("atexit.register") as atexit_register, patch("signal.signal") as signal_signal:
        register_shutdown_hook(lambda: calls.append("shutdown"))

    atexit_register.assert_called_once()
    signum, handler = signal_signal.call_args[0]
    assert signum == signal.SIGTERM

    with pytest.raises(SystemExit) as exc_info:
        handler(signal.SIGTERM, None)

    assert calls == ["shutdown"]
    assert exc_info.value.code == 128 + signal.SIGTERM
