"""Shared fixtures: a controller wired to fakes for QEMU and Guacamole."""

from __future__ import annotations

import itertools
import subprocess
from pathlib import Path

import pytest

from nodelab.core.controller import NodeController
from nodelab.core.guacamole_client import GuacamoleClient
from nodelab.core.overlay_store import OverlayStore
from nodelab.core.vm_manager import ProcessSupervisor


class FakeHandle:
    """Stands in for ProcessHandle; counts signals instead of sending them."""

    def __init__(self, pid: int):
        self.pid = pid
        self.alive = True
        self.terminate_calls = 0
        self.kill_calls = 0

    def is_alive(self) -> bool:
        return self.alive

    def terminate(self):
        self.terminate_calls += 1
        self.alive = False

    def kill(self):
        self.kill_calls += 1
        self.alive = False

    def wait(self, timeout=None):
        return None if self.alive else 0


class FakeSupervisor(ProcessSupervisor):
    def __init__(self):
        super().__init__(stop_grace=0, ready_timeout=0)
        self._pids = itertools.count(1000)
        self.started: list[tuple[Path, int]] = []
        self.handles: list[FakeHandle] = []
        self.fail_start: Exception | None = None
        self.exit_on_start = False

    def start(self, overlay_path, vnc_port):
        if self.fail_start is not None:
            raise self.fail_start
        self.started.append((Path(overlay_path), vnc_port))
        handle = FakeHandle(next(self._pids))
        handle.alive = not self.exit_on_start
        self.handles.append(handle)
        return handle

    def wait_until_ready(self, vnc_port, handle=None):
        return handle is None or handle.is_alive()


class FakeGateway(GuacamoleClient):
    def __init__(self):
        super().__init__(
            base_url="http://guac.test/guacamole",
            public_url="http://localhost:8080/guacamole",
            auth_retry_delay=0,
        )
        self._ids = itertools.count(1)
        self.reachable = True
        self.registered: list[tuple[str, str, int]] = []
        self.deregistered: list[str] = []

    def register(self, node_id, node_name, vnc_port):
        if not self.reachable:
            return None
        self.registered.append((node_id, node_name, vnc_port))
        return str(next(self._ids))

    def deregister(self, connection_id):
        if not connection_id:
            return True
        self.deregistered.append(connection_id)
        return self.reachable

    def is_reachable(self):
        return self.reachable


@pytest.fixture
def base_image(tmp_path) -> Path:
    path = tmp_path / "images" / "base.qcow2"
    path.parent.mkdir()
    path.write_bytes(b"QFI\xfb")
    return path


@pytest.fixture
def qemu_img_calls(monkeypatch) -> list[list[str]]:
    """Replace qemu-img with a function that writes the target file."""
    calls: list[list[str]] = []

    def fake_run(cmd, check=False, capture_output=False):
        calls.append(cmd)
        Path(cmd[-1]).write_bytes(b"overlay")
        return subprocess.CompletedProcess(cmd, 0, b"", b"")

    monkeypatch.setattr("nodelab.core.overlay_store.subprocess.run", fake_run)
    return calls


@pytest.fixture
def overlay_store(tmp_path, base_image, qemu_img_calls) -> OverlayStore:
    store = OverlayStore(base_image=base_image, overlay_dir=tmp_path / "overlays")
    store.ensure_directories()
    return store


@pytest.fixture
def supervisor() -> FakeSupervisor:
    return FakeSupervisor()


@pytest.fixture
def gateway() -> FakeGateway:
    return FakeGateway()


@pytest.fixture
def controller(overlay_store, supervisor, gateway) -> NodeController:
    return NodeController(overlays=overlay_store, supervisor=supervisor, gateway=gateway)
