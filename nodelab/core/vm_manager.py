# nodelab/core/vm_manager.py
import socket
import subprocess
import time
from pathlib import Path

from loguru import logger

from . import config
from .exceptions import ProcessStartError


class ProcessHandle:
    """Owned handle to a hypervisor process started by the supervisor."""

    def __init__(self, popen: subprocess.Popen):
        self._popen = popen

    def __repr__(self):
        return f"ProcessHandle(pid={self.pid})"

    @property
    def pid(self) -> int:
        return self._popen.pid

    def is_alive(self) -> bool:
        return self._popen.poll() is None

    def terminate(self):
        self._popen.terminate()

    def kill(self):
        self._popen.kill()

    def wait(self, timeout: float | None = None) -> int | None:
        """Reaps the process. Returns None if it is still running after ``timeout``."""
        try:
            return self._popen.wait(timeout=timeout)
        except subprocess.TimeoutExpired:
            return None


class ProcessSupervisor:
    def __init__(
        self,
        qemu_binary: str = config.QEMU_BINARY,
        memory_mb: int = config.VM_MEMORY_MB,
        enable_kvm: bool = config.VM_ENABLE_KVM,
        stop_grace: float = config.STOP_GRACE_SECONDS,
        ready_timeout: float = config.VNC_READY_TIMEOUT,
        probe_interval: float = config.VNC_PROBE_INTERVAL,
        probe_host: str = "127.0.0.1",
    ):
        self.qemu_binary = qemu_binary
        self.memory_mb = memory_mb
        self.enable_kvm = enable_kvm
        self.stop_grace = stop_grace
        self.ready_timeout = ready_timeout
        self.probe_interval = probe_interval
        self.probe_host = probe_host

    def build_command(self, overlay_path: str | Path, vnc_port: int) -> list[str]:
        vnc_display = vnc_port - config.VNC_BASE_PORT
        cmd = [
            self.qemu_binary,
            "-hda", str(overlay_path),
            "-m", str(self.memory_mb),
            "-vnc", f":{vnc_display}",
        ]
        if self.enable_kvm:
            cmd.append("-enable-kvm")
        cmd.append("-nographic")
        return cmd

    def start(self, overlay_path: str | Path, vnc_port: int) -> ProcessHandle:
        """Starts a QEMU VM as a detached background process."""
        cmd = self.build_command(overlay_path, vnc_port)
        try:
            process = subprocess.Popen(
                cmd,
                stdin=subprocess.DEVNULL,
                stdout=subprocess.DEVNULL,
                stderr=subprocess.DEVNULL,
                start_new_session=True,
            )
        except OSError as e:
            logger.error(f"Failed to start QEMU: {e}")
            raise ProcessStartError(f"Failed to start QEMU process: {e}")
        handle = ProcessHandle(process)
        logger.info(f"Started QEMU (PID: {handle.pid}, VNC: {vnc_port})")
        return handle

    def wait_until_ready(self, vnc_port: int, handle: ProcessHandle | None = None) -> bool:
        """Polls the VNC port until it accepts a connection or the timeout passes.

        Gives up at once when ``handle`` is given and its process has exited.
        """
        deadline = time.monotonic() + self.ready_timeout
        while True:
            if handle is not None and not handle.is_alive():
                logger.warning(f"QEMU process {handle.pid} exited before VNC port {vnc_port} came up")
                return False
            try:
                with socket.create_connection((self.probe_host, vnc_port), timeout=self.probe_interval or 0.1):
                    return True
            except OSError:
                pass
            if time.monotonic() >= deadline:
                logger.warning(f"VNC port {vnc_port} not ready after {self.ready_timeout}s")
                return False
            time.sleep(self.probe_interval)

    def stop(self, handle: ProcessHandle | None) -> bool:
        """SIGTERM, then SIGKILL after the grace period. Never raises."""
        if handle is None:
            return True
        try:
            if not handle.is_alive():
                logger.warning(f"QEMU process {handle.pid} already exited")
                handle.wait(timeout=0)
                return True
            handle.terminate()
            if handle.wait(timeout=self.stop_grace) is None:
                logger.warning(f"QEMU process {handle.pid} ignored SIGTERM, killing")
                handle.kill()
                handle.wait(timeout=self.stop_grace)
        except OSError as e:
            logger.error(f"Error stopping VM (PID: {handle.pid}): {e}")
            return False
        logger.info(f"Stopped QEMU process {handle.pid}")
        return True
