# nodelab/core/controller.py
"""Node lifecycle: create, run, stop, wipe and delete.

Each operation on an existing node holds that node's lock from lookup to the
final registry update, so operations on one node never interleave. Steps that
touch qemu-img, QEMU or Guacamole are not rolled back when a later step
fails; the operation journal records how far an operation got.
"""

import warnings
from contextlib import contextmanager
from datetime import datetime, timezone

from loguru import logger

from . import config
from .exceptions import (
    ConflictError,
    DegradedRegistrationWarning,
    NotFoundError,
    OverlayCreationError,
    ProcessStartError,
    ResourceError,
    ValidationError,
)
from .guacamole_client import GuacamoleClient
from .overlay_store import OverlayStore
from .state_manager import Node, NodeRegistry, NodeStatus, ResourceAllocator
from .vm_manager import ProcessSupervisor


class OperationJournal:
    """Ordered list of the sub-steps an operation has completed."""

    def __init__(self, operation: str, node_id: str | None = None):
        self.operation = operation
        self.node_id = node_id
        self.steps: list[str] = []

    def record(self, step: str):
        self.steps.append(step)

    def fail(self, error: ResourceError) -> ResourceError:
        error.steps = list(self.steps)
        logger.error(f"{self.operation} {self.node_id or ''} failed after {self.steps}: {error}")
        return error

    def close(self):
        logger.debug(f"{self.operation} {self.node_id}: {' -> '.join(self.steps) or 'no-op'}")


class NodeController:
    def __init__(
        self,
        registry: NodeRegistry | None = None,
        allocator: ResourceAllocator | None = None,
        overlays: OverlayStore | None = None,
        supervisor: ProcessSupervisor | None = None,
        gateway: GuacamoleClient | None = None,
    ):
        self.registry = registry or NodeRegistry()
        self.allocator = allocator or ResourceAllocator()
        self.overlays = overlays or OverlayStore()
        self.supervisor = supervisor or ProcessSupervisor()
        self.gateway = gateway or GuacamoleClient()

    @contextmanager
    def _locked(self, node_id: str):
        lock = self.registry.lock_for(node_id)
        if lock is None:
            raise NotFoundError("Node not found")
        with lock:
            # Re-read: the node may have been deleted while we waited.
            node = self.registry.get(node_id)
            if node is None:
                raise NotFoundError("Node not found")
            yield node

    def list_nodes(self) -> list[Node]:
        return self.registry.all()

    def get_node(self, node_id: str) -> Node:
        node = self.registry.get(node_id)
        if node is None:
            raise NotFoundError("Node not found")
        return node

    def console_url(self, node: Node) -> str | None:
        return self.gateway.console_url(node.connection_id)

    def health(self) -> dict:
        return {"status": "ok", "nodes": len(self.registry)}

    def create(self, name: str | None) -> Node:
        name = (name or "").strip()
        if not name:
            raise ValidationError("Node name is required")
        if not self.overlays.base_image_exists():
            raise OverlayCreationError("Base image not found. Please create base.qcow2 first.")

        journal = OperationJournal("create")
        node_id = self.allocator.next_node_id()
        vnc_port = self.allocator.next_vnc_port()
        journal.node_id = node_id
        journal.record("allocate")
        try:
            overlay_path = self.overlays.create_overlay(node_id)
        except ResourceError as e:
            raise journal.fail(e)
        journal.record("create_overlay")

        node = self.registry.add(Node(
            id=node_id,
            name=name,
            overlay_path=overlay_path,
            vnc_port=vnc_port,
            created_at=datetime.now(timezone.utc),
        ))
        journal.record("register")
        journal.close()
        logger.info(f"Created node: {name} ({node_id})")
        return node

    def run(self, node_id: str) -> Node:
        with self._locked(node_id) as node:
            if node.is_running:
                raise ConflictError("Node is already running")

            journal = OperationJournal("run", node_id)
            try:
                handle = self.supervisor.start(node.overlay_path, node.vnc_port)
            except ResourceError as e:
                raise journal.fail(e)
            journal.record("start_process")

            if self.supervisor.wait_until_ready(node.vnc_port, handle):
                journal.record("vnc_ready")
            elif not handle.is_alive():
                exit_code = handle.wait(timeout=0)
                raise journal.fail(ProcessStartError(
                    f"QEMU process exited right after start (exit code {exit_code})"
                ))

            connection_id = self.gateway.register(node.id, node.name, node.vnc_port)
            if connection_id:
                journal.record("register_gateway")
            else:
                logger.warning(f"Node {node_id} running without a console")
                warnings.warn(
                    f"Gateway registration failed for {node_id}; console unavailable",
                    DegradedRegistrationWarning,
                    stacklevel=2,
                )

            node = self.registry.update(
                node_id,
                status=NodeStatus.RUNNING,
                process=handle,
                connection_id=connection_id,
            )
            journal.close()
        logger.info(f"Started node: {node.name} (PID: {handle.pid}, VNC: {node.vnc_port})")
        return node

    def stop(self, node_id: str) -> Node:
        with self._locked(node_id) as node:
            if not node.is_running:
                raise ConflictError("Node is already stopped")
            journal = OperationJournal("stop", node_id)
            node = self._teardown(node, journal)
            journal.close()
        logger.info(f"Stopped node: {node.name} ({node_id})")
        return node

    def wipe(self, node_id: str) -> Node:
        with self._locked(node_id) as node:
            journal = OperationJournal("wipe", node_id)
            if node.is_running:
                node = self._teardown(node, journal)
            try:
                self.overlays.recreate_overlay(node.overlay_path)
            except ResourceError as e:
                raise journal.fail(ResourceError(f"Failed to recreate overlay: {e}"))
            journal.record("recreate_overlay")
            journal.close()
        logger.info(f"Wiped node: {node.name} ({node_id})")
        return node

    def delete(self, node_id: str) -> Node:
        with self._locked(node_id) as node:
            journal = OperationJournal("delete", node_id)
            if node.is_running:
                node = self._teardown(node, journal)
            if self.overlays.delete_overlay(node.overlay_path):
                journal.record("delete_overlay")
            self.registry.remove(node_id)
            journal.record("unregister")
            journal.close()
        logger.info(f"Deleted node: {node.name} ({node_id})")
        return node

    def shutdown(self):
        """Stops every running node. Used when the service exits."""
        if not config.STOP_NODES_ON_SHUTDOWN:
            return
        for node in self.registry.all():
            if not node.is_running:
                continue
            try:
                self.stop(node.id)
            except (NotFoundError, ConflictError):
                pass

    def _teardown(self, node: Node, journal: OperationJournal) -> Node:
        """Best-effort stop sub-steps; always leaves the record stopped."""
        if self.supervisor.stop(node.process):
            journal.record("terminate_process")
        if node.connection_id and self.gateway.deregister(node.connection_id):
            journal.record("deregister_gateway")
        return self.registry.update(
            node.id,
            status=NodeStatus.STOPPED,
            process=None,
            connection_id=None,
        )
