# nodelab/core/state_manager.py
import dataclasses
import enum
import itertools
import threading
from dataclasses import dataclass
from datetime import datetime
from pathlib import Path
from typing import Any

from . import config


class NodeStatus(str, enum.Enum):
    STOPPED = "stopped"
    RUNNING = "running"


@dataclass(frozen=True)
class Node:
    """A registry record. Records are replaced as a whole, never mutated."""

    id: str
    name: str
    overlay_path: Path
    vnc_port: int
    created_at: datetime
    status: NodeStatus = NodeStatus.STOPPED
    process: Any = None  # vm_manager.ProcessHandle while running
    connection_id: str | None = None

    @property
    def is_running(self) -> bool:
        return self.status is NodeStatus.RUNNING

    @property
    def pid(self) -> int | None:
        return self.process.pid if self.process is not None else None


class ResourceAllocator:
    """Hands out node ids and VNC ports. Neither is ever reused."""

    def __init__(self, first_id: int = 1, first_port: int = config.VNC_BASE_PORT):
        self._ids = itertools.count(first_id)
        self._ports = itertools.count(first_port)
        self._lock = threading.Lock()

    def next_node_id(self) -> str:
        with self._lock:
            return f"node_{next(self._ids)}"

    def next_vnc_port(self) -> int:
        with self._lock:
            return next(self._ports)


class NodeRegistry:
    """In-memory node map with one lock per node id.

    The registry mutex only guards the dict and the lock table and is never
    held across an external call. Node locks serialize lifecycle operations
    on the same id.
    """

    def __init__(self):
        self._nodes: dict[str, Node] = {}
        self._node_locks: dict[str, threading.Lock] = {}
        self._mutex = threading.Lock()

    def __len__(self) -> int:
        with self._mutex:
            return len(self._nodes)

    def lock_for(self, node_id: str) -> "threading.Lock | None":
        """The node's lock, or None when the node is not registered."""
        with self._mutex:
            if node_id not in self._nodes:
                return None
            lock = self._node_locks.get(node_id)
            if lock is None:
                lock = self._node_locks[node_id] = threading.Lock()
            return lock

    def get(self, node_id: str) -> Node | None:
        with self._mutex:
            return self._nodes.get(node_id)

    def all(self) -> list[Node]:
        with self._mutex:
            return list(self._nodes.values())

    def add(self, node: Node) -> Node:
        with self._mutex:
            self._nodes[node.id] = node
        return node

    def update(self, node_id: str, **changes) -> Node:
        with self._mutex:
            node = dataclasses.replace(self._nodes[node_id], **changes)
            self._nodes[node_id] = node
        return node

    def remove(self, node_id: str) -> Node | None:
        with self._mutex:
            # Lock entry goes too; a waiter still holding the old lock object
            # will find the node gone once it acquires it.
            self._node_locks.pop(node_id, None)
            return self._nodes.pop(node_id, None)
