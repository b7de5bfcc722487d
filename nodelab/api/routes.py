# nodelab/api/routes.py
from fastapi import APIRouter, Depends, Request

from . import models
from ..core.controller import NodeController
from ..core.state_manager import Node

router = APIRouter()


def get_controller(request: Request) -> NodeController:
    return request.app.state.controller


def _format_node_response(controller: NodeController, node: Node) -> models.Node:
    """Helper to format a registry record into the Pydantic model."""
    return models.Node(
        id=node.id,
        name=node.name,
        status=node.status.value,
        vnc_port=node.vnc_port,
        created_at=node.created_at,
        console_url=controller.console_url(node),
        pid=node.pid,
    )


# Handlers are plain functions: FastAPI runs them in its thread pool, and the
# controller's per-node locks serialize work on the same node.

@router.get("/health", response_model=models.Health)
def health(controller: NodeController = Depends(get_controller)):
    return controller.health()


@router.get("/gateway", response_model=models.GatewayStatus)
def gateway_status(controller: NodeController = Depends(get_controller)):
    """Whether the Guacamole web app answers."""
    return models.GatewayStatus(
        reachable=controller.gateway.is_reachable(),
        url=controller.gateway.public_url,
    )


@router.get("/nodes", response_model=list[models.Node])
def list_nodes(controller: NodeController = Depends(get_controller)):
    """Get a list of all nodes and their current status."""
    return [_format_node_response(controller, node) for node in controller.list_nodes()]


@router.post("/nodes", response_model=models.Node, status_code=201)
def create_node(
    payload: models.NodeCreate | None = None,
    controller: NodeController = Depends(get_controller),
):
    """Create a new, stopped node."""
    node = controller.create(payload.name if payload else None)
    return _format_node_response(controller, node)


@router.get("/nodes/{node_id}", response_model=models.Node)
def get_node(node_id: str, controller: NodeController = Depends(get_controller)):
    return _format_node_response(controller, controller.get_node(node_id))


@router.post("/nodes/{node_id}/run", response_model=models.Node)
def run_node(node_id: str, controller: NodeController = Depends(get_controller)):
    """Start a node and register its console."""
    return _format_node_response(controller, controller.run(node_id))


@router.post("/nodes/{node_id}/stop", response_model=models.Node)
def stop_node(node_id: str, controller: NodeController = Depends(get_controller)):
    """Stop a running node."""
    return _format_node_response(controller, controller.stop(node_id))


@router.post("/nodes/{node_id}/wipe", response_model=models.Node)
def wipe_node(node_id: str, controller: NodeController = Depends(get_controller)):
    """Stop a node (if running) and reset its overlay disk."""
    return _format_node_response(controller, controller.wipe(node_id))


@router.delete("/nodes/{node_id}", response_model=models.Message)
def delete_node(node_id: str, controller: NodeController = Depends(get_controller)):
    """Permanently delete a node."""
    controller.delete(node_id)
    return models.Message(message="Node deleted successfully")
