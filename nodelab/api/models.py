# nodelab/api/models.py
from datetime import datetime

from pydantic import BaseModel, ConfigDict
from pydantic.alias_generators import to_camel


class CamelModel(BaseModel):
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)


class NodeCreate(BaseModel):
    name: str | None = None


class Node(CamelModel):
    id: str
    name: str
    status: str
    vnc_port: int
    created_at: datetime
    console_url: str | None = None
    pid: int | None = None


class Message(BaseModel):
    message: str


class Health(BaseModel):
    status: str
    nodes: int


class GatewayStatus(BaseModel):
    reachable: bool
    url: str
