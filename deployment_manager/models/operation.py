"""
Operation models.

An operation is the handle a caller keeps between polls. Operations form a
closed tagged union discriminated on ``kind``; the state machine has one
transition per kind (see deployment.state). Operations are not persisted by
the manager: callers store the opaque string produced by encode_operation.
"""

import base64
from enum import Enum
from typing import Annotated, Any, Dict, Literal, Optional, Union

from pydantic import BaseModel, Field, TypeAdapter


class OperationType(str, Enum):
    CREATE = "create"
    UPDATE = "update"
    DELETE = "delete"
    BIND = "bind"
    UNBIND = "unbind"
    GET = "get"


class OperationSubtype(str, Enum):
    BACKUP = "backup"
    RESTORE = "restore"
    UNLOCK = "unlock"


class OperationState(str, Enum):
    QUEUED = "queued"
    IN_PROGRESS = "in progress"
    SUCCEEDED = "succeeded"
    FAILED = "failed"


TERMINAL_OPERATION_STATES = frozenset([OperationState.SUCCEEDED, OperationState.FAILED])


class Operation(BaseModel):
    """Fields shared by every operation kind."""

    state: OperationState = OperationState.QUEUED
    description: str = ""
    space_guid: Optional[str] = None

    @property
    def is_terminal(self) -> bool:
        return self.state in TERMINAL_OPERATION_STATES


class TaskOperation(Operation):
    """Operation tracked through an apply-service task."""

    task_id: Optional[str] = None
    parameters: Dict[str, Any] = Field(default_factory=dict)


class CreateOperation(TaskOperation):
    kind: Literal["create"] = "create"
    type: Literal["create"] = "create"
    subtype: None = None


class UpdateOperation(TaskOperation):
    kind: Literal["update"] = "update"
    type: Literal["update"] = "update"
    subtype: None = None


class DeleteOperation(TaskOperation):
    kind: Literal["delete"] = "delete"
    type: Literal["delete"] = "delete"
    subtype: None = None


class BindOperation(Operation):
    kind: Literal["bind"] = "bind"
    type: Literal["bind"] = "bind"
    subtype: None = None
    binding_id: str
    credentials: Dict[str, Any] = Field(default_factory=dict)


class UnbindOperation(Operation):
    kind: Literal["unbind"] = "unbind"
    type: Literal["unbind"] = "unbind"
    subtype: None = None
    binding_id: str


class AgentOperation(Operation):
    """Update sub-operation tracked through the deployment agent."""

    type: Literal["update"] = "update"
    deployment: Optional[str] = None
    agent_ip: Optional[str] = None
    backup_guid: Optional[str] = None
    username: Optional[str] = None
    useremail: Optional[str] = None


class BackupOperation(AgentOperation):
    kind: Literal["backup"] = "backup"
    subtype: Literal["backup"] = "backup"


class RestoreOperation(AgentOperation):
    kind: Literal["restore"] = "restore"
    subtype: Literal["restore"] = "restore"


class UnlockOperation(AgentOperation):
    kind: Literal["unlock"] = "unlock"
    subtype: Literal["unlock"] = "unlock"


AnyOperation = Annotated[
    Union[
        CreateOperation,
        UpdateOperation,
        DeleteOperation,
        BindOperation,
        UnbindOperation,
        BackupOperation,
        RestoreOperation,
        UnlockOperation,
    ],
    Field(discriminator="kind"),
]

_operation_adapter: TypeAdapter = TypeAdapter(AnyOperation)


def encode_operation(operation: Operation) -> str:
    """Encode an operation into the opaque handle handed back to callers."""
    payload = operation.model_dump_json(exclude_none=True)
    return base64.urlsafe_b64encode(payload.encode()).decode()


def decode_operation(handle: str) -> Operation:
    """Decode a handle produced by encode_operation."""
    payload = base64.urlsafe_b64decode(handle.encode())
    return _operation_adapter.validate_json(payload)
