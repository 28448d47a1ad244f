"""
Pydantic models for the deployment manager.
"""

from deployment_manager.models.backup import (
    TERMINAL_BACKUP_STATES,
    BackupMetadata,
    BackupState,
    BackupTrigger,
    RestoreMetadata,
    ServiceOperationOptions,
)
from deployment_manager.models.deployment import (
    VM,
    AgentLastOperation,
    LockInfo,
    Task,
    TaskState,
)
from deployment_manager.models.operation import (
    AgentOperation,
    AnyOperation,
    BackupOperation,
    BindOperation,
    CreateOperation,
    DeleteOperation,
    Operation,
    OperationState,
    OperationSubtype,
    OperationType,
    RestoreOperation,
    TaskOperation,
    UnbindOperation,
    UnlockOperation,
    UpdateOperation,
    decode_operation,
    encode_operation,
)

__all__ = [
    # Backup models
    "BackupMetadata",
    "BackupState",
    "BackupTrigger",
    "RestoreMetadata",
    "ServiceOperationOptions",
    "TERMINAL_BACKUP_STATES",
    # Deployment models
    "AgentLastOperation",
    "LockInfo",
    "Task",
    "TaskState",
    "VM",
    # Operations
    "AgentOperation",
    "AnyOperation",
    "BackupOperation",
    "BindOperation",
    "CreateOperation",
    "DeleteOperation",
    "Operation",
    "OperationState",
    "OperationSubtype",
    "OperationType",
    "RestoreOperation",
    "TaskOperation",
    "UnbindOperation",
    "UnlockOperation",
    "UpdateOperation",
    "decode_operation",
    "encode_operation",
]
