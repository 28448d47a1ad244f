"""
Operation state transitions.

Each operation kind has exactly one pure transition function mapping the
operation and the latest upstream observation to the next operation.
Terminal states are absorbing: a succeeded or failed operation is returned
unchanged whatever is observed afterwards.
"""

from functools import singledispatch
from typing import Any, Tuple

from deployment_manager.models import (
    AgentLastOperation,
    BackupOperation,
    BindOperation,
    CreateOperation,
    DeleteOperation,
    Operation,
    OperationState,
    RestoreOperation,
    Task,
    TaskOperation,
    TaskState,
    UnbindOperation,
    UnlockOperation,
    UpdateOperation,
)

FAILED_TASK_STATES = frozenset([TaskState.ERROR, TaskState.CANCELLED, TaskState.TIMEOUT])


def describe_task_state(action: str, task: Task) -> Tuple[OperationState, str]:
    """Translate an apply-service task into a caller-facing state and description."""
    timestamp = task.timestamp_iso
    if task.state == TaskState.DONE:
        return (
            OperationState.SUCCEEDED,
            f"{action} deployment {task.deployment} succeeded at {timestamp}",
        )
    if task.state in FAILED_TASK_STATES:
        return (
            OperationState.FAILED,
            f'{action} deployment {task.deployment} failed at {timestamp} with Error "{task.result}"',
        )
    return OperationState.IN_PROGRESS, f"{action} deployment {task.deployment} is still in progress"


def describe_agent_state(
    action: str, deployment_name: str, last_operation: AgentLastOperation
) -> Tuple[OperationState, str]:
    """Translate an agent last-operation report into a caller-facing state and description."""
    timestamp = last_operation.updated_at
    if last_operation.state == "succeeded":
        return (
            OperationState.SUCCEEDED,
            f"{action} deployment {deployment_name} succeeded at {timestamp}",
        )
    if last_operation.state == "aborted":
        return OperationState.FAILED, f"{action} deployment {deployment_name} aborted at {timestamp}"
    if last_operation.state == "failed":
        return (
            OperationState.FAILED,
            f'{action} deployment {deployment_name} failed at {timestamp} with Error "{last_operation.stage}"',
        )
    description = f"{action} deployment {deployment_name} is still in progress"
    if last_operation.stage:
        description += f': "{last_operation.stage}"'
    return OperationState.IN_PROGRESS, description


@singledispatch
def transition(operation: Operation, observation: Any) -> Operation:
    """Advance an operation by one observation of its upstream state."""
    raise TypeError(f"No transition defined for {type(operation).__name__}")


def _apply_task(operation: TaskOperation, task: Task) -> TaskOperation:
    if operation.is_terminal:
        return operation
    state, description = describe_task_state(operation.type.capitalize(), task)
    return operation.model_copy(update={"state": state, "description": description})


@transition.register(CreateOperation)
def _transition_create(operation: CreateOperation, observation: Task) -> CreateOperation:
    return _apply_task(operation, observation)


@transition.register(UpdateOperation)
def _transition_update(operation: UpdateOperation, observation: Task) -> UpdateOperation:
    return _apply_task(operation, observation)


@transition.register(DeleteOperation)
def _transition_delete(operation: DeleteOperation, observation: Task) -> DeleteOperation:
    return _apply_task(operation, observation)


def _apply_agent(operation, observation: AgentLastOperation):
    if operation.is_terminal:
        return operation
    state, description = describe_agent_state(
        operation.subtype.capitalize(), operation.deployment, observation
    )
    return operation.model_copy(update={"state": state, "description": description})


@transition.register(BackupOperation)
def _transition_backup(
    operation: BackupOperation, observation: AgentLastOperation
) -> BackupOperation:
    return _apply_agent(operation, observation)


@transition.register(RestoreOperation)
def _transition_restore(
    operation: RestoreOperation, observation: AgentLastOperation
) -> RestoreOperation:
    return _apply_agent(operation, observation)


# Bind, unbind and unlock complete synchronously; polling never changes them.
@transition.register(BindOperation)
@transition.register(UnbindOperation)
@transition.register(UnlockOperation)
def _transition_synchronous(operation: Operation, observation: Any = None) -> Operation:
    return operation
