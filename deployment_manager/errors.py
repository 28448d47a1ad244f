"""
Error taxonomy for the deployment manager.

Every error raised on purpose by the orchestrator derives from
OrchestratorError so request handlers can map it to a response status.
Errors raised by collaborators that are not OrchestratorErrors are
re-raised unchanged.
"""

from typing import Any, Dict, Optional


class OrchestratorError(Exception):
    """Base class for all deployment manager errors."""

    status_code = 500
    reason = "Internal Server Error"

    def __init__(self, message: str):
        super().__init__(message)
        self.message = message

    def to_dict(self) -> Dict[str, Any]:
        return {"status": self.status_code, "error": self.reason, "description": self.message}


class BadRequest(OrchestratorError):
    status_code = 400
    reason = "Bad Request"


class Forbidden(OrchestratorError):
    status_code = 403
    reason = "Forbidden"


class NotFound(OrchestratorError):
    status_code = 404
    reason = "Not Found"


class AlreadyExists(OrchestratorError):
    status_code = 409
    reason = "Conflict"


class UnprocessableInput(OrchestratorError):
    status_code = 422
    reason = "Unprocessable Entity"


class AlreadyLocked(UnprocessableInput):
    """Raised when a deployment carries a lock record."""

    def __init__(self, deployment_name: str, lock_info: Optional[Any] = None):
        self.deployment_name = deployment_name
        self.lock_info = lock_info
        operation = getattr(lock_info, "lock_for_operation", None)
        message = f"Deployment {deployment_name} is locked"
        if operation:
            message += f" for operation '{operation}'"
        super().__init__(message)


class FeatureNotSupported(OrchestratorError):
    status_code = 501
    reason = "Not Implemented"


class UpstreamFailure(OrchestratorError):
    status_code = 502
    reason = "Bad Gateway"


class DeploymentNotFound(NotFound):
    def __init__(self, identifier: str):
        self.identifier = identifier
        super().__init__(f"Deployment for '{identifier}' not found")


class BindingNotFound(NotFound):
    def __init__(self, binding_id: str):
        self.binding_id = binding_id
        super().__init__(f"Binding '{binding_id}' not found")


class BackupNotFound(NotFound):
    def __init__(self, description: str):
        super().__init__(f"Backup metadata not found: {description}")


class InstanceAlreadyExists(AlreadyExists):
    def __init__(self, instance_id: str):
        self.instance_id = instance_id
        super().__init__(f"Deployment for instance '{instance_id}' already exists")


class BindingAlreadyExists(AlreadyExists):
    def __init__(self, binding_id: str):
        self.binding_id = binding_id
        super().__init__(f"Binding '{binding_id}' already exists")


class DeploymentNotOperational(UnprocessableInput):
    def __init__(self, instance_id: str):
        self.instance_id = instance_id
        super().__init__(f"Deployment of instance '{instance_id}' is not operational")


class NetworkSegmentsExhausted(UnprocessableInput):
    def __init__(self, subnet: Optional[str], capacity: int):
        self.subnet = subnet
        self.capacity = capacity
        super().__init__(
            f"No free network segment index in subnet '{subnet or 'default'}' "
            f"(capacity {capacity})"
        )


class IngressRulesNotCreated(UpstreamFailure):
    def __init__(self, name: str):
        self.name = name
        super().__init__(f"Ingress rule set '{name}' could not be created")
