"""
Protocols for the external collaborators of the deployment manager.

These protocols define what each collaborator promises to provide. Wire
clients live outside this package; anything satisfying these contracts can
be plugged into the registry.
"""

from typing import (
    Any,
    Awaitable,
    Callable,
    Dict,
    List,
    Optional,
    Protocol,
    runtime_checkable,
)

# Precondition evaluated by a BackupStore against the stored metadata before
# deleting it. Returning False makes the delete a no-op.
DeletePrecondition = Callable[[Dict[str, Any]], Awaitable[bool]]

PRECONDITION_NOT_MET = "PRECONDITION_NOT_MET"

# Storage root of backups not tied to a service instance.
OOB_ROOT_FOLDER = "_oob_deployments"


# ============================================================================
# APPLY SERVICE - turns manifests into running deployments
# ============================================================================


@runtime_checkable
class ApplyService(Protocol):
    """Deployment-apply service with asynchronous task tracking."""

    async def create_or_update_deployment(
        self, manifest: str, args: Optional[Dict[str, Any]] = None
    ) -> str:
        """
        Submit a rendered manifest.

        Promises:
        - Returns the id of the task applying the manifest
        - Never blocks until the task finishes
        """
        ...

    async def delete_deployment(self, deployment_name: str) -> str:
        """Schedule deletion of a deployment, returning the task id."""
        ...

    async def get_task(self, task_id: str) -> Dict[str, Any]:
        """Fetch a task. Raises NotFound for unknown ids."""
        ...

    async def get_tasks(self, filters: Dict[str, Any]) -> List[Dict[str, Any]]:
        ...

    async def get_task_events(self, task_id: str) -> List[Dict[str, Any]]:
        ...

    async def get_deployment(self, deployment_name: str) -> Dict[str, Any]:
        """Fetch a deployment. Raises NotFound when it does not exist."""
        ...

    async def get_deployment_names(self, queued: bool = False) -> List[str]:
        """
        List deployment names.

        Promises:
        - With queued=True also includes deployments whose create task is queued
        """
        ...

    async def get_deployment_name_for_instance_id(self, instance_id: str) -> str:
        """Resolve the deployment bound to an instance. Raises NotFound."""
        ...

    async def get_deployment_manifest(self, deployment_name: str) -> Optional[str]:
        """Return the current manifest text, or None when there is none."""
        ...

    async def get_deployment_vms(self, deployment_name: str) -> List[Dict[str, Any]]:
        ...

    async def get_deployment_property(self, deployment_name: str, key: str) -> str:
        """Read a deployment property. Raises NotFound when absent."""
        ...

    async def create_deployment_property(
        self, deployment_name: str, key: str, value: str
    ) -> None:
        """Create a property. Raises AlreadyExists when it is already set."""
        ...

    async def update_deployment_property(
        self, deployment_name: str, key: str, value: str
    ) -> None:
        """Create or overwrite a property unconditionally."""
        ...

    async def delete_deployment_property(self, deployment_name: str, key: str) -> None:
        """Delete a property. Raises NotFound when absent."""
        ...


# ============================================================================
# AGENT - per-deployment management endpoint
# ============================================================================


@runtime_checkable
class Agent(Protocol):
    """Deployment agent exposing credential, backup and restore operations."""

    features: List[str]

    async def get_state(self, ips: List[str]) -> Dict[str, Any]:
        ...

    async def create_credentials(self, ips: List[str], parameters: Dict[str, Any]) -> Dict[str, Any]:
        ...

    async def delete_credentials(self, ips: List[str], credentials: Dict[str, Any]) -> None:
        ...

    async def deprovision(self, ips: List[str]) -> None:
        """Only available when 'lifecycle' is among the features."""
        ...

    async def start_backup(
        self, ips: List[str], backup: Dict[str, Any], vms: List[Dict[str, Any]]
    ) -> str:
        """
        Start a backup run.

        Promises:
        - Returns the ip of the agent now responsible for the run
        """
        ...

    async def get_backup_last_operation(self, agent_ip: str) -> Dict[str, Any]:
        ...

    async def get_backup_logs(self, agent_ip: str) -> List[Any]:
        ...

    async def abort_backup(self, agent_ip: str) -> None:
        ...

    async def start_restore(
        self, ips: List[str], backup: Dict[str, Any], vms: List[Dict[str, Any]]
    ) -> str:
        ...

    async def get_restore_last_operation(self, agent_ip: str) -> Dict[str, Any]:
        ...

    async def get_restore_logs(self, agent_ip: str) -> List[Any]:
        ...

    async def abort_restore(self, agent_ip: str) -> None:
        ...


# ============================================================================
# BACKUP STORE - durable metadata store
# ============================================================================


@runtime_checkable
class BackupStore(Protocol):
    """Durable store for backup and restore metadata."""

    async def put_file(self, data: Dict[str, Any]) -> None:
        ...

    async def get_backup_file(self, options: Dict[str, Any]) -> Dict[str, Any]:
        """
        Read backup metadata.

        Promises:
        - Without backup_guid in options returns the latest backup of the instance
        - Raises NotFound when no record matches
        """
        ...

    async def patch_backup_file(self, options: Dict[str, Any], patch: Dict[str, Any]) -> Dict[str, Any]:
        ...

    async def delete_backup_file(
        self, options: Dict[str, Any], precondition: Optional[DeletePrecondition] = None
    ) -> Optional[str]:
        """
        Delete backup metadata.

        Promises:
        - Returns PRECONDITION_NOT_MET without deleting when precondition is False
        - Raises Forbidden for a non-forced delete of a scheduled backup
          inside the retention period
        """
        ...

    async def list_backup_files(self, options: Dict[str, Any]) -> List[Dict[str, Any]]:
        """List backup metadata of one instance, newest first."""
        ...

    async def list_backup_filenames(
        self,
        older_than: Any,
        newer_than: Optional[Any] = None,
        include_oob: bool = False,
    ) -> List[Dict[str, Any]]:
        ...

    async def get_restore_file(self, options: Dict[str, Any]) -> Dict[str, Any]:
        ...

    async def patch_restore_file(self, options: Dict[str, Any], patch: Dict[str, Any]) -> Dict[str, Any]:
        ...

    async def delete_restore_file(self, options: Dict[str, Any]) -> Optional[str]:
        ...


# ============================================================================
# SCHEDULER, PLATFORM AND LEASE
# ============================================================================


@runtime_checkable
class Scheduler(Protocol):
    """External recurring-job scheduler."""

    async def get_schedule(self, owner_id: str, job_type: str) -> Dict[str, Any]:
        """Raises NotFound when no schedule exists."""
        ...

    async def schedule_job(
        self, owner_id: str, job_type: str, interval: str, data: Dict[str, Any]
    ) -> Dict[str, Any]:
        ...


@runtime_checkable
class IngressRuleManager(Protocol):
    """Platform API managing network ingress rule sets."""

    async def create_rule_set(
        self, name: str, rules: List[Dict[str, Any]], space_guids: List[str]
    ) -> str:
        """Create a rule set and return its id."""
        ...

    async def find_rule_set(self, name: str) -> Dict[str, Any]:
        """Raises NotFound when no rule set has that name."""
        ...

    async def delete_rule_set(self, rule_set_id: str) -> None:
        ...


@runtime_checkable
class ServiceInstanceDirectory(Protocol):
    """Platform directory of live service instances."""

    async def get_service_instance(self, instance_guid: str) -> Dict[str, Any]:
        """Raises NotFound once the instance has been deleted."""
        ...


@runtime_checkable
class ReaperLease(Protocol):
    """Lease held by the long-running reaper job."""

    async def touch(self) -> None:
        ...
