"""
Deployment manager for one service plan.

Owns everything that turns an instance request into apply-service calls:
deployment identity, manifest rendering and submission, bindings, agent
state, and the dispatch of backup, restore and unlock operations.
"""

import asyncio
import difflib
import json
import logging
import re
from typing import Any, Dict, List, Optional

from deployment_manager.backup.orchestrator import BackupRestoreOrchestrator
from deployment_manager.config.settings import PlanSettings
from deployment_manager.deployment.state import transition
from deployment_manager.deployment_lock import DeploymentLock
from deployment_manager.errors import (
    AlreadyExists,
    BadRequest,
    BindingAlreadyExists,
    BindingNotFound,
    DeploymentNotFound,
    DeploymentNotOperational,
    FeatureNotSupported,
    NotFound,
)
from deployment_manager.inventory import DeploymentInventory
from deployment_manager.manifest_generator import ManifestGenerator
from deployment_manager.models import (
    AgentOperation,
    BackupOperation,
    Operation,
    OperationSubtype,
    RestoreOperation,
    ServiceOperationOptions,
    Task,
    TaskOperation,
)
from deployment_manager.naming import DeploymentNamer
from deployment_manager.protocols import Agent, ApplyService
from deployment_manager.utils.log_sanitizer import mask_sensitive_info

logger = logging.getLogger(__name__)

BINDING_PROPERTY_PREFIX = "binding-"
CREATE_TASK_PATTERN = re.compile(r"^create\s+deployment")


def binding_property_name(binding_id: str) -> str:
    return f"{BINDING_PROPERTY_PREFIX}{binding_id}"


def request_context(params: Dict[str, Any]) -> Dict[str, Optional[str]]:
    """
    Tenant and plan ids of an instance request.

    Updates may omit the context block; the ids recorded in previous_values
    fill in what the request itself does not carry.
    """
    context = params.get("context") or {}
    previous = params.get("previous_values") or {}
    return {
        "service_id": params.get("service_id") or previous.get("service_id"),
        "plan_id": params.get("plan_id") or previous.get("plan_id"),
        "organization_guid": (
            params.get("organization_guid")
            or context.get("organization_guid")
            or previous.get("organization_id")
        ),
        "space_guid": (
            params.get("space_guid") or context.get("space_guid") or previous.get("space_id")
        ),
    }


def _task_order(task: Dict[str, Any]):
    try:
        return (0, int(task["id"]), "")
    except (TypeError, ValueError):
        return (1, 0, str(task["id"]))


def find_create_task(tasks: List[Dict[str, Any]]) -> Optional[Dict[str, Any]]:
    """Oldest task that created the deployment, None when there is none."""
    for task in sorted(tasks, key=_task_order):
        if CREATE_TASK_PATTERN.match(task.get("description") or ""):
            return task
    return None


class DeploymentManager:
    """Manages the deployments of a single plan."""

    def __init__(
        self,
        plan: PlanSettings,
        namer: DeploymentNamer,
        generator: ManifestGenerator,
        inventory: DeploymentInventory,
        apply_service: ApplyService,
        agent: Agent,
        lock: DeploymentLock,
        backups: BackupRestoreOrchestrator,
    ):
        self.plan = plan
        self.namer = namer
        self.generator = generator
        self.inventory = inventory
        self.apply_service = apply_service
        self.agent = agent
        self.lock = lock
        self.backups = backups

    # ------------------------------------------------------------------
    # Identity
    # ------------------------------------------------------------------

    async def acquire_network_segment_index(self, instance_id: str) -> int:
        """Allocate the first free index for a new instance."""
        logger.info(f"Acquiring network segment index for a new deployment with instance id '{instance_id}'...")
        names = await self.apply_service.get_deployment_names(queued=True)
        index = self.namer.allocate(names, instance_id)
        logger.info(f"+-> Acquired network segment index '{index}'")
        return index

    async def find_deployment_name_by_instance_id(self, instance_id: str) -> str:
        logger.info(f"Finding deployment name with instance id : '{instance_id}'")
        try:
            name = await self.apply_service.get_deployment_name_for_instance_id(instance_id)
        except NotFound:
            logger.error(f"+-> No deployment found for instance id '{instance_id}'")
            raise DeploymentNotFound(instance_id)
        logger.info(f"+-> Found deployment '{name}' for instance id '{instance_id}'")
        return name

    async def find_network_segment_index(self, instance_id: str) -> int:
        name = await self.find_deployment_name_by_instance_id(instance_id)
        return self.namer.get_network_segment_index(name)

    def get_deployment_name(self, instance_id: str, index: int) -> str:
        return self.namer.format(instance_id, index)

    async def get_deployment_ips(self, deployment_name: str) -> List[str]:
        return await self.inventory.get_deployment_ips(deployment_name)

    # ------------------------------------------------------------------
    # Manifests and tasks
    # ------------------------------------------------------------------

    async def regenerate_manifest(
        self, deployment_name: str, params: Optional[Dict[str, Any]] = None
    ) -> str:
        """Render the manifest again, feeding back the currently deployed one."""
        params = params or {}
        tenant = request_context(params)
        previous_manifest = await self.inventory.get_deployment_manifest(deployment_name)
        if previous_manifest is None:
            raise DeploymentNotOperational(self.namer.get_instance_id(deployment_name))
        return self.generator.generate(
            deployment_name,
            self.namer.get_network_segment_index(deployment_name),
            params.get("parameters"),
            previous_manifest,
            tenant["organization_guid"],
            tenant["space_guid"],
        )

    async def create_or_update_deployment(
        self,
        deployment_name: str,
        params: Optional[Dict[str, Any]] = None,
        args: Optional[Dict[str, Any]] = None,
    ) -> str:
        """
        Render and submit the manifest of a deployment.

        An update (params carry previous_values) renders against the
        currently deployed manifest.

        Returns:
            Id of the apply-service task
        """
        params = params or {}
        is_update = bool(params.get("previous_values"))
        action = "Updating" if is_update else "Creating"
        logger.info(
            f"{action} deployment '{deployment_name}' with parameters: "
            f"{mask_sensitive_info(params.get('parameters') or {})}"
        )

        if is_update:
            manifest = await self.regenerate_manifest(deployment_name, params)
        else:
            tenant = request_context(params)
            manifest = self.generator.generate(
                deployment_name,
                self.namer.get_network_segment_index(deployment_name),
                params.get("parameters"),
                None,
                tenant["organization_guid"],
                tenant["space_guid"],
            )

        try:
            task_id = await self.apply_service.create_or_update_deployment(manifest, args)
        except Exception as e:
            logger.error(f"+-> Failed to submit manifest of deployment '{deployment_name}': {e}")
            raise
        logger.info(f"+-> Submitted manifest of deployment '{deployment_name}' as task '{task_id}'")
        return task_id

    async def update_deployment(
        self,
        deployment_name: str,
        params: Optional[Dict[str, Any]] = None,
        args: Optional[Dict[str, Any]] = None,
    ) -> str:
        """Re-render an existing deployment against its deployed manifest and submit it."""
        params = dict(params or {})
        if not params.get("previous_values"):
            params["previous_values"] = {"plan_id": self.plan.id}
        return await self.create_or_update_deployment(deployment_name, params, args)

    async def diff_manifest(
        self, deployment_name: str, params: Optional[Dict[str, Any]] = None
    ) -> str:
        """Unified diff between the deployed and the regenerated manifest."""
        current = await self.inventory.get_deployment_manifest(deployment_name)
        if current is None:
            raise DeploymentNotOperational(self.namer.get_instance_id(deployment_name))
        regenerated = await self.regenerate_manifest(deployment_name, params)
        diff = difflib.unified_diff(
            current.splitlines(keepends=True),
            regenerated.splitlines(keepends=True),
            fromfile=f"{deployment_name} (deployed)",
            tofile=f"{deployment_name} (regenerated)",
        )
        return "".join(diff)

    async def delete_deployment(self, deployment_name: str) -> str:
        """Deprovision through the agent when supported, then delete the deployment."""
        logger.info(f"Deleting deployment '{deployment_name}'...")
        try:
            self.verify_feature_support("lifecycle")
            ips = await self.get_deployment_ips(deployment_name)
            await self.agent.deprovision(ips)
            logger.info("+-> Deprovisioned deployment through the agent")
        except (FeatureNotSupported, DeploymentNotOperational) as e:
            logger.warning(f"+-> Skipping agent deprovision: {e}")

        task_id = await self.apply_service.delete_deployment(deployment_name)
        logger.info(f"+-> Scheduled deletion of deployment '{deployment_name}' as task '{task_id}'")
        return task_id

    async def get_task(self, task_id: str) -> Task:
        return Task.model_validate(await self.apply_service.get_task(task_id))

    async def get_deployment_info(self, deployment_name: str) -> Optional[Dict[str, Any]]:
        """Deployment, its create task and the events of all its tasks; None when absent."""
        try:
            deployment = await self.apply_service.get_deployment(deployment_name)
        except NotFound:
            return None

        tasks = await self.apply_service.get_tasks({"deployment": deployment_name})
        events = await asyncio.gather(
            *(self.apply_service.get_task_events(task["id"]) for task in tasks)
        )
        create_task = find_create_task(tasks)
        return {
            "deployment": deployment,
            "create_task": create_task,
            "events": [event for task_events in events for event in task_events],
        }

    # ------------------------------------------------------------------
    # Agent
    # ------------------------------------------------------------------

    def verify_feature_support(self, feature: str) -> None:
        if feature not in (self.agent.features or []):
            raise FeatureNotSupported(
                f"Feature '{feature}' not supported by the agent of plan {self.plan.id}"
            )

    async def get_instance_state(self, deployment_name: str) -> Dict[str, Any]:
        ips = await self.get_deployment_ips(deployment_name)
        return await self.agent.get_state(ips)

    # ------------------------------------------------------------------
    # Bindings
    # ------------------------------------------------------------------

    async def create_binding(
        self, deployment_name: str, binding_id: str, parameters: Optional[Dict[str, Any]] = None
    ) -> Dict[str, Any]:
        """
        Create credentials for a binding and record them on the deployment.

        Raises:
            BindingAlreadyExists: If the binding is already recorded
        """
        logger.info(f"Creating binding '{binding_id}' for deployment '{deployment_name}'...")
        ips = await self.get_deployment_ips(deployment_name)
        credentials = await self.agent.create_credentials(ips, parameters or {})
        logger.info(f"+-> Created credentials: {mask_sensitive_info(credentials)}")

        record = json.dumps({"id": binding_id, "credentials": credentials})
        try:
            await self.apply_service.create_deployment_property(
                deployment_name, binding_property_name(binding_id), record
            )
        except AlreadyExists:
            logger.error(f"+-> Binding '{binding_id}' already exists")
            raise BindingAlreadyExists(binding_id)
        logger.info(f"+-> Stored binding '{binding_id}' on deployment '{deployment_name}'")
        return credentials

    async def get_binding_info(self, deployment_name: str, binding_id: str) -> Dict[str, Any]:
        try:
            raw = await self.apply_service.get_deployment_property(
                deployment_name, binding_property_name(binding_id)
            )
        except NotFound:
            raise BindingNotFound(binding_id)
        return json.loads(raw)

    async def delete_binding(self, deployment_name: str, binding_id: str) -> None:
        """Revoke the credentials of a binding and forget it."""
        logger.info(f"Deleting binding '{binding_id}' of deployment '{deployment_name}'...")
        binding = await self.get_binding_info(deployment_name, binding_id)
        ips = await self.get_deployment_ips(deployment_name)
        await self.agent.delete_credentials(ips, binding.get("credentials") or {})
        logger.info("+-> Deleted credentials")
        try:
            await self.apply_service.delete_deployment_property(
                deployment_name, binding_property_name(binding_id)
            )
        except NotFound:
            raise BindingNotFound(binding_id)
        logger.info(f"+-> Deleted binding '{binding_id}'")

    # ------------------------------------------------------------------
    # Backup, restore and unlock
    # ------------------------------------------------------------------

    async def invoke_operation(
        self, subtype: OperationSubtype, opts: ServiceOperationOptions
    ) -> AgentOperation:
        """Start a backup, restore or unlock of a deployment."""
        if subtype == OperationSubtype.BACKUP:
            self.verify_feature_support("backup")
            return await self.backups.start_backup(opts)
        if subtype == OperationSubtype.RESTORE:
            self.verify_feature_support("backup")
            return await self.backups.start_restore(opts)
        if subtype == OperationSubtype.UNLOCK:
            return await self.backups.unlock(opts)
        raise BadRequest(f"Invalid service operation '{subtype}'")

    async def get_operation_state(
        self, operation: Operation, instance_guid: Optional[str] = None
    ) -> Operation:
        """Poll the upstream of an operation and advance it by one step."""
        if operation.is_terminal:
            return operation

        if isinstance(operation, TaskOperation):
            if not operation.task_id:
                return operation
            return transition(operation, await self.get_task(operation.task_id))

        if isinstance(operation, (BackupOperation, RestoreOperation)):
            opts = ServiceOperationOptions(
                deployment=operation.deployment,
                instance_guid=instance_guid or self.namer.get_instance_id(operation.deployment),
                space_guid=operation.space_guid,
                service_id=self.plan.service_id,
                plan_id=self.plan.id,
                agent_ip=operation.agent_ip,
                guid=operation.backup_guid,
                username=operation.username,
            )
            if isinstance(operation, BackupOperation):
                observation = await self.backups.get_backup_operation_state(opts)
            else:
                observation = await self.backups.get_restore_operation_state(opts)
            return transition(operation, observation)

        return transition(operation, None)

    async def delete_restore_file(self, opts: ServiceOperationOptions) -> Optional[str]:
        return await self.backups.delete_restore_file(opts)
