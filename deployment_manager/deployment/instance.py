"""
Lifecycle of a single service instance backed by a deployment.

Each request (create, update, delete, bind, unbind) returns an operation
handle. Callers poll with last_operation; once an operation reaches a
terminal state it is finalized (ingress rules, auto-update scheduling).
"""

import asyncio
import logging
from typing import Any, Dict, Optional

from deployment_manager.config.settings import AutoUpdateSettings, FeatureFlags
from deployment_manager.deployment.manager import DeploymentManager, request_context
from deployment_manager.errors import BadRequest, IngressRulesNotCreated, NotFound
from deployment_manager.ingress import IngressRuleProvisioner
from deployment_manager.jobs.job_types import JobType
from deployment_manager.models import (
    BindOperation,
    CreateOperation,
    DeleteOperation,
    Operation,
    OperationState,
    OperationSubtype,
    ServiceOperationOptions,
    UnbindOperation,
    UpdateOperation,
)
from deployment_manager.operation_tokens import OPERATION_PARAMETER, OperationTokenCodec
from deployment_manager.protocols import Scheduler
from deployment_manager.utils.retry import retry_fixed

logger = logging.getLogger(__name__)

# Token type that asks for an ordinary update with apply arguments
PLAIN_UPDATE = "update"


class DeploymentInstance:
    """One service instance and its deployment."""

    def __init__(
        self,
        guid: str,
        manager: DeploymentManager,
        ingress: IngressRuleProvisioner,
        scheduler: Scheduler,
        tokens: OperationTokenCodec,
        auto_update: Optional[AutoUpdateSettings] = None,
        features: Optional[FeatureFlags] = None,
    ):
        self.guid = guid
        self.manager = manager
        self.ingress = ingress
        self.scheduler = scheduler
        self.tokens = tokens
        self.auto_update = auto_update or AutoUpdateSettings()
        self.features = features or FeatureFlags()
        self._deployment_name: Optional[str] = None

    async def get_deployment_name(self) -> str:
        """Name of the existing deployment of this instance."""
        if self._deployment_name is None:
            self._deployment_name = await self.manager.find_deployment_name_by_instance_id(
                self.guid
            )
        return self._deployment_name

    def _operation_options(
        self, deployment_name: str, params: Dict[str, Any], **extra: Any
    ) -> ServiceOperationOptions:
        return ServiceOperationOptions(
            deployment=deployment_name,
            instance_guid=self.guid,
            **request_context(params),
            **extra,
        )

    # ------------------------------------------------------------------
    # Requests
    # ------------------------------------------------------------------

    async def create(self, params: Dict[str, Any]) -> CreateOperation:
        index = await self.manager.acquire_network_segment_index(self.guid)
        deployment_name = self.manager.get_deployment_name(self.guid, index)
        self._deployment_name = deployment_name
        task_id = await self.manager.create_or_update_deployment(deployment_name, params)
        return CreateOperation(
            task_id=task_id,
            parameters=params.get("parameters") or {},
            space_guid=request_context(params)["space_guid"],
            description=f"Create deployment {deployment_name} is queued",
        )

    async def update(self, params: Dict[str, Any]) -> Operation:
        """
        Update the deployment or run the operation named by a signed token.

        Raises:
            AlreadyLocked: If the deployment is locked and the token does not ask for unlock
        """
        deployment_name = await self.get_deployment_name()
        token = self.tokens.from_parameters(params.get("parameters"))
        operation_type = token["type"] if token is not None else PLAIN_UPDATE

        subtype: Optional[OperationSubtype] = None
        if operation_type != PLAIN_UPDATE:
            try:
                subtype = OperationSubtype(operation_type)
            except ValueError:
                raise BadRequest(f"Invalid service operation '{operation_type}'")

        if subtype != OperationSubtype.UNLOCK:
            await self.manager.lock.verify(deployment_name)

        if subtype is not None:
            opts = self._operation_options(
                deployment_name,
                params,
                username=token.get("username"),
                useremail=token.get("useremail"),
                arguments=token.get("arguments") or {},
            )
            return await self.manager.invoke_operation(subtype, opts)

        # The token itself never reaches the manifest
        parameters = {
            key: value
            for key, value in (params.get("parameters") or {}).items()
            if key != OPERATION_PARAMETER
        }
        params = dict(params, parameters=parameters)
        args = token.get("arguments") if token is not None else None
        task_id = await self.manager.update_deployment(deployment_name, params, args)
        return UpdateOperation(
            task_id=task_id,
            parameters=parameters,
            space_guid=request_context(params)["space_guid"],
            description=f"Update deployment {deployment_name} is queued",
        )

    async def delete(self, params: Dict[str, Any]) -> DeleteOperation:
        deployment_name = await self.get_deployment_name()
        opts = self._operation_options(deployment_name, params)
        await asyncio.gather(self.ingress.delete(self.guid), self._delete_restore_file(opts))
        await self.manager.lock.verify(deployment_name)

        task_id = await self.manager.delete_deployment(deployment_name)
        return DeleteOperation(
            task_id=task_id,
            space_guid=opts.space_guid,
            description=f"Delete deployment {deployment_name} is queued",
        )

    async def _delete_restore_file(self, opts: ServiceOperationOptions) -> None:
        try:
            await self.manager.delete_restore_file(opts)
        except NotFound:
            logger.info(f"+-> No restore file for instance {self.guid}")

    async def bind(self, params: Dict[str, Any]) -> BindOperation:
        deployment_name = await self.get_deployment_name()
        binding_id = params["binding_id"]
        credentials = await self.manager.create_binding(
            deployment_name, binding_id, params.get("parameters")
        )
        if self.features.scheduled_backup:
            try:
                await self.schedule_backup(params)
            except Exception as e:
                logger.error(f"Failed to schedule backup for instance {self.guid}: {e}")
        return BindOperation(
            state=OperationState.SUCCEEDED,
            binding_id=binding_id,
            credentials=credentials,
            description=f"Created binding {binding_id} for deployment {deployment_name}",
        )

    async def unbind(self, params: Dict[str, Any]) -> UnbindOperation:
        deployment_name = await self.get_deployment_name()
        binding_id = params["binding_id"]
        await self.manager.delete_binding(deployment_name, binding_id)
        return UnbindOperation(
            state=OperationState.SUCCEEDED,
            binding_id=binding_id,
            description=f"Deleted binding {binding_id} of deployment {deployment_name}",
        )

    # ------------------------------------------------------------------
    # Polling and finalization
    # ------------------------------------------------------------------

    async def last_operation(self, operation: Operation) -> Operation:
        """Advance an operation; finalize it when it just became terminal."""
        current = await self.manager.get_operation_state(operation, self.guid)
        if current.is_terminal and not operation.is_terminal:
            current = await self.finalize(current)
        return current

    async def finalize(self, operation: Operation) -> Operation:
        """
        Follow up a create or update that just finished, whatever its outcome.

        Auto-update is scheduled only for a create that succeeded.
        """
        if isinstance(operation, CreateOperation):
            try:
                await self.ingress.create(
                    self.guid, await self._ingress_rules(), operation.space_guid
                )
            except IngressRulesNotCreated as e:
                return self._degrade(operation, e)
            if operation.state == OperationState.SUCCEEDED and self.features.scheduled_update:
                await self.schedule_auto_update()
        elif isinstance(operation, UpdateOperation):
            try:
                await self.ingress.ensure_exists(
                    self.guid, await self._ingress_rules(), operation.space_guid
                )
            except IngressRulesNotCreated as e:
                return self._degrade(operation, e)
        return operation

    def _degrade(self, operation: Operation, error: Exception) -> Operation:
        logger.error(f"Ingress rules of instance {self.guid} are missing: {error}")
        return operation.model_copy(
            update={
                "state": OperationState.FAILED,
                "description": f"{operation.description}. {error}",
            }
        )

    async def _ingress_rules(self):
        deployment_name = await self.get_deployment_name()
        index = self.manager.namer.get_network_segment_index(deployment_name)
        generator = self.manager.generator
        networks = generator.get_networks(index).get(generator.network_name)
        return self.ingress.build_rules(networks)

    # ------------------------------------------------------------------
    # Scheduling
    # ------------------------------------------------------------------

    async def schedule_auto_update(self) -> None:
        """Register the recurring auto-update job; failures are logged only."""
        deployment_name = await self.get_deployment_name()
        data = {
            "instance_id": self.guid,
            "deployment_name": deployment_name,
            "timeZone": self.auto_update.time_zone,
        }

        async def attempt(_: int) -> Dict[str, Any]:
            return await self.scheduler.schedule_job(
                self.guid, JobType.AUTO_UPDATE.value, self.auto_update.repeat_interval, data
            )

        try:
            await retry_fixed(
                attempt,
                max_attempts=self.auto_update.max_attempts,
                delay=self.auto_update.retry_delay,
                description=f"schedule auto update of instance {self.guid}",
            )
        except Exception as e:
            logger.error(f"Error occurred while scheduling auto update for instance {self.guid}: {e}")

    async def schedule_backup(self, params: Dict[str, Any]) -> Dict[str, Any]:
        deployment_name = await self.get_deployment_name()
        opts = self._operation_options(deployment_name, params)
        interval = self.manager.plan.backup_interval or "daily"
        logger.info(f"Scheduling backup for instance {self.guid} with interval {interval}")
        return await self.scheduler.schedule_job(
            self.guid,
            JobType.SCHEDULED_BACKUP.value,
            interval,
            {
                "instance_id": self.guid,
                "type": "online",
                "trigger": "scheduled",
                "space_guid": opts.space_guid,
                "organization_guid": opts.organization_guid,
            },
        )

    async def get_info(self) -> Optional[Dict[str, Any]]:
        return await self.manager.get_deployment_info(await self.get_deployment_name())
