"""
Backup and restore orchestration.

Starting a backup is a saga of five dependent steps (secret, inventory,
agent start, metadata, lock). Once the agent has started, any later failure
aborts the run on the agent and removes whatever metadata was persisted
before the original error is re-raised. Restores follow the same shape
without the secret and without taking the deployment lock.
"""

import asyncio
import base64
import logging
import secrets
import uuid
from datetime import datetime, timezone
from typing import Any, Dict, List, Optional

from deployment_manager.audit import audit_backup_action
from deployment_manager.backup.saga import Saga
from deployment_manager.config.settings import BackupSettings, PlanSettings
from deployment_manager.deployment_lock import DeploymentLock
from deployment_manager.errors import (
    BadRequest,
    Forbidden,
    NotFound,
    UnprocessableInput,
)
from deployment_manager.inventory import DeploymentInventory
from deployment_manager.logging_config import log_backup_operation
from deployment_manager.models import (
    AgentLastOperation,
    BackupMetadata,
    BackupOperation,
    BackupState,
    BackupTrigger,
    LockInfo,
    OperationState,
    RestoreMetadata,
    RestoreOperation,
    ServiceOperationOptions,
    UnlockOperation,
)
from deployment_manager.protocols import Agent, BackupStore

logger = logging.getLogger(__name__)

SECRET_LENGTH = 12


def create_secret() -> str:
    """Random secret protecting a single backup."""
    return base64.b64encode(secrets.token_bytes(SECRET_LENGTH)).decode("ascii")


def _now() -> str:
    return datetime.now(timezone.utc).isoformat()


class BackupRestoreOrchestrator:
    """Runs backup, restore and unlock operations of one plan."""

    def __init__(
        self,
        inventory: DeploymentInventory,
        agent: Agent,
        backup_store: BackupStore,
        lock: DeploymentLock,
        settings: BackupSettings,
        plan: PlanSettings,
        admin_users: Optional[List[str]] = None,
    ):
        self.inventory = inventory
        self.agent = agent
        self.backup_store = backup_store
        self.lock = lock
        self.settings = settings
        self.plan = plan
        self.admin_users = set(admin_users or [])

    def _store_key(self, opts: ServiceOperationOptions, **extra: Any) -> Dict[str, Any]:
        key = {
            "space_guid": opts.space_guid,
            "service_id": opts.service_id or self.plan.service_id,
            "plan_id": opts.plan_id or self.plan.id,
            "instance_guid": opts.instance_guid,
        }
        key.update(extra)
        return key

    async def _gather_inventory(self, deployment_name: str) -> Dict[str, Any]:
        ips, vms = await asyncio.gather(
            self.inventory.get_deployment_ips(deployment_name),
            self.inventory.get_deployment_vms(deployment_name),
        )
        return {"ips": ips, "vms": vms}

    # ------------------------------------------------------------------
    # Backup
    # ------------------------------------------------------------------

    def _validate_backup_request(self, opts: ServiceOperationOptions) -> BackupTrigger:
        if not opts.username:
            raise BadRequest(f"Backup of deployment {opts.deployment} requires a username")
        raw_trigger = opts.arguments.get("trigger", BackupTrigger.ON_DEMAND.value)
        try:
            trigger = BackupTrigger(raw_trigger)
        except ValueError:
            raise BadRequest(f"Invalid backup trigger '{raw_trigger}'")
        if trigger == BackupTrigger.SCHEDULED and opts.username not in self.admin_users:
            raise Forbidden(f"User {opts.username} may not trigger scheduled backups")
        return trigger

    async def check_on_demand_quota(self, opts: ServiceOperationOptions) -> None:
        """
        Refuse another on-demand backup once the quota is used up.

        Raises:
            Forbidden: If the instance already has the maximum number of on-demand backups
        """
        files = await self.backup_store.list_backup_files(self._store_key(opts))
        on_demand = [f for f in files if f.get("trigger") == BackupTrigger.ON_DEMAND.value]
        quota = self.settings.max_num_on_demand_backup
        if len(on_demand) >= quota:
            raise Forbidden(
                f"Reached max quota of {quota} on-demand backups for instance {opts.instance_guid}"
            )

    async def start_backup(self, opts: ServiceOperationOptions) -> BackupOperation:
        """
        Start a backup of the deployment of an instance.

        Returns:
            An in-progress backup operation carrying the responsible agent ip
        """
        trigger = self._validate_backup_request(opts)
        if trigger == BackupTrigger.ON_DEMAND:
            await self.check_on_demand_quota(opts)

        deployment_name = opts.deployment
        backup_guid = opts.guid or str(uuid.uuid4())
        backup_type = opts.arguments.get("type", "online")
        started_at = _now()

        logger.info(f"Starting {trigger.value} backup {backup_guid} of deployment {deployment_name}")

        async def generate_secret(ctx: Dict[str, Any]) -> str:
            return create_secret()

        async def start_on_agent(ctx: Dict[str, Any]) -> str:
            backup = {
                "guid": backup_guid,
                "type": backup_type,
                "trigger": trigger.value,
                "secret": ctx["secret"],
            }
            inventory = ctx["inventory"]
            return await self.agent.start_backup(inventory["ips"], backup, inventory["vms"])

        async def abort_on_agent(ctx: Dict[str, Any]) -> None:
            await self.agent.abort_backup(ctx["agent_ip"])

        async def persist_metadata(ctx: Dict[str, Any]) -> BackupMetadata:
            metadata = BackupMetadata(
                backup_guid=backup_guid,
                type=backup_type,
                trigger=trigger,
                secret=ctx["secret"],
                agent_ip=ctx["agent_ip"],
                username=opts.username,
                organization_guid=opts.organization_guid,
                started_at=started_at,
                deployment_name=deployment_name,
                **self._store_key(opts),
            )
            await self.backup_store.put_file(metadata.to_record())
            return metadata

        async def delete_metadata(ctx: Dict[str, Any]) -> None:
            await self.backup_store.delete_backup_file(
                self._store_key(opts, backup_guid=backup_guid, force=True)
            )

        async def acquire_lock(ctx: Dict[str, Any]) -> LockInfo:
            info = LockInfo(
                username=opts.username,
                lock_for_operation=f"{trigger.value}_backup",
                instance_info={
                    "guid": opts.instance_guid,
                    "backup_guid": backup_guid,
                    "plan_id": opts.plan_id or self.plan.id,
                    "service_id": opts.service_id or self.plan.service_id,
                    "space_guid": opts.space_guid,
                    "organization_guid": opts.organization_guid,
                    "agent_ip": ctx["agent_ip"],
                },
            )
            return await self.lock.acquire(deployment_name, info)

        saga = (
            Saga(f"backup-{backup_guid}")
            .step("secret", generate_secret)
            .step("inventory", lambda ctx: self._gather_inventory(deployment_name))
            .step("agent_ip", start_on_agent, undo=abort_on_agent)
            .step("metadata", persist_metadata, undo=delete_metadata)
            .step("lock", acquire_lock)
        )

        try:
            context = await saga.run()
        except Exception as e:
            log_backup_operation(
                "backup_failed",
                backup_guid,
                {"deployment": deployment_name, "completed": saga.completed, "error": str(e)},
                level="ERROR",
            )
            raise

        agent_ip = context["agent_ip"]
        log_backup_operation(
            "backup_started",
            backup_guid,
            {"deployment": deployment_name, "agent_ip": agent_ip, "trigger": trigger.value},
        )
        return BackupOperation(
            state=OperationState.IN_PROGRESS,
            description=f"{trigger.value} backup triggered by {opts.username} at {started_at}",
            space_guid=opts.space_guid,
            deployment=deployment_name,
            agent_ip=agent_ip,
            backup_guid=backup_guid,
            username=opts.username,
            useremail=opts.useremail,
        )

    async def get_backup_operation_state(self, opts: ServiceOperationOptions) -> AgentLastOperation:
        """
        Poll the agent for the run of a backup.

        A finished run has its logs fetched once and its metadata patched
        with the final state.
        """
        if not opts.agent_ip or not opts.guid:
            raise BadRequest("Polling a backup requires agent_ip and backup guid")

        raw = await self.agent.get_backup_last_operation(opts.agent_ip)
        last_operation = AgentLastOperation.model_validate(raw)
        if last_operation.is_finished:
            logs = await self.agent.get_backup_logs(opts.agent_ip)
            patch: Dict[str, Any] = {
                "state": last_operation.state,
                "logs": logs,
                "finished_at": _now(),
            }
            if last_operation.snapshot_id:
                patch["snapshotId"] = last_operation.snapshot_id
            await self.backup_store.patch_backup_file(
                self._store_key(opts, backup_guid=opts.guid), patch
            )
            log_backup_operation(
                "backup_finished",
                opts.guid,
                {"deployment": opts.deployment, "state": last_operation.state},
            )
        return last_operation

    async def get_last_backup(
        self, opts: ServiceOperationOptions, no_cache: bool = False
    ) -> Dict[str, Any]:
        """Latest backup metadata, refreshed live from the agent when asked to."""
        metadata = await self.backup_store.get_backup_file(self._store_key(opts))
        if metadata.get("state") == BackupState.PROCESSING.value and no_cache:
            raw = await self.agent.get_backup_last_operation(metadata["agent_ip"])
            last_operation = AgentLastOperation.model_validate(raw)
            metadata = dict(metadata, state=last_operation.state, stage=last_operation.stage)
        return metadata

    async def abort_last_backup(
        self, opts: ServiceOperationOptions, force: bool = False
    ) -> Dict[str, Any]:
        """
        Abort the latest backup of an instance.

        Raises:
            Forbidden: For a scheduled backup unless forced
        """
        metadata = await self.backup_store.get_backup_file(self._store_key(opts))
        if not force and metadata.get("trigger") == BackupTrigger.SCHEDULED.value:
            raise Forbidden("Scheduled backups can only be aborted using force")

        state = metadata.get("state")
        if state != BackupState.PROCESSING.value:
            return {"state": state}

        await self.agent.abort_backup(metadata["agent_ip"])
        log_backup_operation(
            "backup_aborting", metadata.get("backup_guid", ""), {"deployment": opts.deployment}
        )
        return {"state": "aborting"}

    async def delete_backup(
        self, opts: ServiceOperationOptions, backup_guid: str, force: bool = False
    ) -> Optional[str]:
        """Delete a single backup; scheduled backups inside retention need force."""
        key = self._store_key(opts, backup_guid=backup_guid, force=force)
        try:
            status = await self.backup_store.delete_backup_file(key)
        except Exception as e:
            audit_backup_action(
                "delete", backup_guid, {"error": str(e), "force": force}, opts.username, False
            )
            raise
        audit_backup_action("delete", backup_guid, {"force": force}, opts.username, True)
        return status

    # ------------------------------------------------------------------
    # Restore
    # ------------------------------------------------------------------

    async def _get_restorable_backup(
        self, opts: ServiceOperationOptions, backup_guid: str
    ) -> Dict[str, Any]:
        backup = opts.arguments.get("backup")
        if backup is None:
            try:
                backup = await self.backup_store.get_backup_file(
                    self._store_key(opts, backup_guid=backup_guid)
                )
            except NotFound:
                raise UnprocessableInput(f"Cannot restore: backup {backup_guid} not found")

        if backup.get("state") != BackupState.SUCCEEDED.value:
            raise UnprocessableInput(
                f"Cannot restore backup {backup_guid} in state '{backup.get('state')}'"
            )
        plan_id = opts.plan_id or self.plan.id
        if backup.get("plan_id") and backup["plan_id"] != plan_id:
            raise UnprocessableInput(
                f"Cannot restore backup {backup_guid} of plan {backup['plan_id']} into plan {plan_id}"
            )
        return backup

    async def start_restore(self, opts: ServiceOperationOptions) -> RestoreOperation:
        """Restore a succeeded backup into the deployment of an instance."""
        backup_guid = opts.arguments.get("backup_guid")
        if not backup_guid:
            raise BadRequest("Restore requires a backup_guid")

        backup = await self._get_restorable_backup(opts, backup_guid)
        deployment_name = opts.deployment
        started_at = _now()

        logger.info(f"Starting restore of backup {backup_guid} into deployment {deployment_name}")

        async def start_on_agent(ctx: Dict[str, Any]) -> str:
            descriptor = {
                "guid": backup_guid,
                "backup": {"type": backup.get("type"), "secret": backup.get("secret")},
            }
            inventory = ctx["inventory"]
            return await self.agent.start_restore(inventory["ips"], descriptor, inventory["vms"])

        async def abort_on_agent(ctx: Dict[str, Any]) -> None:
            await self.agent.abort_restore(ctx["agent_ip"])

        async def persist_metadata(ctx: Dict[str, Any]) -> RestoreMetadata:
            metadata = RestoreMetadata(
                backup_guid=backup_guid,
                agent_ip=ctx["agent_ip"],
                username=opts.username,
                organization_guid=opts.organization_guid,
                started_at=started_at,
                **self._store_key(opts),
            )
            await self.backup_store.put_file(metadata.to_record())
            return metadata

        saga = (
            Saga(f"restore-{backup_guid}")
            .step("inventory", lambda ctx: self._gather_inventory(deployment_name))
            .step("agent_ip", start_on_agent, undo=abort_on_agent)
            .step("metadata", persist_metadata)
        )

        try:
            context = await saga.run()
        except Exception as e:
            log_backup_operation(
                "restore_failed",
                backup_guid,
                {"deployment": deployment_name, "completed": saga.completed, "error": str(e)},
                level="ERROR",
            )
            raise

        agent_ip = context["agent_ip"]
        log_backup_operation(
            "restore_started", backup_guid, {"deployment": deployment_name, "agent_ip": agent_ip}
        )
        return RestoreOperation(
            state=OperationState.IN_PROGRESS,
            description=f"Restore of backup {backup_guid} triggered by {opts.username} at {started_at}",
            space_guid=opts.space_guid,
            deployment=deployment_name,
            agent_ip=agent_ip,
            backup_guid=backup_guid,
            username=opts.username,
            useremail=opts.useremail,
        )

    async def get_restore_operation_state(
        self, opts: ServiceOperationOptions
    ) -> AgentLastOperation:
        if not opts.agent_ip:
            raise BadRequest("Polling a restore requires agent_ip")

        raw = await self.agent.get_restore_last_operation(opts.agent_ip)
        last_operation = AgentLastOperation.model_validate(raw)
        if last_operation.is_finished:
            logs = await self.agent.get_restore_logs(opts.agent_ip)
            await self.backup_store.patch_restore_file(
                self._store_key(opts),
                {"state": last_operation.state, "logs": logs, "finished_at": _now()},
            )
            log_backup_operation(
                "restore_finished",
                opts.guid or "",
                {"deployment": opts.deployment, "state": last_operation.state},
            )
        return last_operation

    async def get_last_restore(self, opts: ServiceOperationOptions) -> Dict[str, Any]:
        metadata = await self.backup_store.get_restore_file(self._store_key(opts))
        if metadata.get("state") == BackupState.PROCESSING.value:
            raw = await self.agent.get_restore_last_operation(metadata["agent_ip"])
            last_operation = AgentLastOperation.model_validate(raw)
            metadata = dict(metadata, state=last_operation.state, stage=last_operation.stage)
        return metadata

    async def abort_last_restore(self, opts: ServiceOperationOptions) -> Dict[str, Any]:
        metadata = await self.backup_store.get_restore_file(self._store_key(opts))
        state = metadata.get("state")
        if state != BackupState.PROCESSING.value:
            return {"state": state}
        await self.agent.abort_restore(metadata["agent_ip"])
        return {"state": "aborting"}

    async def delete_restore_file(self, opts: ServiceOperationOptions) -> Optional[str]:
        return await self.backup_store.delete_restore_file(self._store_key(opts))

    # ------------------------------------------------------------------
    # Unlock
    # ------------------------------------------------------------------

    async def unlock(self, opts: ServiceOperationOptions) -> UnlockOperation:
        """Release the deployment lock; an already released lock is fine."""
        await self.lock.release(opts.deployment)
        description = opts.arguments.get("description") or f"Unlocked deployment {opts.deployment}"
        return UnlockOperation(
            state=OperationState.SUCCEEDED,
            description=description,
            space_guid=opts.space_guid,
            deployment=opts.deployment,
            username=opts.username,
            useremail=opts.useremail,
        )
