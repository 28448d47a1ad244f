"""
Backup retention reaper.

Deletes backups older than the retention period. Scheduled backups past
the cutoff are always removed; an on-demand backup is removed only when its
owner has no active backup schedule and the owning instance (or, for
out-of-band backups, the deployment) no longer exists. Candidates are
deleted concurrently, each delayed by its position within its storage
class, and a failure on one candidate never stops the others.
"""

import asyncio
import logging
from datetime import datetime, timedelta, timezone
from typing import Any, Dict, List, Optional

from deployment_manager.audit import audit_backup_action
from deployment_manager.config.settings import BackupSettings, ReaperSettings
from deployment_manager.errors import NotFound
from deployment_manager.jobs.job_types import JobType
from deployment_manager.logging_config import log_reaper_operation
from deployment_manager.models import BackupTrigger
from deployment_manager.protocols import (
    OOB_ROOT_FOLDER,
    PRECONDITION_NOT_MET,
    ApplyService,
    BackupStore,
    ReaperLease,
    Scheduler,
    ServiceInstanceDirectory,
)

logger = logging.getLogger(__name__)


class BackupReaperJob:
    """Removes backups that fell out of the retention window."""

    def __init__(
        self,
        backup_store: BackupStore,
        scheduler: Scheduler,
        instance_directory: ServiceInstanceDirectory,
        apply_service: ApplyService,
        backup_settings: BackupSettings,
        reaper_settings: Optional[ReaperSettings] = None,
        oob_backup_store: Optional[BackupStore] = None,
    ):
        self.backup_store = backup_store
        self.oob_backup_store = oob_backup_store or backup_store
        self.scheduler = scheduler
        self.instance_directory = instance_directory
        self.apply_service = apply_service
        self.backup_settings = backup_settings
        self.reaper_settings = reaper_settings or ReaperSettings()

    def cutoff(self, now: Optional[datetime] = None) -> datetime:
        now = now or datetime.now(timezone.utc)
        return now - timedelta(days=self.backup_settings.retention_period_in_days + 1)

    async def run(
        self, lease: Optional[ReaperLease] = None, now: Optional[datetime] = None
    ) -> List[str]:
        """
        Delete all eligible backups.

        Args:
            lease: Lease of the owning job, renewed while the batch runs
            now: Reference time, defaults to the current time

        Returns:
            Guids of the backups actually deleted
        """
        cutoff = self.cutoff(now)
        logger.info(f"Reaping backups started before {cutoff.isoformat()}")
        entries = await self.backup_store.list_backup_filenames(cutoff, include_oob=True)

        tenant_sequence = 0
        oob_sequence = 0
        pending = []
        for entry in entries:
            if entry.get("root_folder") == OOB_ROOT_FOLDER:
                oob_sequence += 1
                pending.append(self._reap(entry, oob_sequence, lease, oob=True))
            else:
                tenant_sequence += 1
                pending.append(self._reap(entry, tenant_sequence, lease, oob=False))

        results = await asyncio.gather(*pending)
        deleted = [guid for guid in results if guid is not None]
        log_reaper_operation(
            "run",
            True,
            {"cutoff": cutoff.isoformat(), "candidates": len(entries), "deleted": len(deleted)},
        )
        return deleted

    async def _reap(
        self,
        entry: Dict[str, Any],
        sequence: int,
        lease: Optional[ReaperLease],
        oob: bool,
    ) -> Optional[str]:
        await asyncio.sleep(self.reaper_settings.delete_delay * sequence)
        backup_guid = entry["backup_guid"]

        if lease is not None and sequence % self.reaper_settings.touch_interval == 0:
            try:
                await lease.touch()
            except Exception as e:
                logger.warning(f"Failed to renew reaper lease at item {sequence}: {e}")

        try:
            store = self.oob_backup_store if oob else self.backup_store
            options = self._delete_options(entry, oob)

            if entry.get("trigger") == BackupTrigger.SCHEDULED.value:
                status = await store.delete_backup_file(dict(options, force=True))
            else:

                async def owner_gone(data: Dict[str, Any]) -> bool:
                    return await self._is_on_demand_deletable(entry, oob)

                status = await store.delete_backup_file(options, owner_gone)

            if status == PRECONDITION_NOT_MET:
                logger.info(f"+-> Keeping on-demand backup {backup_guid}, its owner is still live")
                return None
        except Exception as e:
            log_reaper_operation("delete", False, {"backup_guid": backup_guid}, error=str(e))
            return None

        audit_backup_action(
            "reap",
            backup_guid,
            {k: v for k, v in entry.items() if k != "started_at"},
            success=True,
        )
        log_reaper_operation("delete", True, {"backup_guid": backup_guid})
        return backup_guid

    @staticmethod
    def _delete_options(entry: Dict[str, Any], oob: bool) -> Dict[str, Any]:
        if oob:
            return {"deployment_name": entry["deployment_name"], "backup_guid": entry["backup_guid"]}
        return {
            "space_guid": entry.get("space_guid") or entry["root_folder"],
            "service_id": entry.get("service_id"),
            "instance_guid": entry["instance_guid"],
            "backup_guid": entry["backup_guid"],
        }

    async def _is_on_demand_deletable(self, entry: Dict[str, Any], oob: bool) -> bool:
        if oob:
            owner = entry["deployment_name"]
            if await self.has_schedule(owner, JobType.SCHEDULED_OOB_BACKUP):
                return False
            return await self.is_deployment_deleted(owner)

        owner = entry["instance_guid"]
        if await self.has_schedule(owner, JobType.SCHEDULED_BACKUP):
            return False
        return await self.is_instance_deleted(owner)

    async def has_schedule(self, owner_id: str, job_type: JobType) -> bool:
        try:
            await self.scheduler.get_schedule(owner_id, job_type.value)
        except NotFound:
            return False
        return True

    async def is_instance_deleted(self, instance_guid: str) -> bool:
        try:
            await self.instance_directory.get_service_instance(instance_guid)
        except NotFound:
            logger.info(f"+-> Instance {instance_guid} has been deleted")
            return True
        return False

    async def is_deployment_deleted(self, deployment_name: str) -> bool:
        try:
            await self.apply_service.get_deployment(deployment_name)
        except NotFound:
            logger.info(f"+-> Deployment {deployment_name} has been deleted")
            return True
        return False
