"""
Pydantic models for backup and restore metadata.

A metadata record is created in ``processing`` state when a backup or
restore run starts, patched when the agent reports a terminal state and
removed by the retention reaper or an explicit admin delete.
"""

from enum import Enum
from typing import Any, Dict, List, Optional

from pydantic import BaseModel, ConfigDict, Field


class BackupState(str, Enum):
    PROCESSING = "processing"
    SUCCEEDED = "succeeded"
    FAILED = "failed"
    ABORTED = "aborted"


class BackupTrigger(str, Enum):
    ON_DEMAND = "on_demand"
    SCHEDULED = "scheduled"


TERMINAL_BACKUP_STATES = frozenset(
    [BackupState.SUCCEEDED.value, BackupState.FAILED.value, BackupState.ABORTED.value]
)


class _RunMetadata(BaseModel):
    model_config = ConfigDict(populate_by_name=True, extra="allow")

    operation: str = Field(description="'backup' or 'restore'")
    backup_guid: str = Field(description="Guid of the backup this run belongs to")
    service_id: Optional[str] = Field(default=None, description="Service id of the instance")
    plan_id: Optional[str] = Field(default=None, description="Plan id of the instance")
    instance_guid: Optional[str] = Field(default=None, description="Owning service instance")
    organization_guid: Optional[str] = None
    space_guid: Optional[str] = Field(default=None, description="Tenant scope of the record")
    username: Optional[str] = Field(default=None, description="User that triggered the run")
    state: BackupState = Field(default=BackupState.PROCESSING)
    agent_ip: Optional[str] = Field(default=None, description="Agent responsible for the run")
    logs: List[Any] = Field(default_factory=list)
    started_at: str = Field(description="ISO 8601 start timestamp")
    finished_at: Optional[str] = Field(default=None, description="ISO 8601 finish timestamp")

    def to_record(self) -> Dict[str, Any]:
        return self.model_dump(mode="json", by_alias=True)


class BackupMetadata(_RunMetadata):
    """Metadata of a single backup run."""

    operation: str = "backup"
    type: str = Field(default="online", description="Backup type, e.g. online or offline")
    trigger: BackupTrigger = Field(default=BackupTrigger.ON_DEMAND)
    secret: Optional[str] = Field(default=None, description="Encryption secret of the backup")
    snapshot_id: Optional[str] = Field(default=None, alias="snapshotId")
    deployment_name: Optional[str] = Field(
        default=None, description="Deployment name, set for out-of-band backups"
    )


class RestoreMetadata(_RunMetadata):
    """Metadata of a restore run."""

    operation: str = "restore"


class ServiceOperationOptions(BaseModel):
    """Request context of a backup, restore or unlock call."""

    model_config = ConfigDict(extra="ignore")

    deployment: str = Field(description="Deployment the operation targets")
    instance_guid: str
    service_id: Optional[str] = None
    plan_id: Optional[str] = None
    organization_guid: Optional[str] = None
    space_guid: Optional[str] = None
    username: Optional[str] = None
    useremail: Optional[str] = None
    guid: Optional[str] = Field(default=None, description="Guid of a backup being started")
    agent_ip: Optional[str] = Field(default=None, description="Agent of the polled run")
    arguments: Dict[str, Any] = Field(default_factory=dict)
