"""
Deployment-related data models.

These models describe what the apply service reports about deployments
(tasks, VMs) and the lock record stored alongside a deployment.
"""

from datetime import datetime, timezone
from enum import Enum
from typing import Any, Dict, Optional

from pydantic import BaseModel, ConfigDict, Field

from deployment_manager.models.backup import TERMINAL_BACKUP_STATES


class TaskState(str, Enum):
    """State of an apply-service task."""

    QUEUED = "queued"
    PROCESSING = "processing"
    DONE = "done"
    ERROR = "error"
    CANCELLED = "cancelled"
    TIMEOUT = "timeout"


class Task(BaseModel):
    """
    Asynchronous job of the apply service.

    Owned and mutated by the apply service; read-only for the manager.
    """

    model_config = ConfigDict(extra="ignore")

    id: str = Field(description="Task identifier")
    deployment: str = Field(description="Name of the deployment the task acts on")
    state: TaskState = Field(description="Current task state")
    result: Optional[str] = Field(default=None, description="Result or error text")
    timestamp: float = Field(default=0, description="Unix timestamp of the last state change")
    description: Optional[str] = Field(default=None, description="Task description")

    @property
    def timestamp_iso(self) -> str:
        return datetime.fromtimestamp(self.timestamp, tz=timezone.utc).isoformat()


class VM(BaseModel):
    """Normalized inventory entry for a deployment VM."""

    cid: Optional[str] = Field(default=None, description="IaaS VM identifier")
    agent_id: Optional[str] = Field(default=None, description="Apply-service agent identifier")
    job: Optional[str] = Field(default=None, description="Job/instance group name")
    index: Optional[int] = Field(default=None, description="Index within the job")
    iaas_vm_metadata: Dict[str, Any] = Field(default_factory=dict)


class LockInfo(BaseModel):
    """
    Lock record stored on a deployment.

    Serialized with camelCase aliases so that records written by other
    processes stay readable.
    """

    model_config = ConfigDict(populate_by_name=True)

    username: str = Field(min_length=1)
    lock_for_operation: str = Field(alias="lockForOperation", min_length=1)
    created_at: datetime = Field(
        alias="createdAt", default_factory=lambda: datetime.now(timezone.utc)
    )
    instance_info: Optional[Dict[str, Any]] = Field(default=None, alias="instanceInfo")

    def to_json(self) -> str:
        return self.model_dump_json(by_alias=True, exclude_none=True)


class AgentLastOperation(BaseModel):
    """Last-operation report of an agent for a backup or restore run."""

    model_config = ConfigDict(populate_by_name=True, extra="ignore")

    state: str
    stage: Optional[str] = None
    updated_at: Optional[str] = None
    snapshot_id: Optional[str] = Field(default=None, alias="snapshotId")

    @property
    def is_finished(self) -> bool:
        return self.state in TERMINAL_BACKUP_STATES
