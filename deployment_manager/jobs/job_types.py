"""
Job types registered with the external scheduler.
"""

from enum import Enum


class JobType(str, Enum):
    AUTO_UPDATE = "ServiceInstanceAutoUpdate"
    SCHEDULED_BACKUP = "ScheduledBackup"
    SCHEDULED_OOB_BACKUP = "ScheduledOobDeploymentBackup"
    BACKUP_REAPER = "BackupReaper"
