"""
Long-running jobs driven by the external scheduler.
"""

from deployment_manager.jobs.backup_reaper import BackupReaperJob
from deployment_manager.jobs.job_types import JobType

__all__ = ["BackupReaperJob", "JobType"]
