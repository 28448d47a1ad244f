"""
Backup, restore and unlock orchestration.
"""

from deployment_manager.backup.orchestrator import BackupRestoreOrchestrator, create_secret
from deployment_manager.backup.saga import Saga, SagaStep

__all__ = ["BackupRestoreOrchestrator", "Saga", "SagaStep", "create_secret"]
