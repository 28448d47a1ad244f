"""
BackupStore implementations.
"""

from deployment_manager.storage.file_backup_store import FileBackupStore

__all__ = ["FileBackupStore"]
