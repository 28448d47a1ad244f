"""
Audit logging for backup actions.

Every backup removed by the retention reaper or by an admin delete leaves a
JSONL record behind.
"""

import json
import logging
from datetime import datetime, timezone
from pathlib import Path
from typing import Any, Dict, Optional

logger = logging.getLogger(__name__)

AUDIT_LOG_PATH = Path("/var/log/deployment-manager/audit.jsonl")


def audit_backup_action(
    action: str,
    backup_guid: str,
    details: Optional[Dict[str, Any]] = None,
    user: Optional[str] = None,
    success: Optional[bool] = None,
) -> None:
    """
    Record a backup action.

    Args:
        action: Action taken (delete, reap, abort)
        backup_guid: Backup identifier
        details: Additional details about the action
        user: User who performed the action
        success: Outcome, omitted when unknown
    """
    try:
        AUDIT_LOG_PATH.parent.mkdir(parents=True, exist_ok=True)

        audit_entry: Dict[str, Any] = {
            "timestamp": datetime.now(timezone.utc).isoformat(),
            "action": action,
            "backup_guid": backup_guid,
            "user": user or "system",
            "details": details or {},
        }
        if success is not None:
            audit_entry["success"] = success

        with open(AUDIT_LOG_PATH, "a") as f:
            f.write(json.dumps(audit_entry, default=str) + "\n")

        logger.info(f"Audit: {action} backup {backup_guid} by {user or 'system'}")

    except Exception as e:
        # Audit failures never fail the audited action
        logger.error(f"Failed to write audit log: {e}")
