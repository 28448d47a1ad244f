"""
Filesystem-backed backup metadata store.

Layout below the root directory::

    <space_guid>/backup/<service_id>.<instance_guid>.<backup_guid>.<started_at>.json
    <space_guid>/restore/<service_id>.<instance_guid>.json
    _oob_deployments/backup/<deployment_name>.<backup_guid>.<started_at>.json

``started_at`` in file names is a UTC timestamp without fractional seconds
and with ``:`` replaced by ``-`` so that names sort by start time. Writes go
to a temp file first and are renamed into place.
"""

import json
import logging
from datetime import datetime, timedelta, timezone
from pathlib import Path
from typing import Any, Dict, List, Optional

import aiofiles  # type: ignore
import aiofiles.os  # type: ignore

from deployment_manager.errors import BackupNotFound, BadRequest, Forbidden
from deployment_manager.models import BackupTrigger
from deployment_manager.protocols import OOB_ROOT_FOLDER, PRECONDITION_NOT_MET, DeletePrecondition

logger = logging.getLogger(__name__)
FILENAME_TIME_FORMAT = "%Y-%m-%dT%H-%M-%SZ"


def parse_timestamp(value: str) -> datetime:
    parsed = datetime.fromisoformat(value.replace("Z", "+00:00"))
    if parsed.tzinfo is None:
        parsed = parsed.replace(tzinfo=timezone.utc)
    return parsed


def filename_timestamp(started_at: str) -> str:
    return parse_timestamp(started_at).astimezone(timezone.utc).strftime(FILENAME_TIME_FORMAT)


def _started_at_key(path: Path) -> str:
    # Stamps sort lexically in time order
    return path.name[: -len(".json")].rsplit(".", 1)[-1]


def parse_backup_filename(root_folder: str, filename: str) -> Optional[Dict[str, Any]]:
    """Decode a backup file name, None when it does not follow the layout."""
    if not filename.endswith(".json"):
        return None
    parts = filename[: -len(".json")].split(".")
    try:
        if root_folder == OOB_ROOT_FOLDER and len(parts) == 3:
            deployment_name, backup_guid, stamp = parts
            info: Dict[str, Any] = {"deployment_name": deployment_name}
        elif root_folder != OOB_ROOT_FOLDER and len(parts) == 4:
            service_id, instance_guid, backup_guid, stamp = parts
            info = {"service_id": service_id, "instance_guid": instance_guid}
        else:
            return None
        started_at = datetime.strptime(stamp, FILENAME_TIME_FORMAT).replace(tzinfo=timezone.utc)
    except ValueError:
        return None

    info.update(
        {"root_folder": root_folder, "backup_guid": backup_guid, "started_at": started_at}
    )
    return info


class FileBackupStore:
    """BackupStore keeping one JSON document per backup or restore."""

    def __init__(self, root: Path, retention_period_in_days: int = 14):
        self.root = Path(root)
        self.retention_period_in_days = retention_period_in_days

    # ------------------------------------------------------------------
    # Paths
    # ------------------------------------------------------------------

    @staticmethod
    def _is_oob(options: Dict[str, Any]) -> bool:
        return not options.get("space_guid") and bool(options.get("deployment_name"))

    def _backup_dir(self, options: Dict[str, Any]) -> Path:
        if self._is_oob(options):
            return self.root / OOB_ROOT_FOLDER / "backup"
        if not options.get("space_guid"):
            raise BadRequest("Backup files are addressed by space_guid or deployment_name")
        return self.root / options["space_guid"] / "backup"

    def _backup_filename(self, data: Dict[str, Any]) -> str:
        stamp = filename_timestamp(data["started_at"])
        if self._is_oob(data):
            return f"{data['deployment_name']}.{data['backup_guid']}.{stamp}.json"
        return f"{data['service_id']}.{data['instance_guid']}.{data['backup_guid']}.{stamp}.json"

    def _backup_glob(self, options: Dict[str, Any]) -> str:
        guid = options.get("backup_guid") or "*"
        if self._is_oob(options):
            return f"{options['deployment_name']}.{guid}.*.json"
        return f"{options.get('service_id') or '*'}.{options['instance_guid']}.{guid}.*.json"

    def _restore_path(self, options: Dict[str, Any]) -> Path:
        if not options.get("space_guid"):
            raise BadRequest("Restore files are addressed by space_guid")
        return (
            self.root
            / options["space_guid"]
            / "restore"
            / f"{options['service_id']}.{options['instance_guid']}.json"
        )

    def _find_backup_paths(self, options: Dict[str, Any]) -> List[Path]:
        directory = self._backup_dir(options)
        if not directory.is_dir():
            return []
        return sorted(directory.glob(self._backup_glob(options)), key=_started_at_key, reverse=True)

    def _find_backup_path(self, options: Dict[str, Any]) -> Path:
        paths = self._find_backup_paths(options)
        if not paths:
            what = options.get("backup_guid") or f"latest of instance {options.get('instance_guid')}"
            raise BackupNotFound(f"Backup '{what}'")
        return paths[0]

    # ------------------------------------------------------------------
    # IO
    # ------------------------------------------------------------------

    @staticmethod
    async def _read(path: Path) -> Dict[str, Any]:
        async with aiofiles.open(path, "r") as f:
            return json.loads(await f.read())

    @staticmethod
    async def _write(path: Path, data: Dict[str, Any]) -> None:
        path.parent.mkdir(parents=True, exist_ok=True)
        temp_file = path.with_suffix(".tmp")
        async with aiofiles.open(temp_file, "w") as f:
            await f.write(json.dumps(data, indent=2, default=str))
        temp_file.replace(path)

    # ------------------------------------------------------------------
    # Backup files
    # ------------------------------------------------------------------

    async def put_file(self, data: Dict[str, Any]) -> None:
        if data.get("operation") == "restore":
            path = self._restore_path(data)
        else:
            path = self._backup_dir(data) / self._backup_filename(data)
        await self._write(path, data)
        logger.debug(f"Stored {data.get('operation', 'backup')} metadata at {path}")

    async def get_backup_file(self, options: Dict[str, Any]) -> Dict[str, Any]:
        return await self._read(self._find_backup_path(options))

    async def patch_backup_file(
        self, options: Dict[str, Any], patch: Dict[str, Any]
    ) -> Dict[str, Any]:
        path = self._find_backup_path(options)
        data = await self._read(path)
        data.update(patch)
        await self._write(path, data)
        return data

    async def delete_backup_file(
        self, options: Dict[str, Any], precondition: Optional[DeletePrecondition] = None
    ) -> Optional[str]:
        """
        Delete a backup file.

        Raises:
            Forbidden: For a non-forced delete of a scheduled backup inside retention
        """
        path = self._find_backup_path(options)
        data = await self._read(path)

        if precondition is not None and not await precondition(data):
            logger.info(f"Precondition not met, keeping backup {data.get('backup_guid')}")
            return PRECONDITION_NOT_MET

        if not options.get("force") and data.get("trigger") == BackupTrigger.SCHEDULED.value:
            cutoff = datetime.now(timezone.utc) - timedelta(days=self.retention_period_in_days)
            if parse_timestamp(data["started_at"]) > cutoff:
                raise Forbidden(
                    f"Scheduled backup {data.get('backup_guid')} is within the retention "
                    f"period of {self.retention_period_in_days} days"
                )

        await aiofiles.os.remove(path)
        logger.info(f"Deleted backup file {path.name}")
        return None

    async def list_backup_files(self, options: Dict[str, Any]) -> List[Dict[str, Any]]:
        return [await self._read(path) for path in self._find_backup_paths(options)]

    async def list_backup_filenames(
        self,
        older_than: datetime,
        newer_than: Optional[datetime] = None,
        include_oob: bool = False,
    ) -> List[Dict[str, Any]]:
        """Backups started at or before older_than (and after newer_than), with their trigger."""
        if not self.root.is_dir():
            return []

        entries = []
        for folder in sorted(self.root.iterdir()):
            if folder.name == OOB_ROOT_FOLDER and not include_oob:
                continue
            backup_dir = folder / "backup"
            if not backup_dir.is_dir():
                continue
            for path in sorted(backup_dir.glob("*.json")):
                info = parse_backup_filename(folder.name, path.name)
                if info is None:
                    logger.warning(f"Ignoring unexpected file {path}")
                    continue
                if info["started_at"] > older_than:
                    continue
                if newer_than is not None and info["started_at"] <= newer_than:
                    continue
                data = await self._read(path)
                info["trigger"] = data.get("trigger")
                info["space_guid"] = data.get("space_guid")
                info["plan_id"] = data.get("plan_id")
                entries.append(info)
        return entries

    # ------------------------------------------------------------------
    # Restore files
    # ------------------------------------------------------------------

    async def get_restore_file(self, options: Dict[str, Any]) -> Dict[str, Any]:
        path = self._restore_path(options)
        if not path.exists():
            raise BackupNotFound(f"Restore of instance '{options.get('instance_guid')}'")
        return await self._read(path)

    async def patch_restore_file(
        self, options: Dict[str, Any], patch: Dict[str, Any]
    ) -> Dict[str, Any]:
        data = await self.get_restore_file(options)
        data.update(patch)
        await self._write(self._restore_path(options), data)
        return data

    async def delete_restore_file(self, options: Dict[str, Any]) -> Optional[str]:
        path = self._restore_path(options)
        if not path.exists():
            raise BackupNotFound(f"Restore of instance '{options.get('instance_guid')}'")
        await aiofiles.os.remove(path)
        logger.info(f"Deleted restore file {path.name}")
        return None
