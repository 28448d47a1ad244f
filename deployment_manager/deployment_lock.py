"""
Durable deployment lock.

The lock is a property stored on the deployment by the apply service, so it
survives restarts and is shared by every manager process. Acquisition
overwrites any existing record (last writer wins) unless the lock is
created in conditional mode, where acquisition only succeeds if no record
exists yet.
"""

import json
import logging
from typing import Any, Mapping, Optional, Union

from pydantic import ValidationError

from deployment_manager.errors import AlreadyExists, AlreadyLocked, BadRequest, NotFound
from deployment_manager.models import LockInfo
from deployment_manager.protocols import ApplyService

logger = logging.getLogger(__name__)

DEPLOYMENT_LOCK_NAME = "platform-lock"


class DeploymentLock:
    """Mutual exclusion record per deployment name."""

    def __init__(self, apply_service: ApplyService, conditional: bool = False):
        """
        Initialize deployment lock.

        Args:
            apply_service: Apply service storing deployment properties
            conditional: Refuse to overwrite an existing record on acquire
        """
        self.apply_service = apply_service
        self.conditional = conditional

    async def acquire(
        self, deployment_name: str, lock_info: Union[LockInfo, Mapping[str, Any]]
    ) -> LockInfo:
        """
        Write the lock record of a deployment.

        Raises:
            BadRequest: If username or lockForOperation is missing
            AlreadyLocked: In conditional mode, if a record already exists
        """
        info = self._coerce(deployment_name, lock_info)
        logger.info(f"Acquiring lock on deployment {deployment_name} - lock meta : {info.to_json()}")

        if not self.conditional:
            await self.apply_service.update_deployment_property(
                deployment_name, DEPLOYMENT_LOCK_NAME, info.to_json()
            )
            return info

        try:
            await self.apply_service.create_deployment_property(
                deployment_name, DEPLOYMENT_LOCK_NAME, info.to_json()
            )
        except AlreadyExists:
            current = await self.get(deployment_name)
            logger.warning(f"+-> Deployment {deployment_name} is already locked")
            raise AlreadyLocked(deployment_name, current)
        return info

    async def release(self, deployment_name: str) -> None:
        """Delete the lock record; a missing record counts as released."""
        try:
            await self.apply_service.delete_deployment_property(
                deployment_name, DEPLOYMENT_LOCK_NAME
            )
            logger.info(f"Released lock on deployment {deployment_name}")
        except NotFound:
            logger.info(f"Lock already released from deployment - {deployment_name}")

    async def get(self, deployment_name: str) -> Optional[LockInfo]:
        try:
            raw = await self.apply_service.get_deployment_property(
                deployment_name, DEPLOYMENT_LOCK_NAME
            )
        except NotFound:
            return None
        if not raw:
            return None
        return LockInfo.model_validate(json.loads(raw))

    async def verify(self, deployment_name: str) -> None:
        """
        Check that a deployment is not locked.

        Raises:
            AlreadyLocked: Carrying the lock record, if one exists
        """
        lock_info = await self.get(deployment_name)
        if lock_info is not None:
            raise AlreadyLocked(deployment_name, lock_info)

    @staticmethod
    def _coerce(deployment_name: str, lock_info: Union[LockInfo, Mapping[str, Any]]) -> LockInfo:
        if isinstance(lock_info, LockInfo):
            return lock_info
        if not lock_info.get("username") or not lock_info.get("lockForOperation"):
            msg = (
                f"Lock cannot be acquired on deployment {deployment_name} as "
                "(username | lockForOperation) is empty in lockMetaInfo"
            )
            logger.error(msg)
            raise BadRequest(msg)
        data = {key: value for key, value in lock_info.items() if value is not None}
        try:
            return LockInfo.model_validate(data)
        except ValidationError as e:
            raise BadRequest(f"Invalid lock record for deployment {deployment_name}: {e}")
