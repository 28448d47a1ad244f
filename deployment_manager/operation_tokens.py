"""
Signed operation tokens.

Backup, restore and unlock are requested through an update whose
parameters carry a JWT under ``platform-operation``. The token names the
operation, the requesting user and the operation arguments.
"""

import logging
from datetime import datetime, timedelta, timezone
from typing import Any, Dict, Optional

import jwt

from deployment_manager.errors import BadRequest

logger = logging.getLogger(__name__)

OPERATION_PARAMETER = "platform-operation"


class OperationTokenCodec:
    """Creates and verifies operation tokens."""

    def __init__(self, secret: str, algorithm: str = "HS256", expiration_minutes: int = 60):
        self.secret = secret
        self.algorithm = algorithm
        self.expiration_minutes = expiration_minutes

    def create_token(self, payload: Dict[str, Any]) -> str:
        to_encode = payload.copy()
        expire = datetime.now(timezone.utc) + timedelta(minutes=self.expiration_minutes)
        to_encode.update({"exp": expire})
        return str(jwt.encode(to_encode, self.secret, algorithm=self.algorithm))

    def verify_token(self, token: str) -> Dict[str, Any]:
        """
        Decode an operation token.

        Raises:
            BadRequest: If the token is expired, tampered with or has no type
        """
        try:
            payload = jwt.decode(token, self.secret, algorithms=[self.algorithm])
        except jwt.ExpiredSignatureError:
            logger.warning("Operation token expired")
            raise BadRequest("Operation token expired")
        except jwt.InvalidTokenError as e:
            logger.warning(f"Invalid operation token: {e}")
            raise BadRequest("Invalid operation token")

        if not payload.get("type"):
            raise BadRequest("Operation token does not name an operation")
        return dict(payload)

    def from_parameters(self, parameters: Optional[Dict[str, Any]]) -> Optional[Dict[str, Any]]:
        """Decoded token of update parameters, None when they carry none."""
        token = (parameters or {}).get(OPERATION_PARAMETER)
        if not token:
            return None
        return self.verify_token(token)
