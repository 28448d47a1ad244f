"""
Unit tests for signed operation tokens.
"""

from datetime import datetime, timedelta, timezone

import jwt
import pytest

from deployment_manager.errors import BadRequest
from deployment_manager.operation_tokens import OPERATION_PARAMETER, OperationTokenCodec


@pytest.fixture
def codec():
    return OperationTokenCodec("test-secret")


class TestOperationTokenCodec:
    def test_round_trip(self, codec):
        token = codec.create_token({"type": "backup", "username": "hugo"})
        payload = codec.verify_token(token)

        assert payload["type"] == "backup"
        assert payload["username"] == "hugo"
        assert "exp" in payload

    def test_expired_token(self, codec):
        token = jwt.encode(
            {"type": "backup", "exp": datetime.now(timezone.utc) - timedelta(minutes=1)},
            "test-secret",
            algorithm="HS256",
        )
        with pytest.raises(BadRequest, match="expired"):
            codec.verify_token(token)

    def test_wrong_secret(self, codec):
        token = OperationTokenCodec("other").create_token({"type": "backup"})
        with pytest.raises(BadRequest, match="Invalid"):
            codec.verify_token(token)

    def test_missing_type(self, codec):
        token = codec.create_token({"username": "hugo"})
        with pytest.raises(BadRequest):
            codec.verify_token(token)

    def test_from_parameters(self, codec):
        token = codec.create_token({"type": "unlock"})

        assert codec.from_parameters({OPERATION_PARAMETER: token})["type"] == "unlock"
        assert codec.from_parameters({"size": "large"}) is None
        assert codec.from_parameters(None) is None
