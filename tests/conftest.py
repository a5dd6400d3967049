import pytest
from unittest.mock import MagicMock

from cryptography.hazmat.primitives import serialization
from cryptography.hazmat.primitives.asymmetric import rsa

from querypanel.adapters.interfaces import DatabaseAdapter
from querypanel.adapters.models import Dialect, ExecutionResult
from querypanel.client.api_client import ApiClient


@pytest.fixture(scope="session")
def rsa_keypair():
    """Returns (private_pem, public_pem) for signing test tokens."""
    key = rsa.generate_private_key(public_exponent=65537, key_size=2048)
    private_pem = key.private_bytes(
        encoding=serialization.Encoding.PEM,
        format=serialization.PrivateFormat.PKCS8,
        encryption_algorithm=serialization.NoEncryption(),
    ).decode()
    public_pem = key.public_key().public_bytes(
        encoding=serialization.Encoding.PEM,
        format=serialization.PublicFormat.SubjectPublicKeyInfo,
    ).decode()
    return private_pem, public_pem


@pytest.fixture
def mock_adapter():
    """Returns a mocked relational adapter that succeeds with one row."""
    adapter = MagicMock(spec=DatabaseAdapter)
    adapter.get_dialect.return_value = Dialect.POSTGRES
    adapter.execute.return_value = ExecutionResult(fields=["id"], rows=[{"id": 1}])
    return adapter


@pytest.fixture
def mock_api_client():
    """Returns a mocked ApiClient with a default tenant."""
    client = MagicMock(spec=ApiClient)
    client.default_tenant_id = "t-123"
    client.resolve_tenant_id.side_effect = lambda tenant_id=None: ApiClient.resolve_tenant_id(client, tenant_id)
    return client
