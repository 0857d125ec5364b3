"""
Shared fixtures for Users service tests.
"""

import pytest
from fastapi.testclient import TestClient

from service_users.app.jwks import JWKSKeyResolver
from service_users.app.main import UsersService
from shared.config import get_config
from shared.metrics import MetricsCollector
from shared.test_helpers import (
    InMemoryUserRepository,
    MockJWKSEndpoint,
    MockTokenGenerator,
    SigningKey,
    test_data_factory,
    test_environment,
)

JWKS_URL = "http://localhost:8080/realms/users/protocol/openid-connect/certs"


@pytest.fixture(scope="session")
def signing_key():
    """RSA key published on the mock JWKS endpoint."""
    return SigningKey(kid="test-key-1")


@pytest.fixture(scope="session")
def foreign_key():
    """Unpublished RSA key that claims the published kid."""
    return SigningKey(kid="test-key-1")


@pytest.fixture
def token_generator(signing_key):
    """Token generator matching the test realm."""
    return MockTokenGenerator(signing_key)


@pytest.fixture
def test_user():
    return test_data_factory.create_test_users()[0]


@pytest.fixture
def jwks_endpoint(token_generator):
    """JWKS endpoint publishing the signing key."""
    return MockJWKSEndpoint(token_generator.jwks())


@pytest.fixture
def metrics():
    return MetricsCollector("users")


@pytest.fixture
def key_resolver(jwks_endpoint, metrics):
    """Key resolver wired to the mock JWKS endpoint."""
    return JWKSKeyResolver(JWKS_URL, transport=jwks_endpoint.transport, metrics=metrics)


@pytest.fixture
def config():
    return get_config("users", 5000, **test_environment.get_mock_config())


@pytest.fixture
def repository():
    return InMemoryUserRepository()


@pytest.fixture
def users_service(config, repository, key_resolver, metrics):
    """Users service with in-memory storage and mock JWKS."""
    return UsersService(config=config, repository=repository, key_resolver=key_resolver, metrics=metrics)


@pytest.fixture
def client(users_service):
    """Test client with startup and shutdown hooks run."""
    with TestClient(users_service.app) as test_client:
        yield test_client


@pytest.fixture
def auth_headers(token_generator, test_user):
    """Authorization header with a valid token for ``test_user``."""
    token = token_generator.generate_access_token(test_user)
    return {"Authorization": f"Bearer {token}"}
