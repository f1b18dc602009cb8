import pytest
from fastapi.testclient import TestClient

from scim_provisioning.api import create_app
from scim_provisioning.auth import LocalTokenAuthority
from scim_provisioning.config import ScimConfig, TokenClient
from scim_provisioning.mapper import UserMapper
from scim_provisioning.service import ProvisioningService
from scim_provisioning.store import MemoryUserStore

CLIENT_ID = "idp-client"
CLIENT_SECRET = "s3cr3t-value"


@pytest.fixture
def config() -> ScimConfig:
    return ScimConfig(
        base_url="https://lms.example.com",
        base_path="/scim",
        max_results=50,
        clients=(
            TokenClient(client_id=CLIENT_ID, client_secret=CLIENT_SECRET),
            TokenClient(client_id="org-client", client_secret="org-secret", organization="acme"),
        ),
    )


@pytest.fixture
def store() -> MemoryUserStore:
    return MemoryUserStore()


@pytest.fixture
def mapper(config, store) -> UserMapper:
    return UserMapper(config, store)


@pytest.fixture
def service(config, store) -> ProvisioningService:
    return ProvisioningService(config, store)


@pytest.fixture
def authority(config) -> LocalTokenAuthority:
    return LocalTokenAuthority(config.clients, config.token_lifetime)


@pytest.fixture
def app(config, store, authority):
    return create_app(config, store=store, authority=authority)


@pytest.fixture
def client(app) -> TestClient:
    return TestClient(app)


@pytest.fixture
def token(authority) -> str:
    response = authority.issue_token({
        "grant_type": "client_credentials",
        "client_id": CLIENT_ID,
        "client_secret": CLIENT_SECRET,
    })
    return response["access_token"]


@pytest.fixture
def auth_headers(token) -> dict:
    return {"Authorization": f"Bearer {token}"}


@pytest.fixture
def sample_user() -> dict:
    return {
        "schemas": [
            "urn:ietf:params:scim:schemas:core:2.0:User",
            "urn:ietf:params:scim:schemas:extension:enterprise:2.0:User",
            "urn:ietf:params:scim:schemas:extension:CustomExtension:2.0:User",
        ],
        "userName": "John.Doe@Example.com",
        "displayName": "Johnny",
        "name": {"givenName": "John", "familyName": "Doe"},
        "emails": [
            {"value": "home@example.com", "type": "home", "primary": False},
            {"value": "John.Doe@Example.com", "type": "work", "primary": True},
        ],
        "preferredLanguage": "en-GB",
        "addresses": [
            {"locality": "London", "country": "United Kingdom", "type": "work", "primary": True},
        ],
        "title": "Engineer",
        "department": "R&D",
        "active": True,
        "urn:ietf:params:scim:schemas:extension:CustomExtension:2.0:User": {
            "team": "Platform",
            "auth": "manual",
        },
    }
