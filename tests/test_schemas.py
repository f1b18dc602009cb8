from scim_provisioning.config import ScimConfig
from scim_provisioning.models import CUSTOM_USER_SCHEMA, ENTERPRISE_USER_SCHEMA, USER_SCHEMA
from scim_provisioning.schemas import (
    get_custom_schema,
    get_enterprise_schema,
    get_schema,
    get_schemas,
    get_service_provider_config,
    get_user_schema,
)


def _attribute(schema: dict, name: str) -> dict:
    return next(a for a in schema["attributes"] if a["name"] == name)


def test_schema_list_has_three_entries(config):
    schemas = get_schemas(config)
    assert [s["id"] for s in schemas] == [USER_SCHEMA, ENTERPRISE_USER_SCHEMA, CUSTOM_USER_SCHEMA]


def test_user_schema(config):
    schema = get_user_schema(config)
    assert schema["name"] == "User"
    assert schema["meta"]["resourceType"] == "Schema"
    assert schema["meta"]["location"] == f"https://lms.example.com/scim/v2/Schemas/{USER_SCHEMA}"

    username = _attribute(schema, "userName")
    assert username["required"] is True
    assert username["uniqueness"] == "server"
    assert username["mutability"] == "readWrite"

    name = _attribute(schema, "name")
    assert name["type"] == "complex"
    assert {a["name"] for a in name["subAttributes"]} == {"givenName", "familyName"}

    emails = _attribute(schema, "emails")
    assert emails["multiValued"] is False
    email_type = next(a for a in emails["subAttributes"] if a["name"] == "type")
    assert email_type["canonicalValues"] == ["work", "home", "other"]

    active = _attribute(schema, "active")
    assert active["type"] == "boolean"
    assert "caseExact" not in active


def test_enterprise_schema_manager_reference(config):
    schema = get_enterprise_schema(config)
    manager = _attribute(schema, "manager")
    value = manager["subAttributes"][0]
    assert value["name"] == "value"
    assert value["referenceTypes"] == ["User"]


def test_custom_schema_is_an_extension(config):
    schema = get_custom_schema(config)
    assert schema["meta"]["resourceType"] == "schemaExtensions"
    assert {a["name"] for a in schema["attributes"]} == {"team", "auth"}


def test_get_schema_by_urn(config):
    assert get_schema(config, ENTERPRISE_USER_SCHEMA)["id"] == ENTERPRISE_USER_SCHEMA
    assert get_schema(config, "urn:unknown") is None


def test_service_provider_config(config):
    doc = get_service_provider_config(config)
    assert doc["patch"] == {"supported": True}
    assert doc["bulk"]["supported"] is False
    assert doc["filter"] == {"supported": True, "maxResults": 50}
    assert doc["changePassword"]["supported"] is False
    assert doc["sort"]["supported"] is False
    assert doc["etag"]["supported"] is False
    assert doc["authenticationSchemes"][0]["type"] == "oauthbearertoken"
    assert doc["meta"]["created"] == "2021-01-27T12:00:00Z"
    assert doc["meta"]["lastModified"] == "2021-01-27T12:00:00Z"
    assert doc["meta"]["location"] == "https://lms.example.com/scim/v2/ServiceProviderConfig"


def test_service_provider_config_basic_auth():
    config = ScimConfig(auth_scheme="httpbasic")
    doc = get_service_provider_config(config)
    assert doc["authenticationSchemes"][0]["type"] == "httpbasic"


def test_service_provider_config_explicit_scheme(config):
    doc = get_service_provider_config(config, "httpbasic")
    assert doc["authenticationSchemes"][0]["name"] == "HTTP Basic"
