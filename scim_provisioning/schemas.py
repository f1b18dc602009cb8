"""
Schema Catalog

静态、带版本的 schema 描述 (RFC 7643 §7)：
- core User
- Enterprise User 扩展
- Custom 扩展 (team / auth)

以及 ServiceProviderConfig。所有函数都是配置的纯函数，没有副作用。
"""

from dataclasses import dataclass
from enum import Enum

from .config import ScimConfig
from .models import (
    CUSTOM_USER_SCHEMA,
    ENTERPRISE_USER_SCHEMA,
    USER_SCHEMA,
)


class SchemaResourceType(str, Enum):
    SCHEMA = "Schema"
    EXTENSION = "schemaExtensions"


@dataclass(frozen=True)
class AttributeDescriptor:
    """
    属性描述

    complex 类型通过 sub_attributes 嵌套，实际深度不超过 2
    """
    name: str
    description: str
    type: str = "string"
    multi_valued: bool = False
    required: bool = False
    case_exact: bool = False
    mutability: str = "readWrite"
    returned: str = "default"
    uniqueness: str = "none"
    canonical_values: tuple[str, ...] | None = None
    sub_attributes: tuple["AttributeDescriptor", ...] | None = None
    reference_types: tuple[str, ...] | None = None

    def to_dict(self) -> dict:
        d: dict = {
            "name": self.name,
            "type": self.type,
            "multiValued": self.multi_valued,
            "required": self.required,
        }
        # caseExact 只对字符串有意义
        if self.type == "string":
            d["caseExact"] = self.case_exact
        d["mutability"] = self.mutability
        d["returned"] = self.returned
        d["uniqueness"] = self.uniqueness
        if self.canonical_values is not None:
            d["canonicalValues"] = list(self.canonical_values)
        if self.reference_types is not None:
            d["referenceTypes"] = list(self.reference_types)
        d["description"] = self.description
        if self.sub_attributes is not None:
            d["subAttributes"] = [a.to_dict() for a in self.sub_attributes]
        return d


@dataclass(frozen=True)
class SchemaDescriptor:
    """schema 描述，编译期定义，永不修改"""
    urn: str
    name: str
    description: str
    attributes: tuple[AttributeDescriptor, ...]
    resource_type: SchemaResourceType = SchemaResourceType.SCHEMA

    def to_dict(self, config: ScimConfig) -> dict:
        return {
            "id": self.urn,
            "name": self.name,
            "description": self.description,
            "attributes": [a.to_dict() for a in self.attributes],
            "meta": {
                "resourceType": self.resource_type.value,
                "location": config.schema_location(self.urn),
            },
        }


# ============ User ============

_TYPE_VALUES = ("work", "home", "other")

USER = SchemaDescriptor(
    urn=USER_SCHEMA,
    name="User",
    description="User Schema",
    attributes=(
        AttributeDescriptor("userName", "Unique identifier for the user, used to sign in.",
                            required=True, uniqueness="server"),
        AttributeDescriptor(
            "name", "The components of the user's real name.", type="complex", required=True,
            sub_attributes=(
                AttributeDescriptor("familyName", "The family name of the user.", required=True),
                AttributeDescriptor("givenName", "The given name of the user.", required=True),
            ),
        ),
        AttributeDescriptor("displayName", "The name of the user, suitable for display."),
        AttributeDescriptor("title", "The user's title, such as \"Vice President\"."),
        AttributeDescriptor("preferredLanguage", "The user's preferred written or spoken language."),
        AttributeDescriptor("active", "The user's administrative status.", type="boolean"),
        AttributeDescriptor("department", "Name of the department the user belongs to."),
        AttributeDescriptor(
            "emails", "Email addresses for the user.", type="complex", required=True,
            sub_attributes=(
                AttributeDescriptor("value", "Email address for the user.", required=True),
                AttributeDescriptor("type", "A label indicating the email's function.",
                                    canonical_values=_TYPE_VALUES),
                AttributeDescriptor("primary", "Indicates the primary email address.", type="boolean"),
            ),
        ),
        AttributeDescriptor(
            "addresses", "A physical mailing address for the user.", type="complex",
            sub_attributes=(
                AttributeDescriptor("locality", "The city or locality component."),
                AttributeDescriptor("country", "The country name or ISO 3166-1 alpha-2 code."),
                AttributeDescriptor("type", "A label indicating the address's function.",
                                    canonical_values=_TYPE_VALUES),
            ),
        ),
    ),
)


# ============ Enterprise User 扩展 ============

ENTERPRISE = SchemaDescriptor(
    urn=ENTERPRISE_USER_SCHEMA,
    name="Enterprise User",
    description="Enterprise User Schema",
    attributes=(
        AttributeDescriptor(
            "manager", "The user's manager.", type="complex",
            sub_attributes=(
                AttributeDescriptor("value", "The id of the SCIM resource representing the user's manager.",
                                    reference_types=("User",)),
            ),
        ),
    ),
)


# ============ Custom 扩展 ============

CUSTOM = SchemaDescriptor(
    urn=CUSTOM_USER_SCHEMA,
    name="Custom User Extention",
    description="Custom User Schema Extention",
    attributes=(
        AttributeDescriptor("team", "The team the user belongs to."),
        AttributeDescriptor("auth", "The authentication method of the user."),
    ),
    resource_type=SchemaResourceType.EXTENSION,
)

SCHEMAS = (USER, ENTERPRISE, CUSTOM)


def get_user_schema(config: ScimConfig) -> dict:
    return USER.to_dict(config)


def get_enterprise_schema(config: ScimConfig) -> dict:
    return ENTERPRISE.to_dict(config)


def get_custom_schema(config: ScimConfig) -> dict:
    return CUSTOM.to_dict(config)


def get_schemas(config: ScimConfig) -> list[dict]:
    """discovery 列表，固定三个 schema"""
    return [s.to_dict(config) for s in SCHEMAS]


def get_schema(config: ScimConfig, urn: str) -> dict | None:
    """按 URN 获取单个 schema"""
    for schema in SCHEMAS:
        if schema.urn == urn:
            return schema.to_dict(config)
    return None


# ============ ServiceProviderConfig ============

AUTH_SCHEMES = {
    "httpbasic": {
        "name": "HTTP Basic",
        "description": "Authentication scheme using the HTTP Basic Standard",
        "specUri": "http://www.rfc-editor.org/info/rfc2617",
        "documentationUri": "https://en.wikipedia.org/wiki/Basic_access_authentication",
        "type": "httpbasic",
    },
    "oauthbearertoken": {
        "name": "OAuth Bearer Token",
        "description": "Authentication scheme using the OAuth Bearer Token Standard 2.0",
        "specUri": "https://www.rfc-editor.org/info/rfc6750",
        "documentationUri": "https://en.wikipedia.org/wiki/OAuth#OAuth_2.0_2",
        "type": "oauthbearertoken",
        "primary": True,
    },
}


def get_service_provider_config(config: ScimConfig, auth_scheme: str | None = None) -> dict:
    """
    能力声明

    Args:
        auth_scheme: 认证方式，默认使用配置中的 auth_scheme；未知值退回 bearer token
    """
    scheme = AUTH_SCHEMES.get(auth_scheme or config.auth_scheme, AUTH_SCHEMES["oauthbearertoken"])
    return {
        "patch": {"supported": True},
        "bulk": {"supported": False, "maxOperations": 0, "maxPayloadSize": 0},
        "filter": {"supported": True, "maxResults": config.max_results},
        "changePassword": {"supported": False},
        "sort": {"supported": False},
        "etag": {"supported": False},
        "authenticationSchemes": [dict(scheme)],
        "meta": {
            "location": f"{config.api_root}/ServiceProviderConfig",
            "resourceType": "ServiceProviderConfig",
            "created": config.schema_created,
            "lastModified": config.schema_modified,
            "version": config.schema_version,
        },
    }
