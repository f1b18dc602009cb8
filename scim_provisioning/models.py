"""
SCIM 数据模型

服务端视角的 SCIM 2.0 数据结构：
- UserRecord: 用户目录中的内部用户记录 (由 User Store 持有)
- SCIMName / SCIMEmail / SCIMAddress / SCIMManager: 资源中的复合属性
- PatchOperation: PATCH 请求中的单个操作
- ScimError: 所有协议错误的统一异常 (status + scimType + detail)
"""

from dataclasses import dataclass, field
from datetime import datetime, timezone
from enum import Enum
from typing import Any


# ============ Schema URN ============

SCIM_MESSAGES_URN = "urn:ietf:params:scim:api:messages:2.0:"
LIST_RESPONSE_URN = "urn:ietf:params:scim:api:messages:2.0:ListResponse"
ERROR_URN = "urn:ietf:params:scim:api:messages:2.0:Error"
SERVICE_CONFIG_URN = "urn:ietf:params:scim:schemas:core:2.0:ServiceProviderConfig"
USER_SCHEMA = "urn:ietf:params:scim:schemas:core:2.0:User"
ENTERPRISE_USER_SCHEMA = "urn:ietf:params:scim:schemas:extension:enterprise:2.0:User"
CUSTOM_USER_SCHEMA = "urn:ietf:params:scim:schemas:extension:CustomExtension:2.0:User"

# 完整 User 资源使用的三个 schema
USER_RESOURCE_SCHEMAS = (USER_SCHEMA, ENTERPRISE_USER_SCHEMA, CUSTOM_USER_SCHEMA)


# ============ 错误 ============

class ScimError(Exception):
    """
    SCIM 协议错误

    在核心代码任意位置抛出即终止当前请求，由 API 层渲染为 SCIM 错误信封。
    """
    def __init__(self, status: int, scim_type: str, detail: str):
        super().__init__(detail)
        self.status = int(status)
        self.scim_type = scim_type
        self.detail = detail

    def __str__(self) -> str:
        return f"[{self.status}] {self.scim_type}: {self.detail}"


# ============ 内部用户记录 ============

def utcnow() -> datetime:
    return datetime.now(timezone.utc).replace(microsecond=0)


def text_value(value: Any) -> str:
    """
    JSON 值 -> 字符串

    数字和布尔转成文本，None / 对象 / 数组返回空字符串。记录中只保存字符串。
    """
    if value is None or isinstance(value, (dict, list)):
        return ""
    if isinstance(value, bool):
        return "true" if value else "false"
    return str(value)


def _optional_text(value: Any) -> str | None:
    return None if value is None else text_value(value)


@dataclass
class UserRecord:
    """
    用户目录中的用户记录

    - external_id: 对外稳定标识 (SCIM id / externalId)，分配后不可变
    - username / email: 全局唯一，统一小写
    - suspended: 与 SCIM active 取反
    - team / auth: 自定义扩展属性
    - manager_id: 经理的 external_id (可选)
    """
    username: str = ""
    given_name: str = ""
    family_name: str = ""
    email: str = ""
    alternate_name: str = ""
    locale: str = ""
    department: str = ""
    title: str = ""
    locality: str = ""
    country: str = ""
    suspended: bool = False
    team: str = ""
    auth: str = ""
    manager_id: str = ""
    external_id: str | None = None
    organization: str | None = None

    # 由 User Store 维护
    id: int | None = None
    created: datetime | None = None
    modified: datetime | None = None

    @property
    def active(self) -> bool:
        return not self.suspended

    @property
    def full_name(self) -> str:
        return f"{self.given_name} {self.family_name}".strip()

    def to_dict(self) -> dict:
        """序列化 (JSON 文件存储使用)"""
        return {
            "id": self.id,
            "external_id": self.external_id,
            "organization": self.organization,
            "username": self.username,
            "given_name": self.given_name,
            "family_name": self.family_name,
            "email": self.email,
            "alternate_name": self.alternate_name,
            "locale": self.locale,
            "department": self.department,
            "title": self.title,
            "locality": self.locality,
            "country": self.country,
            "suspended": self.suspended,
            "team": self.team,
            "auth": self.auth,
            "manager_id": self.manager_id,
            "created": self.created.isoformat() if self.created else None,
            "modified": self.modified.isoformat() if self.modified else None,
        }

    @classmethod
    def from_dict(cls, data: dict) -> "UserRecord":
        created = data.get("created")
        modified = data.get("modified")
        return cls(
            id=data.get("id"),
            external_id=data.get("external_id"),
            organization=data.get("organization"),
            username=data.get("username", ""),
            given_name=data.get("given_name", ""),
            family_name=data.get("family_name", ""),
            email=data.get("email", ""),
            alternate_name=data.get("alternate_name", ""),
            locale=data.get("locale", ""),
            department=data.get("department", ""),
            title=data.get("title", ""),
            locality=data.get("locality", ""),
            country=data.get("country", ""),
            suspended=bool(data.get("suspended", False)),
            team=data.get("team", ""),
            auth=data.get("auth", ""),
            manager_id=data.get("manager_id", ""),
            created=datetime.fromisoformat(created) if created else None,
            modified=datetime.fromisoformat(modified) if modified else None,
        )


# ============ User 复合属性 ============

@dataclass
class SCIMName:
    """用户姓名 (name)，只使用 givenName / familyName"""
    givenName: str = ""
    familyName: str = ""

    def to_dict(self) -> dict:
        return {"givenName": self.givenName, "familyName": self.familyName}

    @classmethod
    def from_dict(cls, data: dict) -> "SCIMName":
        return cls(
            givenName=text_value(data.get("givenName")).strip(),
            familyName=text_value(data.get("familyName")).strip(),
        )


@dataclass
class SCIMEmail:
    """
    邮箱 (emails)

    只有 primary 且 type == "work" 的条目会映射到用户主邮箱
    """
    value: str = ""
    type: str | None = None
    primary: bool = False

    @property
    def is_primary_work(self) -> bool:
        return bool(self.primary) and self.type == "work"

    def to_dict(self) -> dict:
        return {"value": self.value, "type": self.type, "primary": self.primary}

    @classmethod
    def from_dict(cls, data: dict) -> "SCIMEmail":
        return cls(
            value=text_value(data.get("value")),
            type=data.get("type"),
            primary=bool(data.get("primary")),
        )


@dataclass
class SCIMAddress:
    """
    地址 (addresses)

    支持的子属性: locality, country, type, primary
    """
    locality: str | None = None
    country: str | None = None
    type: str | None = None
    primary: bool = False

    @property
    def is_primary_work(self) -> bool:
        return bool(self.primary) and self.type == "work"

    def to_dict(self) -> dict:
        return {
            "locality": self.locality or "",
            "country": self.country or "",
            "type": self.type,
            "primary": self.primary,
        }

    @classmethod
    def from_dict(cls, data: dict) -> "SCIMAddress":
        return cls(
            locality=_optional_text(data.get("locality")),
            country=_optional_text(data.get("country")),
            type=data.get("type"),
            primary=bool(data.get("primary")),
        )


@dataclass
class SCIMManager:
    """
    经理引用 (enterprise manager)

    没有经理时所有子属性为空字符串
    """
    value: str = ""
    ref: str = ""  # 对应 $ref
    displayName: str = ""

    def to_dict(self) -> dict:
        return {"value": self.value, "$ref": self.ref, "displayName": self.displayName}

    @classmethod
    def from_dict(cls, data: dict) -> "SCIMManager":
        return cls(
            value=text_value(data.get("value")),
            ref=text_value(data.get("$ref")),
            displayName=text_value(data.get("displayName")),
        )


# ============ PATCH 操作 ============

class PatchOpType(str, Enum):
    """PATCH 操作类型 (大小写不敏感)"""
    ADD = "add"
    REPLACE = "replace"
    REMOVE = "remove"

    @classmethod
    def parse(cls, value: str) -> "PatchOpType":
        try:
            return cls(str(value).lower())
        except ValueError:
            raise ScimError(400, "invalidSyntax", f"Unsupported patch operation: {value}")


@dataclass
class PatchOperation:
    """单个 PATCH 操作，按请求中的顺序依次应用"""
    op: PatchOpType
    path: str | None = None
    value: object = None

    @classmethod
    def from_dict(cls, data: dict) -> "PatchOperation":
        return cls(
            op=PatchOpType.parse(data.get("op", "")),
            path=data.get("path"),
            value=data.get("value"),
        )


# ============ 校验结果 ============

@dataclass
class ValidationResult:
    """
    映射/校验结果

    errors 累积所有问题，不会在第一个错误处中断
    """
    record: UserRecord
    errors: list[str] = field(default_factory=list)
    auth_errors: list[str] = field(default_factory=list)

    @property
    def ok(self) -> bool:
        return not self.errors and not self.auth_errors

    def raise_for_errors(self) -> None:
        """存在错误时抛出 400"""
        if self.ok:
            return
        scim_type = "invalidSyntax" if self.errors else "invalidauth"
        raise ScimError(400, scim_type, "\n".join(self.errors + self.auth_errors))
