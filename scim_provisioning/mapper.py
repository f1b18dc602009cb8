"""
User Mapper & Validator

SCIM JSON <-> UserRecord 双向映射：
- decode_resource: 完整文档 (POST 创建 / PUT 替换)
- decode_patch: PatchOp 操作列表 (PATCH 部分更新)
- encode: UserRecord -> SCIM User 资源

校验错误全部累积后一次返回，不在第一个错误处中断。
"""

from dataclasses import replace
from typing import Any, Callable

import structlog

from .config import ScimConfig
from .countries import country_code, country_name
from .models import (
    CUSTOM_USER_SCHEMA,
    ENTERPRISE_USER_SCHEMA,
    PatchOperation,
    PatchOpType,
    SCIMAddress,
    SCIMEmail,
    SCIMManager,
    SCIMName,
    ScimError,
    UserRecord,
    ValidationResult,
    text_value,
)
from .paths import parse_path
from .responses import ResponseKind, wrap_resource
from .store import UserStore

logger = structlog.get_logger(__name__)

TIMESTAMP_FORMAT = "%Y-%m-%dT%H:%M:%SZ"

# 校验错误
MISSING_USERNAME = "Missing username"
MISSING_GIVEN_NAME = "Missing given name"
MISSING_FAMILY_NAME = "Missing family name"
MISSING_EMAIL = "Missing email"
INVALID_AUTH = "Invalid auth"
USER_EXISTS = "User already exists."

# 扩展命名空间允许写入的字段
EXTENSION_FIELDS = {
    ENTERPRISE_USER_SCHEMA: ("department", "manager"),
    CUSTOM_USER_SCHEMA: ("team", "auth"),
}

_ENT = ENTERPRISE_USER_SCHEMA.lower()
_CUSTOM = CUSTOM_USER_SCHEMA.lower()
MANAGER_PATHS = (f"{_ENT}:manager", f"{_ENT}:manager.value")


def parse_active(value: Any) -> bool | None:
    """布尔值或 "true" / "false" 字符串；无法识别时返回 None"""
    if isinstance(value, bool):
        return value
    if isinstance(value, str):
        lowered = value.strip().lower()
        if lowered in ("true", "false"):
            return lowered == "true"
        return None
    if isinstance(value, int):
        return bool(value)
    return None


def _language(value: Any) -> str:
    # en-GB -> en
    return text_value(value).split("-", 1)[0]


def _format_time(value) -> str:
    return value.strftime(TIMESTAMP_FORMAT) if value else ""


def _primary_work(items: Any, factory):
    """multi-valued 属性中 primary 且 type == "work" 的条目"""
    if not isinstance(items, list):
        return None
    found = None
    for item in items:
        if isinstance(item, dict):
            entry = factory(item)
            if entry.is_primary_work:
                found = entry
    return found


def _manager_id(value: Any) -> str:
    if isinstance(value, dict):
        return text_value(value.get("value")).strip()
    return text_value(value).strip()


class UserMapper:
    """
    User 映射器

    Args:
        config: 服务配置 (默认认证方式、base URL)
        store: 用于经理引用检查、用户名唯一性检查和编码时解析经理
    """

    def __init__(self, config: ScimConfig, store: UserStore):
        self.config = config
        self.store = store
        self._patch_handlers: dict[str, Callable[[ValidationResult, Any], None]] = {
            "username": self._patch_username,
            "displayname": self._patch_display_name,
            "preferredlanguage": self._patch_language,
            "title": self._patch_title,
            "department": self._patch_department,
            "active": self._patch_active,
            "name": self._patch_name,
            "name.givenname": self._patch_given_name,
            "name.familyname": self._patch_family_name,
            "emails": self._patch_emails,
            'emails[type eq "work"].value': self._patch_email,
            "addresses": self._patch_addresses,
            'addresses[type eq "work"].locality': self._patch_locality,
            'addresses[type eq "work"].country': self._patch_country,
            f"{_ENT}:department": self._patch_department,
            f"{_ENT}:manager": self._patch_manager,
            f"{_ENT}:manager.value": self._patch_manager,
            f"{_CUSTOM}:team": self._patch_team,
            f"{_CUSTOM}:auth": self._patch_auth,
        }

    # ============ 完整文档 ============

    def decode_resource(self, document: dict, record: UserRecord | None = None) -> ValidationResult:
        """
        解析完整 User 文档

        Args:
            document: 请求体
            record: PUT 时为现有记录 (文档中没有的属性保持原值)；POST 时为 None

        Returns:
            ValidationResult，errors 为空表示通过
        """
        record = replace(record) if record is not None else UserRecord()
        result = ValidationResult(record)

        for key, value in document.items():
            if key == "userName":
                record.username = text_value(value).strip().lower()
            elif key == "displayName":
                record.alternate_name = text_value(value)
            elif key == "preferredLanguage":
                record.locale = _language(value)
            elif key == "title":
                record.title = text_value(value)
            elif key == "department":
                record.department = text_value(value)
            elif key == "name" and isinstance(value, dict):
                name = SCIMName.from_dict(value)
                if name.givenName:
                    record.given_name = name.givenName
                if name.familyName:
                    record.family_name = name.familyName
            elif key == "emails":
                email = _primary_work(value, SCIMEmail.from_dict)
                if email is not None:
                    record.email = email.value.strip().lower()
            elif key == "addresses":
                self._apply_address(record, _primary_work(value, SCIMAddress.from_dict))
            elif key == "active":
                self._apply_active(result, value)
            elif key == ENTERPRISE_USER_SCHEMA and isinstance(value, dict):
                self._apply_extension(result, key, value)
            elif key == CUSTOM_USER_SCHEMA and isinstance(value, dict):
                self._apply_extension(result, key, value)

        # 外部开通的用户统一使用默认认证方式
        record.auth = self.config.default_auth

        if not record.username:
            result.errors.append(MISSING_USERNAME)
        if not record.given_name:
            result.errors.append(MISSING_GIVEN_NAME)
        if not record.family_name:
            result.errors.append(MISSING_FAMILY_NAME)
        if not record.email:
            result.errors.append(MISSING_EMAIL)
        return result

    def _apply_address(self, record: UserRecord, address: SCIMAddress | None) -> None:
        if address is None:
            return
        if address.locality is not None:
            record.locality = address.locality
        if address.country:
            record.country = country_code(address.country)

    def _apply_active(self, result: ValidationResult, value: Any) -> None:
        active = parse_active(value)
        if active is None:
            result.errors.append(f"Invalid value for active: {value}")
            return
        result.record.suspended = not active

    def _apply_extension(self, result: ValidationResult, urn: str, values: dict) -> None:
        allowed = EXTENSION_FIELDS[urn]
        for name, value in values.items():
            if name not in allowed:
                logger.debug("scim_extension_field_ignored", schema=urn, field=name)
                continue
            if name == "department":
                result.record.department = text_value(value)
            elif name == "manager":
                self._set_manager(result, value)
            elif name == "team":
                result.record.team = text_value(value)
            # auth 在 decode_resource 末尾被强制覆盖

    def _set_manager(self, result: ValidationResult, value: Any) -> None:
        manager_id = _manager_id(value)
        if manager_id and manager_id == result.record.external_id:
            result.errors.append("A user cannot be their own manager")
            return
        if manager_id and not self.store.exists(manager_id):
            result.errors.append(f"Manager {manager_id} not found")
            return
        result.record.manager_id = manager_id

    # ============ PATCH ============

    def expand_operations(self, operations: list[PatchOperation]) -> list[PatchOperation]:
        """
        没有 path 且 value 为对象的操作，按键展开为多个带 path 的操作

        扩展命名空间的键展开为 "<urn>:<attr>"
        """
        expanded = []
        for operation in operations:
            if operation.path or not isinstance(operation.value, dict):
                expanded.append(operation)
                continue
            for key, value in operation.value.items():
                if key in EXTENSION_FIELDS and isinstance(value, dict):
                    for sub_key, sub_value in value.items():
                        expanded.append(PatchOperation(operation.op, f"{key}:{sub_key}", sub_value))
                else:
                    expanded.append(PatchOperation(operation.op, key, value))
        return expanded

    def decode_patch(self, operations: list[PatchOperation], record: UserRecord) -> ValidationResult:
        """
        按顺序应用 PATCH 操作

        - Add / Replace 把字段设为 value，Remove 把字段清空
        - 经理路径的 Remove 不做任何处理
        - 无法识别的路径直接忽略
        - 只校验被操作到的字段
        """
        result = ValidationResult(replace(record))

        for operation in self.expand_operations(operations):
            if not operation.path:
                logger.info("scim_patch_operation_ignored", op=operation.op.value)
                continue
            try:
                key = parse_path(operation.path).key
            except ValueError:
                key = None
            handler = self._patch_handlers.get(key) if key else None
            if handler is None:
                logger.info("scim_patch_path_ignored", path=operation.path)
                continue

            if operation.op == PatchOpType.REMOVE:
                if key in MANAGER_PATHS:
                    continue
                value = ""
            else:
                value = operation.value
            handler(result, value)

        return result

    def _patch_username(self, result: ValidationResult, value: Any) -> None:
        username = text_value(value).strip().lower()
        if not username:
            result.errors.append(MISSING_USERNAME)
        else:
            result.record.username = username

    def _patch_display_name(self, result: ValidationResult, value: Any) -> None:
        result.record.alternate_name = text_value(value)

    def _patch_language(self, result: ValidationResult, value: Any) -> None:
        result.record.locale = _language(value)

    def _patch_title(self, result: ValidationResult, value: Any) -> None:
        result.record.title = text_value(value)

    def _patch_department(self, result: ValidationResult, value: Any) -> None:
        result.record.department = text_value(value)

    def _patch_active(self, result: ValidationResult, value: Any) -> None:
        self._apply_active(result, value)

    def _patch_name(self, result: ValidationResult, value: Any) -> None:
        if not isinstance(value, dict):
            result.errors.append(MISSING_GIVEN_NAME)
            result.errors.append(MISSING_FAMILY_NAME)
            return
        if "givenName" in value:
            self._patch_given_name(result, value["givenName"])
        if "familyName" in value:
            self._patch_family_name(result, value["familyName"])

    def _patch_given_name(self, result: ValidationResult, value: Any) -> None:
        given_name = text_value(value).strip()
        if not given_name:
            result.errors.append(MISSING_GIVEN_NAME)
        else:
            result.record.given_name = given_name

    def _patch_family_name(self, result: ValidationResult, value: Any) -> None:
        family_name = text_value(value).strip()
        if not family_name:
            result.errors.append(MISSING_FAMILY_NAME)
        else:
            result.record.family_name = family_name

    def _patch_emails(self, result: ValidationResult, value: Any) -> None:
        email = _primary_work(value, SCIMEmail.from_dict)
        self._patch_email(result, email.value if email else "")

    def _patch_email(self, result: ValidationResult, value: Any) -> None:
        email = text_value(value).strip().lower()
        if not email:
            result.errors.append(MISSING_EMAIL)
        else:
            result.record.email = email

    def _patch_addresses(self, result: ValidationResult, value: Any) -> None:
        self._apply_address(result.record, _primary_work(value, SCIMAddress.from_dict))

    def _patch_locality(self, result: ValidationResult, value: Any) -> None:
        result.record.locality = text_value(value)

    def _patch_country(self, result: ValidationResult, value: Any) -> None:
        result.record.country = country_code(text_value(value)) if value else ""

    def _patch_manager(self, result: ValidationResult, value: Any) -> None:
        self._set_manager(result, value)

    def _patch_team(self, result: ValidationResult, value: Any) -> None:
        result.record.team = text_value(value)

    def _patch_auth(self, result: ValidationResult, value: Any) -> None:
        auth = text_value(value)
        if auth not in self.config.supported_auths:
            result.auth_errors.append(INVALID_AUTH)
            return
        result.record.auth = auth

    # ============ 唯一性 ============

    def ensure_unique_username(self, record: UserRecord, previous: str | None = None) -> None:
        """
        提交前检查用户名唯一

        Raises:
            ScimError: 409 uniqueness，用户名已被其他记录使用
        """
        if not record.username or record.username == previous:
            return
        other = self.store.get_by_username(record.username)
        if other is not None and other.external_id != record.external_id:
            logger.info("scim_username_conflict", username=record.username)
            raise ScimError(409, "uniqueness", USER_EXISTS)

    # ============ 编码 ============

    def manager_of(self, record: UserRecord) -> SCIMManager:
        if not record.manager_id:
            return SCIMManager()
        manager = self.store.get(record.manager_id)
        if manager is None:
            return SCIMManager()
        return SCIMManager(
            value=manager.external_id or "",
            ref=self.config.user_location(manager.external_id or ""),
            displayName=manager.full_name,
        )

    def encode(self, record: UserRecord, include_schemas: bool = True, country_names: bool = False) -> dict:
        """
        UserRecord -> SCIM User 资源

        Args:
            include_schemas: 单个资源响应为 True，嵌套在 ListResponse 中为 False
            country_names: 写操作 (POST / PUT / PATCH) 的响应中 country 输出国家名，查询时输出代码
        """
        body = {
            "id": record.external_id,
            "externalId": record.external_id,
            "userName": record.username,
            "displayName": record.alternate_name,
            "name": SCIMName(givenName=record.given_name, familyName=record.family_name).to_dict(),
            "emails": [SCIMEmail(value=record.email, type="work", primary=True).to_dict()],
            "preferredLanguage": record.locale,
            "addresses": [
                SCIMAddress(
                    locality=record.locality,
                    country=country_name(record.country) if country_names else record.country,
                    type="work",
                    primary=True,
                ).to_dict()
            ],
            "title": record.title,
            "department": record.department,
            "active": record.active,
            ENTERPRISE_USER_SCHEMA: {"manager": self.manager_of(record).to_dict()},
            CUSTOM_USER_SCHEMA: {"auth": record.auth, "team": record.team},
            "meta": {
                "resourceType": "User",
                "created": _format_time(record.created),
                "lastModified": _format_time(record.modified),
                "location": self.config.user_location(record.external_id or ""),
                "version": self.config.schema_version,
            },
        }
        if include_schemas:
            return wrap_resource(ResponseKind.USER, body)
        return body
