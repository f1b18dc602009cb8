"""
Provisioning Service

SCIM User 端点的业务流程：filter 查询、读取、创建、替换、部分更新、停用。
所有失败都以 ScimError 抛出，由 API 层渲染为错误信封。
"""

import uuid

import structlog

from .config import ScimConfig
from .filters import build_predicate
from .mapper import USER_EXISTS, UserMapper
from .models import PatchOperation, ScimError, UserRecord
from .responses import wrap_error, wrap_list
from .store import DuplicateRecordError, UserStore

logger = structlog.get_logger(__name__)

GUID_ATTEMPTS = 5


def new_guid() -> str:
    """大写 UUID，例: 3F2504E0-4F89-11D3-9A0C-0305E82C3301"""
    return str(uuid.uuid4()).upper()


def user_not_found(external_id: str) -> ScimError:
    return ScimError(404, "notfound", f"User {external_id} not found")


class ProvisioningService:
    """
    User 资源操作

    Args:
        config: 服务配置
        store: User Store
    """

    def __init__(self, config: ScimConfig, store: UserStore, mapper: UserMapper | None = None):
        self.config = config
        self.store = store
        self.mapper = mapper or UserMapper(config, store)

    # ============ 内部方法 ============

    def _load(self, external_id: str, organization: str | None = None) -> UserRecord:
        record = self.store.get(external_id)
        if record is None:
            raise user_not_found(external_id)
        if organization is not None and record.organization != organization:
            logger.info("scim_user_forbidden", external_id=external_id, organization=organization)
            raise ScimError(403, "forbidden", "Operation is not permitted based on the supplied authorization.")
        return record

    def _allocate_guid(self) -> str:
        for _ in range(GUID_ATTEMPTS):
            guid = new_guid()
            if not self.store.exists(guid):
                return guid
            logger.warning("scim_guid_collision", guid=guid)
        raise ScimError(500, "internalError", "Unable to allocate a unique user identifier")

    def _save(self, record: UserRecord, previous_username: str | None = None) -> UserRecord:
        """唯一性检查 + 写入，并发下的冲突由 Store 报告"""
        self.mapper.ensure_unique_username(record, previous_username)
        try:
            if record.id is None:
                return self.store.insert(record)
            return self.store.update(record)
        except DuplicateRecordError as e:
            logger.info("scim_user_duplicate", field=e.field)
            raise ScimError(409, "uniqueness", USER_EXISTS) from e

    # ============ 操作 ============

    def list_users(self, raw_filter: str | None, organization: str | None = None) -> dict:
        """
        GET /Users?filter=...

        没有 filter 时返回空列表
        """
        predicate = build_predicate(raw_filter)
        if predicate is None:
            return wrap_list([])

        records = self.store.query(predicate, self.config.max_results, organization)
        logger.info("scim_users_listed", filter=raw_filter, count=len(records))
        return wrap_list([self.mapper.encode(r, include_schemas=False) for r in records])

    def get_user(self, external_id: str, organization: str | None = None) -> dict:
        return self.mapper.encode(self._load(external_id, organization))

    def create_user(self, document: dict, organization: str | None = None) -> dict:
        result = self.mapper.decode_resource(document)
        result.raise_for_errors()

        record = result.record
        record.organization = organization
        record.external_id = self._allocate_guid()
        saved = self._save(record)
        logger.info("scim_user_created", external_id=saved.external_id, username=saved.username)
        return self.mapper.encode(saved, country_names=True)

    def replace_user(self, external_id: str, document: dict, organization: str | None = None) -> dict:
        existing = self._load(external_id, organization)
        result = self.mapper.decode_resource(document, existing)
        result.raise_for_errors()

        saved = self._save(result.record, existing.username)
        logger.info("scim_user_replaced", external_id=external_id)
        return self.mapper.encode(saved, country_names=True)

    def patch_user(
        self,
        external_id: str,
        operations: list[PatchOperation],
        organization: str | None = None,
    ) -> dict:
        existing = self._load(external_id, organization)
        result = self.mapper.decode_patch(operations, existing)
        result.raise_for_errors()
        if result.record == existing:
            return self.mapper.encode(existing, country_names=True)

        saved = self._save(result.record, existing.username)
        logger.info("scim_user_patched", external_id=external_id, operations=len(operations))
        return self.mapper.encode(saved, country_names=True)

    def deactivate_user(self, external_id: str, organization: str | None = None) -> dict:
        """
        DELETE /Users/{id}

        只停用不删除；成功时返回 204 + 错误信封 (nocontent)
        """
        record = self._load(external_id, organization)
        if not record.suspended:
            record.suspended = True
            self.store.update(record)
        logger.info("scim_user_deactivated", external_id=external_id)
        return wrap_error("No content", "nocontent", 204)
