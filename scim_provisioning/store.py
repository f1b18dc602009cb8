"""
User Store

用户目录的窄接口：按 external_id / username 查询、filter 查询、插入、更新。
核心代码不做加锁，唯一性和原子性由 Store 保证：
- username / email / external_id 唯一 (包括停用的用户)
- insert / update 在锁内重新检查唯一性，冲突时抛 DuplicateRecordError
- 返回的记录都是副本，修改后需要 update() 才会生效
"""

import json
import threading
from abc import ABC, abstractmethod
from dataclasses import replace
from pathlib import Path

import structlog

from .filters import StorePredicate
from .models import UserRecord, utcnow

logger = structlog.get_logger(__name__)

# 唯一字段，比较时不区分大小写
UNIQUE_FIELDS = ("username", "email", "external_id")


class UserStoreError(Exception):
    """User Store 错误"""


class DuplicateRecordError(UserStoreError):
    """唯一字段冲突"""
    def __init__(self, field: str, value: str | None = None):
        super().__init__(f"Duplicate {field}: {value}")
        self.field = field
        self.value = value


class UserStore(ABC):
    """User Store 接口"""

    @abstractmethod
    def get(self, external_id: str) -> UserRecord | None:
        ...

    @abstractmethod
    def get_by_username(self, username: str) -> UserRecord | None:
        ...

    def exists(self, external_id: str) -> bool:
        return self.get(external_id) is not None

    @abstractmethod
    def query(
        self,
        predicate: StorePredicate,
        limit: int,
        organization: str | None = None,
    ) -> list[UserRecord]:
        """
        按谓词查询，按内部 id 排序，最多返回 limit 条

        organization 不为空时只返回该组织的记录
        """
        ...

    @abstractmethod
    def insert(self, record: UserRecord) -> UserRecord:
        ...

    @abstractmethod
    def update(self, record: UserRecord) -> UserRecord:
        ...

    def all(self) -> list[UserRecord]:
        return []


class MemoryUserStore(UserStore):
    """内存实现，进程内共享，所有访问都在同一把锁内"""

    def __init__(self, records: list[UserRecord] | None = None):
        self._lock = threading.Lock()
        self._records: dict[int, UserRecord] = {}
        self._next_id = 1
        for record in records or []:
            self.insert(record)

    # ============ 内部方法 (调用方持有锁) ============

    def _find(self, field: str, value: str | None) -> UserRecord | None:
        if not value:
            return None
        value = value.casefold()
        for record in self._records.values():
            current = getattr(record, field)
            if current and current.casefold() == value:
                return record
        return None

    def _check_unique(self, record: UserRecord) -> None:
        for field in UNIQUE_FIELDS:
            other = self._find(field, getattr(record, field))
            if other is not None and other.id != record.id:
                raise DuplicateRecordError(field, getattr(record, field))

    def _saved(self) -> None:
        """写入后的钩子"""

    # ============ 接口实现 ============

    def get(self, external_id: str) -> UserRecord | None:
        with self._lock:
            record = self._find("external_id", external_id)
            return replace(record) if record else None

    def get_by_username(self, username: str) -> UserRecord | None:
        with self._lock:
            record = self._find("username", username)
            return replace(record) if record else None

    def query(
        self,
        predicate: StorePredicate,
        limit: int,
        organization: str | None = None,
    ) -> list[UserRecord]:
        results = []
        with self._lock:
            for record_id in sorted(self._records):
                record = self._records[record_id]
                if organization is not None and record.organization != organization:
                    continue
                if not predicate.matches(getattr(record, predicate.field)):
                    continue
                results.append(replace(record))
                if len(results) >= limit:
                    break
        return results

    def insert(self, record: UserRecord) -> UserRecord:
        with self._lock:
            record = replace(record, id=None)
            self._check_unique(record)
            now = utcnow()
            record.id = self._next_id
            record.created = record.created or now
            record.modified = now
            self._records[record.id] = record
            try:
                self._saved()
            except UserStoreError:
                del self._records[record.id]
                raise
            self._next_id += 1
            logger.debug("user_store_insert", id=record.id, external_id=record.external_id)
            return replace(record)

    def update(self, record: UserRecord) -> UserRecord:
        with self._lock:
            if record.id not in self._records:
                raise UserStoreError(f"Record {record.id} does not exist")
            stored = self._records[record.id]
            record = replace(record, created=stored.created, modified=utcnow())
            self._check_unique(record)
            self._records[record.id] = record
            try:
                self._saved()
            except UserStoreError:
                self._records[record.id] = stored
                raise
            logger.debug("user_store_update", id=record.id, external_id=record.external_id)
            return replace(record)

    def all(self) -> list[UserRecord]:
        with self._lock:
            return [replace(self._records[i]) for i in sorted(self._records)]


class JsonFileUserStore(MemoryUserStore):
    """
    JSON 文件实现

    启动时加载，每次写入后整体写回文件
    """

    def __init__(self, path: str | Path):
        self.path = Path(path)
        super().__init__()
        if self.path.exists():
            self._load()

    def _load(self) -> None:
        try:
            with open(self.path, 'r', encoding='utf-8') as f:
                data = json.load(f)
        except (OSError, json.JSONDecodeError) as e:
            raise UserStoreError(f"Cannot load {self.path}: {e}") from e

        with self._lock:
            for item in data.get("users", []):
                record = UserRecord.from_dict(item)
                self._records[record.id] = record
            self._next_id = max(self._records, default=0) + 1
        logger.info("user_store_loaded", path=str(self.path), count=len(self._records))

    def _saved(self) -> None:
        data = {"users": [self._records[i].to_dict() for i in sorted(self._records)]}
        tmp = self.path.with_suffix(self.path.suffix + ".tmp")
        try:
            self.path.parent.mkdir(parents=True, exist_ok=True)
            with open(tmp, 'w', encoding='utf-8') as f:
                json.dump(data, f, indent=2, ensure_ascii=False)
            tmp.replace(self.path)
        except OSError as e:
            raise UserStoreError(f"Cannot write {self.path}: {e}") from e


def build_store(store_path: str | None) -> UserStore:
    """根据配置选择实现"""
    if store_path:
        return JsonFileUserStore(store_path)
    return MemoryUserStore()
