"""
SCIM User Provisioning

SCIM 2.0 用户开通服务端：discovery、User 增删改查、filter 查询。
"""

from .models import (
    UserRecord,
    SCIMName,
    SCIMEmail,
    SCIMAddress,
    SCIMManager,
    ScimError,
    PatchOperation,
    PatchOpType,
    ValidationResult,
)

from .config import ScimConfig, TokenClient, load_config
from .store import UserStore, MemoryUserStore, JsonFileUserStore, UserStoreError, DuplicateRecordError
from .auth import TokenAuthority, LocalTokenAuthority, RemoteTokenAuthority, TokenAuthorityError, TokenInfo
from .filters import FilterExpression, StorePredicate, parse_filter, build_predicate
from .paths import ScimPath, parse_path
from .mapper import UserMapper
from .service import ProvisioningService
from .api import create_app

__all__ = [
    # Models
    "UserRecord",
    "SCIMName",
    "SCIMEmail",
    "SCIMAddress",
    "SCIMManager",
    "ScimError",
    "PatchOperation",
    "PatchOpType",
    "ValidationResult",
    # Config
    "ScimConfig",
    "TokenClient",
    "load_config",
    # Store
    "UserStore",
    "MemoryUserStore",
    "JsonFileUserStore",
    "UserStoreError",
    "DuplicateRecordError",
    # Auth
    "TokenAuthority",
    "LocalTokenAuthority",
    "RemoteTokenAuthority",
    "TokenAuthorityError",
    "TokenInfo",
    # Filter / Path
    "FilterExpression",
    "StorePredicate",
    "parse_filter",
    "build_predicate",
    "ScimPath",
    "parse_path",
    # Service
    "UserMapper",
    "ProvisioningService",
    "create_app",
]
