"""
服务配置

从 scim-config.json 加载，启动时构建一次，之后只读共享给所有组件。
"""

import json
import os
from pathlib import Path
from typing import Literal

from pydantic import BaseModel, ConfigDict, Field

DEFAULT_CONFIG_PATH = "scim-config.json"


class TokenClient(BaseModel):
    """OAuth2 client_credentials 客户端"""
    model_config = ConfigDict(frozen=True, extra="forbid")

    client_id: str = Field(min_length=1)
    client_secret: str = Field(min_length=1)
    organization: str | None = None


class ScimConfig(BaseModel):
    """
    不可变配置对象

    discovery 时间戳、schema 版本、base URL 等都在这里，构建后不可修改。
    """
    model_config = ConfigDict(frozen=True, extra="forbid")

    base_url: str = "http://localhost:8000"
    base_path: str = "/scim"
    auth_scheme: Literal["oauthbearertoken", "httpbasic"] = "oauthbearertoken"
    max_results: int = Field(default=100, ge=1)

    schema_version: str = "v2"
    schema_created: str = "2021-01-27T12:00:00Z"
    schema_modified: str = "2021-01-27T12:00:00Z"

    # 外部开通的用户一律使用该认证方式
    default_auth: str = "saml2"
    supported_auths: tuple[str, ...] = ("manual", "saml2")

    clients: tuple[TokenClient, ...] = ()
    token_lifetime: int = Field(default=3155760000, ge=1)

    # 远程 Token Authority (可选)
    authority_url: str | None = None
    authority_client_id: str | None = None
    authority_client_secret: str | None = None
    authority_timeout: float = 10.0

    store_path: str | None = None

    log_level: str = "INFO"
    log_json: bool = False

    @property
    def api_root(self) -> str:
        """例: http://localhost:8000/scim/v2"""
        return f"{self.base_url.rstrip('/')}{self.route_prefix}/{self.schema_version}"

    @property
    def route_prefix(self) -> str:
        path = self.base_path.strip("/")
        return f"/{path}" if path else ""

    def schema_location(self, urn: str) -> str:
        return f"{self.api_root}/Schemas/{urn}"

    def user_location(self, external_id: str) -> str:
        return f"{self.api_root}/Users/{external_id}"


def load_config(path: str | None = None) -> ScimConfig:
    """
    加载配置文件

    Args:
        path: 配置文件路径，默认读取环境变量 SCIM_CONFIG，再退回 scim-config.json

    Raises:
        RuntimeError: 文件不存在
        pydantic.ValidationError: 内容不合法
    """
    path = Path(path or os.environ.get("SCIM_CONFIG") or DEFAULT_CONFIG_PATH)
    if not path.exists():
        raise RuntimeError(f"{path} 不存在")
    with open(path, 'r', encoding='utf-8') as f:
        return ScimConfig.model_validate(json.load(f))
