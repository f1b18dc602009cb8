"""
Token Authority

OAuth2 bearer token 的签发与校验：
- LocalTokenAuthority: client_credentials 授权，客户端来自配置文件
- RemoteTokenAuthority: 转发到外部授权服务 (token + RFC 7662 introspection)
"""

import base64
import binascii
import re
import secrets
import threading
import time
from abc import ABC, abstractmethod
from dataclasses import dataclass
from typing import Mapping

import structlog
from httpx import Client, HTTPError, Response

from .config import ScimConfig, TokenClient

logger = structlog.get_logger(__name__)

# 按顺序查找，包括反向代理转发的头
AUTHORIZATION_HEADERS = (
    "authorization",
    "x-forwarded-authorization",
    "x-original-authorization",
    "http_authorization",
)

_BEARER_RE = re.compile(r"Bearer\s(\S+)")


@dataclass
class TokenInfo:
    """已校验的 token"""
    client_id: str
    organization: str | None = None
    expires_at: float | None = None

    @property
    def expired(self) -> bool:
        return self.expires_at is not None and self.expires_at <= time.time()


class TokenAuthorityError(Exception):
    """
    Token 签发/校验失败

    error 为 OAuth2 错误码 (invalid_client, invalid_token, ...)
    """
    def __init__(self, error: str, description: str, status: int = 400):
        super().__init__(description)
        self.error = error
        self.description = description
        self.status = status

    def to_dict(self) -> dict:
        return {"error": self.error, "error_description": self.description}


# ============ 请求头工具 ============

def get_authorization_header(headers: Mapping[str, str]) -> str | None:
    """大小写不敏感地查找 Authorization 头"""
    normalized = {str(k).lower(): v for k, v in headers.items()}
    for name in AUTHORIZATION_HEADERS:
        value = normalized.get(name)
        if value:
            return value.strip()
    return None


def extract_bearer_token(headers: Mapping[str, str]) -> str | None:
    header = get_authorization_header(headers)
    if not header:
        return None
    match = _BEARER_RE.search(header)
    return match.group(1) if match else None


def parse_basic_credentials(header: str | None) -> tuple[str, str] | None:
    """解析 HTTP Basic 头，返回 (client_id, client_secret)"""
    if not header or not header.lower().startswith("basic "):
        return None
    try:
        decoded = base64.b64decode(header[6:].strip(), validate=True).decode("utf-8")
    except (binascii.Error, UnicodeDecodeError):
        return None
    client_id, sep, client_secret = decoded.partition(":")
    if not sep:
        return None
    return client_id, client_secret


def generate_client_id() -> str:
    return secrets.token_hex(10)


def generate_client_secret() -> str:
    """48 位十六进制"""
    return secrets.token_hex(24)


# ============ 接口 ============

class TokenAuthority(ABC):

    @abstractmethod
    def issue_token(self, form: dict) -> dict:
        """
        处理 token 请求

        Args:
            form: 表单参数 (grant_type, client_id, client_secret, ...)

        Returns:
            OAuth2 token 响应

        Raises:
            TokenAuthorityError
        """

    @abstractmethod
    def verify_token(self, token: str) -> TokenInfo:
        """
        Raises:
            TokenAuthorityError: token 无效或已过期
        """

    def close(self):
        pass


class LocalTokenAuthority(TokenAuthority):
    """
    本地 client_credentials 授权

    token 保存在内存中，进程重启后失效
    """

    def __init__(self, clients: tuple[TokenClient, ...] | list[TokenClient], lifetime: int):
        self.clients = {c.client_id: c for c in clients}
        self.lifetime = lifetime
        self._tokens: dict[str, TokenInfo] = {}
        self._lock = threading.Lock()

    def issue_token(self, form: dict) -> dict:
        grant_type = form.get("grant_type")
        if not grant_type:
            raise TokenAuthorityError("invalid_request", "The grant type was not specified in the request")
        if grant_type != "client_credentials":
            raise TokenAuthorityError("unsupported_grant_type", f'Grant type "{grant_type}" not supported')

        client_id = str(form.get("client_id") or "")
        client_secret = str(form.get("client_secret") or "")
        if not client_id or not client_secret:
            raise TokenAuthorityError("invalid_client", "Client credentials were not found", 400)

        client = self.clients.get(client_id)
        if client is None or not secrets.compare_digest(client.client_secret.encode(), client_secret.encode()):
            logger.info("scim_token_rejected", client_id=client_id, reason="invalid_client")
            raise TokenAuthorityError("invalid_client", "The client credentials are invalid", 401)

        token = secrets.token_hex(20)
        info = TokenInfo(
            client_id=client.client_id,
            organization=client.organization,
            expires_at=time.time() + self.lifetime,
        )
        with self._lock:
            self._purge_expired()
            self._tokens[token] = info
        logger.info("scim_token_issued", client_id=client.client_id)
        return {
            "access_token": token,
            "expires_in": self.lifetime,
            "token_type": "Bearer",
            "scope": None,
        }

    def _purge_expired(self) -> None:
        expired = [t for t, info in self._tokens.items() if info.expired]
        for t in expired:
            del self._tokens[t]

    def verify_token(self, token: str) -> TokenInfo:
        with self._lock:
            info = self._tokens.get(token)
            if info is not None and info.expired:
                del self._tokens[token]
                info = None
        if info is None:
            raise TokenAuthorityError("invalid_token", "The access token provided is invalid", 401)
        return info


class RemoteTokenAuthority(TokenAuthority):
    """
    外部授权服务

    - POST {authority_url}/token: 原样转发 token 请求
    - POST {authority_url}/introspect: 校验 token，active 必须为 true
    """

    def __init__(
        self,
        url: str,
        client_id: str | None = None,
        client_secret: str | None = None,
        timeout: float = 10.0,
        transport=None,
    ):
        auth = (client_id, client_secret) if client_id and client_secret else None
        self.client = Client(
            base_url=url.rstrip("/"),
            auth=auth,
            timeout=timeout,
            transport=transport,
        )

    def close(self):
        self.client.close()

    def __enter__(self):
        return self

    def __exit__(self, *args):
        self.close()

    def _json(self, resp: Response) -> dict:
        try:
            data = resp.json()
        except ValueError:
            data = None
        return data if isinstance(data, dict) else {}

    def issue_token(self, form: dict) -> dict:
        try:
            resp = self.client.post("/token", data=form)
        except HTTPError as e:
            logger.warning("scim_authority_unreachable", error=str(e))
            raise TokenAuthorityError("temporarily_unavailable", "Token authority unavailable", 503) from e

        data = self._json(resp)
        if resp.status_code != 200:
            raise TokenAuthorityError(
                data.get("error", "invalid_request"),
                data.get("error_description", f"Token authority returned {resp.status_code}"),
                resp.status_code,
            )
        return data

    def verify_token(self, token: str) -> TokenInfo:
        try:
            resp = self.client.post("/introspect", data={"token": token})
        except HTTPError as e:
            logger.warning("scim_authority_unreachable", error=str(e))
            raise TokenAuthorityError("invalid_token", "Token authority unavailable", 401) from e

        data = self._json(resp)
        if resp.status_code != 200 or data.get("active") is not True:
            raise TokenAuthorityError("invalid_token", "The access token provided is invalid", 401)
        return TokenInfo(
            client_id=data.get("client_id", ""),
            organization=data.get("organization"),
            expires_at=data.get("exp"),
        )


def build_authority(config: ScimConfig, transport=None) -> TokenAuthority:
    """authority_url 配置时使用远程授权服务，否则使用本地客户端列表"""
    if config.authority_url:
        return RemoteTokenAuthority(
            config.authority_url,
            config.authority_client_id,
            config.authority_client_secret,
            timeout=config.authority_timeout,
            transport=transport,
        )
    return LocalTokenAuthority(config.clients, config.token_lifetime)
