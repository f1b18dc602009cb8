"""
SCIM REST API (FastAPI)

路由 (前缀 = base_path + /v2):
- POST   /token                      签发 token (不需要认证)
- GET    /ServiceProviderConfig
- GET    /Schemas, /Schemas/{urn}
- GET    /Users?filter=...
- GET    /Users/{id}
- POST   /Users
- PUT    /Users/{id}
- PATCH  /Users/{id}
- DELETE /Users/{id}                 停用用户

除 /token 外都需要 Bearer token。所有错误都以 SCIM 错误信封返回，
Content-Type 为 application/scim+json。
"""

import json
from typing import Any
from urllib.parse import parse_qsl

import structlog
from fastapi import APIRouter, Depends, FastAPI, Request
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse
from pydantic import BaseModel, ConfigDict, ValidationError
from starlette.concurrency import run_in_threadpool
from starlette.exceptions import HTTPException as StarletteHTTPException

from .auth import (
    TokenAuthority,
    TokenAuthorityError,
    TokenInfo,
    build_authority,
    extract_bearer_token,
    get_authorization_header,
    parse_basic_credentials,
)
from .config import ScimConfig
from .models import (
    CUSTOM_USER_SCHEMA,
    ENTERPRISE_USER_SCHEMA,
    USER_SCHEMA,
    PatchOperation,
    ScimError,
)
from .responses import ResponseKind, error_response, no_content_response, scim_response, wrap_resource
from .schemas import get_schema, get_schemas, get_service_provider_config
from .service import ProvisioningService
from .store import DuplicateRecordError, UserStore, UserStoreError, build_store

logger = structlog.get_logger(__name__)

BAD_REQUEST = "Request is unparsable, syntactically incorrect, or violates schema."
UNAUTHORIZED = "Authorization failure. The authorization header is invalid or missing."

SCHEMA_KINDS = {
    USER_SCHEMA: ResponseKind.USER_SCHEMA,
    ENTERPRISE_USER_SCHEMA: ResponseKind.ENTERPRISE_SCHEMA,
    CUSTOM_USER_SCHEMA: ResponseKind.CUSTOM_SCHEMA,
}


# ========== 请求模型 ==========

class PatchOperationModel(BaseModel):
    model_config = ConfigDict(extra="allow")

    op: str
    path: str | None = None
    value: Any = None


class PatchRequest(BaseModel):
    model_config = ConfigDict(extra="allow")

    schemas: list[str] = []
    Operations: list[PatchOperationModel]

    def operations(self) -> list[PatchOperation]:
        return [PatchOperation.from_dict(o.model_dump()) for o in self.Operations]


# ========== 依赖 ==========

def get_service(request: Request) -> ProvisioningService:
    return request.app.state.service


def get_authority(request: Request) -> TokenAuthority:
    return request.app.state.authority


async def require_token(request: Request, authority: TokenAuthority = Depends(get_authority)) -> TokenInfo:
    """
    校验 Bearer token，失败返回 401 unauthorized

    在请求的上下文中运行，绑定的 client_id 对之后的处理函数日志可见
    """
    token = extract_bearer_token(request.headers)
    if not token:
        logger.info("scim_token_missing")
        raise ScimError(401, "unauthorized", UNAUTHORIZED)
    try:
        info = await run_in_threadpool(authority.verify_token, token)
    except TokenAuthorityError as e:
        logger.info("scim_token_rejected", error=e.error)
        raise ScimError(401, "unauthorized", e.description)
    structlog.contextvars.bind_contextvars(client_id=info.client_id)
    return info


async def json_body(request: Request) -> dict:
    """请求体必须是 JSON 对象，否则 400 badrequest"""
    raw = await request.body()
    try:
        body = json.loads(raw)
    except ValueError:
        raise ScimError(400, "badrequest", BAD_REQUEST)
    if not isinstance(body, dict):
        raise ScimError(400, "badrequest", BAD_REQUEST)
    return body


async def token_form(request: Request) -> dict:
    """token 请求参数：表单或 JSON，客户端凭据也可以放在 Basic 头中"""
    raw = (await request.body()).decode("utf-8", errors="replace")
    content_type = request.headers.get("content-type", "")
    if "json" in content_type:
        try:
            data = json.loads(raw or "{}")
        except ValueError:
            data = {}
        form = data if isinstance(data, dict) else {}
    else:
        form = dict(parse_qsl(raw))

    basic = parse_basic_credentials(get_authorization_header(request.headers))
    if basic and not form.get("client_id"):
        form["client_id"], form["client_secret"] = basic
    return form


# ========== 异常处理 ==========

def register_error_handlers(app: FastAPI) -> None:

    @app.exception_handler(ScimError)
    async def scim_error_handler(request: Request, exc: ScimError):
        if exc.status >= 500:
            logger.error("scim_error", status=exc.status, scim_type=exc.scim_type, detail=exc.detail)
        else:
            logger.info("scim_error", status=exc.status, scim_type=exc.scim_type)
        return error_response(exc)

    @app.exception_handler(StarletteHTTPException)
    async def http_error_handler(request: Request, exc: StarletteHTTPException):
        if exc.status_code == 404:
            return error_response(ScimError(404, "notfound", "Invalid request uri."))
        if exc.status_code == 405:
            return error_response(ScimError(405, "notallowed", "Method not allowed."))
        detail = exc.detail if isinstance(exc.detail, str) else str(exc.detail)
        return error_response(ScimError(exc.status_code, "error", detail))

    @app.exception_handler(RequestValidationError)
    async def validation_error_handler(request: Request, exc: RequestValidationError):
        errors = exc.errors()
        if any(err.get("type") == "json_invalid" for err in errors):
            return error_response(ScimError(400, "badrequest", BAD_REQUEST))
        parts = []
        for err in errors:
            loc = ".".join(str(segment) for segment in err.get("loc", []))
            msg = err.get("msg", "validation error")
            parts.append(f"{loc}: {msg}" if loc else msg)
        return error_response(ScimError(400, "invalidSyntax", "\n".join(parts) or BAD_REQUEST))

    @app.exception_handler(DuplicateRecordError)
    async def duplicate_handler(request: Request, exc: DuplicateRecordError):
        return error_response(ScimError(409, "uniqueness", "User already exists."))

    @app.exception_handler(UserStoreError)
    async def store_error_handler(request: Request, exc: UserStoreError):
        logger.error("user_store_failed", error=str(exc))
        return error_response(ScimError(500, "internalError", "User store failure."))

    @app.exception_handler(TokenAuthorityError)
    async def authority_error_handler(request: Request, exc: TokenAuthorityError):
        return error_response(ScimError(401, "unauthorized", exc.description))


# ========== 路由 ==========

def build_router(config: ScimConfig) -> APIRouter:
    router = APIRouter(prefix=f"{config.route_prefix}/v2")

    @router.post("/token")
    def issue_token(
        form: dict = Depends(token_form),
        authority: TokenAuthority = Depends(get_authority),
    ):
        """OAuth2 client_credentials"""
        headers = {"Cache-Control": "no-store", "Pragma": "no-cache"}
        try:
            return JSONResponse(authority.issue_token(form), headers=headers)
        except TokenAuthorityError as e:
            return JSONResponse(e.to_dict(), status_code=e.status, headers=headers)

    # ---------- discovery ----------

    @router.get("/ServiceProviderConfig")
    def service_provider_config(token: TokenInfo = Depends(require_token)):
        body = get_service_provider_config(config)
        return scim_response(wrap_resource(ResponseKind.SERVICE_CONFIG, body))

    @router.get("/Schemas")
    def list_schemas(token: TokenInfo = Depends(require_token)):
        resources = get_schemas(config)
        return scim_response(wrap_resource(ResponseKind.SCHEMAS, {
            "Resources": resources,
            "totalResults": len(resources),
        }))

    @router.get("/Schemas/{urn}")
    def get_schema_by_urn(urn: str, token: TokenInfo = Depends(require_token)):
        schema = get_schema(config, urn)
        if schema is None:
            raise ScimError(404, "notfound", f"Schema {urn} not found")
        return scim_response(wrap_resource(SCHEMA_KINDS[urn], schema))

    # ---------- Users ----------

    @router.get("/Users")
    def list_users(
        request: Request,
        token: TokenInfo = Depends(require_token),
        service: ProvisioningService = Depends(get_service),
    ):
        raw_filter = request.query_params.get("filter")
        return scim_response(service.list_users(raw_filter, token.organization))

    @router.get("/Users/{external_id}")
    def get_user(
        external_id: str,
        token: TokenInfo = Depends(require_token),
        service: ProvisioningService = Depends(get_service),
    ):
        return scim_response(service.get_user(external_id, token.organization))

    @router.post("/Users")
    def create_user(
        token: TokenInfo = Depends(require_token),
        body: dict = Depends(json_body),
        service: ProvisioningService = Depends(get_service),
    ):
        return scim_response(service.create_user(body, token.organization), 201)

    @router.put("/Users/{external_id}")
    def replace_user(
        external_id: str,
        token: TokenInfo = Depends(require_token),
        body: dict = Depends(json_body),
        service: ProvisioningService = Depends(get_service),
    ):
        return scim_response(service.replace_user(external_id, body, token.organization))

    @router.patch("/Users/{external_id}")
    def patch_user(
        external_id: str,
        token: TokenInfo = Depends(require_token),
        body: dict = Depends(json_body),
        service: ProvisioningService = Depends(get_service),
    ):
        try:
            request = PatchRequest.model_validate(body)
        except ValidationError as e:
            detail = "\n".join(
                f"{'.'.join(str(s) for s in err['loc'])}: {err['msg']}" for err in e.errors()
            )
            raise ScimError(400, "invalidSyntax", detail)
        return scim_response(service.patch_user(external_id, request.operations(), token.organization))

    @router.delete("/Users/{external_id}")
    def deactivate_user(
        external_id: str,
        token: TokenInfo = Depends(require_token),
        service: ProvisioningService = Depends(get_service),
    ):
        # nocontent 信封不随 204 发送，uvicorn 拒绝带响应体的 204
        return no_content_response(service.deactivate_user(external_id, token.organization))

    return router


def create_app(
    config: ScimConfig,
    store: UserStore | None = None,
    authority: TokenAuthority | None = None,
) -> FastAPI:
    """
    构建 FastAPI 应用

    Args:
        config: 服务配置
        store: User Store，默认按 store_path 选择
        authority: Token Authority，默认按 authority_url 选择
    """
    store = store if store is not None else build_store(config.store_path)
    authority = authority if authority is not None else build_authority(config)

    app = FastAPI(title="SCIM User Provisioning", version="1.0.0")
    app.state.config = config
    app.state.store = store
    app.state.authority = authority
    app.state.service = ProvisioningService(config, store)

    @app.middleware("http")
    async def bind_request_context(request: Request, call_next):
        structlog.contextvars.clear_contextvars()
        structlog.contextvars.bind_contextvars(method=request.method, path=request.url.path)
        return await call_next(request)

    register_error_handlers(app)
    app.include_router(build_router(config))
    return app
