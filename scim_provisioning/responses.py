"""
SCIM 响应信封

每种响应类型对应固定的 schemas 列表 (ResponseKind 表)，未知类型退回
"urn:ietf:params:scim:api:messages:2.0:" + 类型名，不会抛异常。
所有响应的 Content-Type 都是 application/scim+json。
"""

from enum import Enum

from fastapi.responses import JSONResponse, Response

from .models import (
    CUSTOM_USER_SCHEMA,
    ENTERPRISE_USER_SCHEMA,
    ERROR_URN,
    LIST_RESPONSE_URN,
    SCIM_MESSAGES_URN,
    SERVICE_CONFIG_URN,
    USER_RESOURCE_SCHEMAS,
    USER_SCHEMA,
    ScimError,
)

SCIM_MEDIA_TYPE = "application/scim+json"


class ResponseKind(str, Enum):
    """响应类型"""
    ERROR = "Error"
    USER = "User"
    LIST = "ListResponse"
    SCHEMAS = "Schemas"
    SERVICE_CONFIG = "ServiceConfig"
    USER_SCHEMA = "UserSchema"
    ENTERPRISE_SCHEMA = "UserEnterpriseSchema"
    CUSTOM_SCHEMA = "UserCustomSchema"


RESPONSE_SCHEMAS: dict[ResponseKind, tuple[str, ...]] = {
    ResponseKind.ERROR: (ERROR_URN,),
    ResponseKind.USER: USER_RESOURCE_SCHEMAS,
    ResponseKind.LIST: (LIST_RESPONSE_URN,),
    ResponseKind.SCHEMAS: (LIST_RESPONSE_URN,),
    ResponseKind.SERVICE_CONFIG: (SERVICE_CONFIG_URN,),
    ResponseKind.USER_SCHEMA: (USER_SCHEMA,),
    ResponseKind.ENTERPRISE_SCHEMA: (ENTERPRISE_USER_SCHEMA,),
    ResponseKind.CUSTOM_SCHEMA: (CUSTOM_USER_SCHEMA,),
}


class ScimResponse(JSONResponse):
    media_type = SCIM_MEDIA_TYPE


def schemas_for(kind: ResponseKind | str) -> list[str]:
    """响应类型 -> schemas 列表"""
    try:
        kind = ResponseKind(kind)
    except ValueError:
        return [SCIM_MESSAGES_URN + str(kind)]
    return list(RESPONSE_SCHEMAS[kind])


def wrap_resource(kind: ResponseKind | str, body: dict) -> dict:
    """schemas + 资源字段合并为一个对象"""
    return {"schemas": schemas_for(kind), **body}


def wrap_list(resources: list[dict]) -> dict:
    """
    列表响应

    上游查询已经限制了结果数量，这里不再分页
    """
    return wrap_resource(ResponseKind.LIST, {
        "Resources": list(resources),
        "totalResults": len(resources),
    })


def wrap_error(message: str, scim_type: str, status: int) -> dict:
    return wrap_resource(ResponseKind.ERROR, {
        "status": status,
        "scimType": scim_type,
        "detail": message,
    })


def scim_response(document: dict, status: int = 200, headers: dict | None = None) -> ScimResponse:
    return ScimResponse(content=document, status_code=status, headers=headers)


def no_content_response(document: dict) -> Response:
    """
    204 响应

    document 是 nocontent 错误信封；HTTP 不允许 204 携带响应体，
    服务器会丢弃它，这里只保留状态码和 Content-Type。
    """
    return Response(status_code=document.get("status", 204), media_type=SCIM_MEDIA_TYPE)


def error_response(exc: ScimError) -> ScimResponse:
    headers = {"WWW-Authenticate": "Bearer"} if exc.status == 401 else None
    return scim_response(wrap_error(exc.detail, exc.scim_type, exc.status), exc.status, headers)
