"""
SCIM 路径表达式解析 (RFC 7644 §3.5.2)

支持:
- 简单路径: "userName", "name.givenName"
- 带值过滤器: 'emails[type eq "work"].value'
- 扩展命名空间: "urn:ietf:params:scim:schemas:extension:enterprise:2.0:User:department"
"""

import re
from dataclasses import dataclass

from .models import CUSTOM_USER_SCHEMA, ENTERPRISE_USER_SCHEMA, USER_SCHEMA

KNOWN_NAMESPACES = (USER_SCHEMA, ENTERPRISE_USER_SCHEMA, CUSTOM_USER_SCHEMA)

_URN_PATH_RE = re.compile(r"^(urn:.+):([^:.\[\]]+(?:\[[^\]]*\])?(?:\.[^:.\[\]]+)?)$", re.IGNORECASE)
_ATTR_PATH_RE = re.compile(
    r"^(?P<attr>[A-Za-z$][\w$-]*)"
    r"(?:\[(?P<filter>[^\]]+)\])?"
    r"(?:\.(?P<sub>[A-Za-z$][\w$-]*))?$"
)
_VALUE_FILTER_RE = re.compile(r'^\s*(\w+)\s+(\w+)\s+"([^"]*)"\s*$')


@dataclass(frozen=True)
class ValueFilter:
    """值过滤器，例: type eq "work" """
    attr: str
    op: str
    value: str

    def __str__(self) -> str:
        return f'{self.attr} {self.op} "{self.value}"'


@dataclass(frozen=True)
class ScimPath:
    """解析后的路径"""
    attribute: str
    namespace: str | None = None
    sub_attribute: str | None = None
    value_filter: ValueFilter | None = None

    @property
    def key(self) -> str:
        """
        规范化的路径字符串，用作映射表的键

        属性名大小写不敏感；core User 命名空间等同于无命名空间
        """
        s = self.attribute.lower()
        if self.value_filter is not None:
            vf = self.value_filter
            s += f'[{vf.attr.lower()} {vf.op.lower()} "{vf.value}"]'
        if self.sub_attribute:
            s += f".{self.sub_attribute.lower()}"
        if self.namespace and self.namespace.lower() != USER_SCHEMA.lower():
            s = f"{self.namespace.lower()}:{s}"
        return s


def parse_value_filter(expr: str) -> ValueFilter:
    """
    解析值过滤器

    Raises:
        ValueError: 不是 `attr op "value"` 形式
    """
    match = _VALUE_FILTER_RE.match(expr)
    if not match:
        raise ValueError(f"Invalid value filter: {expr}")
    return ValueFilter(attr=match.group(1), op=match.group(2), value=match.group(3))


def _split_namespace(path: str) -> tuple[str | None, str]:
    # 已知命名空间优先，URN 本身包含冒号和点号
    for urn in KNOWN_NAMESPACES:
        if path.lower().startswith(urn.lower() + ":"):
            return urn, path[len(urn) + 1:]
    match = _URN_PATH_RE.match(path)
    if match:
        return match.group(1), match.group(2)
    return None, path


def parse_path(path: str) -> ScimPath:
    """
    解析 SCIM 路径

    Examples:
        "userName" -> ScimPath(attribute="userName")
        'emails[type eq "work"].value' -> ScimPath(attribute="emails", value_filter=..., sub_attribute="value")

    Raises:
        ValueError: 路径为空或不合法
    """
    if not path or not path.strip():
        raise ValueError("Path cannot be empty")

    namespace, rest = _split_namespace(path.strip())
    match = _ATTR_PATH_RE.match(rest)
    if not match:
        raise ValueError(f"Invalid SCIM path: {path}")

    value_filter = None
    if match.group("filter") is not None:
        value_filter = parse_value_filter(match.group("filter"))

    return ScimPath(
        attribute=match.group("attr"),
        namespace=namespace,
        sub_attribute=match.group("sub"),
        value_filter=value_filter,
    )
