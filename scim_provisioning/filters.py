"""
SCIM Filter 转换器

把 GET /Users?filter=... 的查询串转换为 User Store 可执行的谓词。

只支持单个表达式: attribute SP operator SP "value"
- 属性: userName, name.familyName, name.givenName, emails
- 操作符: sw, ew, co, eq, neq

不支持: and / or / not / pr / gt / ge / lt / le，均返回 invalidFilter。
"""

import csv
import re
from dataclasses import dataclass
from enum import Enum

import structlog

from .models import ScimError

logger = structlog.get_logger(__name__)


class FilterOperator(str, Enum):
    """支持的比较操作符"""
    STARTS_WITH = "sw"
    ENDS_WITH = "ew"
    CONTAINS = "co"
    EQUAL = "eq"
    NOT_EQUAL = "neq"


# SCIM 属性 -> UserRecord 字段
FILTER_ATTRIBUTES = {
    "userName": "username",
    "name.familyName": "family_name",
    "name.givenName": "given_name",
    "emails": "email",
}


@dataclass(frozen=True)
class FilterExpression:
    """解析后的 filter 表达式，每个请求解析一次"""
    attribute: str
    operator: FilterOperator
    literal: str

    def __str__(self) -> str:
        return f'{self.attribute} {self.operator.value} "{self.literal}"'


@dataclass(frozen=True)
class StorePredicate:
    """
    User Store 谓词

    sw / ew / co 对应 LIKE 模式 (literal% / %literal / %literal%)，
    eq / neq 为精确比较。比较大小写不敏感。
    """
    field: str
    operator: FilterOperator
    literal: str

    @property
    def pattern(self) -> str:
        """LIKE 模式，literal 中的 % _ 已转义"""
        escaped = self.literal.replace("\\", "\\\\").replace("%", "\\%").replace("_", "\\_")
        if self.operator == FilterOperator.STARTS_WITH:
            return f"{escaped}%"
        if self.operator == FilterOperator.ENDS_WITH:
            return f"%{escaped}"
        if self.operator == FilterOperator.CONTAINS:
            return f"%{escaped}%"
        return escaped

    def matches(self, value: str | None) -> bool:
        """对单个字段值求值"""
        value = ("" if value is None else str(value)).casefold()
        if self.operator == FilterOperator.EQUAL:
            return value == self.literal.casefold()
        if self.operator == FilterOperator.NOT_EQUAL:
            return value != self.literal.casefold()
        return _like_regex(self.pattern).fullmatch(value) is not None


def _like_regex(pattern: str) -> re.Pattern:
    parts = []
    i = 0
    while i < len(pattern):
        ch = pattern[i]
        if ch == "\\" and i + 1 < len(pattern):
            parts.append(re.escape(pattern[i + 1]))
            i += 2
            continue
        if ch == "%":
            parts.append(".*")
        elif ch == "_":
            parts.append(".")
        else:
            parts.append(re.escape(ch))
        i += 1
    return re.compile("".join(parts), re.IGNORECASE | re.DOTALL)


def invalid_filter(raw: str) -> ScimError:
    logger.info("scim_filter_rejected", filter=raw)
    return ScimError(
        400,
        "invalidFilter",
        "The specified filter syntax was invalid or the specified attribute and filter "
        "comparison combination is not supported.",
    )


def tokenize(raw: str) -> list[str]:
    """
    按空格切分，双引号包围的部分视为一个 token

    例: 'userName eq "john doe"' -> ['userName', 'eq', 'john doe']
    """
    reader = csv.reader([raw], delimiter=" ", quotechar='"', skipinitialspace=True)
    return next(reader, [])


def parse_filter(raw: str | None) -> FilterExpression | None:
    """
    解析 filter 查询串

    Returns:
        FilterExpression，输入为空时返回 None (调用方返回空列表)

    Raises:
        ScimError: 400 invalidFilter
    """
    if raw is None or raw.strip() == "":
        return None

    raw = raw.strip()
    try:
        tokens = tokenize(raw)
    except csv.Error:
        raise invalid_filter(raw)

    # 第三个 token 必须是双引号包围的字面量
    if len(tokens) != 3:
        raise invalid_filter(raw)
    quoted = raw.split(None, 2)[-1]
    if not (len(quoted) >= 2 and quoted.startswith('"') and quoted.endswith('"')):
        raise invalid_filter(raw)

    attribute, operator, literal = tokens
    if attribute not in FILTER_ATTRIBUTES:
        raise invalid_filter(raw)
    try:
        op = FilterOperator(operator)
    except ValueError:
        raise invalid_filter(raw)

    return FilterExpression(attribute=attribute, operator=op, literal=literal)


def translate(expression: FilterExpression) -> StorePredicate:
    """FilterExpression -> StorePredicate"""
    return StorePredicate(
        field=FILTER_ATTRIBUTES[expression.attribute],
        operator=expression.operator,
        literal=expression.literal,
    )


def build_predicate(raw: str | None) -> StorePredicate | None:
    """parse_filter + translate"""
    expression = parse_filter(raw)
    if expression is None:
        return None
    return translate(expression)
