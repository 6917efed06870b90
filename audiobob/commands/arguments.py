"""
参数解析器 - 把命令名之后的文本转换为类型化的参数

支持布尔、整数、浮点数以及"剩余全部文本"四种参数类型。
任意一个参数解析失败都会使整个调用作废。
"""

import math
import re
from enum import Enum
from typing import Any, Sequence, Tuple

from audiobob.core.errors import BadArgumentsError


class ParamKind(Enum):
    """参数类型枚举"""
    BOOL = "bool"
    INT = "int"
    FLOAT = "float"
    STRING = "string"  # 剩余全部文本，只能作为最后一个参数


_TRUE_WORDS = frozenset({"on", "true", "1", "yes"})
_FALSE_WORDS = frozenset({"off", "false", "0", "no"})

_INT_PATTERN = re.compile(r"^[+-]?[0-9]+$")
_FLOAT_PATTERN = re.compile(r"^[+-]?(?:[0-9]+(?:\.[0-9]*)?|\.[0-9]+)(?:[eE][+-]?[0-9]+)?$")
_TOKEN_PATTERN = re.compile(r"\S+")

INT_MIN = -(2 ** 63)
INT_MAX = 2 ** 63 - 1

_EXPECTED = {
    ParamKind.BOOL: "on/off",
    ParamKind.INT: "integer",
    ParamKind.FLOAT: "number",
    ParamKind.STRING: "text",
}


def validate_kinds(kinds: Sequence[ParamKind]) -> None:
    """
    检查参数类型列表是否合法

    Raises:
        ValueError: STRING 不在最后一个位置
    """
    for index, kind in enumerate(kinds):
        if not isinstance(kind, ParamKind):
            raise ValueError(f"Invalid parameter kind: {kind!r}")
        if kind is ParamKind.STRING and index != len(kinds) - 1:
            raise ValueError("STRING parameter must be the last one")


def _convert(kind: ParamKind, token: str, position: int) -> Any:
    if kind is ParamKind.BOOL:
        word = token.lower()
        if word in _TRUE_WORDS:
            return True
        if word in _FALSE_WORDS:
            return False
    elif kind is ParamKind.INT:
        if _INT_PATTERN.match(token):
            value = int(token)
            if INT_MIN <= value <= INT_MAX:
                return value
    elif kind is ParamKind.FLOAT:
        if _FLOAT_PATTERN.match(token):
            value = float(token)
            if math.isfinite(value):
                return value
    raise BadArgumentsError(position, token, _EXPECTED[kind])


def parse_arguments(rest: str, kinds: Sequence[ParamKind]) -> Tuple[Any, ...]:
    """
    按声明的类型解析参数

    Args:
        rest: 命令名之后的原始文本
        kinds: 参数类型列表

    Returns:
        类型化的参数元组

    Raises:
        BadArgumentsError: 第一个无法转换、缺失或多余的参数
    """
    values = []
    pos = 0

    for index, kind in enumerate(kinds):
        position = index + 1

        if kind is ParamKind.STRING:
            remainder = rest[pos:].strip()
            if not remainder:
                raise BadArgumentsError(position, "", _EXPECTED[kind])
            values.append(remainder)
            return tuple(values)

        match = _TOKEN_PATTERN.search(rest, pos)
        if not match:
            raise BadArgumentsError(position, "", _EXPECTED[kind])
        values.append(_convert(kind, match.group(), position))
        pos = match.end()

    extra = _TOKEN_PATTERN.search(rest, pos)
    if extra:
        raise BadArgumentsError(len(kinds) + 1, extra.group())

    return tuple(values)
