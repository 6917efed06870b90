"""
命令表 - 命令名称到处理器描述的映射

提供命令组织和查找功能：
- 命令注册（名称唯一，参数类型在注册时固定）
- 命令分组（例如 "music" 组）
- 最长前缀匹配查找
- 帮助信息数据
"""

import logging
import re
from dataclasses import dataclass
from typing import Callable, Dict, List, Optional, Sequence, Tuple

from .arguments import ParamKind, validate_kinds

_TOKEN_PATTERN = re.compile(r"\S+")


@dataclass(frozen=True)
class CommandDescriptor:
    """命令描述数据类"""
    name: str
    kinds: Tuple[ParamKind, ...]
    handler: Callable
    description: str = ""
    visible: bool = True
    required_group: int = 0
    admin_only: bool = False

    @property
    def usage(self) -> str:
        """用法字符串，例如 "music volume <float>" """
        params = " ".join(f"<{kind.value}>" for kind in self.kinds)
        return f"{self.name} {params}".strip()


@dataclass(frozen=True)
class CommandMatch:
    """命令查找结果"""
    descriptor: CommandDescriptor
    rest: str


def _normalize(name: str) -> str:
    return " ".join(name.split())


class CommandTable:
    """
    命令表

    保存所有已注册的命令，按注册顺序维护。
    名称可以包含空格，例如同时注册 "music" 和 "music volume"。
    """

    def __init__(self):
        """初始化命令表"""
        self.logger = logging.getLogger("audiobob.commands.table")
        self._commands: Dict[str, CommandDescriptor] = {}
        self._groups: Dict[str, "CommandGroup"] = {}
        self._max_tokens = 0

    def register(
        self,
        name: str,
        kinds: Sequence[ParamKind],
        handler: Callable,
        description: str = "",
        visible: bool = True,
        required_group: int = 0,
        admin_only: bool = False
    ) -> CommandDescriptor:
        """
        注册命令

        Args:
            name: 命令名称
            kinds: 参数类型列表
            handler: 命令处理器
            description: 帮助中显示的描述
            visible: 是否在帮助中显示
            required_group: 所需的最低服务器组（0 表示任何人）
            admin_only: 是否仅限管理员组

        Returns:
            命令描述

        Raises:
            ValueError: 名称为空、重复或参数类型非法
        """
        key = _normalize(name)
        if not key:
            raise ValueError("Command name must not be empty")
        if key in self._commands:
            raise ValueError(f"Command '{key}' is already registered")
        validate_kinds(kinds)

        descriptor = CommandDescriptor(
            name=key,
            kinds=tuple(kinds),
            handler=handler,
            description=description,
            visible=visible,
            required_group=required_group,
            admin_only=admin_only
        )
        self._commands[key] = descriptor
        self._max_tokens = max(self._max_tokens, len(key.split(" ")))

        self.logger.debug(f"注册命令: {descriptor.usage}")
        return descriptor

    def group(self, name: str, description: str = "") -> "CommandGroup":
        """
        获取或创建命令组

        Args:
            name: 组名称
            description: 组描述

        Returns:
            命令组视图
        """
        key = _normalize(name)
        if key not in self._groups:
            self._groups[key] = CommandGroup(self, key, description)
        return self._groups[key]

    def lookup(self, text: str) -> Optional[CommandMatch]:
        """
        查找命令（区分大小写，最长前缀优先）

        Args:
            text: 原始消息文本

        Returns:
            匹配结果，未知命令返回 None
        """
        tokens = list(_TOKEN_PATTERN.finditer(text))
        for count in range(min(len(tokens), self._max_tokens), 0, -1):
            name = " ".join(match.group() for match in tokens[:count])
            descriptor = self._commands.get(name)
            if descriptor is not None:
                rest = text[tokens[count - 1].end():]
                return CommandMatch(descriptor, rest)
        return None

    def describe(self, prefix: Optional[str] = None) -> List[Tuple[str, str]]:
        """
        获取可见命令的 (名称, 描述) 列表，保持注册顺序

        Args:
            prefix: 只返回该组下的命令

        Returns:
            (名称, 描述) 列表
        """
        head = _normalize(prefix).split(" ") if prefix else []
        result = []
        for name, descriptor in self._commands.items():
            if not descriptor.visible:
                continue
            if head and name.split(" ")[:len(head)] != head:
                continue
            result.append((name, descriptor.description))
        return result

    def get(self, name: str) -> Optional[CommandDescriptor]:
        """按名称获取命令描述"""
        return self._commands.get(_normalize(name))

    def groups(self) -> List[Tuple[str, str]]:
        """获取已注册的命令组 (名称, 描述)"""
        return [(group.name, group.description) for group in self._groups.values()]

    def is_grouped(self, name: str) -> bool:
        """命令是否属于某个命令组"""
        first = _normalize(name).split(" ")[0]
        return first in self._groups and _normalize(name) != first

    def __contains__(self, name: str) -> bool:
        return _normalize(name) in self._commands

    def __len__(self) -> int:
        return len(self._commands)


class CommandGroup:
    """命令组 - 注册时自动加上组名前缀"""

    def __init__(self, table: CommandTable, name: str, description: str = ""):
        self.table = table
        self.name = name
        self.description = description

    def register(self, name: str, kinds: Sequence[ParamKind], handler: Callable, **kwargs) -> CommandDescriptor:
        """在组内注册命令，参数同 CommandTable.register"""
        return self.table.register(f"{self.name} {name}", kinds, handler, **kwargs)

    def group(self, name: str, description: str = "") -> "CommandGroup":
        """创建嵌套命令组"""
        return self.table.group(f"{self.name} {name}", description)

    def describe(self) -> List[Tuple[str, str]]:
        """组内可见命令"""
        return self.table.describe(self.name)
