"""
命令分发器 - 把原始文本转换为一次类型化的命令调用

每次调用依次经过：匹配 → 授权 → 解析 → 执行，
任一阶段失败都会以对应的错误结束，并给出精确的回复。
"""

import logging
from dataclasses import dataclass
from enum import Enum
from typing import Any, Callable, List, Optional

from audiobob.connection.registry import ServerConnection
from audiobob.core.errors import (
    BadArgumentsError,
    BobError,
    NotAuthorizedError,
    UnknownCommandError,
)
from audiobob.core.interfaces import CallerIdentity, IHostRuntime
from .arguments import parse_arguments
from .command_group import CommandDescriptor, CommandTable


class ResultKind(Enum):
    """命令处理结果类型"""
    OK = "ok"
    SILENT = "silent"
    ERROR = "error"


@dataclass(frozen=True)
class CommandResult:
    """命令处理器的返回值"""
    kind: ResultKind
    message: Optional[str] = None

    @classmethod
    def ok(cls, reply: str) -> "CommandResult":
        return cls(ResultKind.OK, reply)

    @classmethod
    def silent(cls) -> "CommandResult":
        return cls(ResultKind.SILENT)

    @classmethod
    def error(cls, message: str) -> "CommandResult":
        return cls(ResultKind.ERROR, message)


@dataclass
class CommandContext:
    """传递给命令处理器的调用上下文"""
    connection: ServerConnection
    caller: CallerIdentity
    message: str
    rest: str

    @property
    def session(self):
        return self.connection.session

    @property
    def handle(self) -> int:
        return self.connection.handle


class DispatchStatus(Enum):
    """分发结果状态"""
    EXECUTED = "executed"
    REJECTED = "rejected"
    PENDING = "pending"


@dataclass
class DispatchOutcome:
    """一次分发的最终结果"""
    status: DispatchStatus
    command: Optional[str] = None
    result: Optional[CommandResult] = None
    error: Optional[BobError] = None

    @property
    def reply(self) -> Optional[str]:
        """需要发送给调用者的回复，不需要回复时为 None"""
        if self.status is DispatchStatus.REJECTED and self.error is not None:
            return self.error.user_message
        if self.status is DispatchStatus.EXECUTED and self.result is not None:
            if self.result.kind is ResultKind.OK:
                return self.result.message
            if self.result.kind is ResultKind.ERROR:
                return f"Error: {self.result.message}"
        return None


def threshold_authorizer(caller: CallerIdentity, required_group: int) -> bool:
    """默认授权策略：服务器组不低于要求"""
    return caller.group_id is not None and caller.group_id >= required_group


class CommandDispatcher:
    """
    命令分发器实现

    授权所需的服务器组可能尚未解析：此时命令进入连接的等待队列，
    向宿主请求一次身份解析，解析完成后重放；超时未解析的命令被丢弃。
    """

    def __init__(
        self,
        table: CommandTable,
        host: IHostRuntime,
        admin_group: int,
        identity_timeout: float = 10.0,
        authorizer: Optional[Callable[[CallerIdentity, int], bool]] = None
    ):
        """
        初始化命令分发器

        Args:
            table: 命令表
            host: 宿主运行时
            admin_group: 管理员服务器组（进程级配置，构造后只读）
            identity_timeout: 等待身份解析的最长时间（秒）
            authorizer: 授权策略，默认按服务器组阈值比较
        """
        self.table = table
        self.host = host
        self.admin_group = admin_group
        self.identity_timeout = identity_timeout
        self.authorizer = authorizer or threshold_authorizer
        self.logger = logging.getLogger("audiobob.commands.dispatcher")

    def required_group(self, descriptor: CommandDescriptor) -> int:
        """命令实际要求的服务器组"""
        if descriptor.admin_only:
            return self.admin_group
        return descriptor.required_group

    def handle_message(
        self,
        connection: ServerConnection,
        sender_ref: Any,
        unique_id: str,
        text: str
    ) -> DispatchOutcome:
        """
        处理一条文本消息并回复调用者

        Args:
            connection: 消息所属连接
            sender_ref: 宿主运行时的发送者引用
            unique_id: 发送者唯一标识
            text: 消息文本

        Returns:
            分发结果
        """
        self.expire(connection)
        caller = connection.touch_caller(unique_id, sender_ref)
        outcome = self.dispatch(connection, caller, text)
        self._send_reply(connection, caller, outcome)
        return outcome

    def dispatch(self, connection: ServerConnection, caller: CallerIdentity, text: str) -> DispatchOutcome:
        """执行分发流程，不发送回复"""
        # 匹配
        match = self.table.lookup(text)
        if match is None:
            self.logger.debug(f"连接 {connection.handle} 未知命令: {text!r}")
            return DispatchOutcome(DispatchStatus.REJECTED, error=UnknownCommandError(text))
        descriptor = match.descriptor

        # 授权
        required = self.required_group(descriptor)
        if required > 0:
            if connection.defer_command(caller.unique_id, text) is not None:
                if connection.mark_queried(caller.unique_id):
                    self.host.query_current_group(connection.handle, caller.unique_id)
                self.logger.debug(f"命令 '{descriptor.name}' 等待 {caller.unique_id} 的身份解析")
                return DispatchOutcome(DispatchStatus.PENDING, command=descriptor.name)

            if not self.authorizer(caller, required):
                self.logger.info(
                    f"拒绝未授权命令 '{descriptor.name}' - 用户 {caller.unique_id} "
                    f"(组 {caller.group_id} < {required})"
                )
                return DispatchOutcome(
                    DispatchStatus.REJECTED,
                    command=descriptor.name,
                    error=NotAuthorizedError(descriptor.name, required, caller.group_id)
                )

        # 解析
        try:
            args = parse_arguments(match.rest, descriptor.kinds)
        except BadArgumentsError as e:
            e.user_message = f"{e.user_message}. Usage: {descriptor.usage}"
            return DispatchOutcome(DispatchStatus.REJECTED, command=descriptor.name, error=e)

        # 执行
        context = CommandContext(connection=connection, caller=caller, message=text, rest=match.rest)
        result = self._execute(descriptor, context, args)
        return DispatchOutcome(DispatchStatus.EXECUTED, command=descriptor.name, result=result)

    def _execute(self, descriptor: CommandDescriptor, context: CommandContext, args: tuple) -> CommandResult:
        try:
            result = descriptor.handler(context, *args)
        except BobError as e:
            self.logger.debug(f"命令 '{descriptor.name}' 失败: {e}")
            return CommandResult.error(e.user_message)
        except Exception as e:
            self.logger.error(f"命令 '{descriptor.name}' 中的意外错误: {e}", exc_info=True)
            return CommandResult.error("An unexpected error occurred")

        if result is None:
            return CommandResult.silent()
        return result

    def on_group_resolved(self, connection: ServerConnection) -> List[DispatchOutcome]:
        """
        身份解析完成后重放等待中的命令

        Returns:
            被重放命令的分发结果
        """
        self.expire(connection)
        outcomes = []
        for pending in connection.take_ready_commands():
            caller = connection.get_caller(pending.unique_id)
            outcome = self.dispatch(connection, caller, pending.text)
            self._send_reply(connection, caller, outcome)
            outcomes.append(outcome)
        return outcomes

    def expire(self, connection: ServerConnection) -> int:
        """
        丢弃等待身份解析超时的命令

        Returns:
            被丢弃的命令数量
        """
        expired = connection.expire_pending(self.identity_timeout)
        for pending in expired:
            self.logger.warning(
                f"连接 {connection.handle} 丢弃命令 {pending.text!r}: "
                f"{pending.unique_id} 的身份解析超时"
            )
            caller = connection.get_caller(pending.unique_id)
            if caller is not None and caller.sender_ref is not None:
                self.host.send_reply(
                    connection.handle,
                    caller.sender_ref,
                    "Could not verify your permissions, please try again."
                )
        return len(expired)

    def _send_reply(self, connection: ServerConnection, caller: CallerIdentity, outcome: DispatchOutcome) -> None:
        reply = outcome.reply
        if reply is None:
            return
        try:
            self.host.send_reply(connection.handle, caller.sender_ref, reply)
        except Exception as e:
            self.logger.error(f"发送回复失败 - 连接 {connection.handle}: {e}")
