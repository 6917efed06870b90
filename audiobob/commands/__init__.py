"""AudioBob 命令模块。"""

from .arguments import ParamKind, parse_arguments
from .command_group import CommandDescriptor, CommandGroup, CommandTable
from .dispatcher import CommandDispatcher, CommandResult, DispatchOutcome, DispatchStatus
from .bot_commands import BotCommands

__all__ = [
    "ParamKind",
    "parse_arguments",
    "CommandDescriptor",
    "CommandGroup",
    "CommandTable",
    "CommandDispatcher",
    "CommandResult",
    "DispatchOutcome",
    "DispatchStatus",
    "BotCommands"
]
