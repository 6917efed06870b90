"""
参数解析器测试

测试各参数类型的转换、缺失参数、多余参数以及错误位置
"""

import pytest

from audiobob.commands.arguments import ParamKind, parse_arguments, validate_kinds
from audiobob.core.errors import BadArgumentsError, ErrorCategory


class TestBoolArguments:
    """测试布尔参数"""

    @pytest.mark.parametrize("token", ["on", "ON", "true", "True", "1", "yes", "YES"])
    def test_true_words(self, token):
        assert parse_arguments(f" {token}", [ParamKind.BOOL]) == (True,)

    @pytest.mark.parametrize("token", ["off", "Off", "false", "FALSE", "0", "no"])
    def test_false_words(self, token):
        assert parse_arguments(f" {token}", [ParamKind.BOOL]) == (False,)

    def test_unknown_word(self):
        """测试无法识别的布尔值"""
        with pytest.raises(BadArgumentsError) as exc_info:
            parse_arguments(" maybe", [ParamKind.BOOL])

        assert exc_info.value.position == 1
        assert exc_info.value.token == "maybe"
        assert exc_info.value.category == ErrorCategory.BAD_ARGUMENTS


class TestNumberArguments:
    """测试整数和浮点参数"""

    def test_ints(self):
        assert parse_arguments(" 42", [ParamKind.INT]) == (42,)
        assert parse_arguments(" -7", [ParamKind.INT]) == (-7,)
        assert parse_arguments(" +3", [ParamKind.INT]) == (3,)

    def test_int_limits(self):
        """测试 64 位整数范围"""
        assert parse_arguments(" 9223372036854775807", [ParamKind.INT]) == (2 ** 63 - 1,)
        assert parse_arguments(" -9223372036854775808", [ParamKind.INT]) == (-(2 ** 63),)

        with pytest.raises(BadArgumentsError):
            parse_arguments(" 9223372036854775808", [ParamKind.INT])

    @pytest.mark.parametrize("token", ["4.2", "abc", "0x10", "1_000", "--1"])
    def test_bad_ints(self, token):
        with pytest.raises(BadArgumentsError) as exc_info:
            parse_arguments(f" {token}", [ParamKind.INT])
        assert exc_info.value.token == token

    def test_floats(self):
        assert parse_arguments(" 0.5", [ParamKind.FLOAT]) == (0.5,)
        assert parse_arguments(" .5", [ParamKind.FLOAT]) == (0.5,)
        assert parse_arguments(" -2", [ParamKind.FLOAT]) == (-2.0,)
        assert parse_arguments(" 1e3", [ParamKind.FLOAT]) == (1000.0,)

    @pytest.mark.parametrize("token", ["loud", "nan", "inf", "-Infinity", "1e999", "1.2.3"])
    def test_bad_floats(self, token):
        """测试非数字和非有限值"""
        with pytest.raises(BadArgumentsError) as exc_info:
            parse_arguments(f" {token}", [ParamKind.FLOAT])
        assert exc_info.value.position == 1
        assert exc_info.value.token == token


class TestStringArguments:
    """测试剩余文本参数"""

    def test_rest_of_line(self):
        assert parse_arguments("  hello   world  ", [ParamKind.STRING]) == ("hello   world",)

    def test_after_other_arguments(self):
        assert parse_arguments(" 3 some text here", [ParamKind.INT, ParamKind.STRING]) == (3, "some text here")

    def test_missing_string(self):
        with pytest.raises(BadArgumentsError) as exc_info:
            parse_arguments("   ", [ParamKind.STRING])
        assert exc_info.value.position == 1
        assert exc_info.value.token == ""

    def test_string_must_be_last(self):
        with pytest.raises(ValueError):
            validate_kinds([ParamKind.STRING, ParamKind.INT])


class TestArgumentCount:
    """测试缺失和多余的参数"""

    def test_no_parameters(self):
        assert parse_arguments("", []) == ()
        assert parse_arguments("   ", []) == ()

    def test_missing_argument(self):
        with pytest.raises(BadArgumentsError) as exc_info:
            parse_arguments("", [ParamKind.FLOAT])
        assert exc_info.value.position == 1
        assert exc_info.value.token == ""
        assert "Missing argument 1" in exc_info.value.user_message

    def test_extra_tokens_rejected(self):
        """多余的参数会使调用作废"""
        with pytest.raises(BadArgumentsError) as exc_info:
            parse_arguments(" 0.5 extra", [ParamKind.FLOAT])
        assert exc_info.value.position == 2
        assert exc_info.value.token == "extra"

        with pytest.raises(BadArgumentsError) as exc_info:
            parse_arguments(" anything", [])
        assert exc_info.value.position == 1

    def test_first_failure_wins(self):
        """第二个参数失败时报告位置 2"""
        with pytest.raises(BadArgumentsError) as exc_info:
            parse_arguments(" on nope", [ParamKind.BOOL, ParamKind.INT])
        assert exc_info.value.position == 2
        assert exc_info.value.token == "nope"
        assert exc_info.value.user_message == "Bad argument 2: 'nope' (expected integer)"
