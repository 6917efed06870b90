"""
连接注册表测试

测试连接的添加和移除、调用者身份缓存以及等待队列
"""

import time

import pytest

from audiobob.connection.registry import ConnectionRegistry, ServerConnection
from audiobob.core.errors import InvalidConnectionHandleError
from audiobob.playback.audio_session import AudioSession, PlaybackState


class TestConnectionRegistry:
    """连接注册表测试类"""

    def setup_method(self):
        """设置测试环境"""
        self.created = []

        def factory(handle):
            self.created.append(handle)
            return AudioSession(handle)

        self.registry = ConnectionRegistry(factory)

    def test_add_creates_default_session(self):
        connection = self.registry.add_server(1)

        assert 1 in self.registry
        assert len(self.registry) == 1
        assert connection.session.volume == 1.0
        assert connection.session.state is PlaybackState.STOPPED

    def test_duplicate_add_keeps_state(self):
        """重复添加不会重置已有会话"""
        first = self.registry.add_server(1)
        first.session.set_volume(0.3)

        second = self.registry.add_server(1)

        assert second is first
        assert second.session.volume == 0.3
        assert self.created == [1]

    def test_remove_closes_session(self, source_factory, make_ramp):
        connection = self.registry.add_server(1)
        source = source_factory(make_ramp(10))
        token = connection.session.start("test://song")
        connection.session.attach_source(token, source)

        assert self.registry.remove_server(1) is True
        assert source.closed
        assert 1 not in self.registry
        assert self.registry.get(1) is None

    def test_remove_unknown_is_noop(self):
        assert self.registry.remove_server(99) is False

    def test_require_unknown_raises(self):
        with pytest.raises(InvalidConnectionHandleError) as exc_info:
            self.registry.require(42)
        assert exc_info.value.handle == 42

    def test_close_all(self):
        for handle in (1, 2, 3):
            self.registry.add_server(handle)

        self.registry.close_all()

        assert len(self.registry) == 0
        assert self.registry.handles() == []

    def test_sessions_are_independent(self):
        a = self.registry.add_server(1)
        b = self.registry.add_server(2)
        a.session.set_volume(0.1)
        assert b.session.volume == 1.0


class TestServerConnection:
    """单个连接的身份缓存和等待队列测试"""

    def setup_method(self):
        """设置测试环境"""
        self.connection = ServerConnection(1, AudioSession(1))

    def test_touch_updates_sender(self):
        caller = self.connection.touch_caller("u1", "first")
        assert not caller.is_resolved

        again = self.connection.touch_caller("u1", "second")
        assert again is caller
        assert caller.sender_ref == "second"

    def test_highest_group_wins(self):
        """调用者属于多个组时保留最高的组"""
        self.connection.resolve_identity("u1", 11)

        self.connection.resolve_group(11, 2)
        self.connection.resolve_group(11, 7)
        caller = self.connection.resolve_group(11, 4)

        assert caller.group_id == 7
        assert caller.db_id == 11

    def test_group_for_unknown_db_id(self):
        assert self.connection.resolve_group(404, 5) is None

    def test_mark_queried_once(self):
        assert self.connection.mark_queried("u1") is True
        assert self.connection.mark_queried("u1") is False

        self.connection.resolve_identity("u1", 11)
        self.connection.resolve_group(11, 1)
        assert self.connection.mark_queried("u1") is True

    def test_ready_commands_keep_order(self):
        self.connection.touch_caller("u1", None)
        self.connection.touch_caller("u2", None)
        self.connection.defer_command("u1", "first")
        self.connection.defer_command("u2", "other")
        self.connection.defer_command("u1", "second")

        self.connection.resolve_identity("u1", 11)
        self.connection.resolve_group(11, 1)
        ready = self.connection.take_ready_commands()

        assert [p.text for p in ready] == ["first", "second"]
        assert self.connection.pending_count == 1

    def test_expire_pending(self):
        old = self.connection.defer_command("u1", "old")
        fresh = self.connection.defer_command("u2", "fresh")
        old.received_at = 100.0
        fresh.received_at = 108.0

        expired = self.connection.expire_pending(5.0, now=110.0)

        assert expired == [old]
        assert self.connection.pending_count == 1

    def test_defer_for_resolved_caller(self):
        """调用者已解析时命令不入队"""
        self.connection.resolve_identity("u1", 11)
        self.connection.resolve_group(11, 2)

        assert self.connection.defer_command("u1", "exit") is None
        assert self.connection.pending_count == 0

    def test_expired_group_is_queried_again(self):
        """服务器组缓存过期后重新查询，降级后的组生效"""
        connection = ServerConnection(1, AudioSession(1), group_ttl=60.0)
        connection.resolve_identity("u1", 11)
        connection.resolve_group(11, 5)
        now = time.monotonic()

        assert connection.defer_command("u1", "exit", now=now + 30) is None

        pending = connection.defer_command("u1", "exit", now=now + 61)
        assert pending is not None
        assert not connection.get_caller("u1").is_resolved
        assert connection.mark_queried("u1") is True

        connection.resolve_group(11, 0)
        assert connection.get_caller("u1").group_id == 0
        assert connection.take_ready_commands() == [pending]

    def test_registry_passes_group_ttl(self):
        registry = ConnectionRegistry(AudioSession, group_ttl=30.0)
        assert registry.add_server(3).group_ttl == 30.0
