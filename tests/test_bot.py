"""
AudioBob 编排器集成测试

通过假宿主和假媒体源测试完整的命令与音频路径
"""

import numpy as np
import pytest

from audiobob.bot import AudioBob
from audiobob.commands.bot_commands import QUIT_MESSAGES, strip_url_tags
from audiobob.commands.dispatcher import DispatchStatus
from audiobob.core.settings import BobSettings
from audiobob.playback.audio_session import PlaybackState

HANDLE = 1
ADMIN = "admin-uid"
USER = "user-uid"


class TestAudioBob:
    """编排器测试类"""

    @pytest.fixture(autouse=True)
    def setup(self, fake_host, fake_media, settings):
        """设置测试环境"""
        self.host = fake_host
        self.media = fake_media
        self.bob = AudioBob(self.host, self.media, settings)
        self.bob.on_connection_added(HANDLE)

    def _resolve(self, unique_id, db_id, group_id):
        self.bob.on_identity_resolved(HANDLE, unique_id, db_id)
        self.bob.on_group_resolved(HANDLE, db_id, group_id)

    def _say(self, text, unique_id=USER):
        return self.bob.on_text_message(HANDLE, f"msg-{unique_id}", unique_id, text)

    def _session(self):
        return self.bob.registry.require(HANDLE).session

    def test_volume_command(self):
        outcome = self._say("music volume 0.5")

        assert outcome.status is DispatchStatus.EXECUTED
        assert self.host.last_reply == "Volume set to 0.5"
        assert self._session().volume == 0.5

    def test_volume_bad_argument(self):
        outcome = self._say("music volume loud")

        assert outcome.status is DispatchStatus.REJECTED
        assert self.host.last_reply.startswith("Bad argument 1: 'loud'")
        assert self.host.last_reply.endswith("Usage: music volume <float>")
        assert self._session().volume == 1.0

    def test_unknown_command(self):
        self._say("dance")
        assert self.host.last_reply == "Unknown command. Try 'help'."

    def test_ping(self):
        self._say("ping")
        assert self.host.last_reply == "pong"

    def test_exit_requires_admin(self):
        """未授权用户的 exit 先等待身份解析，解析后被拒绝"""
        outcome = self._say("exit")

        assert outcome.status is DispatchStatus.PENDING
        assert self.host.queries == [(HANDLE, USER)]

        self._resolve(USER, 20, 0)

        assert self.host.last_reply == "You are not authorized to use this command."
        assert self.host.shutdown_messages == []

    def test_exit_by_admin(self):
        self._resolve(ADMIN, 10, 1)
        self._say("music start test://song", ADMIN)

        outcome = self._say("exit", ADMIN)

        assert outcome.status is DispatchStatus.EXECUTED
        assert len(self.host.shutdown_messages) == 1
        assert self.host.shutdown_messages[0] in QUIT_MESSAGES
        assert self._session().state is PlaybackState.STOPPED

    def test_music_start_plays(self):
        self._say("music start [URL]http://example.com/a.mp3[/URL]")

        assert self.media.opened == ["http://example.com/a.mp3"]
        assert self.host.last_reply == "Playing http://example.com/a.mp3"

        buffer = np.zeros(20, dtype=np.int16)
        assert self.bob.on_fill_audio_buffer(HANDLE, buffer, 10, 2, True) is True
        assert (buffer == 1000).all()

        self._say("status music")
        assert self.host.last_reply.startswith("Music: playing http://example.com/a.mp3")

    def test_music_start_unavailable(self):
        self.media.unavailable["missing.mp3"] = "file not found"

        self._say("music start missing.mp3")

        assert self.host.last_reply == "Error: Unable to create stream (file not found)"
        assert self._session().state is PlaybackState.STOPPED

    def test_music_controls_without_source(self):
        self._say("music pause")
        assert self.host.last_reply == "Error: Nothing is playing"
        self._say("music seek 10")
        assert self.host.last_reply == "Error: Nothing is playing"
        self._say("music address")
        assert self.host.last_reply == "Error: Nothing is playing"

    def test_music_seek_and_loop(self):
        self._say("music start test://song")

        self._say("music seek 0.5")
        assert self.host.last_reply == "Position set to 0:00"
        self._say("music loop on")
        assert self.host.last_reply == "Loop is now on"
        assert self._session().snapshot().looping is True

    def test_audio_toggle_is_admin_only(self):
        self._resolve(USER, 20, 0)
        self._say("audio off")
        assert self.host.last_reply == "You are not authorized to use this command."

        self._resolve(ADMIN, 10, 3)
        self._say("audio off", ADMIN)
        assert self.host.last_reply == "Audio is now off"
        assert self._session().snapshot().enabled is False

    def test_whisper_targets(self):
        self._resolve(ADMIN, 10, 1)
        self._say("whisper clients add 5", ADMIN)
        self._say("whisper channels add 9", ADMIN)

        assert self.bob.whisper_targets(HANDLE) == (frozenset({5}), frozenset({9}))

        self._say("whisper clients add 5", ADMIN)
        assert self.host.last_reply == "Error: Client 5 is already a whisper target"

        self._say("whisper clear", ADMIN)
        assert self.bob.whisper_targets(HANDLE) == (frozenset(), frozenset())

    def test_help_lists_visible_commands(self):
        self._say("help")
        reply = self.host.last_reply

        assert reply.startswith("Available commands:")
        assert "ping" in reply
        assert "music ..." in reply
        assert "error" not in reply

        self._say("help music")
        assert "music volume <float>" in self.host.last_reply

    def test_list_and_join(self):
        self.host.clients = [(1, "alice"), (2, "bob")]
        self._resolve(ADMIN, 10, 1)
        self._say("list clients", ADMIN)
        assert self.host.last_reply == "1: alice\n2: bob"

        self._say("join")
        assert self.host.last_reply == "Joining your channel"
        assert self.host.joined == [HANDLE]

        self.host.join_error = "You are not in a voice channel"
        self._say("join")
        assert self.host.last_reply == "Error: You are not in a voice channel"

    def test_leave_stops_playback(self):
        self._say("music start test://song")
        replies = len(self.host.replies)

        self._say("leave")

        assert self.host.left == [HANDLE]
        assert self._session().state is PlaybackState.STOPPED
        assert len(self.host.replies) == replies

    def test_unknown_handle_is_ignored(self):
        assert self.bob.on_text_message(99, "msg", USER, "ping") is None
        assert self.bob.on_fill_audio_buffer(99, np.zeros(4, dtype=np.int16), 2, 2, True) is False
        self.bob.on_identity_resolved(99, USER, 1)
        self.bob.on_group_resolved(99, 1, 5)
        assert self.host.replies == []

    def test_connection_removed(self):
        self._say("music start test://song")
        source = self.media.handles["test://song"]

        self.bob.on_connection_removed(HANDLE)

        assert source.closed
        assert self.bob.on_fill_audio_buffer(HANDLE, np.zeros(4, dtype=np.int16), 2, 2, True) is False

    def test_expire_pending(self, fake_host, fake_media):
        bob = AudioBob(fake_host, fake_media, BobSettings(identity_timeout=0.0))
        bob.on_connection_added(HANDLE)
        bob.on_text_message(HANDLE, "msg", USER, "exit")

        assert bob.expire_pending() == 1
        assert fake_host.last_reply == "Could not verify your permissions, please try again."

    def test_render_help_alignment(self):
        text = AudioBob.render_help([("ping", "Returns pong"), ("music volume <float>", "Sets volume")])
        lines = text.split("\n")

        assert lines[0] == "Available commands:"
        assert lines[1].index("Returns pong") == lines[2].index("Sets volume")
        assert AudioBob.render_help([]) == "No commands available"


class TestStripUrlTags:
    """测试聊天链接标签的去除"""

    def test_strip(self):
        assert strip_url_tags("[URL]http://a/b[/URL]") == "http://a/b"
        assert strip_url_tags("[url]x[/url] ") == "x"
        assert strip_url_tags("plain.mp3") == "plain.mp3"
