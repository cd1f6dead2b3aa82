"""Tests for chutes_climbs/realtime/presence.py."""

import threading
from unittest.mock import MagicMock

from chutes_climbs.errors import StoreWriteFailed
from chutes_climbs.realtime.presence import HeartbeatMonitor
from chutes_climbs.realtime.session import GameSession


class TestBeat:
    def test_writes_each_player(self):
        sync = MagicMock()
        monitor = HeartbeatMonitor(sync, lambda: ["p1", "p2"], interval=1)

        assert monitor.beat() == 2
        assert [c.args[0] for c in sync.heartbeat.call_args_list] == ["p1", "p2"]

    def test_failure_skips_player(self):
        sync = MagicMock()
        sync.heartbeat.side_effect = [StoreWriteFailed("down"), None]
        monitor = HeartbeatMonitor(sync, lambda: ["p1", "p2"], interval=1)

        assert monitor.beat() == 1

    def test_ids_read_on_every_beat(self):
        ids = ["p1"]
        sync = MagicMock()
        monitor = HeartbeatMonitor(sync, lambda: ids, interval=1)
        monitor.beat()
        ids.append("bot-1")
        monitor.beat()
        assert sync.heartbeat.call_count == 3

    def test_default_interval_from_settings(self):
        assert HeartbeatMonitor(MagicMock(), list).interval == 30


class TestThread:
    def test_start_and_stop(self):
        beaten = threading.Event()
        sync = MagicMock()
        sync.heartbeat.side_effect = lambda player_id: beaten.set()
        monitor = HeartbeatMonitor(sync, lambda: ["p1"], interval=0.01)

        monitor.start()
        try:
            assert beaten.wait(timeout=2)
            assert monitor.running
        finally:
            monitor.stop()

        assert not monitor.running

    def test_start_twice_keeps_one_thread(self):
        monitor = HeartbeatMonitor(MagicMock(), lambda: [], interval=0.01)
        monitor.start()
        try:
            thread = monitor._thread
            monitor.start()
            assert monitor._thread is thread
        finally:
            monitor.stop()


class TestSessionHeartbeat:
    def test_host_keeps_bots_alive(self, local_sync, settings):
        host = GameSession.create(local_sync, "Friday", "Ada", settings=settings, sleep=MagicMock())
        _, bot, _ = local_sync.join_session(host.room.room_code, "Bot Bob", is_bot=True)
        host.add_player(bot)
        guest = GameSession.join(local_sync, host.room.room_code, "Bo", settings=settings, sleep=MagicMock())

        assert HeartbeatMonitor(MagicMock(), host.controlled_player_ids, 1).beat() == 2
        assert guest.controlled_player_ids() == [guest.local_player_id]

    def test_leave_stops_heartbeat(self, local_sync, settings):
        host = GameSession.create(local_sync, "Friday", "Ada", settings=settings, sleep=MagicMock())
        monitor = host.start_heartbeat(interval=0.01)
        assert monitor.running

        host.leave()

        assert not monitor.running
