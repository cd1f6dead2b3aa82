"""Tests for chutes_climbs/realtime/synchronizer.py."""

from datetime import datetime, timedelta, timezone
from unittest.mock import MagicMock

import httpx
import pytest
from postgrest.exceptions import APIError

from chutes_climbs.engine.base import GameStatus, MoveEvent, MoveType, PlayerState
from chutes_climbs.errors import (
    AvatarTaken,
    ChannelUnavailable,
    RoomFull,
    RoomNotFound,
    StoreWriteFailed,
)
from chutes_climbs.realtime import events
from chutes_climbs.realtime.events import GameEvent
from chutes_climbs.realtime.sync_manager import RealtimeManager
from chutes_climbs.realtime.synchronizer import HOST_LEFT_MESSAGE, SupabaseSynchronizer
from tests.fakes import seed_room


def _sent_types(channel) -> list[str]:
    return [c.args[1]["type"] for c in channel.send.call_args_list]


def _move(player, start, end, roll, move_type=MoveType.NORMAL) -> MoveEvent:
    return MoveEvent(str(player.id), player.player_name, start, end, roll, move_type)


@pytest.fixture
def channel():
    return MagicMock()


@pytest.fixture
def timers():
    return MagicMock()


@pytest.fixture
def sync(fake_client, settings, channel, timers):
    realtime = RealtimeManager(fake_client, channel_manager=channel)
    return SupabaseSynchronizer(
        fake_client, settings, realtime=realtime, timer_factory=timers, sleep=MagicMock()
    )


@pytest.fixture
def room_of_two(sync):
    room, host = sync.create_session("Friday", "Ada", avatar=1)
    _, guest, _ = sync.join_session(room.room_code, "Bo", avatar=2)
    return room, host, guest


# =============================================================================
# Supabase-backed synchronizer
# =============================================================================

class TestCreateAndJoin:
    def test_create_session(self, sync, fake_client):
        room, host = sync.create_session("", "Ada")

        assert room.name == "Ada's room"
        assert room.board_theme == "default"
        assert host.is_host
        assert host.player_order == 0
        assert len(fake_client.rows("game_players")) == 1

    def test_unknown_board_falls_back(self, sync):
        room, _ = sync.create_session("Friday", "Ada", board_theme_id="lava")
        assert room.board_theme == "default"

    def test_blank_host_name_rejected(self, sync):
        with pytest.raises(ValueError):
            sync.create_session("Friday", "   ")

    def test_join_assigns_next_order(self, sync, room_of_two, fake_client):
        room, _, guest = room_of_two
        assert guest.player_order == 1
        assert fake_client.rows("game_rooms")[0]["current_players"] == 2

    def test_join_returns_roster(self, sync, room_of_two):
        room, host, guest = room_of_two
        _, third, players = sync.join_session(room.room_code.lower(), "Cy")
        assert [p.id for p in players] == [host.id, guest.id, third.id]

    def test_join_does_not_broadcast(self, sync, room_of_two, channel):
        channel.send.assert_not_called()

    def test_join_unknown_code(self, sync):
        with pytest.raises(RoomNotFound):
            sync.join_session("ZZZZZZ", "Bo")

    def test_join_malformed_code(self, sync):
        with pytest.raises(RoomNotFound):
            sync.join_session("abc", "Bo")

    def test_join_started_room(self, sync, room_of_two):
        room, host, _ = room_of_two
        sync.start_session(str(room.id), str(host.id))
        with pytest.raises(RoomNotFound):
            sync.join_session(room.room_code, "Cy")

    def test_join_full_room(self, sync, room_of_two):
        room, _, _ = room_of_two
        sync.join_session(room.room_code, "Cy")
        sync.join_session(room.room_code, "Di")
        with pytest.raises(RoomFull):
            sync.join_session(room.room_code, "Ed")

    def test_join_taken_avatar(self, sync, room_of_two):
        room, _, _ = room_of_two
        with pytest.raises(AvatarTaken):
            sync.join_session(room.room_code, "Cy", avatar=2)

    def test_taken_avatars(self, sync, room_of_two):
        room, _, _ = room_of_two
        assert sync.taken_avatars(room.room_code) == {1, 2}


class TestListOpenSessions:
    def test_runs_cleanup_first(self, sync, fake_client):
        old = (datetime.now(timezone.utc) - timedelta(hours=2)).isoformat()
        seed_room(fake_client, room_code="IDLE22", current_players=1, last_activity=old, created_at=old)
        room, _ = sync.create_session("Fresh", "Ada")

        assert [r.room_code for r in sync.list_open_sessions()] == [room.room_code]

    def test_cleanup_failure_does_not_block_listing(self, fake_client, settings, channel):
        janitor = MagicMock()
        janitor.run.side_effect = APIError({"message": "boom", "code": "500", "hint": None, "details": None})
        sync = SupabaseSynchronizer(
            fake_client, settings,
            realtime=RealtimeManager(fake_client, channel_manager=channel),
            janitor=janitor,
        )
        room, _ = sync.create_session("Fresh", "Ada")
        assert [r.room_code for r in sync.list_open_sessions()] == [room.room_code]


class TestGameFlow:
    def test_start_session(self, sync, room_of_two, fake_client, channel):
        room, host, guest = room_of_two
        sync.start_session(str(room.id), str(host.id), sender_id=str(host.id))

        snapshot = sync.get_snapshot(str(room.id))
        assert snapshot["room"].status == GameStatus.PLAYING
        assert [p.is_current_turn for p in snapshot["players"]] == [True, False]
        assert _sent_types(channel) == ["game_started"]
        assert channel.send.call_args.args[1]["sender_id"] == str(host.id)

    def test_report_move_with_bump(self, sync, room_of_two, channel):
        room, host, guest = room_of_two
        move = _move(host, 1, 5, 4)
        bump = _move(guest, 5, 3, 0, MoveType.COLLISION)

        sync.report_move(str(room.id), move, bump)

        snapshot = sync.get_snapshot(str(room.id))
        assert [p.position for p in snapshot["players"]] == [5, 3]
        assert snapshot["history"] == [move, bump]
        assert _sent_types(channel) == ["player_moved", "player_moved"]
        assert channel.send.call_args_list[1].args[1]["data"]["move_type"] == "collision"

    def test_history_failure_still_broadcasts(self, sync, room_of_two, fake_client, channel):
        room, host, _ = room_of_two
        fake_client.fail(
            "move_history",
            APIError({"message": "insert denied", "code": "42501", "hint": None, "details": None}),
        )

        sync.report_move(str(room.id), _move(host, 1, 4, 3))

        assert _sent_types(channel) == ["player_moved"]
        assert sync.get_snapshot(str(room.id))["history"] == []

    def test_advance_turn(self, sync, room_of_two, channel):
        room, host, guest = room_of_two
        sync.start_session(str(room.id), str(host.id))
        sync.advance_turn(str(room.id), 1, str(guest.id))

        players = sync.get_snapshot(str(room.id))["players"]
        assert [p.is_current_turn for p in players] == [False, True]
        message = channel.send.call_args.args[1]
        assert message["type"] == "turn_changed"
        assert message["data"] == {"next_turn_index": 1, "player_id": str(guest.id)}

    def test_end_session(self, sync, room_of_two, fake_client, channel, timers, settings):
        room, host, guest = room_of_two
        room_id = str(room.id)
        sync.report_move(room_id, _move(host, 95, 100, 5))
        roster = [
            PlayerState(id=str(host.id), name="Ada"),
            PlayerState(id=str(guest.id), name="Bo"),
            PlayerState(id="bot-1", name="Bot Bob", is_bot=True),
        ]

        sync.end_session(room_id, "Ada", roster)

        assert sync.get_snapshot(room_id)["room"].status == GameStatus.FINISHED
        assert _sent_types(channel)[-1] == "game_ended"
        assert fake_client.rpc_calls == [
            ("update_player_stats", {"p_player_name": "Ada", "p_won": True, "p_moves": 1}),
            ("update_player_stats", {"p_player_name": "Bo", "p_won": False, "p_moves": 0}),
        ]
        timers.assert_called_once_with(settings.finished_grace, sync._delete_room, args=(room_id,))
        timers.return_value.start.assert_called_once()

    def test_end_session_clears_turn(self, sync, room_of_two):
        room, host, _ = room_of_two
        room_id = str(room.id)
        sync.start_session(room_id, str(host.id))

        sync.end_session(room_id, "Ada")

        players = sync.get_snapshot(room_id)["players"]
        assert [p.is_current_turn for p in players] == [False, False]

    def test_end_session_schedules_delete_even_if_broadcast_fails(self, sync, room_of_two, channel, timers):
        room, _, _ = room_of_two
        channel.send.side_effect = ChannelUnavailable("offline")

        with pytest.raises(ChannelUnavailable):
            sync.end_session(str(room.id), "Ada")

        timers.return_value.start.assert_called_once()

    def test_deferred_delete_removes_room(self, sync, room_of_two, fake_client):
        room, _, _ = room_of_two
        sync._delete_room(str(room.id))
        assert fake_client.rows("game_rooms") == []
        assert fake_client.rows("game_players") == []


class TestLeave:
    def test_host_leaving_ends_room(self, sync, room_of_two, fake_client, channel, timers, settings):
        room, host, _ = room_of_two
        room_id = str(room.id)

        sync.leave_session(room_id, str(host.id), is_host=True)

        message = channel.send.call_args.args[1]
        assert message["type"] == "host_left"
        assert message["data"]["message"] == HOST_LEFT_MESSAGE
        assert fake_client.rows("game_rooms")[0]["status"] == "finished"
        assert len(fake_client.rows("game_players")) == 1
        timers.assert_called_once_with(settings.host_left_grace, sync._delete_room, args=(room_id,))

    def test_host_leaving_clears_turn(self, sync, room_of_two):
        room, host, guest = room_of_two
        room_id = str(room.id)
        sync.start_session(room_id, str(guest.id))

        sync.leave_session(room_id, str(host.id), is_host=True)

        players = sync.get_snapshot(room_id)["players"]
        assert [(p.player_name, p.is_current_turn) for p in players] == [("Bo", False)]

    def test_guest_leaving(self, sync, room_of_two, fake_client, channel):
        room, _, guest = room_of_two
        sync.leave_session(str(room.id), str(guest.id))

        assert _sent_types(channel) == ["player_left"]
        assert fake_client.rows("game_rooms")[0]["current_players"] == 1

    def test_leaving_on_turn_passes_it_on(self, sync, room_of_two, channel):
        room, host, guest = room_of_two
        room_id = str(room.id)
        _, third, _ = sync.join_session(room.room_code, "Cy")
        sync.start_session(room_id, str(guest.id))

        sync.leave_session(room_id, str(guest.id), next_player_id=str(third.id))

        assert _sent_types(channel)[-2:] == ["player_left", "turn_changed"]
        assert channel.send.call_args.args[1]["data"]["next_turn_index"] == 1
        players = sync.get_snapshot(room_id)["players"]
        assert [p.is_current_turn for p in players] == [False, True]

    def test_last_player_leaving_deletes_room(self, sync, fake_client, channel):
        room, host = sync.create_session("Solo", "Ada")
        sync.leave_session(str(room.id), str(host.id))

        assert fake_client.rows("game_rooms") == []
        channel.send.assert_not_called()


    def test_leave_retries_transient_errors(self, sync, room_of_two, fake_client):
        room, _, guest = room_of_two
        fake_client.fail("game_players", httpx.ConnectError("down"))

        sync.leave_session(str(room.id), str(guest.id))

        assert [p["player_name"] for p in fake_client.rows("game_players")] == ["Ada"]
        assert fake_client.rows("game_rooms")[0]["current_players"] == 1

    def test_leave_gives_up_with_store_error(self, sync, room_of_two, fake_client, settings):
        room, _, guest = room_of_two
        fake_client.fail(
            "game_players", httpx.ConnectError("down"), times=settings.store_retries + 1
        )
        with pytest.raises(StoreWriteFailed):
            sync.leave_session(str(room.id), str(guest.id))

    def test_last_player_delete_retried(self, sync, fake_client):
        room, host = sync.create_session("Solo", "Ada")
        fake_client.fail("move_history", httpx.ReadTimeout("slow"))

        sync.leave_session(str(room.id), str(host.id))

        assert fake_client.rows("game_rooms") == []


class TestBroadcastAndRetry:
    def test_non_critical_failure_dropped(self, sync, channel):
        channel.send.side_effect = ChannelUnavailable("offline")
        sync.broadcast(events.player_moved("r1", "p1", 5))
        assert channel.send.call_count == 1

    def test_critical_retried(self, sync, channel):
        channel.send.side_effect = [ChannelUnavailable("blip"), None]
        sync.broadcast(events.game_started("r1"))
        assert channel.send.call_count == 2

    def test_critical_gives_up(self, sync, channel, settings):
        channel.send.side_effect = ChannelUnavailable("offline")
        with pytest.raises(ChannelUnavailable):
            sync.broadcast(events.turn_changed("r1", 1, "p2"))
        assert channel.send.call_count == settings.store_retries + 1

    def test_heartbeat_retries_transient_errors(self, sync, room_of_two, fake_client):
        _, host, _ = room_of_two
        fake_client.fail("game_players", ConnectionError("reset"))
        sync.heartbeat(str(host.id))

    def test_heartbeat_gives_up(self, sync, room_of_two, fake_client, settings):
        _, host, _ = room_of_two
        fake_client.fail("game_players", ConnectionError("reset"), times=settings.store_retries + 1)
        with pytest.raises(StoreWriteFailed):
            sync.heartbeat(str(host.id))

    def test_subscribe_delegates(self, sync, channel):
        callback = MagicMock()
        sync.subscribe("r1", callback)
        sync.unsubscribe("r1")
        channel.subscribe.assert_called_once_with("r1", callback)
        channel.unsubscribe.assert_called_once_with("r1")


# =============================================================================
# In-memory synchronizer
# =============================================================================

class TestLocalSynchronizer:
    def test_create_and_join(self, local_sync):
        room, host = local_sync.create_session("Friday", "Ada", avatar=1)
        room, guest, players = local_sync.join_session(room.room_code, "Bo")

        assert room.current_players == 2
        assert [p.player_order for p in players] == [0, 1]
        assert host.player_color != guest.player_color

    def test_join_errors(self, local_sync):
        room, _ = local_sync.create_session("Friday", "Ada", avatar=1)
        with pytest.raises(RoomNotFound):
            local_sync.join_session("ZZZZZZ", "Bo")
        with pytest.raises(AvatarTaken):
            local_sync.join_session(room.room_code, "Bo", avatar=1)
        for name in ("Bo", "Cy", "Di"):
            local_sync.join_session(room.room_code, name)
        with pytest.raises(RoomFull):
            local_sync.join_session(room.room_code, "Ed")

    def test_list_open_newest_first(self, local_sync):
        first, _ = local_sync.create_session("One", "Ada")
        second, host = local_sync.create_session("Two", "Bo")
        local_sync.start_session(str(second.id), str(host.id))
        third, _ = local_sync.create_session("Three", "Cy")
        base = datetime(2026, 5, 1, tzinfo=timezone.utc)
        for offset, room in enumerate((first, second, third)):
            room_id = str(room.id)
            local_sync.rooms[room_id] = local_sync.rooms[room_id].model_copy(
                update={"created_at": base + timedelta(minutes=offset)}
            )

        assert [r.name for r in local_sync.list_open_sessions()] == ["Three", "One"]

    def test_broadcast_reaches_subscribers(self, local_sync):
        received = []
        local_sync.subscribe("r1", received.append)
        local_sync.broadcast(events.game_started("r1"))
        local_sync.broadcast(events.game_started("r2"))

        assert [p.room_id for p in received] == ["r1"]
        assert len(local_sync.sent) == 2

    def test_unsubscribe(self, local_sync):
        received = []
        local_sync.subscribe("r1", received.append)
        local_sync.unsubscribe("r1")
        local_sync.broadcast(events.game_started("r1"))
        assert received == []

    def test_moves_recorded(self, local_sync):
        room, host = local_sync.create_session("Friday", "Ada")
        move = MoveEvent(str(host.id), "Ada", 1, 22, 2, MoveType.CLIMB)
        local_sync.report_move(str(room.id), move)

        snapshot = local_sync.get_snapshot(str(room.id))
        assert snapshot["players"][0].position == 22
        assert snapshot["history"] == [move]

    def test_end_session_clears_turn(self, local_sync):
        room, host = local_sync.create_session("Friday", "Ada")
        local_sync.join_session(room.room_code, "Bo")
        room_id = str(room.id)
        local_sync.start_session(room_id, str(host.id))

        local_sync.end_session(room_id, "Ada")

        snapshot = local_sync.get_snapshot(room_id)
        assert snapshot["room"].winner_name == "Ada"
        assert not any(p.is_current_turn for p in snapshot["players"])

    def test_host_leaving_deletes_room(self, local_sync):
        room, host = local_sync.create_session("Friday", "Ada")
        local_sync.join_session(room.room_code, "Bo")
        received = []
        local_sync.subscribe(str(room.id), received.append)

        local_sync.leave_session(str(room.id), str(host.id), is_host=True)

        assert [p.event for p in received] == [GameEvent.HOST_LEFT]
        assert local_sync.get_snapshot(str(room.id))["room"] is None
        assert local_sync.players == {}

    def test_heartbeat(self, local_sync):
        room, host = local_sync.create_session("Friday", "Ada")
        before = local_sync.players[str(host.id)].last_active
        local_sync.heartbeat(str(host.id))
        assert local_sync.players[str(host.id)].last_active >= before
        local_sync.heartbeat("ghost")
