"""Tests for chutes_climbs/database/cleanup.py."""

from datetime import datetime, timedelta, timezone

from chutes_climbs.database.cleanup import RoomJanitor
from tests.fakes import seed_player, seed_room

NOW = datetime(2026, 5, 1, 12, 0, tzinfo=timezone.utc)


def _ago(**delta) -> str:
    return (NOW - timedelta(**delta)).isoformat()


def _room_ids(client) -> set[str]:
    return {r["id"] for r in client.rows("game_rooms")}


class TestStalePlayers:
    def test_stale_player_removed_and_count_refreshed(self, fake_client, settings):
        room = seed_room(fake_client, current_players=2, last_activity=NOW.isoformat())
        stale = seed_player(fake_client, room["id"], last_active=_ago(minutes=5))
        seed_player(fake_client, room["id"], player_order=1, last_active=NOW.isoformat())

        report = RoomJanitor(fake_client, settings).run(NOW)

        assert report.stale_players == [stale["id"]]
        assert report.deleted_rooms == []
        assert fake_client.rows("game_rooms")[0]["current_players"] == 1

    def test_room_left_empty_is_deleted(self, fake_client, settings):
        room = seed_room(fake_client, last_activity=NOW.isoformat())
        seed_player(fake_client, room["id"], last_active=_ago(minutes=5))

        report = RoomJanitor(fake_client, settings).run(NOW)

        assert report.deleted_rooms == [room["id"]]
        assert fake_client.rows("game_rooms") == []
        assert fake_client.rows("game_players") == []

    def test_recent_heartbeat_survives(self, fake_client, settings):
        room = seed_room(fake_client, last_activity=NOW.isoformat())
        seed_player(fake_client, room["id"], last_active=_ago(seconds=60))

        report = RoomJanitor(fake_client, settings).run(NOW)

        assert report.stale_players == []
        assert _room_ids(fake_client) == {room["id"]}


class TestRunningGames:
    def _game(self, fake_client, names, stale=(), turn=0):
        room = seed_room(
            fake_client, status="playing", current_players=len(names), last_activity=NOW.isoformat()
        )
        players = [
            seed_player(
                fake_client,
                room["id"],
                player_name=name,
                player_order=i,
                is_host=i == 0,
                is_current_turn=i == turn,
                last_active=_ago(minutes=5) if name in stale else NOW.isoformat(),
            )
            for i, name in enumerate(names)
        ]
        return room, players

    def _turn_holders(self, fake_client):
        return [p["player_name"] for p in fake_client.rows("game_players") if p["is_current_turn"]]

    def test_stale_host_closes_room(self, fake_client, settings):
        self._game(fake_client, ["Ada", "Bo", "Cy"], stale={"Ada"})

        RoomJanitor(fake_client, settings).run(NOW)

        room = fake_client.rows("game_rooms")[0]
        assert room["status"] == "finished"
        assert room["winner_name"] is None
        assert self._turn_holders(fake_client) == []

    def test_last_opponent_stale_survivor_wins(self, fake_client, settings):
        self._game(fake_client, ["Ada", "Bo"], stale={"Bo"}, turn=1)

        RoomJanitor(fake_client, settings).run(NOW)

        room = fake_client.rows("game_rooms")[0]
        assert room["status"] == "finished"
        assert room["winner_name"] == "Ada"
        assert self._turn_holders(fake_client) == []

    def test_stale_turn_holder_passes_turn(self, fake_client, settings):
        self._game(fake_client, ["Ada", "Bo", "Cy"], stale={"Bo"}, turn=1)

        RoomJanitor(fake_client, settings).run(NOW)

        assert fake_client.rows("game_rooms")[0]["status"] == "playing"
        assert self._turn_holders(fake_client) == ["Cy"]

    def test_turn_wraps_to_first_player(self, fake_client, settings):
        self._game(fake_client, ["Ada", "Bo", "Cy"], stale={"Cy"}, turn=2)
        RoomJanitor(fake_client, settings).run(NOW)
        assert self._turn_holders(fake_client) == ["Ada"]

    def test_turn_kept_when_holder_still_here(self, fake_client, settings):
        self._game(fake_client, ["Ada", "Bo", "Cy"], stale={"Cy"}, turn=1)
        RoomJanitor(fake_client, settings).run(NOW)
        assert self._turn_holders(fake_client) == ["Bo"]


class TestRooms:
    def test_empty_room_deleted(self, fake_client, settings):
        room = seed_room(fake_client, current_players=0)
        assert RoomJanitor(fake_client, settings).run(NOW).deleted_rooms == [room["id"]]

    def test_finished_room_kept_within_grace(self, fake_client, settings):
        room = seed_room(fake_client, status="finished", ended_at=_ago(seconds=2))
        seed_player(fake_client, room["id"], last_active=NOW.isoformat())
        assert RoomJanitor(fake_client, settings).run(NOW).deleted_rooms == []

    def test_finished_room_deleted_after_grace(self, fake_client, settings):
        room = seed_room(fake_client, status="finished", ended_at=_ago(seconds=30))
        seed_player(fake_client, room["id"], last_active=NOW.isoformat())
        assert RoomJanitor(fake_client, settings).run(NOW).deleted_rooms == [room["id"]]

    def test_idle_waiting_room_deleted(self, fake_client, settings):
        idle = seed_room(fake_client, last_activity=_ago(minutes=30))
        busy = seed_room(fake_client, last_activity=_ago(minutes=1))
        seed_player(fake_client, idle["id"], last_active=NOW.isoformat())
        seed_player(fake_client, busy["id"], last_active=NOW.isoformat())

        RoomJanitor(fake_client, settings).run(NOW)

        assert _room_ids(fake_client) == {busy["id"]}

    def test_playing_room_never_idle_deleted(self, fake_client, settings):
        room = seed_room(fake_client, status="playing", last_activity=_ago(hours=2))
        seed_player(fake_client, room["id"], last_active=NOW.isoformat())
        RoomJanitor(fake_client, settings).run(NOW)
        assert _room_ids(fake_client) == {room["id"]}

    def test_room_counted_once(self, fake_client, settings):
        room = seed_room(fake_client, status="finished", current_players=0, ended_at=_ago(minutes=5))
        report = RoomJanitor(fake_client, settings).run(NOW)
        assert report.deleted_rooms == [room["id"]]
        assert report.deleted_count == 1


class TestDeleteRoom:
    def test_cascades(self, fake_client, settings):
        room = seed_room(fake_client)
        other = seed_room(fake_client)
        seed_player(fake_client, room["id"])
        fake_client.seed("move_history", room_id=room["id"])
        fake_client.seed("move_history", room_id=other["id"])

        RoomJanitor(fake_client, settings).delete_room(room["id"])

        assert _room_ids(fake_client) == {other["id"]}
        assert fake_client.rows("game_players") == []
        assert [r["room_id"] for r in fake_client.rows("move_history")] == [other["id"]]
