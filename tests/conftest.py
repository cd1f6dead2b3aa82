"""
Chutes & Climbs - Test Configuration and Fixtures

Common fixtures and test data for all test modules.
"""

import os

# Settings require Supabase credentials; tests never reach the network.
os.environ.setdefault("SUPABASE_URL", "http://localhost:54321")
os.environ.setdefault("SUPABASE_ANON_KEY", "test-anon-key")

import pytest

from chutes_climbs.config.settings import Settings, get_settings
from chutes_climbs.database.client import get_supabase_client
from chutes_climbs.engine.base import GameState, GameStatus, PlayerState
from chutes_climbs.engine.board import JUNGLE
from chutes_climbs.engine.turn import TurnEngine
from chutes_climbs.realtime.synchronizer import LocalSynchronizer
from tests.fakes import FakeSupabase


@pytest.fixture(autouse=True)
def _clear_cached_singletons():
    get_settings.cache_clear()
    get_supabase_client.cache_clear()
    yield
    get_settings.cache_clear()
    get_supabase_client.cache_clear()


@pytest.fixture
def settings() -> Settings:
    """Settings with every protocol delay switched off."""
    return Settings(
        supabase_url="http://localhost:54321",
        supabase_anon_key="test-anon-key",
        move_step_delay=0,
        turn_advance_delay=0,
        bot_think_delay=0,
        retry_backoff=0,
        finished_grace=5,
        host_left_grace=2,
    )


@pytest.fixture
def fake_client() -> FakeSupabase:
    return FakeSupabase()


@pytest.fixture
def local_sync(settings) -> LocalSynchronizer:
    return LocalSynchronizer(settings)


# =============================================================================
# GAME STATE DATA
# =============================================================================

@pytest.fixture
def two_players() -> tuple[PlayerState, PlayerState]:
    return (
        PlayerState(id="p1", name="Ada", player_order=0, is_host=True),
        PlayerState(id="p2", name="Bo", player_order=1),
    )


@pytest.fixture
def three_players() -> tuple[PlayerState, PlayerState, PlayerState]:
    return (
        PlayerState(id="p1", name="Ada", player_order=0, is_host=True),
        PlayerState(id="p2", name="Bo", player_order=1),
        PlayerState(id="p3", name="Cy", player_order=2),
    )


@pytest.fixture
def playing_state(three_players) -> GameState:
    """Three players on the jungle board, game started, Ada to roll."""
    state = TurnEngine.new_game(three_players, JUNGLE)
    state = TurnEngine.start_game(state)
    assert state.status == GameStatus.PLAYING
    return state

