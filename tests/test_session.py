from __future__ import annotations

import asyncio

import pytest

from oversessions.session import SessionRegistry, SessionState, Transition, classify
from tests.conftest import DISCORD_USER_A, DISCORD_USER_B, make_snapshot


class TestClassify:
    @pytest.mark.parametrize(
        ("prev", "next_", "expected"),
        [
            (False, True, Transition.STARTED),
            (True, False, Transition.STOPPED),
            (True, True, Transition.NO_CHANGE),
            (False, False, Transition.NO_CHANGE),
        ],
    )
    def test_truth_table(self, prev: bool, next_: bool, expected: Transition):
        assert classify(prev, next_) is expected


class TestDebounce:
    def test_first_transition_is_never_recent(self):
        state = SessionState(user_id=DISCORD_USER_A)
        assert not state.recently_updated(now=0.0)
        assert state.observe(True, now=0.0) is Transition.STARTED

    def test_transition_inside_window_is_ignored(self):
        state = SessionState(user_id=DISCORD_USER_A)
        state.apply(state.observe(True, now=100.0), now=100.0)

        assert state.observe(False, now=101.5) is Transition.NO_CHANGE
        assert state.playing is True

    def test_transition_after_window_counts(self):
        state = SessionState(user_id=DISCORD_USER_A)
        state.apply(state.observe(True, now=100.0), now=100.0)

        assert state.observe(False, now=102.0) is Transition.STOPPED

    def test_rapid_flicker_collapses_to_one_transition(self):
        state = SessionState(user_id=DISCORD_USER_A)
        effective = []
        for now, playing in [(10.0, True), (10.2, False), (10.4, True), (11.9, False)]:
            transition = state.observe(playing, now=now)
            state.apply(transition, now=now)
            if transition is not Transition.NO_CHANGE:
                effective.append(transition)

        assert effective == [Transition.STARTED]

    def test_repeated_playing_signal_is_no_change(self):
        state = SessionState(user_id=DISCORD_USER_A, playing=True, timestamp=0.0)
        assert state.observe(True, now=500.0) is Transition.NO_CHANGE

    def test_timestamp_is_monotonic(self):
        state = SessionState(user_id=DISCORD_USER_A, timestamp=50.0)
        state.apply(Transition.STARTED, now=40.0)
        assert state.timestamp == 50.0
        state.apply(Transition.STOPPED, now=60.0)
        assert state.timestamp == 60.0

    def test_no_change_leaves_state_untouched(self):
        state = SessionState(user_id=DISCORD_USER_A, timestamp=5.0)
        state.apply(Transition.NO_CHANGE, now=100.0)
        assert state.timestamp == 5.0
        assert state.playing is False


class TestSessionRegistry:
    def test_from_battle_tags_creates_states(self):
        registry = SessionRegistry.from_battle_tags({DISCORD_USER_A: "Alice#1234"})
        registry.ensure(DISCORD_USER_B)

        assert len(registry) == 2
        assert registry.get(DISCORD_USER_A).battle_tag == "Alice#1234"
        assert registry.get(DISCORD_USER_B).battle_tag is None

    def test_each_state_has_its_own_lock(self):
        registry = SessionRegistry.from_battle_tags({DISCORD_USER_A: "A#1", DISCORD_USER_B: "B#2"})
        assert registry.get(DISCORD_USER_A).lock is not registry.get(DISCORD_USER_B).lock

    async def test_bind_battle_tag_creates_and_resets_snapshot(self):
        registry = SessionRegistry()
        state = await registry.bind_battle_tag(DISCORD_USER_A, "Alice#1234")
        state.snapshot = make_snapshot(2500)

        await registry.bind_battle_tag(DISCORD_USER_A, "Alice#1234")
        assert state.snapshot is not None

        await registry.bind_battle_tag(DISCORD_USER_A, "Other#999")
        assert state.battle_tag == "Other#999"
        assert state.snapshot is None

    async def test_bind_waits_for_held_lock(self):
        registry = SessionRegistry.from_battle_tags({DISCORD_USER_A: "Alice#1234"})
        state = registry.get(DISCORD_USER_A)

        async with state.lock:
            task = asyncio.create_task(registry.bind_battle_tag(DISCORD_USER_A, "New#1"))
            await asyncio.sleep(0.01)
            assert not task.done()
            assert state.battle_tag == "Alice#1234"
        await task
        assert state.battle_tag == "New#1"

    def test_display_name_fallbacks(self):
        assert SessionState(user_id="1", battle_tag="Tag#1", username="Al").display_name == "Al"
        assert SessionState(user_id="1", battle_tag="Tag#1").display_name == "Tag#1"
        assert SessionState(user_id="1").display_name == "1"
