"""Tests for the fixed-rate game loop."""
import asyncio

import pytest

from pixelsingularity.game_loop import GameLoop, LoopConfig


class SecondsClock:
    def __init__(self):
        self.now = 100.0

    def __call__(self):
        return self.now


@pytest.fixture
def loop_clock():
    return SecondsClock()


@pytest.fixture
def loop(loop_clock):
    game_loop = GameLoop(LoopConfig(tick_rate=20, max_delta=0.1), clock=loop_clock)
    deltas = []
    game_loop.set_tick_callback(deltas.append)
    game_loop.deltas = deltas
    return game_loop


class TestGameLoop:
    def test_tick_interval(self):
        assert LoopConfig(tick_rate=20).tick_interval == 0.05

    def test_step_passes_elapsed_time(self, loop, loop_clock):
        loop.start()
        loop_clock.now += 0.05
        loop.step()
        assert loop.deltas == [pytest.approx(0.05)]
        assert loop.tick_count == 1

    def test_delta_is_clamped(self, loop, loop_clock):
        loop.start()
        loop_clock.now += 5.0
        assert loop.step() == 0.1

    def test_stopped_loop_does_not_tick(self, loop):
        assert loop.step() is None
        assert loop.deltas == []

    def test_resume_skips_paused_time(self, loop, loop_clock):
        loop.start()
        loop_clock.now += 0.05
        loop.step()
        loop.pause()
        assert loop.step() is None
        loop_clock.now += 3600
        loop.resume()
        loop_clock.now += 0.001
        delta = loop.step()
        assert delta == pytest.approx(0.001)

    def test_visibility_callbacks(self, loop, loop_clock):
        hidden = []
        shown = []
        loop.set_visibility_callbacks(lambda: hidden.append(True), shown.append)
        loop.start()
        loop.set_visibility(True)
        assert loop.is_paused
        loop_clock.now += 120
        loop.set_visibility(False)
        assert loop.is_running
        assert hidden == [True]
        assert shown == [pytest.approx(120)]

    def test_callback_errors_are_contained(self, loop_clock):
        game_loop = GameLoop(clock=loop_clock)

        def broken(dt):
            raise RuntimeError("tick failed")

        game_loop.set_tick_callback(broken)
        game_loop.start()
        loop_clock.now += 0.05
        game_loop.step()
        assert game_loop.tick_count == 1

    def test_stats(self, loop, loop_clock):
        loop.start()
        for _ in range(11):
            loop_clock.now += 0.05
            loop.step()
        stats = loop.get_stats()
        assert stats.total_ticks == 11
        assert stats.current_tps == pytest.approx(20.0)
        assert stats.is_running
        assert stats.p95_tick_time >= 0.0

    def test_stop_resets_counters(self, loop, loop_clock):
        loop.start()
        loop_clock.now += 0.05
        loop.step()
        loop.stop()
        assert loop.tick_count == 0
        assert loop.get_stats().current_tps == 0.0

    def test_run_until_stopped(self):
        game_loop = GameLoop(LoopConfig(tick_rate=1000))
        ticks = []

        def on_tick(dt):
            ticks.append(dt)
            if len(ticks) == 3:
                game_loop.stop()

        game_loop.set_tick_callback(on_tick)
        asyncio.run(game_loop.run())
        assert len(ticks) == 3
