"""Tests for the Game orchestrator."""
import asyncio
import base64
import json

import pytest

from pixelsingularity import events
from pixelsingularity.bignum import D, ZERO
from pixelsingularity.game import Game
from pixelsingularity.storage import MemoryStorage

HOUR_MS = 3600 * 1000


class FakeSeconds:
    def __init__(self, now=100.0):
        self.now = now

    def __call__(self):
        return self.now


def edit_export(text, edit):
    wire = json.loads(base64.b64decode(text))
    edit(wire['state'])
    return base64.b64encode(json.dumps(wire).encode()).decode()


# ─────────────────────────────────────────────────────
# Lifecycle
# ─────────────────────────────────────────────────────

class TestLifecycle:
    def test_new_game_announced(self, game_config, clock):
        game = Game(game_config, storage=MemoryStorage(), clock=clock)
        seen = []
        game.event_bus.subscribe(events.GAME_INITIALIZED, seen.append)
        assert game.init() is True
        assert seen == [{'timestamp': clock.now, 'isNewGame': True}]
        assert game.phases.current_phase == 1
        assert game.resources.is_unlocked('pixels')

    def test_tick_order_and_event(self, game):
        seen = []
        game.event_bus.subscribe(events.TICK, seen.append)
        game.tick(0.05)
        assert seen == [{'deltaTime': 0.05, 'totalTime': 0.05, 'tickCount': 1}]
        assert game.run_time == 0.05

    def test_pause_and_resume(self, game, clock):
        resumed = []
        game.event_bus.subscribe(events.GAME_RESUMED, resumed.append)
        game.pause('menu')
        game.tick(0.05)
        assert game.tick_count == 0
        clock.advance(5000)
        game.resume()
        assert resumed[0]['pauseDuration'] == 5000
        game.tick(0.05)
        assert game.tick_count == 1

    def test_deferred_work_runs_on_tick(self, game):
        calls = []

        def first():
            calls.append('first')
            game.defer(calls.append, 'second')

        game.defer(first)
        assert calls == []
        game.tick(0.05)
        assert calls == ['first']
        game.tick(0.05)
        assert calls == ['first', 'second']

    def test_failing_deferred_work_is_contained(self, game):
        calls = []

        def broken():
            raise RuntimeError("story broke")

        game.defer(broken)
        game.defer(calls.append, 'after')
        game.tick(0.05)
        assert calls == ['after']


    def test_visibility_pauses_and_resumes(self, game_config, clock):
        loop_clock = FakeSeconds()
        game = Game(game_config, storage=MemoryStorage(), clock=clock, loop_clock=loop_clock)
        game.init()
        paused, resumed = [], []
        game.event_bus.subscribe(events.GAME_PAUSED, paused.append)
        game.event_bus.subscribe(events.GAME_RESUMED, resumed.append)

        game.set_visibility(True)
        assert paused == [{'reason': 'visibility', 'timestamp': clock.now}]
        assert game.save_manager.has_save()
        loop_clock.now += 2.5
        game.set_visibility(False)
        assert resumed == [{'pauseDuration': 2500, 'timestamp': clock.now}]
        game.destroy()

    def test_event_bus_debug_follows_config(self, game_config, clock):
        quiet = Game(game_config.updated(DEBUG=False), storage=MemoryStorage(), clock=clock)
        loud = Game(game_config.updated(DEBUG=True), storage=MemoryStorage(), clock=clock)
        assert quiet.event_bus.debug is False
        assert loud.event_bus.debug is True


# ─────────────────────────────────────────────────────
# Clicking and buying
# ─────────────────────────────────────────────────────

class TestActions:
    def test_click(self, game):
        assert game.click() == D(1)
        assert game.resources.get_amount('pixels') == D(1)
        assert game.total_clicks == 1

    def test_click_bonuses(self, game):
        game.resources.add('pixels', 20)
        assert game.purchase_upgrade('pixel_boost_1').success
        assert game.get_click_value() == D('1.5')
        assert game.buy_producer('click_booster').success
        # (base 1 + click booster 1) x 1.5
        assert game.get_click_value() == D(3)

    def test_click_disabled_in_abstract_phases(self, game):
        game.phases.debug_set_phase(11)
        assert game.click() == ZERO
        assert game.resources.get_amount('pixels') == ZERO

    def test_unclickable_resource(self, game):
        with pytest.raises(ValueError):
            game.click('red')

    def test_unknown_ids_raise(self, game):
        with pytest.raises(ValueError):
            game.buy_producer('time_machine')
        with pytest.raises(ValueError):
            game.purchase_upgrade('infinite_pixels')

    def test_producers_generate_on_tick(self, game):
        game.resources.add('pixels', 15)
        assert game.buy_producer('pixel_generator').success
        game.tick(1.0)
        assert game.resources.get_amount('pixels') == D('0.1')

    def test_auto_clicker(self, game):
        game.resources.add('pixels', 50)
        assert game.purchase_upgrade('auto_clicker_1').success
        assert game.is_feature_unlocked('auto_click')
        game.tick(1.0)
        assert game.resources.get_amount('pixels') == D(1)

    def test_achievement_reward_unlocks_upgrade(self, game):
        game.resources.add('pixels', 50)
        game.purchase_upgrade('auto_clicker_1')
        assert game.achievements.has_achievement('automation')
        assert game.upgrades.is_unlocked('multi_click')

    def test_first_pixel_achievement(self, game):
        game.click()
        game.tick(0.05)
        assert game.achievements.has_achievement('first_pixel')


# ─────────────────────────────────────────────────────
# Phases
# ─────────────────────────────────────────────────────

class TestPhases:
    def test_advancing_unlocks_phase_content(self, game):
        game.resources.add('pixels', 64)
        assert game.phases.advance_now()
        assert game.phases.current_phase == 2
        assert game.producers.is_unlocked('red_extractor')
        assert game.resources.is_unlocked('red')
        assert game.upgrades.is_unlocked('generator_overclock')
        assert game.highest_phase_ever == 2
        assert '1' in game.fastest_phase_times

    def test_async_advance(self, game_config, clock):
        sleeps = []

        async def fake_sleep(seconds):
            sleeps.append(seconds)

        game = Game(game_config, storage=MemoryStorage(), clock=clock, sleep=fake_sleep)
        game.init()
        game.resources.add('pixels', 64)
        assert asyncio.run(game.advance_phase()) is True
        assert game.phases.current_phase == 2
        assert len(sleeps) == 4

    def test_choice(self, game):
        game.make_choice('first_words', 'hello')
        assert game.get_choice_value('first_words') == 'hello'


# ─────────────────────────────────────────────────────
# Rebirth
# ─────────────────────────────────────────────────────

class TestRebirth:
    def test_not_available_early(self, game):
        assert not game.can_rebirth()
        assert game.rebirth() is None

    def test_rebirth(self, game):
        game.phases.debug_set_phase(5)
        game.resources.add('pixels', 20_000_000)
        assert game.can_rebirth()
        assert game.calculate_rebirth_gain() == D(2)
        before = game.resources.get_amount('primordial_pixels')
        completed = []
        game.event_bus.subscribe(events.REBIRTH_COMPLETED, completed.append)

        assert game.rebirth() == D(2)
        assert game.resources.get_amount('primordial_pixels') - before == D(2)
        assert game.resources.get_amount('pixels') == ZERO
        assert game.phases.current_phase == 1
        assert game.total_rebirths == 1
        assert completed[0]['rebirthCount'] == 1

    def test_minimum_gain_is_one(self, game):
        game.phases.debug_set_phase(5)
        game.resources.add('pixels', 1_000_000)
        assert game.calculate_rebirth_gain() == D(1)

    def test_eternal_upgrades_survive(self, game):
        game.resources.unlock('primordial_pixels')
        game.resources.add('primordial_pixels', 10)
        assert game.purchase_upgrade('primordial_head_start').success
        game.phases.debug_set_phase(5)
        game.resources.add('pixels', 1_000_000)
        game.rebirth()
        assert game.upgrades.get_level('primordial_head_start') == 1
        assert game.resources.get_amount('pixels') == D(100)


# ─────────────────────────────────────────────────────
# Persistence
# ─────────────────────────────────────────────────────

class TestPersistence:
    def test_save_and_load(self, game, storage, game_config, clock):
        game.resources.add('pixels', 100)
        game.buy_producer('pixel_generator')
        game.purchase_upgrade('pixel_boost_1')
        game.make_choice('first_words', 'hello')
        assert game.save_game(force=True)

        loaded = Game(game_config, storage=storage, clock=clock)
        assert loaded.init() is False
        assert loaded.resources.get_amount('pixels') == D(75)
        assert loaded.producers.get_level('pixel_generator') == 1
        assert loaded.upgrades.is_owned('pixel_boost_1')
        assert loaded.get_click_value() == D('1.5')
        assert loaded.get_choice_value('first_words') == 'hello'

    def test_offline_gains_on_load(self, game, storage, game_config, clock):
        game.resources.add('pixels', 15)
        game.buy_producer('pixel_generator')
        game.save_game(force=True)
        clock.advance(HOUR_MS)

        loaded = Game(game_config, storage=storage, clock=clock)
        seen = []
        loaded.event_bus.subscribe(events.OFFLINE_GAINS_CALCULATED, seen.append)
        loaded.init()
        # 0.1/s x 3600 s x 0.5 efficiency
        assert loaded.last_offline_reward.gains == D(180)
        assert loaded.resources.get_amount('pixels') == D(180)
        assert seen[0]['offlineTime'] == 3600

    def test_hard_reset_and_recover(self, game):
        game.resources.add('pixels', 500)
        game.save_game(force=True)
        game.hard_reset()
        assert game.resources.get_amount('pixels') == ZERO
        assert game.save_manager.has_emergency_backup()

        assert game.recover_from_emergency_backup()
        assert game.resources.get_amount('pixels') == D(500)

    def test_export_import(self, game, game_config, clock):
        game.resources.add('pixels', 42)
        text = game.export_save()

        other = Game(game_config, storage=MemoryStorage(), clock=clock)
        other.init()
        assert other.import_save(text)
        assert other.resources.get_amount('pixels') == D(42)
        assert not other.import_save('garbage')

    def test_snapshot_is_json_ready(self, game):
        game.click()
        state = json.loads(json.dumps(game.get_state()))
        assert state['resources']['pixels']['amount'] == '1'
        assert state['phase']['current'] == 1
        assert state['canRebirth'] is False

    def test_producer_and_upgrade_stats_survive(self, game, storage, game_config, clock):
        game.resources.add('pixels', 100)
        game.buy_producer('pixel_generator')
        game.purchase_upgrade('pixel_boost_1')
        game.tick(1.0)
        produced = game.producers.states['pixel_generator'].total_produced
        assert produced > 0
        game.save_game(force=True)

        loaded = Game(game_config, storage=storage, clock=clock)
        loaded.init()
        state = loaded.producers.states['pixel_generator']
        assert state.total_produced == produced
        assert state.first_purchase_time == clock.now
        assert loaded.upgrades.total_spent == game.upgrades.total_spent
        assert loaded.upgrades.first_purchase_times == {'pixel_boost_1': clock.now}


# ─────────────────────────────────────────────────────
# Rejected saves
# ─────────────────────────────────────────────────────

class TestRejectedSaves:
    def test_import_repairs_phase_progress(self, game, game_config, clock):
        def corrupt(state):
            progress = state['run']['phaseProgress']['progress']
            progress['abc'] = {'timeSpent': 5}
            progress['1'] = {'timeSpent': -500, 'bestTime': 'x', 'entered': True}

        text = edit_export(game.export_save(), corrupt)
        other = Game(game_config, storage=MemoryStorage(), clock=clock)
        other.init()
        assert other.import_save(text)
        assert other.phases.progress[1].time_spent == 0.0
        assert other.phases.progress[1].best_time is None

    def test_init_skips_bad_phase_keys(self, game_config, storage, clock):
        writer = Game(game_config, storage=storage, clock=clock)
        writer.init()
        writer.resources.add('pixels', 7)
        writer.save_game(force=True)
        wire = json.loads(storage.get(game_config.SAVE_KEY))
        wire['state']['run']['phaseProgress']['progress']['abc'] = {'timeSpent': 1}
        storage.set(game_config.SAVE_KEY, json.dumps(wire))

        loaded = Game(game_config, storage=storage, clock=clock)
        assert loaded.init() is False
        assert loaded.resources.get_amount('pixels') == D(7)

    def test_failed_apply_rolls_back(self, game, storage, game_config, clock, monkeypatch):
        donor = Game(game_config, storage=MemoryStorage(), clock=clock)
        donor.init()
        donor.resources.add('pixels', 42)
        text = donor.export_save()

        game.resources.add('pixels', 123)
        game.save_game(force=True)
        before = storage.get(game_config.SAVE_KEY)
        restore = game.producers.deserialize
        calls = []

        def fail_once(data):
            calls.append(data)
            if len(calls) == 1:
                raise RuntimeError('corrupt producer data')
            return restore(data)

        monkeypatch.setattr(game.producers, 'deserialize', fail_once)
        assert not game.import_save(text)
        assert len(calls) == 2
        assert game.resources.get_amount('pixels') == D(123)
        assert storage.get(game_config.SAVE_KEY) == before

    def test_failed_commit_rolls_back(self, game, storage, game_config, clock):
        donor = Game(game_config, storage=MemoryStorage(), clock=clock)
        donor.init()
        donor.resources.add('pixels', 42)
        text = donor.export_save()
        game.resources.add('pixels', 123)

        def broken(key, value):
            raise OSError('disk full')

        storage.set = broken
        assert not game.import_save(text)
        assert game.resources.get_amount('pixels') == D(123)

    def test_failed_recover_keeps_backup(self, game, storage):
        game.resources.add('pixels', 500)
        game.save_game(force=True)
        game.hard_reset()
        game.resources.add('pixels', 9)

        def broken(key, value):
            raise OSError('disk full')

        storage.set = broken
        assert not game.recover_from_emergency_backup()
        assert game.resources.get_amount('pixels') == D(9)
        assert game.save_manager.has_emergency_backup()


# ─────────────────────────────────────────────────────
# Secrets
# ─────────────────────────────────────────────────────

class TestSecrets:
    def test_flag_discovery_rewards_and_persists(self, game, storage, game_config, clock):
        seen = []
        game.event_bus.subscribe(events.SECRET_DISCOVERED, seen.append)
        game.secrets.set_flag('konami_code')
        assert [p['secretId'] for p in seen] == ['konami_code']
        assert game.resources.get_amount('primordial_pixels') == D(1)
        game.save_game(force=True)
        assert json.loads(storage.get(game_config.SAVE_KEY))['state']['eternal']['discoveredSecrets'] == ['konami_code']

        loaded = Game(game_config, storage=storage, clock=clock)
        loaded.init()
        assert loaded.secrets.is_discovered('konami_code')
        assert loaded.secrets.has_flag('konami_code')

    def test_tick_checks_after_achievements(self, game):
        order = []
        game.event_bus.subscribe(events.ACHIEVEMENT_UNLOCKED, lambda p: order.append(p['achievementId']))
        game.event_bus.subscribe(events.SECRET_DISCOVERED, lambda p: order.append(p['secretId']))
        for _ in range(42):
            game.click()
        game.tick(0.05)
        assert order[0] == 'first_pixel'
        assert order[-1] == 'the_answer'

    def test_rebirth_keeps_discoveries(self, game):
        game.secrets.set_flag('glitch_found')
        game.phases.debug_set_phase(5)
        game.resources.add('pixels', 1_000_000)
        game.rebirth()
        assert game.secrets.is_discovered('glitch_hunter')

    def test_hard_reset_forgets_discoveries(self, game):
        game.secrets.set_flag('glitch_found')
        game.hard_reset()
        assert not game.secrets.is_discovered('glitch_hunter')
        assert game.get_state()['secrets']['count'] == 0
