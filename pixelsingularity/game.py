"""The Game orchestrator: wires every manager together around one event bus."""
import logging
import time
from collections import deque

from pixelsingularity import bignum, events
from pixelsingularity.achievements import AchievementManager
from pixelsingularity.bignum import D, ZERO
from pixelsingularity.conditions import ConditionEvaluator, EvaluationContext
from pixelsingularity.config import GameConfig
from pixelsingularity.game_data_loader import get_game_data_loader
from pixelsingularity.game_loop import GameLoop, LoopConfig
from pixelsingularity.offline_progress import OfflineConfig, calculate_offline_progress
from pixelsingularity.phases import PhaseManager
from pixelsingularity.producers import ProducerManager
from pixelsingularity.production_pipeline import ProductionPipeline
from pixelsingularity.resources import PRIMARY_RESOURCE, ResourceManager
from pixelsingularity.save_manager import SaveManager
from pixelsingularity.save_migration import (
    default_preferences, generate_save_id, sanitize_save_data,
)
from pixelsingularity.secrets import SecretManager
from pixelsingularity.storage import MemoryStorage
from pixelsingularity.upgrades import UpgradeManager

logger = logging.getLogger(__name__)

ETERNAL_CURRENCY = 'primordial_pixels'
AUTO_CLICK_FEATURE = 'auto_click'
AUTO_CLICK_RATE = 'auto_click_rate'
UNLOCK_PREFIXES = ('resource', 'upgrade', 'producer')


def _now_ms():
    return int(time.time() * 1000)


class Game(EvaluationContext):
    """One running game: managers, loop, saving and player actions."""

    def __init__(self, config=None, storage=None, data_loader=None, clock=None,
                 loop_clock=None, sleep=None):
        self.config = config or GameConfig.from_object()
        self.clock = clock or _now_ms
        data_loader = data_loader or get_game_data_loader()

        self.event_bus = events.EventBus(debug=self.config.DEBUG)
        self.pipeline = ProductionPipeline()
        self.evaluator = ConditionEvaluator(self)

        self.resources = ResourceManager(self.event_bus, data_loader.load_resources())
        self.producers = ProducerManager(self.event_bus, self.resources, self.pipeline,
                                         self.evaluator, data_loader.load_producers(), clock=self.clock)
        self.upgrades = UpgradeManager(self.event_bus, self.resources, self.pipeline,
                                       self.evaluator, clock=self.clock)
        self.upgrades.register_upgrades(data_loader.load_upgrades())
        self.upgrades.on_unlock = self._on_upgrade_unlock
        self.phases = PhaseManager(self.event_bus, self.evaluator, data_loader.load_phases(),
                                   transition_speed=self.config.TRANSITION_SPEED,
                                   clock=self.clock, sleep=sleep)
        self.achievements = AchievementManager(self.event_bus, self.evaluator,
                                               data_loader.load_achievements(),
                                               reward_context=self, clock=self.clock)
        self.secrets = SecretManager(self.event_bus, self.evaluator, data_loader.load_secrets(),
                                     reward_context=self, clock=self.clock)

        self.save_manager = SaveManager(
            storage if storage is not None else MemoryStorage(),
            self.event_bus,
            save_key=self.config.SAVE_KEY,
            format_version=self.config.SAVE_FORMAT_VERSION,
            game_version=self.config.GAME_VERSION,
            auto_save_interval=self.config.AUTO_SAVE_INTERVAL,
            clock=self.clock,
        )
        self.save_manager.state_provider = self.serialize

        self.loop = GameLoop(LoopConfig(self.config.TICK_RATE, self.config.MAX_DELTA_TIME),
                             clock=loop_clock)
        self.loop.set_tick_callback(self.tick)
        self.loop.set_visibility_callbacks(self._on_hidden, self._on_visible)
        self.offline_config = OfflineConfig.from_game_config(self.config)

        self.initialized = False
        self.paused = False
        self.pause_reason = None
        self.paused_at = None
        self.last_offline_reward = None
        self._deferred = deque()
        self._subscriptions = []
        self._reset_counters()

    def _reset_counters(self):
        now = self.clock()
        self.tick_count = 0
        self.run_time = 0.0
        self.play_time = 0.0
        self.total_rebirths = 0
        self.total_clicks = 0
        self.lifetime_pixels = ZERO
        self.auto_click_accumulator = ZERO
        self.features = set()
        self.fastest_phase_times = {}
        self.fastest_run_time = None
        self.highest_phase_ever = 1
        self.first_play_date = now
        self.permanent_story_flags = []
        self.permanent_choices = {}
        self.last_click_at = 0.0
        self.preferences = default_preferences()
        self.save_id = None

    # Lifecycle

    def init(self, load=True):
        """Set up every manager, load the save if there is one, and announce it."""
        self._subscribe()
        self.save_manager.init()
        self._fresh_managers()

        is_new_game = True
        if load and self.save_manager.has_save():
            state = self.save_manager.load()
            if state is not None and self._apply_save_state(state):
                is_new_game = False
                self.apply_offline_progress(state['meta']['lastPlayed'])

        self.initialized = True
        logger.info("Game initialized (new game: %s)", is_new_game)
        self.event_bus.publish(events.GAME_INITIALIZED, {
            'timestamp': self.clock(),
            'isNewGame': is_new_game,
        })
        return is_new_game

    def _subscribe(self):
        for unsubscribe in self._subscriptions:
            unsubscribe()
        self._subscriptions = [
            self.event_bus.subscribe(events.PHASE_ENTERED, self._on_phase_entered, priority=100),
            self.event_bus.subscribe(events.PRODUCER_UNLOCKED, self._on_producer_unlocked),
            self.event_bus.subscribe(events.RESOURCE_CHANGED, self._on_resource_changed),
        ]
        self.achievements.init()
        self.secrets.init()

    def _fresh_managers(self):
        self.pipeline.clear()
        self.resources.init()
        self.producers.current_phase = 1
        self.producers.init()
        self.upgrades.init()
        self.achievements.clear()
        self.secrets.clear()
        self.phases.init()
        self._deferred.clear()

    def destroy(self):
        self.loop.stop()
        self.achievements.destroy()
        self.secrets.destroy()
        for unsubscribe in self._subscriptions:
            unsubscribe()
        self._subscriptions = []
        self.event_bus.clear()

    def start(self):
        self.loop.start()

    def stop(self):
        self.save_game(force=True)
        self.loop.stop()

    async def run(self):
        """Drive the game from the loop until stop() is called."""
        await self.loop.run()

    # Ticking

    def tick(self, dt):
        """Advance the simulation by dt seconds."""
        if not self.initialized or self.paused:
            return
        self.resources.tick(dt)
        self.producers.tick(dt)
        self.upgrades.tick(dt)
        self.phases.tick(dt)
        self._drain_deferred()
        self._process_auto_clicks(dt)
        self.achievements.tick(dt)
        self.secrets.tick(dt)

        self.tick_count += 1
        self.run_time += dt
        self.play_time += dt
        self.save_manager.mark_dirty()
        self.save_manager.auto_save_tick()
        self.event_bus.publish(events.TICK, {
            'deltaTime': dt,
            'totalTime': self.play_time,
            'tickCount': self.tick_count,
        })

    def defer(self, fn, *args, **kwargs):
        """Queue work for the next drain; work queued during a drain waits a tick."""
        self._deferred.append((fn, args, kwargs))

    def _drain_deferred(self):
        batch = list(self._deferred)
        self._deferred.clear()
        for fn, args, kwargs in batch:
            try:
                fn(*args, **kwargs)
            except Exception:
                logger.exception("Deferred work failed")

    def _process_auto_clicks(self, dt):
        if not self.is_feature_unlocked(AUTO_CLICK_FEATURE):
            return
        rate = self.upgrades.get_passive_total(AUTO_CLICK_RATE)
        if rate <= 0:
            return
        self.auto_click_accumulator = bignum.add(self.auto_click_accumulator, bignum.mul(rate, dt))
        clicks = bignum.floor(self.auto_click_accumulator)
        if clicks <= 0:
            return
        self.auto_click_accumulator = bignum.sub(self.auto_click_accumulator, clicks)
        value = bignum.mul(self.get_click_value(PRIMARY_RESOURCE), clicks)
        self.resources.add(PRIMARY_RESOURCE, value, 'auto_click')

    # Event handlers

    def _on_phase_entered(self, payload):
        phase = payload['newPhase']
        previous = payload['previousPhase']
        if 0 < previous < phase:
            progress = self.phases.get_phase_progress(previous)
            if progress is not None and progress.best_time is not None:
                key = str(previous)
                best = self.fastest_phase_times.get(key)
                if best is None or progress.best_time < best:
                    self.fastest_phase_times[key] = progress.best_time
        self.highest_phase_ever = max(self.highest_phase_ever, phase)
        self.resources.set_phase(phase)
        self.producers.set_phase(phase)
        self.upgrades.set_phase(phase)

    def _on_producer_unlocked(self, payload):
        definition = self.producers.definitions.get(payload['producerId'])
        if definition is not None and definition.produces_resource:
            self.resources.unlock(definition.produces_resource)

    def _on_resource_changed(self, payload):
        if payload['resourceId'] == PRIMARY_RESOURCE and payload['delta'] > 0:
            self.lifetime_pixels = bignum.add(self.lifetime_pixels, payload['delta'])

    def _on_upgrade_unlock(self, unlock_type, unlock_id):
        if unlock_type in UNLOCK_PREFIXES and not unlock_id.startswith(f"{unlock_type}_"):
            unlock_id = f"{unlock_type}_{unlock_id}"
        self.apply_unlock(unlock_id)

    def _on_hidden(self):
        self.save_game(force=True)
        self.event_bus.publish(events.GAME_PAUSED, {'reason': 'visibility', 'timestamp': self.clock()})

    def _on_visible(self, hidden_seconds):
        now = self.clock()
        self.apply_offline_progress(now - int(hidden_seconds * 1000), now)
        self.event_bus.publish(events.GAME_RESUMED, {
            'pauseDuration': int(hidden_seconds * 1000),
            'timestamp': now,
        })

    # Reward context

    def add_primordial_pixels(self, amount):
        self.resources.unlock(ETERNAL_CURRENCY)
        self.resources.add(ETERNAL_CURRENCY, amount, 'reward')

    def apply_unlock(self, unlock_id):
        """Unlock by prefixed id: resource_x, upgrade_x or producer_x; anything else is a feature."""
        for prefix in UNLOCK_PREFIXES:
            if unlock_id.startswith(f"{prefix}_"):
                target = unlock_id[len(prefix) + 1:]
                if prefix == 'resource':
                    self.resources.unlock(target)
                elif prefix == 'upgrade':
                    self.upgrades.unlock(target)
                else:
                    self.producers.unlock(target)
                return
        self.features.add(unlock_id)

    def is_feature_unlocked(self, feature):
        return feature in self.features or self.upgrades.is_feature_unlocked(feature)

    # Evaluation context

    def get_resource_amount(self, resource_id):
        return self.resources.get_amount(resource_id)

    def get_current_phase_time(self):
        return self.phases.phase_time

    def get_choice_value(self, choice_id):
        return self.phases.get_choice(choice_id)

    def get_current_phase(self):
        return self.phases.current_phase

    def is_phase_completed(self, phase):
        return self.phases.is_phase_completed(phase)

    def get_producer_count(self, producer_id):
        return self.producers.get_level(producer_id)

    def has_upgrade(self, upgrade_id):
        return self.upgrades.is_owned(upgrade_id)

    def get_upgrade_level(self, upgrade_id):
        return self.upgrades.get_level(upgrade_id)

    def has_achievement(self, achievement_id):
        return self.achievements.has_achievement(achievement_id)

    def get_secret_stat(self, stat):
        """Built-in statistic for secret conditions; None for custom ones."""
        if stat == 'totalClicks':
            return self.total_clicks
        if stat == 'totalPlayTime':
            return self.play_time
        if stat == 'runTime':
            return self.run_time
        if stat == 'timeSinceLastClick':
            return self.play_time - self.last_click_at
        if stat == 'upgradesPurchased':
            return self.upgrades.total_purchased()
        if stat == 'uniqueChoicesMade':
            return len(self.phases.choices)
        if stat == 'uniqueProducersOwned':
            return sum(1 for pid in self.producers.definitions if self.producers.get_level(pid) > 0)
        if stat == 'primordialPixels':
            return bignum.to_float(self.resources.get_amount(ETERNAL_CURRENCY))
        if stat == 'totalRebirths':
            return self.total_rebirths
        if stat == 'secretsDiscovered':
            return self.secrets.discovered_count()
        return None

    # Player actions

    def get_click_value(self, resource_id=PRIMARY_RESOURCE):
        """(base + additive bonus + click power) x multiplicative bonus."""
        definition = self.resources.get_definition(resource_id)
        base = definition.base_click_amount if definition else D(1)
        additive, multiplicative = self.upgrades.get_click_bonus_components()
        total = bignum.add(bignum.add(base, additive), self.producers.get_click_power())
        return bignum.mul(total, multiplicative)

    def click(self, resource_id=PRIMARY_RESOURCE):
        definition = self.resources.get_definition(resource_id)
        if definition is None or not definition.can_click:
            raise ValueError(f"Resource {resource_id} cannot be clicked")
        if not self.phases.clicking_enabled():
            return ZERO
        value = self.get_click_value(resource_id)
        self.resources.click(resource_id, value)
        self.total_clicks += 1
        self.last_click_at = self.play_time
        self.save_manager.mark_dirty()
        return value

    def buy_producer(self, producer_id, amount=1):
        if producer_id not in self.producers.definitions:
            raise ValueError(f"Unknown producer: {producer_id}")
        return self.producers.buy(producer_id, amount)

    def buy_producer_max(self, producer_id):
        if producer_id not in self.producers.definitions:
            raise ValueError(f"Unknown producer: {producer_id}")
        return self.producers.buy_max(producer_id)

    def purchase_upgrade(self, upgrade_id, amount=1, buy_max=False):
        if upgrade_id not in self.upgrades.definitions:
            raise ValueError(f"Unknown upgrade: {upgrade_id}")
        return self.upgrades.purchase(upgrade_id, amount, buy_max)

    def make_choice(self, choice_id, value):
        self.phases.record_choice(choice_id, value)

    async def advance_phase(self):
        return await self.phases.advance()

    def pause(self, reason='manual'):
        if self.paused:
            return
        self.paused = True
        self.pause_reason = reason
        self.paused_at = self.clock()
        self.loop.pause()
        self.event_bus.publish(events.GAME_PAUSED, {'reason': reason, 'timestamp': self.paused_at})

    def resume(self):
        if not self.paused:
            return
        now = self.clock()
        duration = now - self.paused_at if self.paused_at is not None else 0
        self.paused = False
        self.pause_reason = None
        self.paused_at = None
        self.loop.resume()
        self.event_bus.publish(events.GAME_RESUMED, {'pauseDuration': duration, 'timestamp': now})

    def set_visibility(self, hidden):
        self.loop.set_visibility(hidden)

    # Rebirth

    def pixels_generated_this_run(self):
        return self.resources.get_total_generated(PRIMARY_RESOURCE)

    def can_rebirth(self):
        return (self.phases.current_phase >= self.config.MIN_REBIRTH_PHASE
                and self.pixels_generated_this_run() >= D(self.config.PRESTIGE_REQUIREMENT_BASE))

    def calculate_rebirth_gain(self):
        generated = self.pixels_generated_this_run()
        gain = bignum.floor(bignum.div(
            bignum.mul(generated, self.config.PRESTIGE_REWARD_RATIO),
            self.config.PRESTIGE_REQUIREMENT_BASE,
        ))
        return bignum.dmax(gain, 1)

    def rebirth(self):
        """Trade the current run for primordial pixels; None when not allowed."""
        if not self.can_rebirth():
            return None
        gains = self.calculate_rebirth_gain()
        rebirth_count = self.total_rebirths + 1
        run_time = self.run_time
        self.event_bus.publish(events.REBIRTH_STARTED, {
            'rebirthCount': rebirth_count,
            'expectedGains': gains,
        })

        if self.fastest_run_time is None or run_time < self.fastest_run_time:
            self.fastest_run_time = run_time
        self.total_rebirths = rebirth_count

        self.resources.reset()
        self.add_primordial_pixels(gains)
        self.producers.reset()
        self.upgrades.reset()
        self.phases.reset()
        self.secrets.reset()
        self.run_time = 0.0
        self.auto_click_accumulator = ZERO
        self._deferred.clear()

        logger.info("Rebirth %s completed, gained %s", rebirth_count, gains)
        self.event_bus.publish(events.REBIRTH_COMPLETED, {
            'rebirthCount': rebirth_count,
            'runTime': run_time,
            'gains': gains,
        })
        self.save_game(force=True)
        return gains

    # Offline progress

    def apply_offline_progress(self, last_played_ms, now_ms=None):
        """Credit pixels for time away; returns the OfflineReward."""
        if now_ms is None:
            now_ms = self.clock()
        rate = self.producers.get_total_production(PRIMARY_RESOURCE)
        reward = calculate_offline_progress(last_played_ms, rate, self.offline_config, now_ms)
        if reward.gains > 0:
            self.resources.add(PRIMARY_RESOURCE, reward.gains, 'offline')
            self.event_bus.publish(events.OFFLINE_GAINS_CALCULATED, {
                'offlineTime': reward.time_away,
                'cappedTime': reward.capped_time,
                'efficiency': reward.efficiency,
                'gains': reward.gains,
            })
        self.last_offline_reward = reward
        return reward

    # Persistence

    def _split_amounts(self, amounts, eternal):
        return {
            rid: value for rid, value in amounts.items()
            if self.resources.definitions[rid].is_eternal == eternal
        }

    def _split_upgrade_stats(self, stats, eternal):
        """Run upgrade entries, or eternal and secret ones, out of a per-upgrade map."""
        split = {}
        for upgrade_id, value in stats.items():
            definition = self.upgrades.definitions.get(upgrade_id)
            if definition is not None and (definition.category != 'run') == eternal:
                split[upgrade_id] = value
        return split

    def serialize(self):
        """Map every manager onto the {meta, run, eternal} save envelope."""
        now = self.clock()
        resources = self.resources.serialize()
        producers = self.producers.serialize()
        upgrades = self.upgrades.serialize()
        achievements = self.achievements.serialize()
        secrets = self.secrets.serialize()
        if self.save_id is None:
            self.save_id = generate_save_id(now)

        return {
            'meta': {
                'version': self.save_manager.registry.current_version,
                'lastSaved': now,
                'lastPlayed': now,
                'gameVersion': self.config.GAME_VERSION,
                'saveId': self.save_id,
            },
            'run': {
                'resources': self._split_amounts(resources['amounts'], eternal=False),
                'productionRates': self._split_amounts(resources['productionRates'], eternal=False),
                'totalGenerated': self._split_amounts(resources['totalGenerated'], eternal=False),
                'purchasedUpgrades': sorted(upgrades['runLevels']),
                'upgradeLevels': upgrades['runLevels'],
                'producerLevels': producers['levels'],
                'unlockedProducers': producers['unlocked'],
                'currentPhase': self.phases.current_phase,
                'highestPhase': self.phases.highest_phase,
                'phaseProgress': self.phases.serialize(),
                'runTime': self.run_time,
                'triggeredStoryEvents': sorted({
                    event_id for p in self.phases.progress.values() for event_id in p.triggered_events
                }),
                'storyChoices': dict(self.phases.choices),
                'unlockedResources': resources['unlocked'],
                'unlockedUpgrades': upgrades['unlocked'],
                'producerTotalProduced': producers['totalProduced'],
                'producerFirstPurchaseTimes': producers['firstPurchaseTimes'],
                'upgradeTotalSpent': self._split_upgrade_stats(upgrades['totalSpent'], eternal=False),
                'upgradeFirstPurchaseTimes': self._split_upgrade_stats(upgrades['firstPurchaseTimes'], eternal=False),
            },
            'eternal': {
                'totalRebirths': self.total_rebirths,
                'totalPlayTime': self.play_time,
                'eternalResources': self._split_amounts(resources['amounts'], eternal=True),
                'eternalUpgrades': {**upgrades['eternalLevels'], **upgrades['secretLevels']},
                'achievements': achievements['unlocked'],
                'achievementTimes': {k: v for k, v in achievements['unlockedAt'].items() if v is not None},
                'achievementProgress': achievements['progress'],
                'permanentStoryFlags': list(self.permanent_story_flags),
                'permanentChoices': dict(self.permanent_choices),
                'statistics': {
                    'totalPixelsGenerated': bignum.serialize(self.lifetime_pixels),
                    'totalClicks': self.total_clicks,
                    'fastestPhaseTimes': dict(self.fastest_phase_times),
                    'fastestRunTime': self.fastest_run_time,
                    'totalUpgradesPurchased': self.upgrades.total_purchased(),
                    'totalStoryEventsTriggered': 0,
                    'firstPlayDate': self.first_play_date,
                    'lastPlayDate': now,
                },
                'highestPhaseEver': max(self.highest_phase_ever, self.phases.highest_phase),
                'discoveredSecrets': secrets['discovered'],
                'secretTimes': {k: v for k, v in secrets['discoveredAt'].items() if v is not None},
                'secretFlags': secrets['flags'],
                'secretStats': secrets['stats'],
                'upgradeTotalSpent': self._split_upgrade_stats(upgrades['totalSpent'], eternal=True),
                'upgradeFirstPurchaseTimes': self._split_upgrade_stats(upgrades['firstPurchaseTimes'], eternal=True),
                'preferences': self.preferences,
            },
        }

    def deserialize(self, state):
        """Restore managers from a sanitized envelope."""
        run = state['run']
        eternal = state['eternal']
        stats = eternal['statistics']

        self._fresh_managers()
        eternal_amounts = eternal['eternalResources']
        unlocked = list(run['unlockedResources'])
        unlocked += [rid for rid, value in eternal_amounts.items() if D(value) > 0]
        self.resources.deserialize({
            'amounts': {**run['resources'], **eternal_amounts},
            'productionRates': run['productionRates'],
            'totalGenerated': run['totalGenerated'],
            'unlocked': unlocked,
        })

        if run['phaseProgress']:
            self.phases.deserialize(run['phaseProgress'])
        self.phases.current_phase = run['currentPhase']
        self.phases.highest_phase = max(self.phases.highest_phase, run['highestPhase'], run['currentPhase'])
        self.phases.unlocked_phases |= set(range(1, run['currentPhase'] + 1))
        self.phases.choices.update(run['storyChoices'])
        phase = self.phases.current_phase

        self.producers.current_phase = phase
        self.producers.deserialize({
            'levels': run['producerLevels'],
            'unlocked': run['unlockedProducers'],
            'totalProduced': run['producerTotalProduced'],
            'firstPurchaseTimes': run['producerFirstPurchaseTimes'],
        })
        self.upgrades.current_phase = phase
        self.upgrades.deserialize({
            'runLevels': run['upgradeLevels'],
            'eternalLevels': eternal['eternalUpgrades'],
            'unlocked': run['unlockedUpgrades'],
            'totalSpent': {**run['upgradeTotalSpent'], **eternal['upgradeTotalSpent']},
            'firstPurchaseTimes': {**run['upgradeFirstPurchaseTimes'], **eternal['upgradeFirstPurchaseTimes']},
        })
        self.achievements.deserialize({
            'unlocked': eternal['achievements'],
            'unlockedAt': eternal['achievementTimes'],
            'progress': eternal['achievementProgress'],
        })
        self.secrets.deserialize({
            'discovered': eternal['discoveredSecrets'],
            'discoveredAt': eternal['secretTimes'],
            'flags': eternal['secretFlags'],
            'stats': eternal['secretStats'],
        })

        self.run_time = run['runTime']
        self.play_time = eternal['totalPlayTime']
        self.last_click_at = self.play_time
        self.total_rebirths = eternal['totalRebirths']
        self.total_clicks = stats['totalClicks']
        self.lifetime_pixels = bignum.deserialize(stats['totalPixelsGenerated'])
        self.fastest_phase_times = dict(stats['fastestPhaseTimes'])
        self.fastest_run_time = stats['fastestRunTime']
        self.first_play_date = stats['firstPlayDate']
        self.highest_phase_ever = max(eternal['highestPhaseEver'], phase)
        self.permanent_story_flags = list(eternal['permanentStoryFlags'])
        self.permanent_choices = dict(eternal['permanentChoices'])
        self.preferences = eternal['preferences']
        self.save_id = state['meta']['saveId']

        self.resources.set_phase(phase)
        self.producers.set_phase(phase)
        self.upgrades.set_phase(phase)

    def _apply_save_state(self, state, commit=None):
        """Deserialize state, then commit it; on any failure the current game is restored."""
        snapshot = sanitize_save_data(self.serialize(), self.clock())
        try:
            self.deserialize(state)
        except Exception:
            logger.exception("Save state could not be applied, keeping the current game")
            self.deserialize(snapshot)
            return False
        if commit is not None and not commit(state):
            self.deserialize(snapshot)
            return False
        return True

    def save_game(self, force=False):
        return self.save_manager.save(force=force)

    def load_game(self):
        state = self.save_manager.load()
        if state is None:
            return False
        return self._apply_save_state(state)

    def export_save(self):
        return self.save_manager.export_save()

    def import_save(self, text):
        """Adopt an exported save; a rejected one leaves the game and storage untouched."""
        state = self.save_manager.parse_import(text)
        if state is None:
            return False
        return self._apply_save_state(state, self.save_manager.commit_state)

    def hard_reset(self):
        """Wipe everything, run and eternal, keeping a 24 hour emergency backup."""
        self.save_manager.hard_reset()
        self._reset_counters()
        self._fresh_managers()
        self.paused = False
        self.paused_at = None

    def recover_from_emergency_backup(self):
        state = self.save_manager.read_emergency_backup()
        if state is None:
            return False
        return self._apply_save_state(state, self.save_manager.adopt_emergency_backup)

    # Snapshot

    def get_state(self):
        """JSON-ready snapshot of everything a client displays."""
        phase = self.phases.current_phase
        definition = self.phases.get_phase_definition(phase)
        transition = self.phases.transition_progress()
        return {
            'phase': {
                'current': phase,
                'key': definition.key if definition else None,
                'name': definition.name if definition else None,
                'visualMode': self.phases.visual_mode(),
                'clickingEnabled': self.phases.clicking_enabled(),
                'canAdvance': self.phases.can_advance(),
                'advanceProgress': self.phases.advance_progress(),
                'transition': transition.to_dict() if transition else None,
                'highest': self.phases.highest_phase,
            },
            'resources': {
                d.id: {
                    'name': d.name,
                    'amount': bignum.serialize(self.resources.get_amount(d.id)),
                    'perSecond': bignum.serialize(self.producers.get_total_production(d.id)),
                }
                for d in self.resources.get_visible_resources()
            },
            'producers': [self.producers.to_dict(d.id) for d in self.producers.get_visible_producers()],
            'upgrades': [self.upgrades.to_dict(d.id) for d in self.upgrades.get_visible_upgrades()],
            'achievements': {
                'unlocked': list(self.achievements.unlocked),
                'count': self.achievements.unlocked_count(),
                'total': len(self.achievements.definitions),
            },
            'secrets': {
                'discovered': list(self.secrets.discovered),
                'count': self.secrets.discovered_count(),
                'total': len(self.secrets.definitions),
            },
            'clickValue': bignum.serialize(self.get_click_value()),
            'canRebirth': self.can_rebirth(),
            'rebirthGain': bignum.serialize(self.calculate_rebirth_gain()) if self.can_rebirth() else '0',
            'totalRebirths': self.total_rebirths,
            'runTime': self.run_time,
            'playTime': self.play_time,
            'totalClicks': self.total_clicks,
            'isPaused': self.paused,
            'features': sorted(self.features),
        }
