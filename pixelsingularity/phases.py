"""Phase state machine: the 20 ordered stages of a run."""
import asyncio
import logging
import time
from dataclasses import dataclass, field

from pixelsingularity import events

logger = logging.getLogger(__name__)

TOTAL_PHASES = 20
ABSTRACT_MODE_START_PHASE = 11
DEFAULT_TRANSITION_MS = 1000

TRANSITION_STAGES = ('fade_out', 'cutscene', 'loading', 'fade_in', 'complete')


@dataclass
class PhaseDefinition:
    id: int
    key: str
    name: str
    subtitle: str = ''
    description: str = ''
    transition_conditions: list = field(default_factory=list)
    auto_transition: bool = False
    transition_in_ms: int = DEFAULT_TRANSITION_MS
    transition_out_ms: int = DEFAULT_TRANSITION_MS
    is_boss_phase: bool = False
    is_meditation_phase: bool = False
    clicking_enabled: bool = True

    @property
    def visual_mode(self):
        return 'abstract' if self.id >= ABSTRACT_MODE_START_PHASE else 'pixel'


@dataclass
class PhaseProgress:
    entered: bool = False
    completed: bool = False
    time_spent: float = 0.0
    best_time: float = None
    times_entered: int = 0
    first_entered: int = None
    last_entered: int = None
    completed_at: int = None
    choices: dict = field(default_factory=dict)
    triggered_events: list = field(default_factory=list)

    def to_dict(self):
        return {
            'entered': self.entered,
            'completed': self.completed,
            'timeSpent': self.time_spent,
            'bestTime': self.best_time,
            'timesEntered': self.times_entered,
            'firstEntered': self.first_entered,
            'lastEntered': self.last_entered,
            'completedAt': self.completed_at,
            'choices': dict(self.choices),
            'triggeredEvents': list(self.triggered_events),
        }

    @classmethod
    def from_dict(cls, data):
        return cls(
            entered=bool(data.get('entered', False)),
            completed=bool(data.get('completed', False)),
            time_spent=float(data.get('timeSpent') or 0.0),
            best_time=data.get('bestTime'),
            times_entered=int(data.get('timesEntered') or 0),
            first_entered=data.get('firstEntered'),
            last_entered=data.get('lastEntered'),
            completed_at=data.get('completedAt'),
            choices=dict(data.get('choices') or {}),
            triggered_events=list(data.get('triggeredEvents') or []),
        )


@dataclass
class PhaseTransition:
    """Snapshot of an in-flight transition."""
    from_phase: int
    to_phase: int
    stage: str
    progress: float

    def to_dict(self):
        return {
            'fromPhase': self.from_phase,
            'toPhase': self.to_phase,
            'stage': self.stage,
            'progress': self.progress,
        }


class PhaseManager:
    """Tracks the current phase and runs timed transitions between phases."""

    def __init__(self, event_bus, evaluator, definitions=(), transition_speed=1.0,
                 clock=None, sleep=None):
        self.event_bus = event_bus
        self.evaluator = evaluator
        self.definitions = {d.id: d for d in definitions}
        self.transition_speed = transition_speed
        self.clock = clock or (lambda: int(time.time() * 1000))
        self.sleep = sleep or asyncio.sleep

        self.current_phase = 1
        self.highest_phase = 1
        self.unlocked_phases = {1}
        self.progress = {}
        self.choices = {}
        self.transitioning = False
        self.transition = None
        self._transition_task = None
        self._callbacks = []

    def register(self, definition):
        self.definitions[definition.id] = definition

    def init(self):
        """Start at phase 1 with fresh progress records."""
        self.progress = {n: PhaseProgress() for n in range(1, TOTAL_PHASES + 1)}
        self.current_phase = 1
        self.highest_phase = 1
        self.unlocked_phases = {1}
        self.choices = {}
        self.transitioning = False
        self.transition = None
        self._enter(1, previous=0)

    @property
    def phase_time(self):
        return self.progress[self.current_phase].time_spent if self.progress else 0.0

    def tick(self, dt):
        if not self.progress:
            return
        self.progress[self.current_phase].time_spent += dt
        if self.transitioning:
            return
        definition = self.get_phase_definition(self.current_phase)
        if definition is not None and definition.auto_transition and self.can_advance():
            self._schedule_advance()

    def _schedule_advance(self):
        pending = self._transition_task
        if pending is not None and not pending.done():
            return
        try:
            loop = asyncio.get_running_loop()
        except RuntimeError:
            self.advance_now()
            return
        self._transition_task = loop.create_task(self.advance())

    # Queries

    def get_phase_definition(self, phase):
        return self.definitions.get(phase)

    def next_phase(self):
        if self.current_phase >= TOTAL_PHASES:
            return None
        return self.current_phase + 1

    def can_advance(self):
        """True when the current phase's exit conditions are all met."""
        if self.transitioning or self.next_phase() is None:
            return False
        definition = self.get_phase_definition(self.current_phase)
        if definition is None:
            return False
        return self.evaluator.evaluate_all(definition.transition_conditions)

    def advance_progress(self):
        """Progress towards the current phase's exit conditions, 0..1."""
        definition = self.get_phase_definition(self.current_phase)
        if definition is None:
            return 0.0
        return self.evaluator.evaluate_progress(definition.transition_conditions)

    def transition_progress(self):
        return self.transition

    def is_phase_unlocked(self, phase):
        return phase in self.unlocked_phases

    def is_phase_completed(self, phase):
        progress = self.progress.get(phase)
        return bool(progress and progress.completed)

    def get_phase_progress(self, phase):
        return self.progress.get(phase)

    def visual_mode(self, phase=None):
        phase = phase or self.current_phase
        return 'abstract' if phase >= ABSTRACT_MODE_START_PHASE else 'pixel'

    def is_boss_phase(self, phase=None):
        definition = self.get_phase_definition(phase or self.current_phase)
        return bool(definition and definition.is_boss_phase)

    def is_meditation_phase(self, phase=None):
        definition = self.get_phase_definition(phase or self.current_phase)
        return bool(definition and definition.is_meditation_phase)

    def clicking_enabled(self, phase=None):
        definition = self.get_phase_definition(phase or self.current_phase)
        return definition.clicking_enabled if definition else True

    # Transitions

    def on_transition(self, callback):
        """Register a callback for transition stages; returns an unsubscribe callable."""
        self._callbacks.append(callback)

        def unsubscribe():
            if callback in self._callbacks:
                self._callbacks.remove(callback)

        return unsubscribe

    def _set_stage(self, stage, progress):
        self.transition.stage = stage
        self.transition.progress = progress
        for callback in list(self._callbacks):
            try:
                callback(self.transition)
            except Exception:
                logger.exception("Phase transition callback failed")
        self.event_bus.publish(events.PHASE_TRANSITION, self.transition.to_dict())

    def _begin_transition(self):
        from_phase = self.current_phase
        to_phase = from_phase + 1
        self.transitioning = True
        self.transition = PhaseTransition(from_phase, to_phase, TRANSITION_STAGES[0], 0.0)

        outgoing = self.progress[from_phase]
        outgoing.completed = True
        outgoing.completed_at = self.clock()
        if outgoing.best_time is None or outgoing.time_spent < outgoing.best_time:
            outgoing.best_time = outgoing.time_spent

        self.unlock_phase(to_phase)
        self._set_stage(TRANSITION_STAGES[0], 0.0)
        return from_phase, to_phase

    def _transition_step_seconds(self, from_phase):
        definition = self.get_phase_definition(from_phase)
        if definition is None:
            total_ms = 2 * DEFAULT_TRANSITION_MS
        else:
            total_ms = definition.transition_out_ms + definition.transition_in_ms
        speed = self.transition_speed if self.transition_speed > 0 else 1.0
        return total_ms / speed / 4 / 1000.0

    def _finish_transition(self, from_phase, to_phase):
        self.transitioning = False
        self.transition = None
        self._transition_task = None
        self._enter(to_phase, previous=from_phase)

    async def advance(self):
        """Move to the next phase through the staged transition."""
        if not self.can_advance():
            return False
        self._transition_task = asyncio.current_task()
        from_phase, to_phase = self._begin_transition()
        step = self._transition_step_seconds(from_phase)
        try:
            for index, stage in enumerate(TRANSITION_STAGES[1:]):
                await self.sleep(step)
                self._set_stage(stage, (index + 1) / 4)
        except asyncio.CancelledError:
            self.transitioning = False
            self.transition = None
            self._transition_task = None
            raise
        self._finish_transition(from_phase, to_phase)
        return True

    def advance_now(self):
        """Run a transition with no delays; used when no event loop is running."""
        if not self.can_advance():
            return False
        from_phase, to_phase = self._begin_transition()
        for index, stage in enumerate(TRANSITION_STAGES[1:]):
            self._set_stage(stage, (index + 1) / 4)
        self._finish_transition(from_phase, to_phase)
        return True

    def cancel_transition(self):
        task = self._transition_task
        if task is not None and not task.done():
            task.cancel()
            return True
        return False

    def _enter(self, phase, previous):
        progress = self.progress[phase]
        is_first_time = not progress.entered
        now = self.clock()
        progress.entered = True
        progress.time_spent = 0.0
        progress.times_entered += 1
        if progress.first_entered is None:
            progress.first_entered = now
        progress.last_entered = now

        self.current_phase = phase
        self.highest_phase = max(self.highest_phase, phase)
        self.unlocked_phases.add(phase)
        definition = self.get_phase_definition(phase)
        self.event_bus.publish(events.PHASE_ENTERED, {
            'previousPhase': previous,
            'newPhase': phase,
            'phaseId': definition.key if definition else str(phase),
            'isFirstTime': is_first_time,
        })

    def unlock_phase(self, phase):
        if phase < 1 or phase > TOTAL_PHASES or phase in self.unlocked_phases:
            return
        self.unlocked_phases.add(phase)
        definition = self.get_phase_definition(phase)
        self.event_bus.publish(events.PHASE_UNLOCKED, {
            'phaseNumber': phase,
            'phaseId': definition.key if definition else str(phase),
            'phaseName': definition.name if definition else '',
        })

    # Choices and story bookkeeping

    def record_choice(self, event_id, choice):
        self.choices[event_id] = choice
        if self.progress:
            self.progress[self.current_phase].choices[event_id] = choice
        self.event_bus.publish(events.CHOICE_MADE, {'choiceId': event_id, 'value': choice})

    def get_choice(self, event_id):
        return self.choices.get(event_id)

    def mark_event_triggered(self, event_id):
        triggered = self.progress[self.current_phase].triggered_events
        if event_id not in triggered:
            triggered.append(event_id)

    def has_triggered_event(self, event_id):
        return any(event_id in p.triggered_events for p in self.progress.values())

    # Debug, rebirth and persistence

    def debug_set_phase(self, phase):
        if phase < 1 or phase > TOTAL_PHASES:
            raise ValueError(f"Phase must be between 1 and {TOTAL_PHASES}, got {phase}")
        previous = self.current_phase
        for n in range(1, phase + 1):
            self.unlock_phase(n)
        self._enter(phase, previous=previous)

    def reset(self):
        """Go back to phase 1 for a rebirth, keeping completion history."""
        self.cancel_transition()
        previous = self.current_phase
        for progress in self.progress.values():
            progress.entered = False
            progress.time_spent = 0.0
            progress.choices = {}
            progress.triggered_events = []
        self.choices = {}
        self.transitioning = False
        self.transition = None
        self.unlocked_phases = {1}
        self._enter(1, previous=previous)

    def serialize(self):
        return {
            'currentPhase': self.current_phase,
            'highestPhase': self.highest_phase,
            'unlockedPhases': sorted(self.unlocked_phases),
            'choices': dict(self.choices),
            'progress': {str(n): p.to_dict() for n, p in self.progress.items()},
        }

    def deserialize(self, data):
        data = data or {}
        for key, value in (data.get('progress') or {}).items():
            try:
                phase = int(key)
            except (TypeError, ValueError):
                continue
            if 1 <= phase <= TOTAL_PHASES and isinstance(value, dict):
                self.progress[phase] = PhaseProgress.from_dict(value)
        current = int(data.get('currentPhase') or 1)
        self.current_phase = min(max(current, 1), TOTAL_PHASES)
        self.highest_phase = max(self.current_phase, int(data.get('highestPhase') or 1))
        self.unlocked_phases = set(data.get('unlockedPhases') or []) | set(range(1, self.current_phase + 1))
        self.choices = dict(data.get('choices') or {})
        self.transitioning = False
        self.transition = None
