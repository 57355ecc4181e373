"""Fixed-rate tick scheduler with pause, resume and lag clamping."""
import asyncio
import logging
import time
from collections import deque
from dataclasses import dataclass

import numpy as np

logger = logging.getLogger(__name__)

STOPPED = 'stopped'
RUNNING = 'running'
PAUSED = 'paused'

SAMPLE_WINDOW = 60


@dataclass
class LoopConfig:
    tick_rate: int = 20  # ticks per second
    max_delta: float = 0.1  # seconds

    @property
    def tick_interval(self):
        return 1.0 / self.tick_rate if self.tick_rate > 0 else 0.0


@dataclass
class LoopStats:
    current_tps: float
    average_tick_time: float  # ms
    p95_tick_time: float  # ms
    total_ticks: int
    total_time: float
    is_running: bool
    is_paused: bool

    def to_dict(self):
        return {
            'currentTps': self.current_tps,
            'averageTickTime': self.average_tick_time,
            'p95TickTime': self.p95_tick_time,
            'totalTicks': self.total_ticks,
            'totalTime': self.total_time,
            'isRunning': self.is_running,
            'isPaused': self.is_paused,
        }


class GameLoop:
    """Calls a tick callback with clamped delta times."""

    def __init__(self, config=None, clock=None):
        self.config = config or LoopConfig()
        self.clock = clock or time.perf_counter
        self.state = STOPPED
        self.tick_callback = None
        self.on_visibility_pause = None
        self.on_visibility_resume = None

        self.last_time = 0.0
        self.pause_time = None
        self.hidden_since = None
        self.tick_count = 0
        self.total_time = 0.0
        self._tick_times = deque(maxlen=SAMPLE_WINDOW)
        self._tick_stamps = deque(maxlen=SAMPLE_WINDOW)

    @property
    def is_running(self):
        return self.state == RUNNING

    @property
    def is_paused(self):
        return self.state == PAUSED

    def set_tick_callback(self, callback):
        self.tick_callback = callback

    def set_visibility_callbacks(self, on_pause=None, on_resume=None):
        self.on_visibility_pause = on_pause
        self.on_visibility_resume = on_resume

    def update_config(self, tick_rate=None, max_delta=None):
        if tick_rate is not None:
            self.config.tick_rate = tick_rate
        if max_delta is not None:
            self.config.max_delta = max_delta

    def start(self):
        if self.state == RUNNING:
            return
        self.last_time = self.clock()
        self.pause_time = None
        self.state = RUNNING
        logger.debug("Game loop started at %s ticks/s", self.config.tick_rate)

    def stop(self):
        self.state = STOPPED
        self.tick_count = 0
        self.total_time = 0.0
        self.pause_time = None
        self._tick_times.clear()
        self._tick_stamps.clear()

    def pause(self):
        if self.state != RUNNING:
            return
        self.state = PAUSED
        self.pause_time = self.clock()

    def resume(self):
        """Resume ticking; time spent paused is never fed into a tick."""
        if self.state != PAUSED:
            return
        self.last_time = self.clock()
        self.pause_time = None
        self.state = RUNNING

    def set_visibility(self, hidden):
        if hidden:
            if self.hidden_since is not None:
                return
            self.hidden_since = self.clock()
            self.pause()
            if self.on_visibility_pause is not None:
                self.on_visibility_pause()
        else:
            if self.hidden_since is None:
                return
            hidden_seconds = self.clock() - self.hidden_since
            self.hidden_since = None
            self.resume()
            if self.on_visibility_resume is not None:
                self.on_visibility_resume(hidden_seconds)

    def step(self, now=None):
        """Run one tick if the loop is running; returns the delta used."""
        if self.state != RUNNING:
            return None
        if now is None:
            now = self.clock()
        delta = min(max(now - self.last_time, 0.0), self.config.max_delta)
        self.last_time = now
        self.tick_count += 1
        self.total_time += delta

        started = time.perf_counter()
        if self.tick_callback is not None:
            try:
                self.tick_callback(delta)
            except Exception:
                logger.exception("Error in game loop tick")
        self._tick_times.append((time.perf_counter() - started) * 1000.0)
        self._tick_stamps.append(now)
        return delta

    async def run(self):
        """Tick at the configured rate until stopped."""
        self.start()
        while self.state != STOPPED:
            self.step()
            await asyncio.sleep(self.config.tick_interval)

    def get_stats(self):
        if self._tick_times:
            samples = np.fromiter(self._tick_times, dtype=float)
            average = float(samples.mean())
            p95 = float(np.percentile(samples, 95))
        else:
            average = p95 = 0.0

        current_tps = 0.0
        if len(self._tick_stamps) > 1:
            stamps = np.fromiter(self._tick_stamps, dtype=float)
            span = stamps[-1] - stamps[0]
            if span > 0:
                current_tps = float((len(stamps) - 1) / span)

        return LoopStats(
            current_tps=current_tps,
            average_tick_time=average,
            p95_tick_time=p95,
            total_ticks=self.tick_count,
            total_time=self.total_time,
            is_running=self.state == RUNNING,
            is_paused=self.state == PAUSED,
        )
