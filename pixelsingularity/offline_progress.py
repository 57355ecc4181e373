"""Rewards for time spent away from the game."""
import time
from dataclasses import dataclass

from pixelsingularity import bignum
from pixelsingularity.bignum import D, ZERO

FULL_REST_BONUS = 'Full Rest Bonus'


@dataclass
class OfflineConfig:
    capped_hours: float = 24.0
    efficiency: float = 0.5
    minimum_time: float = 60.0  # seconds

    @classmethod
    def from_game_config(cls, game_config):
        return cls(
            capped_hours=game_config.MAX_OFFLINE_TIME / 3600.0,
            efficiency=game_config.OFFLINE_EFFICIENCY,
            minimum_time=game_config.OFFLINE_MINIMUM_TIME,
        )


@dataclass
class OfflineReward:
    gains: object
    time_away: float  # seconds
    capped_time: float  # seconds
    efficiency: float
    bonus_type: str = None

    def to_dict(self):
        return {
            'gains': bignum.serialize(self.gains),
            'timeAway': self.time_away,
            'cappedTime': self.capped_time,
            'efficiency': self.efficiency,
            'bonusType': self.bonus_type,
        }


def format_duration(seconds):
    """Short human-readable duration such as '2h 5m', '3h', '12m' or '40s'."""
    seconds = int(seconds)
    hours, remainder = divmod(seconds, 3600)
    minutes = remainder // 60
    if hours and minutes:
        return f"{hours}h {minutes}m"
    if hours:
        return f"{hours}h"
    if minutes:
        return f"{minutes}m"
    return f"{seconds}s"


def calculate_offline_progress(last_played_ms, rate, config=None, now_ms=None):
    """Gains for the time between last_played_ms and now_ms at a per-second rate."""
    config = config or OfflineConfig()
    if now_ms is None:
        now_ms = int(time.time() * 1000)
    time_away = max(0.0, (now_ms - last_played_ms) / 1000.0)

    if time_away < config.minimum_time:
        return OfflineReward(gains=ZERO, time_away=time_away, capped_time=0.0,
                             efficiency=config.efficiency)

    cap = config.capped_hours * 3600.0
    capped_time = min(time_away, cap)
    gains = bignum.mul(bignum.mul(D(rate), D(config.efficiency)), D(capped_time))
    if bignum.lt(gains, ZERO):
        gains = ZERO
    return OfflineReward(
        gains=gains,
        time_away=time_away,
        capped_time=capped_time,
        efficiency=config.efficiency,
        bonus_type=FULL_REST_BONUS if time_away >= cap else None,
    )


def calculate_offline_progress_with_breakdown(last_played_ms, rate, config=None, now_ms=None):
    config = config or OfflineConfig()
    reward = calculate_offline_progress(last_played_ms, rate, config, now_ms)
    breakdown = reward.to_dict()
    breakdown.update({
        'formattedTimeAway': format_duration(reward.time_away),
        'formattedCappedTime': format_duration(reward.capped_time),
        'baseRatePerHour': bignum.serialize(bignum.mul(rate, 3600)),
        'effectiveRatePerHour': bignum.serialize(bignum.mul(bignum.mul(rate, config.efficiency), 3600)),
        'wasTimeCapped': reward.time_away > config.capped_hours * 3600.0,
    })
    return breakdown
