"""Tests for offline progress."""
from pixelsingularity.bignum import D, ZERO
from pixelsingularity.config import GameConfig
from pixelsingularity.offline_progress import (
    FULL_REST_BONUS, OfflineConfig, calculate_offline_progress,
    calculate_offline_progress_with_breakdown, format_duration,
)

NOW = 1_700_000_000_000
HOUR_MS = 3600 * 1000


class TestOfflineProgress:
    def test_half_efficiency(self):
        reward = calculate_offline_progress(NOW - HOUR_MS, 10, now_ms=NOW)
        assert reward.gains == D(18000)
        assert reward.time_away == 3600
        assert reward.bonus_type is None

    def test_short_absence_gives_nothing(self):
        reward = calculate_offline_progress(NOW - 30_000, 10, now_ms=NOW)
        assert reward.gains == ZERO

    def test_capped_at_limit(self):
        config = OfflineConfig(capped_hours=2)
        reward = calculate_offline_progress(NOW - 5 * HOUR_MS, 1, config, now_ms=NOW)
        assert reward.capped_time == 7200
        assert reward.gains == D(3600)
        assert reward.bonus_type == FULL_REST_BONUS

    def test_clock_skew_is_not_negative(self):
        reward = calculate_offline_progress(NOW + HOUR_MS, 10, now_ms=NOW)
        assert reward.time_away == 0
        assert reward.gains == ZERO

    def test_breakdown(self):
        breakdown = calculate_offline_progress_with_breakdown(
            NOW - (2 * HOUR_MS + 5 * 60_000), 2, now_ms=NOW)
        assert breakdown['formattedTimeAway'] == '2h 5m'
        assert breakdown['baseRatePerHour'] == '7200'
        assert breakdown['effectiveRatePerHour'] == '3600.0'
        assert breakdown['wasTimeCapped'] is False

    def test_config_from_game_config(self):
        config = OfflineConfig.from_game_config(GameConfig(MAX_OFFLINE_TIME=7200, OFFLINE_EFFICIENCY=0.25))
        assert config.capped_hours == 2
        assert config.efficiency == 0.25
        assert config.minimum_time == 60


class TestFormatDuration:
    def test_formats(self):
        assert format_duration(3 * 3600) == '3h'
        assert format_duration(12 * 60) == '12m'
        assert format_duration(40) == '40s'
