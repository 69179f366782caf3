"""Tests for EngineConfig defaults, validation and environment loading."""
from unittest.mock import patch

import pytest

from engine_config import EngineConfig


class TestDefaults:

    def test_documented_defaults(self):
        cfg = EngineConfig()
        assert cfg.flare_severity_threshold == 7.0
        assert cfg.min_flare_days == 3
        assert cfg.min_occurrences == 3
        assert cfg.significance_threshold == 0.25
        assert cfg.lookback_for("food") == 6.0
        assert cfg.lookback_for("exercise") is None
        assert cfg.lookback_for("sleep") is None

    @pytest.mark.parametrize("kwargs", [
        {"flare_severity_threshold": 0},
        {"flare_severity_threshold": 11},
        {"min_flare_days": 0},
        {"min_occurrences": 0},
        {"significance_threshold": -0.1},
        {"worker_threads": 0},
    ])
    def test_invalid_values_rejected(self, kwargs):
        with pytest.raises(ValueError):
            EngineConfig(**kwargs)


@patch("engine_config.load_dotenv")
class TestFromEnv:

    def test_empty_env_gives_defaults(self, _dotenv):
        with patch.dict("os.environ", {}, clear=True):
            assert EngineConfig.from_env() == EngineConfig()

    def test_overrides_parsed_by_type(self, _dotenv):
        env = {
            "FLARE_SEVERITY_THRESHOLD": "6.5",
            "FLARE_MIN_OCCURRENCES": "4",
            "FLARE_FOOD_LOOKBACK_HOURS": "8",
            "FLARE_WORKER_THREADS": "3",
        }
        with patch.dict("os.environ", env, clear=True):
            cfg = EngineConfig.from_env()
        assert cfg.flare_severity_threshold == 6.5
        assert cfg.min_occurrences == 4
        assert isinstance(cfg.min_occurrences, int)
        assert cfg.food_lookback_hours == 8.0
        assert cfg.worker_threads == 3

    @pytest.mark.parametrize("raw", ["prior_day", "PRIOR_DAY", ""])
    def test_prior_day_lookback(self, _dotenv, raw):
        with patch.dict("os.environ", {"FLARE_FOOD_LOOKBACK_HOURS": raw}, clear=True):
            assert EngineConfig.from_env().food_lookback_hours is None

    def test_non_positive_lookback_rejected(self, _dotenv):
        with patch.dict("os.environ", {"FLARE_EXERCISE_LOOKBACK_HOURS": "-2"}, clear=True):
            with pytest.raises(ValueError):
                EngineConfig.from_env()
