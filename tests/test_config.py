"""
Tests for configuration loading.
"""

from datetime import time

import pytest

from helperschedule.config import AppConfig, GridConfig, SyncConfig


def _write(tmp_path, text):
    config_path = tmp_path / "config.yaml"
    config_path.write_text(text)
    return config_path


class TestAppConfig:
    """Tests for AppConfig."""

    def test_load_from_yaml(self, tmp_path):
        config_path = _write(
            tmp_path,
            "helper_id: helper-123\n"
            "log_level: debug\n"
            "grid:\n"
            "  day_start_hour: 9\n"
            "  day_end_hour: 17\n"
            "defaults:\n"
            "  buffer_after: 30\n",
        )

        config = AppConfig.load_from_yaml(config_path)

        assert config.helper_id == "helper-123"
        assert config.log_level == "DEBUG"
        assert config.grid.get_start_time() == time(9, 0)
        assert config.defaults.buffer_before == 15
        assert config.defaults.buffer_after == 30
        assert config.data_file == tmp_path / "schedule.json"

    def test_missing_file(self, tmp_path):
        with pytest.raises(FileNotFoundError, match="config.example.yaml"):
            AppConfig.load_from_yaml(tmp_path / "config.yaml")

    def test_invalid_yaml(self, tmp_path):
        config_path = _write(tmp_path, "helper_id: [unclosed\n")

        with pytest.raises(ValueError, match="Invalid YAML"):
            AppConfig.load_from_yaml(config_path)

    def test_root_must_be_mapping(self, tmp_path):
        config_path = _write(tmp_path, "- helper-123\n")

        with pytest.raises(ValueError, match="mapping"):
            AppConfig.load_from_yaml(config_path)

    @pytest.mark.parametrize(
        "values",
        [
            {"helper_id": " "},
            {"helper_id": "h", "log_level": "chatty"},
            {"helper_id": "h", "defaults": {"buffer_before": 300}},
            {"helper_id": "h", "defaults": {"recurrence_weeks": 0}},
            {"helper_id": "h", "sync": {"max_attempts": 0}},
        ],
    )
    def test_invalid_values(self, values):
        with pytest.raises(ValueError):
            AppConfig(**values)


class TestGridConfig:
    """Tests for GridConfig."""

    def test_default_grid(self):
        grid = GridConfig().default_grid()

        assert len(grid) == 12
        assert grid[0] == (time(8, 0), time(9, 0))

    def test_granularity_must_divide_an_hour(self):
        with pytest.raises(ValueError, match="must divide 60"):
            GridConfig(granularity_minutes=25)

    def test_window_order(self):
        with pytest.raises(ValueError, match="later than"):
            GridConfig(day_start_hour=18, day_end_hour=8)


class TestSyncConfig:
    """Tests for SyncConfig."""

    def test_exponential_backoff(self):
        sync = SyncConfig(backoff_seconds=0.5, backoff_factor=2.0)

        assert [sync.delay_for(attempt) for attempt in range(3)] == [0.5, 1.0, 2.0]
