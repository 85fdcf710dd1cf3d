"""
Tests for server and viewer configuration.

Run tests:
    pytest tests/test_config.py -v
"""

import json

import pytest

from backend.app_config import ServerConfig, load_server_config
from viewer.config import EvictionPolicy, ViewerConfig


class TestServerConfig:
    def test_defaults(self):
        config = load_server_config(environ={})
        assert config.host == "127.0.0.1"
        assert config.port == 8000
        assert config.id_col == "index"
        assert config.dataset is None

    def test_environment_overrides(self):
        config = load_server_config(environ={"POINTSTREAM_PORT": "9001", "POINTSTREAM_X_COL": "lon"})
        assert config.port == 9001
        assert config.x_col == "lon"

    def test_file_then_environment_then_overrides(self, tmp_path):
        path = tmp_path / "settings.json"
        path.write_text(json.dumps({"port": 7000, "y_col": "lat", "max_limit": 10}))
        env = {"POINTSTREAM_CONFIG": str(path), "POINTSTREAM_Y_COL": "northing"}

        config = load_server_config(overrides={"max_limit": 20, "x_col": None}, environ=env)

        assert config.port == 7000
        assert config.y_col == "northing"
        assert config.max_limit == 20
        assert config.x_col == "x"

    def test_missing_file_is_ignored(self, tmp_path):
        config = load_server_config(environ={"POINTSTREAM_CONFIG": str(tmp_path / "nope.json")})
        assert config.port == 8000

    def test_invalid_file(self, tmp_path):
        path = tmp_path / "settings.json"
        path.write_text("[1, 2]")
        with pytest.raises(ValueError):
            load_server_config(environ={"POINTSTREAM_CONFIG": str(path)})

    def test_unknown_keys_are_dropped(self):
        config = ServerConfig.from_dict({"port": "8100", "colour": "red"})
        assert config.port == 8100
        assert "colour" not in config.to_dict()


class TestViewerConfig:
    def test_defaults(self):
        config = ViewerConfig()
        assert config.initial_budget == 25_000
        assert (config.min_budget, config.max_budget) == (1_000, 1_000_000)
        assert (config.lower_fps, config.upper_fps) == (6.0, 15.0)
        assert config.eviction_ratio == 1.2
        assert config.exclusion_cap == 5_000
        assert config.eviction_policy is EvictionPolicy.FIFO

    def test_from_dict_coerces_policy(self):
        config = ViewerConfig.from_dict({"eviction_policy": "viewport_distance", "unknown": 1})
        assert config.eviction_policy is EvictionPolicy.VIEWPORT_DISTANCE
        assert config.to_dict()["eviction_policy"] == "viewport_distance"

    @pytest.mark.parametrize(
        "overrides",
        [
            {"initial_budget": 500},
            {"min_budget": 0},
            {"lower_fps": 20.0},
            {"eviction_ratio": 0.5},
            {"min_scale": 0},
        ],
    )
    def test_invalid_values(self, overrides):
        with pytest.raises(ValueError):
            ViewerConfig(**overrides)
