"""Tests for EngineConfig and environment overrides."""

import logging

import pytest

from multiping.config import EngineConfig
from multiping.models import AddressFamily


class TestEngineConfig:
    def test_defaults(self):
        config = EngineConfig()

        assert config.interval_s == 1.0
        assert config.timeout_s == 2.0
        assert config.loss_window == 100
        assert config.families == (AddressFamily.V4, AddressFamily.V6)
        assert config.transport == "icmp"

    @pytest.mark.parametrize(
        "kwargs",
        [
            {"interval_s": 0},
            {"timeout_s": -1.0},
            {"loss_window": 0},
            {"payload_size": 4},
            {"families": ()},
            {"transport": "carrier-pigeon"},
        ],
    )
    def test_invalid_values(self, kwargs):
        with pytest.raises(ValueError):
            EngineConfig(**kwargs)

    def test_families_coerced(self):
        assert EngineConfig(families=["v6"]).families == (AddressFamily.V6,)


class TestFromEnv:
    """Environment variable parsing."""

    def test_empty_environment(self):
        assert EngineConfig.from_env({}) == EngineConfig()

    def test_overrides(self):
        config = EngineConfig.from_env(
            {
                "MULTIPING_INTERVAL": "0.5",
                "MULTIPING_TIMEOUT": "3",
                "MULTIPING_LOSS_WINDOW": "20",
                "MULTIPING_FAMILIES": "V4",
                "MULTIPING_TRANSPORT": " Fake ",
            }
        )

        assert config.interval_s == 0.5
        assert config.timeout_s == 3.0
        assert config.loss_window == 20
        assert config.families == (AddressFamily.V4,)
        assert config.transport == "fake"

    def test_invalid_values_fall_back(self, caplog):
        """Test bad values are logged and replaced by defaults."""
        with caplog.at_level(logging.WARNING, logger="multiping.config"):
            config = EngineConfig.from_env(
                {
                    "MULTIPING_INTERVAL": "fast",
                    "MULTIPING_LOSS_WINDOW": "-5",
                    "MULTIPING_FAMILIES": "v5",
                    "MULTIPING_TIMEOUT": "1.5",
                }
            )

        assert config.interval_s == 1.0
        assert config.loss_window == 100
        assert config.families == (AddressFamily.V4, AddressFamily.V6)
        assert config.timeout_s == 1.5
        assert "MULTIPING_INTERVAL" in caplog.text
        assert "MULTIPING_FAMILIES" in caplog.text

    def test_blank_value_uses_default(self):
        assert EngineConfig.from_env({"MULTIPING_PAYLOAD_SIZE": "  "}).payload_size == 56
