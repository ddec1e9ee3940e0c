"""
Tests for adaptivity configuration and logging setup.
"""

import json
import logging

import pytest

from watfAMR.config import AdaptivityConfig, load_config, save_config
from watfAMR.logging_config import setup_logging


class TestAdaptivityConfig:

    def test_defaults(self):
        """Test default adaptivity settings."""
        config = AdaptivityConfig()
        assert config.max_refinement_level == 5
        assert config.min_refinement_level == 0
        assert config.recovery_order is None

    def test_error_thresholds_ordered(self):
        """Test max error below min error is rejected."""
        with pytest.raises(ValueError):
            AdaptivityConfig(max_permitted_error=1e-6, min_permitted_error=1e-3)

    def test_levels_ordered(self):
        """Test max level below min level is rejected."""
        with pytest.raises(ValueError):
            AdaptivityConfig(max_refinement_level=1, min_refinement_level=2)

    def test_balance_passes_positive(self):
        """Test at least one balancing pass is required."""
        with pytest.raises(ValueError):
            AdaptivityConfig(max_balance_passes=0)

    def test_from_dict_rejects_unknown(self):
        """Test unknown settings are rejected."""
        with pytest.raises(ValueError):
            AdaptivityConfig.from_dict({"max_level": 3})

    def test_dict_roundtrip(self):
        """Test to_dict output rebuilds the same config."""
        config = AdaptivityConfig(max_refinement_level=3, recovery_order=2)
        assert AdaptivityConfig.from_dict(config.to_dict()) == config


class TestConfigFiles:

    def test_load(self, tmp_path):
        """Test loading a JSON file with partial settings."""
        path = tmp_path / "adapt.json"
        path.write_text(json.dumps({"adaptivity": {"max_permitted_error": 0.1,
                                                   "max_refinement_level": 2}}))
        config = load_config(path)
        assert config.max_permitted_error == 0.1
        assert config.max_refinement_level == 2
        assert config.min_permitted_error == AdaptivityConfig().min_permitted_error

    def test_missing_section_gives_defaults(self, tmp_path):
        """Test a file without an adaptivity section gives defaults."""
        path = tmp_path / "empty.json"
        path.write_text("{}")
        assert load_config(path) == AdaptivityConfig()

    def test_non_object_root(self, tmp_path):
        """Test a JSON root that is not an object is rejected."""
        path = tmp_path / "list.json"
        path.write_text("[1, 2]")
        with pytest.raises(ValueError):
            load_config(path)

    def test_save_then_load(self, tmp_path):
        """Test a saved config loads back unchanged."""
        path = tmp_path / "saved.json"
        config = AdaptivityConfig(min_permitted_error=1e-6, normalise_errors=False)
        save_config(config, path)
        assert load_config(path) == config


class TestLogging:

    def test_setup_logging(self, tmp_path):
        """Test logger level and handlers, and handler reset on reconfiguration."""
        log_file = tmp_path / "run.log"
        logger = setup_logging(logging.DEBUG, str(log_file))
        assert logger.name == "watfAMR"
        assert logger.level == logging.DEBUG
        assert len(logger.handlers) == 2

        # Calling again replaces the handlers
        logger = setup_logging(logging.WARNING)
        assert len(logger.handlers) == 1
        for handler in logger.handlers:
            handler.close()
        logger.handlers.clear()
