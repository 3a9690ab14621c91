"""
Unit tests for the configuration module
"""

import json
import os

import pytest

from mi_pipeline.config import (
    Config, ConfigError, ensure_output_dirs, validate_config, describe_config
)


class TestConfigDefaults:
    """Tests for default values."""

    def test_default_values(self, config):
        assert config.fs == 512.0
        assert config.wshift == 0.0625
        assert config.freq_band == (4.0, 48.0)
        assert config.class_codes == (773, 771)
        assert config.alpha == 0.95
        assert config.threshold == 0.70
        assert config.lookback == 3
        assert config.lookahead == 5

    def test_defaults_validate(self, config):
        validate_config(config)

    def test_frozen(self, config):
        with pytest.raises(AttributeError):
            config.alpha = 0.5

    def test_with_updates_returns_copy(self, config):
        updated = config.with_updates(threshold=0.75)
        assert updated.threshold == 0.75
        assert config.threshold == 0.70

    def test_describe_config(self, config):
        lines = describe_config(config)
        assert any("alpha=0.95" in line for line in lines)


class TestConfigValidation:
    """Tests for validate_config."""

    @pytest.mark.parametrize("changes", [
        {"fs": 0},
        {"wshift": -1.0},
        {"wlength": 2.0},
        {"freq_band": (30.0, 10.0)},
        {"freq_band": (4.0, 300.0)},
        {"window_direction": "sideways"},
        {"code_class_b": 773},
        {"lookback": 0},
        {"n_features": 0},
        {"fisher_eps": 0.0},
        {"classifier": "svm"},
        {"cv_folds": 1},
        {"alpha": 1.0},
        {"alpha": 0.0},
        {"threshold": 0.0},
        {"threshold": 1.5},
        {"erd_ref": "mean"},
    ])
    def test_invalid_values_raise(self, config, changes):
        with pytest.raises(ConfigError):
            validate_config(config.with_updates(**changes))

    def test_threshold_one_is_valid(self, config):
        validate_config(config.with_updates(threshold=1.0))

    def test_integer_erd_ref_is_valid(self, config):
        validate_config(config.with_updates(erd_ref=8))


class TestConfigFiles:
    """Tests for JSON loading and output directories."""

    def test_from_json(self, tmp_path):
        path = tmp_path / "config.json"
        path.write_text(json.dumps({"threshold": 0.75, "freq_band": [6, 30]}))

        config = Config.from_json(str(path))
        assert config.threshold == 0.75
        assert config.freq_band == (6, 30)

    def test_from_json_overrides(self, tmp_path):
        path = tmp_path / "config.json"
        path.write_text(json.dumps({"threshold": 0.75}))

        config = Config.from_json(str(path), threshold=0.8)
        assert config.threshold == 0.8

    def test_from_json_unknown_field(self, tmp_path):
        path = tmp_path / "config.json"
        path.write_text(json.dumps({"treshold": 0.75}))

        with pytest.raises(ConfigError):
            Config.from_json(str(path))

    def test_from_json_missing_file(self, tmp_path):
        with pytest.raises(FileNotFoundError):
            Config.from_json(str(tmp_path / "missing.json"))

    def test_ensure_output_dirs(self, tmp_path, config):
        config = config.with_updates(
            out_model=str(tmp_path / "a" / "model.joblib"),
            out_meta=str(tmp_path / "b" / "meta.json"),
            out_confmat=str(tmp_path / "b" / "confusion.png"),
            out_fisher=str(tmp_path / "b" / "fisher.png"),
        )
        ensure_output_dirs(config)
        assert os.path.isdir(tmp_path / "a")
        assert os.path.isdir(tmp_path / "b")
