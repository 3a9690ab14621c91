"""
Tests for the command line interface
"""

import json
import os

import pytest

from mi_pipeline.cli import build_config, create_argument_parser, load_batch_file, main


class TestBuildConfig:
    """Tests for configuration precedence."""

    def test_defaults(self):
        args = create_argument_parser().parse_args(["--fake"])
        config = build_config(args)
        assert config.threshold == 0.70
        assert config.erd_ref is None

    def test_command_line_overrides_file(self, tmp_path):
        config_file = tmp_path / "config.json"
        config_file.write_text(json.dumps({"threshold": 0.8, "alpha": 0.9}))

        args = create_argument_parser().parse_args(
            ["--fake", "--config", str(config_file), "--threshold", "0.75", "--band", "6", "30"]
        )
        config = build_config(args)
        assert config.threshold == 0.75
        assert config.alpha == 0.9
        assert config.freq_band == (6.0, 30.0)

    @pytest.mark.parametrize("value,expected", [("median", "median"), ("12", 12)])
    def test_erd_ref(self, value, expected):
        args = create_argument_parser().parse_args(["--fake", "--erd-ref", value])
        assert build_config(args).erd_ref == expected

    def test_sources_are_exclusive(self):
        with pytest.raises(SystemExit):
            create_argument_parser().parse_args(["--fake", "--offline", "a.gdf"])


class TestBatchFile:
    """Tests for the batch description file."""

    def test_load(self, tmp_path):
        path = tmp_path / "subjects.json"
        path.write_text(json.dumps({"s1": {"offline": ["a.gdf"], "online": ["b.gdf"]}, "s2": {"offline": ["c.gdf"]}}))

        subjects = load_batch_file(str(path))
        assert subjects["s1"] == (["a.gdf"], ["b.gdf"])
        assert subjects["s2"] == (["c.gdf"], [])

    def test_missing(self, tmp_path):
        with pytest.raises(FileNotFoundError):
            load_batch_file(str(tmp_path / "nope.json"))


@pytest.mark.integration
class TestMain:
    """End-to-end runs of the entry point."""

    def test_fake_run_writes_outputs(self, tmp_path):
        out_dir = tmp_path / "results"
        code = main([
            "--fake", "--subject", "demo", "--fs", "128", "--n-trials", "4", "--n-runs", "2",
            "--cv-folds", "2", "--output-dir", str(out_dir),
        ])

        assert code == 0
        for name in ("mi_lda_demo.joblib", "mi_meta_demo.json", "mi_confusion_demo.png", "mi_fisher_demo.png"):
            assert os.path.exists(out_dir / name)

        with open(out_dir / "mi_meta_demo.json") as f:
            meta = json.load(f)
        assert meta["subject"] == "demo"
        assert meta["calibration"]["n_trials"] == 16
        assert meta["online"]["n_trials"] == 8

    def test_missing_offline_file(self, tmp_path):
        code = main(["--offline", str(tmp_path / "missing.gdf"), "--output-dir", str(tmp_path)])
        assert code == 1

    def test_invalid_config_value(self, tmp_path):
        code = main(["--fake", "--threshold", "1.5", "--output-dir", str(tmp_path)])
        assert code == 1
