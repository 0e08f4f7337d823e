"""
Tests for configuration loading, environment overrides and validation.
"""

from pathlib import Path

import pytest
import yaml

from tmax_normals.config import (
    ClimateConfig,
    create_sample_config,
    get_config,
    reset_config,
    set_config,
)
from tmax_normals.core.exceptions import ConfigurationError


@pytest.fixture(autouse=True)
def isolated_cwd(tmp_path, monkeypatch):
    monkeypatch.chdir(tmp_path)
    reset_config()
    yield
    reset_config()


def write_yaml(path, data):
    path.write_text(yaml.safe_dump(data))
    return path


class TestDefaults:

    def test_default_values(self):
        config = ClimateConfig.load()

        assert config.smoothing.bandwidth == pytest.approx(1 / 32)
        assert config.smoothing.iterations == 3
        assert config.smoothing.day_convention == "noleap"
        assert config.paths.climatology_dir == Path("output") / "climatology"
        assert config.paths.frames_dir == Path("output") / "frames"

    def test_global_instance(self):
        config = get_config()
        assert get_config() is config

        replacement = ClimateConfig()
        set_config(replacement)
        assert get_config() is replacement


class TestYamlLoading:

    def test_explicit_file(self, tmp_path):
        path = write_yaml(tmp_path / "custom.yaml", {
            "smoothing": {"bandwidth": 0.0625, "day_convention": "all_leap"},
            "processing": {"max_workers": 2},
        })
        config = ClimateConfig.load(path)

        assert config.smoothing.bandwidth == 0.0625
        assert config.smoothing.day_convention == "all_leap"
        assert config.processing.max_workers == 2

    def test_explicit_file_missing(self, tmp_path):
        with pytest.raises(ConfigurationError):
            ClimateConfig.load(tmp_path / "nope.yaml")

    def test_invalid_yaml(self, tmp_path):
        path = tmp_path / "broken.yaml"
        path.write_text("smoothing: [unclosed")
        with pytest.raises(ConfigurationError):
            ClimateConfig.load(path)

    def test_section_must_be_mapping(self, tmp_path):
        path = write_yaml(tmp_path / "bad.yaml", {"smoothing": 3})
        with pytest.raises(ConfigurationError):
            ClimateConfig.load(path)

    def test_unknown_keys_ignored(self, tmp_path):
        path = write_yaml(tmp_path / "extra.yaml", {
            "smoothing": {"kernel": "gaussian"},
            "plugins": {"x": 1},
        })
        config = ClimateConfig.load(path)
        assert not hasattr(config.smoothing, "kernel")

    def test_default_location_in_cwd(self, tmp_path):
        write_yaml(tmp_path / "tmax_normals.yaml", {"processing": {"pixels_per_task": 99}})
        assert ClimateConfig.load().processing.pixels_per_task == 99

    def test_empty_file(self, tmp_path):
        path = tmp_path / "empty.yaml"
        path.write_text("")
        assert ClimateConfig.load(path).smoothing.iterations == 3


class TestEnvironment:

    def test_overrides_file(self, tmp_path, monkeypatch):
        path = write_yaml(tmp_path / "custom.yaml", {"smoothing": {"bandwidth": 0.25}})
        monkeypatch.setenv("TMAX_BANDWIDTH", "0.125")
        monkeypatch.setenv("TMAX_OUTPUT_DIR", str(tmp_path / "results"))
        monkeypatch.setenv("TMAX_LOG_LEVEL", "debug")

        config = ClimateConfig.load(path)

        assert config.smoothing.bandwidth == 0.125
        assert config.paths.output_dir == tmp_path / "results"
        assert config.logging.level == "DEBUG"

    def test_invalid_number_ignored(self, monkeypatch):
        monkeypatch.setenv("TMAX_MAX_WORKERS", "many")
        assert ClimateConfig.load().processing.max_workers == 4

    def test_environment_disabled(self, monkeypatch):
        monkeypatch.setenv("TMAX_BANDWIDTH", "0.5")
        assert ClimateConfig.load(use_environment=False).smoothing.bandwidth == pytest.approx(1 / 32)


class TestValidation:

    @pytest.mark.parametrize("section, key, value", [
        ("smoothing", "bandwidth", 0.0),
        ("smoothing", "bandwidth", 1.5),
        ("smoothing", "day_convention", "julian"),
        ("processing", "pixels_per_task", 0),
        ("visualization", "frame_step", 0),
    ])
    def test_invalid_values(self, tmp_path, section, key, value):
        path = write_yaml(tmp_path / "bad.yaml", {section: {key: value}})
        with pytest.raises(ConfigurationError):
            ClimateConfig.load(path)

    def test_invalid_bandwidth_from_environment(self, monkeypatch):
        monkeypatch.setenv("TMAX_BANDWIDTH", "2")
        with pytest.raises(ConfigurationError):
            ClimateConfig.load()


class TestSaving:

    def test_sample_config_round_trip(self, tmp_path):
        path = create_sample_config(tmp_path / "conf" / "sample.yaml")

        assert path.exists()
        loaded = ClimateConfig.load(path)
        assert loaded.to_dict() == ClimateConfig().to_dict()

    def test_create_output_directories(self, tmp_path):
        config = ClimateConfig()
        config.paths.output_dir = tmp_path / "out"
        config.create_output_directories()

        assert (tmp_path / "out" / "climatology").is_dir()
        assert (tmp_path / "out" / "frames").is_dir()
