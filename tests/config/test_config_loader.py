"""
Tests for kardex_config: YAML parsing, validation and the config trace.
"""

from pathlib import Path

import pytest
import yaml

from kardex_config import get_engine_config
from kardex_config.loader import compute_checksum, load_engine_config, parse_engine_config


def _minimal(**overrides) -> dict:
    data = {"config_id": "test", "version": 1}
    data.update(overrides)
    return data


class TestShippedDefault:
    def test_default_values(self):
        config = get_engine_config()

        assert config.config_id == "kardex-default"
        assert config.default_cost_method == "weighted_average"
        assert config.retroactive.max_depth_days == 90
        assert config.retroactive.isolate_unit_failures is True
        assert config.lots.expiry_warning_days == 30
        assert len(config.checksum) == 64

    def test_config_trace_logged(self, captured_logs):
        config = get_engine_config()

        traces = [r for r in captured_logs() if r["message"] == "KARDEX_CONFIG_TRACE"]
        assert traces
        assert traces[-1]["config_set_id"] == config.config_id
        assert traces[-1]["checksum"] == config.checksum


class TestParsing:
    def test_defaults_for_optional_sections(self):
        config = parse_engine_config(_minimal())
        assert config.default_cost_method == "weighted_average"
        assert config.retroactive.max_depth_days == 90

    def test_fifo_and_unlimited_depth(self):
        config = parse_engine_config(
            _minimal(default_cost_method="fifo", retroactive={"max_depth_days": None})
        )
        assert config.default_cost_method == "fifo"
        assert config.retroactive.max_depth_days is None

    @pytest.mark.parametrize(
        "overrides",
        [
            {"default_cost_method": "lifo"},
            {"retroactive": {"max_depth_days": -1}},
            {"retroactive": {"max_depth_days": "90"}},
            {"retroactive": {"isolate_unit_failures": "yes"}},
            {"lots": {"expiry_warning_days": True}},
        ],
    )
    def test_invalid_values(self, overrides):
        with pytest.raises(ValueError):
            parse_engine_config(_minimal(**overrides))

    def test_missing_config_id(self):
        with pytest.raises(KeyError):
            parse_engine_config({"version": 1})


class TestChecksum:
    def test_key_order_does_not_matter(self):
        assert compute_checksum({"a": 1, "b": 2}) == compute_checksum({"b": 2, "a": 1})

    def test_content_changes_checksum(self):
        assert compute_checksum(_minimal()) != compute_checksum(_minimal(version=2))


class TestLoadingFiles:
    def test_load_from_path(self, tmp_path: Path):
        path = tmp_path / "custom.yaml"
        path.write_text(yaml.safe_dump(_minimal(lots={"expiry_warning_days": 7})))

        config = get_engine_config(path)

        assert config.config_id == "test"
        assert config.lots.expiry_warning_days == 7

    def test_missing_file(self, tmp_path: Path):
        with pytest.raises(FileNotFoundError):
            load_engine_config(tmp_path / "absent.yaml")

    def test_malformed_yaml(self, tmp_path: Path):
        path = tmp_path / "broken.yaml"
        path.write_text("config_id: [unclosed\n")
        with pytest.raises(yaml.YAMLError):
            load_engine_config(path)
