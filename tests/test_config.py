"""Tests for AdvisorConfig loading and hashing."""

from __future__ import annotations

import json
from pathlib import Path

import pytest
from pydantic import ValidationError

from tunesense.config import (
    AdvisorConfig,
    get_config,
    load_config_from_env,
    load_config_from_file,
    reset_config,
)
from tunesense.exceptions import ConfigurationError


@pytest.fixture(autouse=True)
def _fresh_config():
    reset_config()
    yield
    reset_config()


class TestDefaults:
    def test_values(self) -> None:
        config = AdvisorConfig()
        assert config.single_column_selectivity_threshold == 0.2
        assert config.min_absolute_benefit == 1000.0
        assert config.random_page_cost == 4.0
        assert config.partition_min_rows == 1_000_000

    def test_frozen(self) -> None:
        config = AdvisorConfig()
        with pytest.raises(ValidationError):
            config.min_absolute_benefit = 5.0  # type: ignore[misc]

    def test_unknown_field_rejected(self) -> None:
        with pytest.raises(ValidationError):
            AdvisorConfig(not_a_field=1)  # type: ignore[call-arg]


class TestHash:
    def test_stable(self) -> None:
        assert AdvisorConfig().config_hash() == AdvisorConfig().config_hash()

    def test_changes_with_heuristics(self) -> None:
        tuned = AdvisorConfig(min_absolute_benefit=50.0)
        assert tuned.config_hash() != AdvisorConfig().config_hash()

    def test_ignores_run_control(self) -> None:
        tuned = AdvisorConfig(run_timeout_seconds=1.0, max_parallel_runs=16)
        assert tuned.config_hash() == AdvisorConfig().config_hash()


class TestEnvironment:
    def test_overrides(self) -> None:
        config = load_config_from_env({
            "TUNESENSE_MIN_ABSOLUTE_BENEFIT": "500",
            "TUNESENSE_PARTITION_MIN_ROWS": "10_000_000",
        })
        assert config.min_absolute_benefit == 500.0
        assert config.partition_min_rows == 10_000_000

    def test_unparsable_value(self) -> None:
        with pytest.raises(ConfigurationError) as exc_info:
            load_config_from_env({"TUNESENSE_MAX_PARTITIONS": "many"})
        assert exc_info.value.config_key == "TUNESENSE_MAX_PARTITIONS"

    def test_out_of_range_value(self) -> None:
        with pytest.raises(ConfigurationError) as exc_info:
            load_config_from_env({"TUNESENSE_RANDOM_PAGE_COST": "-1"})
        assert exc_info.value.config_key == "random_page_cost"

    def test_get_config_is_cached(self, monkeypatch: pytest.MonkeyPatch) -> None:
        monkeypatch.setenv("TUNESENSE_MIN_ABSOLUTE_BENEFIT", "123")
        first = get_config()
        monkeypatch.setenv("TUNESENSE_MIN_ABSOLUTE_BENEFIT", "456")
        assert get_config() is first
        reset_config()
        assert get_config().min_absolute_benefit == 456.0


class TestFile:
    def test_yaml(self, tmp_path: Path) -> None:
        path = tmp_path / "tunesense.yaml"
        path.write_text("max_composite_columns: 3\nhistory_decay: 0.25\n")
        config = load_config_from_file(path)
        assert config.max_composite_columns == 3
        assert config.history_decay == 0.25

    def test_json(self, tmp_path: Path) -> None:
        path = tmp_path / "tunesense.json"
        path.write_text(json.dumps({"rows_per_page": 100}))
        assert load_config_from_file(path).rows_per_page == 100

    def test_missing_file_falls_back(self, tmp_path: Path) -> None:
        config = load_config_from_file(tmp_path / "absent.yaml")
        assert isinstance(config, AdvisorConfig)

    def test_not_a_mapping(self, tmp_path: Path) -> None:
        path = tmp_path / "tunesense.yaml"
        path.write_text("- 1\n- 2\n")
        with pytest.raises(ConfigurationError):
            load_config_from_file(path)

    def test_config_file_env_var(self, tmp_path: Path, monkeypatch: pytest.MonkeyPatch) -> None:
        path = tmp_path / "tunesense.yaml"
        path.write_text("expression_min_shapes: 2\n")
        monkeypatch.setenv("TUNESENSE_CONFIG_FILE", str(path))
        assert get_config().expression_min_shapes == 2
