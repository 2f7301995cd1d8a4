"""Tests for the pydantic calibration configuration."""

import pytest
import yaml

from sizecal.core.config import CalibrationConfig, ObjectiveConfig
from sizecal.core.exceptions import ConfigurationError


class TestDefaults:

    def test_default_weights(self):
        config = CalibrationConfig()
        assert config.objective.yield_lambda == 1.0
        assert config.objective.production_lambda == 1.0
        assert config.optimizer.method == 'L-BFGS-B'
        assert config.multistart.n_starts == 30
        assert config.multistart.shape_jitter == (0.8, 1.2)
        assert config.multistart.rate_jitter == (0.2, 2.0)

    def test_frozen(self):
        config = CalibrationConfig()
        with pytest.raises(Exception):
            config.max_workers = 4


class TestFromDict:

    def test_flat_aliases_route_to_sections(self):
        config = CalibrationConfig.from_dict({
            'YIELD_LAMBDA': 0.0,
            'NO_W': 300,
            'OPTIMIZER_METHOD': 'BFGS',
            'N_STARTS': 5,
            'MAX_WORKERS': 2,
        })
        assert config.objective.yield_lambda == 0.0
        assert config.grid.no_w == 300
        assert config.optimizer.method == 'BFGS'
        assert config.multistart.n_starts == 5
        assert config.max_workers == 2

    def test_nested_sections(self):
        config = CalibrationConfig.from_dict({'objective': {'production_lambda': 2.5}})
        assert config.objective.production_lambda == 2.5

    def test_flat_and_nested_equivalent(self):
        flat = CalibrationConfig.from_dict({'YIELD_LAMBDA': 3.0})
        nested = CalibrationConfig.from_dict({'objective': {'yield_lambda': 3.0}})
        assert flat == nested

    @pytest.mark.parametrize("values", [
        {'YIELD_LAMBDA': -1.0},
        {'OPTIMIZER_METHOD': 'nelder-mead'},
        {'NO_W': 5},
        {'SHAPE_JITTER': (1.2, 0.8)},
        {'NOT_A_SETTING': 1},
        {'objective': 'not a mapping'},
    ])
    def test_invalid_values_raise(self, values):
        with pytest.raises(ConfigurationError):
            CalibrationConfig.from_dict(values)

    def test_to_dict_round_trip(self):
        config = CalibrationConfig.from_dict({'YIELD_LAMBDA': 0.5, 'RETRIES': 4})
        flat = config.to_dict()
        assert flat['YIELD_LAMBDA'] == 0.5
        assert flat['RETRIES'] == 4
        assert CalibrationConfig.from_dict(flat) == config


class TestFromFile:

    def test_yaml_file(self, tmp_path):
        path = tmp_path / 'calibration.yaml'
        path.write_text(yaml.safe_dump({'PRODUCTION_LAMBDA': 0.0, 'grid': {'no_w': 150}}))
        config = CalibrationConfig.from_file(path)
        assert config.objective.production_lambda == 0.0
        assert config.grid.no_w == 150

    def test_missing_file(self, tmp_path):
        with pytest.raises(ConfigurationError, match="not found"):
            CalibrationConfig.from_file(tmp_path / 'missing.yaml')

    def test_non_mapping_file(self, tmp_path):
        path = tmp_path / 'list.yaml'
        path.write_text("- 1\n- 2\n")
        with pytest.raises(ConfigurationError, match="mapping"):
            CalibrationConfig.from_file(path)

    def test_empty_file_gives_defaults(self, tmp_path):
        path = tmp_path / 'empty.yaml'
        path.write_text("")
        assert CalibrationConfig.from_file(path) == CalibrationConfig()


def test_section_model_accepts_field_names():
    assert ObjectiveConfig(yield_lambda=2.0).yield_lambda == 2.0
