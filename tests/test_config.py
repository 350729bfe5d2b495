"""Tests for srdrive.config — configuration loading, validation and grid expansion."""

from pathlib import Path

import pytest
import yaml

from srdrive.config import (
    GridSection,
    InvalidParameterError,
    ObservedSection,
    SimulationSection,
    SweepConfig,
    SweepSection,
    build_parameter_grid,
    deep_merge,
    default_config,
    iter_parameter_grid,
    load_config,
    validate_config,
    validate_grid,
    validate_parameters,
)
from srdrive.model import PARAMETER_COLUMNS, SimulationParameters


# ── deep_merge tests ──────────────────────────────────────────────────

class TestDeepMerge:
    def test_simple_override(self):
        assert deep_merge({'a': 1, 'b': 2}, {'b': 3}) == {'a': 1, 'b': 3}

    def test_nested_merge(self):
        base = {'x': {'a': 1, 'b': 2}, 'y': 10}
        override = {'x': {'b': 3, 'c': 4}}
        result = deep_merge(base, override)
        assert result == {'x': {'a': 1, 'b': 3, 'c': 4}, 'y': 10}

    def test_list_replaced_not_merged(self):
        base = {'grid': {'k': [0.1, 0.2]}}
        result = deep_merge(base, {'grid': {'k': [0.9]}})
        assert result == {'grid': {'k': [0.9]}}

    def test_override_dict_with_scalar(self):
        assert deep_merge({'a': {'nested': 1}}, {'a': 'replaced'}) == {'a': 'replaced'}

    def test_empty_override(self):
        assert deep_merge({'a': 1}, {}) == {'a': 1}


# ── default_config tests ─────────────────────────────────────────────

class TestDefaultConfig:
    def test_creates_valid_config(self):
        assert isinstance(default_config(), SweepConfig)

    def test_default_values(self):
        config = default_config()
        assert config.simulation.generations == 100
        assert config.simulation.fixation_threshold == 0.99
        assert config.simulation.extinction_threshold == 1e-4
        assert config.grid.k == [0.96]
        assert config.grid.freq_polyandry == [0.73]
        assert config.sweep.chunk_size == 500
        assert config.observed.populations == []

    def test_default_grid_is_single_scenario(self):
        rows = list(iter_parameter_grid(default_config()))
        assert rows == [SimulationParameters()]


# ── load_config tests ─────────────────────────────────────────────────

def _write_yaml(path, content):
    with open(path, 'w') as f:
        yaml.dump(content, f)
    return path


class TestLoadConfig:
    def test_load_from_yaml(self, tmp_path):
        path = _write_yaml(tmp_path / "test.yaml", {
            'simulation': {'generations': 50},
            'grid': {'k': [0.5, 0.9]},
        })
        config = load_config(path)
        assert config.simulation.generations == 50
        assert config.grid.k == [0.5, 0.9]
        # Unspecified fields get defaults
        assert config.grid.paternity_of_SR_males == [0.2105]
        assert config.sweep.results_file == "sweep_results.csv"

    def test_scalar_grid_value_becomes_list(self, tmp_path):
        path = _write_yaml(tmp_path / "test.yaml", {'grid': {'freq_polyandry': 0.4}})
        config = load_config(path)
        assert config.grid.freq_polyandry == [0.4]

    def test_load_with_scenario_override(self, tmp_path):
        base = _write_yaml(tmp_path / "base.yaml", {
            'simulation': {'generations': 100},
            'grid': {'k': [0.96], 'freq_polyandry': [0.0, 0.5]},
        })
        scen = _write_yaml(tmp_path / "scenario.yaml", {
            'simulation': {'generations': 1000},
        })
        config = load_config(base, scenario_path=scen)
        assert config.simulation.generations == 1000
        assert config.grid.freq_polyandry == [0.0, 0.5]  # unchanged

    def test_overrides_applied_last(self, tmp_path):
        base = _write_yaml(tmp_path / "base.yaml", {'sweep': {'n_workers': 4}})
        config = load_config(base, overrides={'sweep': {'n_workers': 1}})
        assert config.sweep.n_workers == 1

    def test_unknown_keys_ignored(self, tmp_path):
        path = _write_yaml(tmp_path / "test.yaml", {
            'simulation': {'generations': 10, 'seed': 42},
            'plotting': {'dpi': 300},
        })
        assert load_config(path).simulation.generations == 10

    def test_empty_file_gives_defaults(self, tmp_path):
        path = tmp_path / "empty.yaml"
        path.write_text("")
        assert load_config(path) == SweepConfig()

    def test_file_not_found(self, tmp_path):
        with pytest.raises(FileNotFoundError):
            load_config(tmp_path / "nonexistent.yaml")

    def test_scenario_not_found(self, tmp_path):
        base = _write_yaml(tmp_path / "base.yaml", {})
        with pytest.raises(FileNotFoundError, match="Scenario"):
            load_config(base, scenario_path=tmp_path / "missing.yaml")

    def test_invalid_grid_rejected_on_load(self, tmp_path):
        path = _write_yaml(tmp_path / "test.yaml", {'grid': {'k': [0.5, 1.5]}})
        with pytest.raises(InvalidParameterError, match="k must be in"):
            load_config(path)

    def test_load_real_configs(self):
        configs = Path(__file__).parent.parent / "configs"
        default_path = configs / "default.yaml"
        surface_path = configs / "equilibrium_surface.yaml"
        if default_path.exists():
            config = load_config(default_path)
            assert config.grid.k == [0.96]
            assert 0.73 in config.grid.freq_polyandry
            if surface_path.exists():
                surface = load_config(default_path, scenario_path=surface_path)
                assert surface.simulation.generations == 1000
                assert len(surface.grid.k) > 1


# ── Validation tests ──────────────────────────────────────────────────

class TestValidation:
    def test_threshold_ordering(self):
        config = default_config()
        config.simulation.extinction_threshold = 0.995
        with pytest.raises(ValueError, match="thresholds"):
            validate_config(config)

    def test_fixation_threshold_below_one(self):
        config = default_config()
        config.simulation.fixation_threshold = 1.0
        with pytest.raises(ValueError, match="thresholds"):
            validate_config(config)

    def test_chunk_size_positive(self):
        config = default_config()
        config.sweep.chunk_size = 0
        with pytest.raises(ValueError, match="chunk_size"):
            validate_config(config)

    def test_workers_positive(self):
        config = default_config()
        config.sweep.n_workers = 0
        with pytest.raises(ValueError, match="n_workers"):
            validate_config(config)

    def test_empty_results_file(self):
        config = default_config()
        config.sweep.results_file = ""
        with pytest.raises(ValueError, match="results_file"):
            validate_config(config)

    def test_empty_grid_list(self):
        config = default_config()
        config.grid.w_SR_male = []
        with pytest.raises(ValueError, match="grid.w_SR_male"):
            validate_config(config)

    def test_zero_generations(self):
        config = default_config()
        config.simulation.generations = 0
        with pytest.raises(InvalidParameterError, match="generations"):
            validate_config(config)

    def test_observed_population_missing_field(self):
        config = default_config()
        config.observed.populations = [{'name': 'A', 'freq_polyandry': 0.5}]
        with pytest.raises(ValueError, match="observed_freq_SR"):
            validate_config(config)

    def test_observed_population_out_of_range(self):
        config = default_config()
        config.observed.populations = [
            {'name': 'A', 'freq_polyandry': 1.2, 'observed_freq_SR': 0.1},
        ]
        with pytest.raises(ValueError, match="freq_polyandry"):
            validate_config(config)

    def test_observed_population_valid(self):
        config = default_config()
        config.observed.populations = [
            {'name': 'A', 'freq_polyandry': 0.6, 'observed_freq_SR': 0.05},
        ]
        validate_config(config)


class TestValidateParameters:
    def test_defaults_valid(self):
        assert validate_parameters(SimulationParameters()) == []

    def test_boundaries_valid(self):
        params = SimulationParameters(
            k=0.0, paternity_of_SR_males=1.0, freq_polyandry=0.0,
            initial_freq_SR=1.0, w_SRSR_female=0.0,
        )
        assert validate_parameters(params) == []

    @pytest.mark.parametrize("name,value", [
        ('k', -0.01),
        ('k', 1.01),
        ('paternity_of_SR_males', 2.0),
        ('freq_polyandry', -1.0),
        ('initial_freq_SR', 1.5),
        ('initial_freq_SR', float('nan')),
    ])
    def test_unit_interval(self, name, value):
        problems = validate_parameters(SimulationParameters(**{name: value}))
        assert len(problems) == 1
        assert name in problems[0]

    @pytest.mark.parametrize("value", [-0.1, float('inf'), float('nan')])
    def test_fitness_finite_non_negative(self, value):
        problems = validate_parameters(SimulationParameters(w_SR_male=value))
        assert len(problems) == 1
        assert 'w_SR_male' in problems[0]

    @pytest.mark.parametrize("value", [0, -5, 2.5])
    def test_generations(self, value):
        problems = validate_parameters(SimulationParameters(generations=value))
        assert len(problems) == 1
        assert 'generations' in problems[0]

    @pytest.mark.parametrize("value", [None, 'abc'])
    def test_non_numeric_reported(self, value):
        problems = validate_parameters(SimulationParameters.from_mapping({'k': value}))
        assert problems == [f"k must be a number, got {value!r}"]

    def test_non_numeric_generations_reported(self):
        problems = validate_parameters(
            SimulationParameters.from_mapping({'generations': 'many'}))
        assert problems == ["generations must be a positive integer, got 'many'"]


class TestValidateGrid:
    def test_valid_grid_passes(self):
        validate_grid([SimulationParameters(), SimulationParameters(k=0.5)])

    def test_collects_every_violation(self):
        rows = [
            SimulationParameters(k=2.0),
            SimulationParameters(),
            SimulationParameters(freq_polyandry=-0.5, w_STSR_female=-1.0),
        ]
        with pytest.raises(InvalidParameterError) as exc:
            validate_grid(rows)
        assert len(exc.value.violations) == 3
        assert exc.value.violations[0].startswith("row 0:")
        assert all(v.startswith("row 2:") for v in exc.value.violations[1:])

    def test_is_value_error(self):
        with pytest.raises(ValueError):
            validate_grid([SimulationParameters(k=-1.0)])

    def test_long_message_truncated(self):
        rows = [SimulationParameters(k=2.0)] * 30
        with pytest.raises(InvalidParameterError) as exc:
            validate_grid(rows)
        assert len(exc.value.violations) == 30
        assert "and 10 more" in str(exc.value)


# ── Grid expansion tests ─────────────────────────────────────────────

class TestParameterGrid:
    def _config(self):
        config = SweepConfig()
        config.grid.k = [0.2, 0.6, 1.0]
        config.grid.freq_polyandry = [0.0, 0.5]
        config.simulation.generations = 40
        return config

    def test_size_is_product(self):
        assert len(list(iter_parameter_grid(self._config()))) == 6

    def test_first_column_varies_fastest(self):
        rows = list(iter_parameter_grid(self._config()))
        assert [r.k for r in rows] == [0.2, 0.6, 1.0, 0.2, 0.6, 1.0]
        assert [r.freq_polyandry for r in rows] == [0.0, 0.0, 0.0, 0.5, 0.5, 0.5]

    def test_generations_from_simulation_section(self):
        rows = list(iter_parameter_grid(self._config()))
        assert all(r.generations == 40 for r in rows)

    def test_dataframe(self):
        grid = build_parameter_grid(self._config())
        assert list(grid.columns) == PARAMETER_COLUMNS
        assert len(grid) == 6
        assert grid['k'].tolist() == [0.2, 0.6, 1.0, 0.2, 0.6, 1.0]


# ── Section dataclass tests ───────────────────────────────────────────

class TestSections:
    def test_simulation_section_defaults(self):
        s = SimulationSection()
        assert s.generations == 100
        assert s.record_trajectory is False

    def test_grid_section_lists_are_independent(self):
        a = GridSection()
        b = GridSection()
        a.k.append(0.5)
        assert b.k == [0.96]

    def test_sweep_section_defaults(self):
        s = SweepSection()
        assert s.output_dir == "results/sweep"
        assert s.n_workers == 1

    def test_observed_section_defaults(self):
        assert ObservedSection().populations == []
