"""Tests for iddc_abc.config — configuration loading and validation."""

from pathlib import Path

import pytest
import yaml

from iddc_abc.config import (
    CoalescenceSection,
    ModelConfig,
    PriorSection,
    deep_merge,
    default_config,
    load_config,
    validate_config,
)


# ── deep_merge tests ──────────────────────────────────────────────────

class TestDeepMerge:
    def test_simple_override(self):
        assert deep_merge({'a': 1, 'b': 2}, {'b': 3}) == {'a': 1, 'b': 3}

    def test_nested_merge(self):
        base = {'x': {'a': 1, 'b': 2}, 'y': 10}
        result = deep_merge(base, {'x': {'b': 3, 'c': 4}})
        assert result == {'x': {'a': 1, 'b': 3, 'c': 4}, 'y': 10}

    def test_override_dict_with_scalar(self):
        assert deep_merge({'a': {'nested': 1}}, {'a': 'replaced'}) == {'a': 'replaced'}

    def test_empty_override(self):
        assert deep_merge({'a': 1}, {}) == {'a': 1}


# ── default_config tests ─────────────────────────────────────────────

class TestDefaultConfig:
    def test_creates_valid_config(self):
        assert isinstance(default_config(), ModelConfig)

    def test_introduction_scenario(self):
        sim = default_config().simulation
        assert sim.introduction_lat == 44.0
        assert sim.introduction_lon == 0.2
        assert sim.introduction_time == 2004
        assert sim.sampling_time == 2008
        assert sim.seed == 42

    def test_prior_defaults(self):
        prior = default_config().prior
        assert prior.n0 == 8
        assert prior.k_range == (1, 500)
        assert prior.r_range == (1.0, 20.0)
        assert prior.a_range == (100.0, 1000.0)

    def test_policy_defaults(self):
        config = default_config()
        assert config.dispersal.kernel == 'gaussian'
        assert config.coalescence.unresolved == 'keep_founders'
        assert config.partition.coarsen is True


# ── YAML loading tests ───────────────────────────────────────────────

class TestLoadConfig:
    def test_load_from_yaml(self, tmp_path):
        config_path = tmp_path / "test.yaml"
        with open(config_path, 'w') as f:
            yaml.dump({'simulation': {'seed': 99, 'sampling_time': 2010}}, f)

        config = load_config(config_path)
        assert config.simulation.seed == 99
        assert config.simulation.sampling_time == 2010
        # Unspecified sections get defaults
        assert config.prior.n0 == 8

    def test_ranges_become_tuples(self, tmp_path):
        config_path = tmp_path / "test.yaml"
        with open(config_path, 'w') as f:
            yaml.dump({'prior': {'k_range': [10, 20]}}, f)
        assert load_config(config_path).prior.k_range == (10, 20)

    def test_unknown_keys_ignored(self, tmp_path):
        config_path = tmp_path / "test.yaml"
        with open(config_path, 'w') as f:
            yaml.dump({'prior': {'n0': 4, 'colour': 'blue'}, 'extra': {'x': 1}}, f)
        config = load_config(config_path)
        assert config.prior.n0 == 4
        assert not hasattr(config.prior, 'colour')

    def test_load_with_scenario_override(self, tmp_path):
        base_path = tmp_path / "base.yaml"
        scen_path = tmp_path / "scenario.yaml"
        with open(base_path, 'w') as f:
            yaml.dump({'dispersal': {'kernel': 'gaussian'},
                       'simulation': {'seed': 1}}, f)
        with open(scen_path, 'w') as f:
            yaml.dump({'dispersal': {'kernel': 'logistic'}}, f)

        config = load_config(base_path, scenario_path=scen_path)
        assert config.dispersal.kernel == 'logistic'
        assert config.simulation.seed == 1

    def test_load_with_overrides(self, tmp_path):
        base_path = tmp_path / "base.yaml"
        base_path.write_text("")
        config = load_config(base_path,
                             overrides={'coalescence': {'unresolved': 'keep_founders'}})
        assert config.coalescence.unresolved == 'keep_founders'

    def test_file_not_found(self, tmp_path):
        with pytest.raises(FileNotFoundError):
            load_config(tmp_path / "nonexistent.yaml")

    def test_load_real_default_yaml(self):
        """Load the shipped configs/default.yaml."""
        default_path = Path(__file__).parent.parent / "configs" / "default.yaml"
        if default_path.exists():
            config = load_config(default_path)
            assert config.simulation.introduction_time == 2004
            assert config.prior.k_range == (1, 500)
            assert config.coalescence.unresolved == 'keep_founders'


# ── Validation tests ──────────────────────────────────────────────────

class TestValidation:
    def test_time_ordering(self):
        config = default_config()
        config.simulation.sampling_time = 2004
        with pytest.raises(ValueError, match="sampling_time"):
            validate_config(config)

    def test_negative_seed(self):
        config = default_config()
        config.simulation.seed = -1
        with pytest.raises(ValueError, match="simulation.seed"):
            validate_config(config)

    def test_unknown_kernel(self):
        config = default_config()
        config.dispersal.kernel = 'cauchy'
        with pytest.raises(ValueError, match="dispersal.kernel"):
            validate_config(config)

    def test_k_range_must_be_positive(self):
        config = default_config()
        config.prior = PriorSection(k_range=(0, 500))
        with pytest.raises(ValueError, match="prior.k_range"):
            validate_config(config)

    def test_reversed_range(self):
        config = default_config()
        config.prior = PriorSection(a_range=(1000.0, 100.0))
        with pytest.raises(ValueError, match="prior.a_range"):
            validate_config(config)

    def test_logistic_needs_heavy_tail_range(self):
        config = default_config()
        config.dispersal.kernel = 'logistic'
        config.prior = PriorSection(b_range=(1.5, 4.0))
        with pytest.raises(ValueError, match="prior.b_range"):
            validate_config(config)

    def test_b_range_ignored_for_gaussian(self):
        config = default_config()
        config.prior = PriorSection(b_range=(1.5, 4.0))
        validate_config(config)  # should not raise

    def test_unknown_policy(self):
        config = default_config()
        config.coalescence = CoalescenceSection(unresolved='retry')
        with pytest.raises(ValueError, match="coalescence.unresolved"):
            validate_config(config)

    def test_long_history_warns(self):
        config = default_config()
        config.simulation.sampling_time = 2004 + 5000
        with pytest.warns(UserWarning, match="generations"):
            validate_config(config)
