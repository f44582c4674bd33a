"""Tests for iddc_abc.rng — seeded RNG streams and checkpointing."""

import numpy as np
import pytest

from iddc_abc.rng import (
    create_rng_streams,
    get_replicate_rng,
    make_rng,
    restore_rng_state,
    rng_state_snapshot,
)


class TestCreateRngStreams:
    def test_returns_correct_keys(self):
        rngs = create_rng_streams(42, n_replicates=5)
        assert 'prior' in rngs
        assert 'observed' in rngs
        for i in range(5):
            assert f'replicate_{i}' in rngs
        assert len(rngs) == 5 + 2

    def test_generators_are_independent(self):
        rngs = create_rng_streams(42, n_replicates=3)
        vals = {name: rng.random() for name, rng in rngs.items()}
        assert len(set(vals.values())) == len(vals)

    def test_reproducibility(self):
        rngs1 = create_rng_streams(42, n_replicates=4)
        rngs2 = create_rng_streams(42, n_replicates=4)
        for name in rngs1:
            np.testing.assert_array_equal(rngs1[name].random(100),
                                          rngs2[name].random(100))

    def test_different_seeds_differ(self):
        a = create_rng_streams(42, n_replicates=1)['replicate_0'].random(10)
        b = create_rng_streams(43, n_replicates=1)['replicate_0'].random(10)
        assert not np.array_equal(a, b)

    def test_growing_table_keeps_earlier_streams(self):
        """Replicate i's stream doesn't depend on how many replicates exist."""
        small = create_rng_streams(7, n_replicates=3)
        large = create_rng_streams(7, n_replicates=300)
        for name in ['prior', 'observed', 'replicate_0', 'replicate_2']:
            np.testing.assert_array_equal(small[name].random(20),
                                          large[name].random(20))

    def test_negative_seed(self):
        with pytest.raises(ValueError, match="non-negative"):
            create_rng_streams(-1, n_replicates=1)

    def test_make_rng_reproducible(self):
        np.testing.assert_array_equal(make_rng(5).integers(0, 1000, 10),
                                      make_rng(5).integers(0, 1000, 10))


class TestGetReplicateRng:
    def test_valid(self):
        rngs = create_rng_streams(42, n_replicates=3)
        assert get_replicate_rng(rngs, 2) is rngs['replicate_2']

    def test_missing(self):
        rngs = create_rng_streams(42, n_replicates=3)
        with pytest.raises(KeyError, match="3 replicate streams"):
            get_replicate_rng(rngs, 3)


class TestSnapshot:
    def test_restore_replays(self):
        rngs = create_rng_streams(42, n_replicates=2)
        rngs['prior'].random(5)
        state = rng_state_snapshot(rngs)
        first = rngs['prior'].random(10)
        restore_rng_state(rngs, state)
        np.testing.assert_array_equal(rngs['prior'].random(10), first)

    def test_unknown_stream(self):
        rngs = create_rng_streams(42, n_replicates=1)
        state = rng_state_snapshot(rngs)
        state['replicate_9'] = state['replicate_0']
        with pytest.raises(KeyError, match="replicate_9"):
            restore_rng_state(rngs, state)
