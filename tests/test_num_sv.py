"""
Tests for the permutation estimate of the number of surrogate variables.
"""

import numpy as np
import pytest

from deferential_sva import DegenerateModelError
from deferential_sva.sva import num_sv


@pytest.fixture
def two_factor_data():
    """200 features x 12 samples with two strong latent factors."""
    np.random.seed(42)
    n = 12
    group = np.array([0] * 6 + [1] * 6, dtype=float)
    mod = np.column_stack([np.ones(n), group])

    factors = np.random.normal(size=(2, n))
    loadings = np.zeros((200, 2))
    loadings[:80, 0] = 6
    loadings[80:160, 1] = 6
    dat = loadings @ factors + np.random.normal(size=(200, n))
    return dat, mod


class TestNumSv:
    """Buja-Eyuboglu permutation estimate."""

    def test_detects_two_factors(self, two_factor_data):
        dat, mod = two_factor_data
        assert num_sv(dat, mod, seed=1) == 2

    def test_reproducible_with_seed(self, two_factor_data):
        dat, mod = two_factor_data
        assert num_sv(dat, mod, B=10, seed=7) == num_sv(dat, mod, B=10, seed=7)

    def test_vfilter(self, two_factor_data):
        dat, mod = two_factor_data
        assert num_sv(dat, mod, vfilter=150, seed=1) == 2

    def test_unknown_method(self, two_factor_data):
        dat, mod = two_factor_data
        with pytest.raises(ValueError):
            num_sv(dat, mod, method="leek")

    @pytest.mark.parametrize("kwargs", [{"B": 0}, {"sv_sig": 1.5}, {"vfilter": 0}])
    def test_bad_arguments(self, two_factor_data, kwargs):
        dat, mod = two_factor_data
        with pytest.raises(ValueError):
            num_sv(dat, mod, **kwargs)

    def test_rank_deficient_model(self, two_factor_data):
        dat, mod = two_factor_data
        with pytest.raises(DegenerateModelError):
            num_sv(dat, np.column_stack([mod, mod[:, 0]]))
