"""
Tests for the iteratively re-weighted surrogate variable algorithm.

Synthetic matrices with a known batch vector are used to check the shape,
orthonormality and posterior-probability guarantees, the error taxonomy and
recovery of the batch signal.
"""

import warnings

import numpy as np
import pandas as pd
import pytest

from deferential_sva import (
    DegenerateFDRWarning,
    DegenerateModelError,
    DimensionMismatchError,
    InsufficientRankWarning,
)
from deferential_sva.sva import (
    IRWState,
    SVAResult,
    estimate_surrogate_variables,
    initial_state,
    irw_step,
    irwsva_build,
    nested_models,
    posterior_probabilities,
    weight_and_center,
)
from deferential_sva.sva import irwsva as irwsva_module


@pytest.fixture
def batch_data():
    """200 features x 10 samples; features 0-19 carry a batch signal."""
    np.random.seed(42)
    m, n = 200, 10
    group = np.array([0, 0, 0, 0, 0, 1, 1, 1, 1, 1], dtype=float)
    # Zero mean within each group: uncorrelated with intercept and group
    batch = np.array([1, 1, -1, -1, 0, 1, 1, -1, -1, 0], dtype=float)

    dat = np.random.normal(size=(m, n))
    dat[:20] += 5 * batch
    dat[20:40] += 3 * group

    mod = np.column_stack([np.ones(n), group])
    mod0 = np.ones((n, 1))
    return dat, mod, mod0, batch


def _in_column_space(cols, space, tol=1e-8):
    coef = np.linalg.lstsq(space, cols, rcond=None)[0]
    return np.linalg.norm(cols - space @ coef) <= tol * max(np.linalg.norm(cols), 1.0)


class TestResultShape:
    """Shape and bookkeeping of the result."""

    def test_single_sv(self, batch_data):
        dat, mod, mod0, _ = batch_data
        res = irwsva_build(dat, mod, mod0, n_sv=1, B=5)

        assert isinstance(res, SVAResult)
        assert res.surrogate_variables.shape == (10, 1)
        assert res.pprob_gamma.shape == (200,)
        assert res.pprob_b.shape == (200,)
        assert res.n_sv == 1
        assert res.n_sv_requested == 1
        assert res.iterations == 5
        assert res.converged is None

    def test_default_null_model(self, batch_data):
        dat, mod, mod0, _ = batch_data
        res_default = irwsva_build(dat, mod, n_sv=1)
        res_explicit = irwsva_build(dat, mod, mod0, n_sv=1)
        np.testing.assert_allclose(
            res_default.surrogate_variables, res_explicit.surrogate_variables
        )

    def test_dataframe_inputs(self, batch_data):
        dat, mod, _, _ = batch_data
        samples = [f"S{i}" for i in range(10)]
        dat_df = pd.DataFrame(dat, columns=samples)
        mod_df = pd.DataFrame(mod, index=samples, columns=["Intercept", "Group"])

        res = irwsva_build(dat_df, mod_df, n_sv=2)
        frame = res.to_frame(samples)

        assert list(frame.columns) == ["SV1", "SV2"]
        assert list(frame.index) == samples

    def test_orthonormal_columns(self, batch_data):
        dat, mod, mod0, _ = batch_data
        res = irwsva_build(dat, mod, mod0, n_sv=3, B=5)
        sv = res.surrogate_variables

        np.testing.assert_allclose(sv.T @ sv, np.eye(3), atol=1e-8)

    def test_alias_matches(self, batch_data):
        dat, mod, mod0, _ = batch_data
        res_a = irwsva_build(dat, mod, mod0, n_sv=2, B=3)
        res_b = estimate_surrogate_variables(dat, mod, mod0, n_sv=2, iterations=3)
        np.testing.assert_allclose(res_a.surrogate_variables, res_b.surrogate_variables)
        np.testing.assert_allclose(res_a.pprob_gamma, res_b.pprob_gamma)


class TestPosteriors:
    """Posterior probabilities and their clamping."""

    def test_bounds_every_iteration(self, batch_data):
        dat, mod, mod0, _ = batch_data
        seen = []

        def record(iteration, state):
            seen.append(iteration)
            for pprob in (state.pprob_gamma, state.pprob_b):
                assert np.all(np.isfinite(pprob))
                assert np.all((pprob >= 0) & (pprob <= 1))

        irwsva_build(dat, mod, mod0, n_sv=2, B=5, callback=record)
        assert seen == [1, 2, 3, 4, 5]

    def test_batch_features_weighted_up(self, batch_data):
        dat, mod, mod0, _ = batch_data
        res = irwsva_build(dat, mod, mod0, n_sv=1, B=5)

        combined = res.pprob_gamma * (1 - res.pprob_b)
        assert combined[:20].mean() > combined[40:].mean()

    def test_clamps_out_of_range(self, monkeypatch):
        monkeypatch.setattr(
            irwsva_module, "edge_lfdr",
            lambda p: np.array([np.nan, -0.5, 1.5, 0.3]),
        )
        p = np.array([0.1, 0.9, 0.5, 0.95])

        with pytest.warns(DegenerateFDRWarning):
            pprob = posterior_probabilities(p)

        # pi0 is capped at 1, so the NaN estimate becomes 1 - 1 = 0
        np.testing.assert_allclose(pprob, [0.0, 1.0, 0.0, 0.7])

    def test_estimator_failure_falls_back_to_pi0(self, monkeypatch):
        def broken(p):
            raise ValueError("spline did not converge")

        monkeypatch.setattr(irwsva_module, "edge_lfdr", broken)
        p = np.array([0.01, 0.2, 0.85, 0.9, 0.3])

        with pytest.warns(DegenerateFDRWarning):
            pprob = posterior_probabilities(p)

        # mean(p >= 0.8) / 0.2 = 2 -> pi0 capped at 1
        np.testing.assert_allclose(pprob, np.zeros(5))

    def test_in_range_estimates_pass_through(self, monkeypatch):
        monkeypatch.setattr(irwsva_module, "edge_lfdr", lambda p: np.array([0.25, 1.0]))
        with warnings.catch_warnings():
            warnings.simplefilter("error", DegenerateFDRWarning)
            pprob = posterior_probabilities(np.array([0.01, 0.9]))
        np.testing.assert_allclose(pprob, [0.75, 0.0])


class TestNestedModels:
    """The two F-tests always compare nested models."""

    def test_null_columns_inside_full(self, batch_data):
        dat, mod, mod0, _ = batch_data
        state = initial_state(dat, mod, 2)[0]
        for _ in range(3):
            sv = state.eigenvectors[:, :2]
            mod_b, mod0_b, mod_gam, mod0_gam = nested_models(mod, mod0, sv)

            assert mod_b.shape == (10, 4)
            assert mod0_b.shape == (10, 3)
            assert mod_gam.shape == (10, 3)
            assert mod0_gam.shape == (10, 1)
            assert _in_column_space(mod0_b, mod_b)
            assert _in_column_space(mod0_gam, mod_gam)

            state = irw_step(state, dat, mod, mod0, 2)


class TestFold:
    """Single steps of the iteration on an injected state."""

    def test_initial_state(self, batch_data):
        dat, mod, _, _ = batch_data
        state, n_sv = initial_state(dat, mod, 2)

        assert n_sv == 2
        assert state.iteration == 0
        assert state.eigenvectors.shape == (10, 10)
        assert state.pprob_gamma is None
        # Leading eigenvectors are orthogonal to the full model
        np.testing.assert_allclose(mod.T @ state.eigenvectors[:, :2], 0, atol=1e-8)

    def test_one_step(self, batch_data):
        dat, mod, mod0, _ = batch_data
        state0 = IRWState(iteration=0, eigenvectors=np.linalg.qr(np.random.normal(size=(10, 10)))[0])
        state1 = irw_step(state0, dat, mod, mod0, 1)

        assert state1.iteration == 1
        assert state1.eigenvectors.shape == (10, 10)
        assert state1.weighted.shape == dat.shape
        np.testing.assert_allclose(state1.weighted.mean(axis=1), 0, atol=1e-10)
        # Inputs are not mutated
        assert state0.pprob_gamma is None

    def test_weights_broadcast_per_feature(self):
        dat = np.array([
            [1.0, 2.0, 3.0, 6.0],
            [4.0, 4.0, 4.0, 4.0],
            [0.0, 1.0, 2.0, 5.0],
        ])
        original = dat.copy()
        out = weight_and_center(dat, np.array([0.0, 1.0, 2.0]))

        np.testing.assert_allclose(out[0], 0)
        np.testing.assert_allclose(out[1], 0)
        np.testing.assert_allclose(out[2], [-4.0, -2.0, 0.0, 6.0])
        np.testing.assert_array_equal(dat, original)

    def test_insufficient_rank_warns(self):
        np.random.seed(0)
        n = 10
        group = np.array([0, 1] * 5, dtype=float)
        mod = np.column_stack([np.ones(n), group])
        dat = np.random.normal(size=(100, 2)) @ np.random.normal(size=(2, n))

        with pytest.warns(InsufficientRankWarning):
            _, n_sv = initial_state(dat, mod, 4)
        assert n_sv == 2

    def test_short_rank_through_entry_point(self):
        np.random.seed(0)
        n = 10
        group = np.array([0, 1] * 5, dtype=float)
        mod = np.column_stack([np.ones(n), group])
        dat = np.outer(np.random.normal(size=100), np.random.normal(size=n))

        with pytest.warns(InsufficientRankWarning):
            res = estimate_surrogate_variables(dat, mod, n_sv=3, iterations=3)

        assert res.surrogate_variables.shape == (n, 1)
        assert res.n_sv == 1
        assert res.n_sv_requested == 3
        assert res.pprob_gamma.shape == (100,)
        assert np.all((res.pprob_gamma >= 0) & (res.pprob_gamma <= 1))
        assert np.all((res.pprob_b >= 0) & (res.pprob_b <= 1))


class TestOrchestrator:
    """Iteration policy, determinism and the observer."""

    def test_deterministic(self, batch_data):
        dat, mod, mod0, _ = batch_data
        res_a = irwsva_build(dat, mod, mod0, n_sv=2, B=5)
        res_b = irwsva_build(dat, mod, mod0, n_sv=2, B=5)

        np.testing.assert_allclose(res_a.surrogate_variables, res_b.surrogate_variables, atol=1e-6)
        np.testing.assert_allclose(res_a.pprob_gamma, res_b.pprob_gamma, atol=1e-6)
        np.testing.assert_allclose(res_a.pprob_b, res_b.pprob_b, atol=1e-6)

    def test_threads_match_serial(self, batch_data):
        dat, mod, mod0, _ = batch_data
        serial = irwsva_build(dat, mod, mod0, n_sv=2, B=3)
        threaded = irwsva_build(dat, mod, mod0, n_sv=2, B=3, n_jobs=2)

        np.testing.assert_allclose(serial.surrogate_variables, threaded.surrogate_variables, atol=1e-10)
        np.testing.assert_allclose(serial.pprob_b, threaded.pprob_b, atol=1e-10)

    def test_early_stopping(self, batch_data):
        dat, mod, mod0, _ = batch_data
        res = irwsva_build(dat, mod, mod0, n_sv=1, B=10, tol=1.01)

        assert res.converged is True
        assert res.iterations == 2

    def test_input_not_mutated(self, batch_data):
        dat, mod, mod0, _ = batch_data
        original = dat.copy()
        irwsva_build(dat, mod, mod0, n_sv=1, B=2)
        np.testing.assert_array_equal(dat, original)

    def test_recovers_batch_vector(self, batch_data):
        dat, mod, mod0, batch = batch_data
        res = irwsva_build(dat, mod, mod0, n_sv=1, B=5)

        r = np.corrcoef(res.surrogate_variables[:, 0], batch)[0, 1]
        assert abs(r) > 0.8


class TestErrors:
    """Caller mistakes surface before any iteration."""

    def test_duplicated_column(self, batch_data):
        dat, mod, mod0, _ = batch_data
        bad_mod = np.column_stack([mod, mod[:, 1]])
        calls = []

        with pytest.raises(DegenerateModelError):
            irwsva_build(dat, bad_mod, mod0, n_sv=1, callback=lambda i, s: calls.append(i))
        assert calls == []

    def test_rank_deficient_null_model(self, batch_data):
        dat, mod, _, _ = batch_data
        full = np.column_stack([mod, np.arange(10, dtype=float)])
        doubled_intercept = np.ones((10, 2))
        calls = []

        with pytest.raises(DegenerateModelError):
            irwsva_build(dat, full, doubled_intercept, n_sv=1, callback=lambda i, s: calls.append(i))
        assert calls == []


    def test_zero_sv_rejected(self, batch_data):
        dat, mod, mod0, _ = batch_data
        with pytest.raises(DimensionMismatchError):
            irwsva_build(dat, mod, mod0, n_sv=0)

    @pytest.mark.parametrize("n_sv", [8, 10, 12])
    def test_too_many_sv(self, batch_data, n_sv):
        dat, mod, mod0, _ = batch_data
        with pytest.raises(DimensionMismatchError):
            irwsva_build(dat, mod, mod0, n_sv=n_sv)

    def test_sample_mismatch(self, batch_data):
        dat, mod, mod0, _ = batch_data
        with pytest.raises(DimensionMismatchError):
            irwsva_build(dat[:, :9], mod, n_sv=1)

    def test_null_not_nested(self, batch_data):
        dat, mod, _, _ = batch_data
        not_nested = np.arange(10, dtype=float).reshape(-1, 1)
        with pytest.raises(DimensionMismatchError):
            irwsva_build(dat, mod, not_nested, n_sv=1)

    def test_null_as_large_as_full(self, batch_data):
        dat, mod, _, _ = batch_data
        with pytest.raises(DimensionMismatchError):
            irwsva_build(dat, mod, mod, n_sv=1)

    @pytest.mark.parametrize("kwargs", [{"B": 0}, {"n_jobs": 0}, {"tol": 0.0}])
    def test_bad_tuning_arguments(self, batch_data, kwargs):
        dat, mod, mod0, _ = batch_data
        with pytest.raises(ValueError):
            irwsva_build(dat, mod, mod0, n_sv=1, **kwargs)

    def test_missing_values(self, batch_data):
        dat, mod, mod0, _ = batch_data
        dat = dat.copy()
        dat[0, 0] = np.nan
        with pytest.raises(ValueError):
            irwsva_build(dat, mod, mod0, n_sv=1)
