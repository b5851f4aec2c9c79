"""Tests for convergence checks and posterior queries (models/fit.py).

Fast tests use synthetic traces from ``az.from_dict``; tests marked
``slow`` run the NUTS sampler on a tiny table.
"""

from __future__ import annotations

import warnings
from pathlib import Path

import arviz as az
import numpy as np
import pytest

from decoding_bayes.config import DiagnosticsConfig, SamplerConfig
from decoding_bayes.errors import ConvergenceError, ConvergenceWarning, ShapeError
from decoding_bayes.eval.compare import compare_models
from decoding_bayes.eval.predictions import get_predictions
from decoding_bayes.models.fit import (
    check_convergence,
    draw_matrix,
    fit_model,
    load_fit,
    posterior_epred,
    posterior_predict,
    thin_posterior,
)
from decoding_bayes.models.ladder import get_ladder_model


def _trace(rng, chains=4, draws=1000, shift=0.0, diverging=0, bad_offsets=False):
    """Synthetic trace: iid normal chains, optionally offset from each other."""
    offsets = shift * np.arange(chains)[:, None]
    intercept = rng.normal(size=(chains, draws)) + offsets
    sd = np.abs(rng.normal(size=(chains, draws, 2))) + 0.1
    z = rng.normal(size=(chains, draws, 3))
    if bad_offsets:
        z = z + 10.0 * np.arange(chains)[:, None, None]
    div = np.zeros((chains, draws), dtype=bool)
    div.flat[:diverging] = True
    return az.from_dict(
        posterior={"Intercept": intercept, "sd_region": sd, "z_region": z},
        sample_stats={"diverging": div},
        dims={"sd_region": ["region_term"], "z_region": ["region_level"]},
    )


class TestCheckConvergence:
    def test_healthy_trace(self, rng):
        with warnings.catch_warnings():
            warnings.simplefilter("error", ConvergenceWarning)
            report = check_convergence(_trace(rng))
        assert report.ok
        assert report.n_divergent == 0
        assert report.max_rhat < 1.01
        assert report.to_dict()["ok"] is True

    def test_offsets_excluded(self, rng):
        with warnings.catch_warnings():
            warnings.simplefilter("error", ConvergenceWarning)
            report = check_convergence(_trace(rng, bad_offsets=True))
        assert report.ok

    def test_unmixed_chains_warn(self, rng):
        with pytest.warns(ConvergenceWarning, match="R-hat"):
            report = check_convergence(_trace(rng, shift=3.0))
        assert not report.ok
        assert report.worst_rhat_param == "Intercept"

    def test_divergences_warn(self, rng):
        with pytest.warns(ConvergenceWarning, match="divergent"):
            report = check_convergence(_trace(rng, diverging=5))
        assert report.n_divergent == 5

    def test_divergences_strict(self, rng):
        with pytest.raises(ConvergenceError):
            check_convergence(_trace(rng, diverging=1), DiagnosticsConfig(strict=True))

    def test_low_ess_warns(self, rng):
        with pytest.warns(ConvergenceWarning, match="ESS"):
            check_convergence(_trace(rng, chains=2, draws=100))


class TestDrawMatrix:
    def _idata(self, rng, chains=2, draws=100, n_obs=6):
        return az.from_dict(
            posterior={"p": rng.random((chains, draws, n_obs))},
            dims={"p": ["obs"]},
        )

    def test_thin(self, rng):
        idata = self._idata(rng)
        thinned = thin_posterior(idata, 50)
        assert thinned.posterior.sizes["draw"] == 25
        assert thinned.posterior.sizes["chain"] == 2

    def test_thin_noop(self, rng):
        idata = self._idata(rng)
        assert thin_posterior(idata, None) is idata
        assert thin_posterior(idata, 1000) is idata

    def test_flatten(self, rng):
        idata = self._idata(rng)
        arr = draw_matrix(idata.posterior["p"])
        assert arr.shape == (200, 6)
        # chain-major: the first 100 rows are chain 0
        np.testing.assert_allclose(arr[:100], idata.posterior["p"].values[0])

    def test_flatten_capped(self, rng):
        arr = draw_matrix(self._idata(rng).posterior["p"], max_draws=30)
        assert arr.shape == (30, 6)

    def test_cap_keeps_every_chain(self):
        # value = chain id, so each row shows which chain it came from
        chain_id = np.broadcast_to(np.arange(3)[:, None, None], (3, 1000, 2)).astype(float)
        idata = az.from_dict(posterior={"p": chain_id}, dims={"p": ["obs"]})
        thinned = thin_posterior(idata, 1000)
        arr = draw_matrix(thinned.posterior["p"], max_draws=1000)
        assert arr.shape == (1000, 2)
        counts = np.bincount(arr[:, 0].astype(int), minlength=3)
        assert counts.min() >= 333
        # the last draw of the last chain survives
        assert arr[-1, 0] == 2.0


class TestCompareErrors:
    def test_needs_two_models(self, rng):
        with pytest.raises(ValueError, match="at least two"):
            compare_models({"a": _trace(rng)})

    def test_needs_log_likelihood(self, rng):
        with pytest.raises(ValueError, match="log_likelihood"):
            compare_models({"a": _trace(rng), "b": _trace(rng)})


class TestLoadFit:
    def test_missing_trace(self, small_observations, tmp_path: Path):
        with pytest.raises(FileNotFoundError):
            load_fit(get_ladder_model("intercepts"), small_observations, tmp_path / "idata.nc")

    def test_observation_count_mismatch(self, small_observations, rng, tmp_path: Path):
        idata = az.from_dict(
            posterior={"Intercept": rng.normal(size=(1, 10))},
            log_likelihood={"value": rng.normal(size=(1, 10, 5))},
            dims={"value": ["obs"]},
        )
        path = tmp_path / "idata.nc"
        idata.to_netcdf(str(path))
        with pytest.raises(ShapeError):
            load_fit(get_ladder_model("intercepts"), small_observations, path)


@pytest.mark.slow
class TestEndToEnd:
    """Sample two tiny models and push their draws through the summary."""

    SAMPLER = SamplerConfig(draws=100, tune=100, chains=2, cores=1, seed=1, progressbar=False)

    @pytest.fixture(scope="class")
    def fits(self, fit_observations):
        return {
            name: fit_model(get_ladder_model(name), fit_observations, self.SAMPLER)
            for name in ("intercepts", "class_fixed")
        }

    def test_epred_shape_and_range(self, fits):
        fit = fits["class_fixed"]
        draws = posterior_epred(fit, max_draws=100, seed=2)
        assert draws.shape == (100, len(fit.observations))
        assert np.all((draws > 0) & (draws < 1))

        summary = get_predictions(draws, fit.observations)
        assert (summary["ymin"] <= summary["ymax"]).all()

    def test_predict_is_binary(self, fits):
        fit = fits["class_fixed"]
        draws = posterior_predict(fit, max_draws=100, seed=2)
        assert draws.shape == (100, len(fit.observations))
        assert set(np.unique(draws)) <= {0.0, 1.0}

    def test_log_likelihood_stored(self, fits):
        fit = fits["intercepts"]
        assert fit.idata.log_likelihood["value"].sizes["obs"] == len(fit.observations)

    def test_compare(self, fits):
        table = compare_models(fits)
        assert set(table.index) == {"intercepts", "class_fixed"}
        assert table["rank"].min() == 0

    def test_reload_from_netcdf(self, fits, tmp_path: Path):
        fit = fits["class_fixed"]
        path = tmp_path / "idata.nc"
        fit.idata.to_netcdf(str(path))
        reloaded = load_fit(fit.spec, fit.observations, path)
        np.testing.assert_allclose(
            posterior_epred(reloaded, max_draws=50, seed=3),
            posterior_epred(fit, max_draws=50, seed=3),
        )
